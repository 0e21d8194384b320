"""Shared fixtures: a scripted vision client that answers by stage, and test images."""
from __future__ import annotations
import io
import threading
import time
from typing import List, Optional, Tuple

import pytest
from PIL import Image

from iris_backend.errors import TransportError
from iris_backend.schema import GROUP_VOCABULARY, ImageInput

CallKey = Tuple[str, Optional[str], Optional[str]]

CANNED_REPORT = {
    "analysis": {
        "zones": [
            {"id": 1, "name": "Стомах", "organ": "храносмилане", "status": "attention",
             "findings": "лакуна", "angle": [0, 30]},
        ],
        "artifacts": [
            {"type": "lacuna", "location": "minute 10; ring 3", "description": "малка лакуна",
             "severity": "medium", "priority": "high"},
        ],
        "overallHealth": 72,
        "systemScores": [{"system": "digestive", "score": 65, "description": "умерено"}],
        "advice": {"top_actions": ["повече вода"], "foods_focus": ["зеленчуци"], "avoid": ["захар"]},
    }
}


def classify(instruction: str, task: str) -> CallKey:
    """(stage, side, group) from the first lines of a built prompt."""
    head = instruction.splitlines()[0]
    first = task.splitlines()[0] if task else ""
    side = first.split(":", 1)[1].strip() if first.startswith("SIDE:") else None
    if "iris_stage_1_" in head:
        return ("stage1", side, None)
    if "iris_stage_2_detector_" in head:
        group = head.split("iris_stage_2_detector_", 1)[1].rstrip(".").strip()
        return ("stage2", side, group)
    return ("stage5", None, None)


class ScriptedClient:
    """Stands in for any LLMVisionClient; records every invoke()."""

    provider = "openai"
    transport = "local"

    def __init__(self, fail_on: Optional[int] = None, error: Optional[Exception] = None,
                 delay: float = 0.0, report: Optional[dict] = None,
                 fail_when: Optional[CallKey] = None):
        self.fail_on = fail_on
        self.fail_when = fail_when
        self.closed = False
        self.error = error
        self.delay = delay
        self.report = report or CANNED_REPORT
        self.calls: List[CallKey] = []
        self.tasks: List[str] = []
        self.images: List[Optional[ImageInput]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def invoke(self, instruction: str, task: str, image: Optional[ImageInput] = None) -> dict:
        key = classify(instruction, task)
        with self._lock:
            self.calls.append(key)
            self.tasks.append(task)
            self.images.append(image)
            n = len(self.calls)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.fail_when == key:
                raise self.error or TransportError(502, "side failed", source="OpenAI proxy")
            if self.delay:
                time.sleep(self.delay)
            if self.fail_on == n:
                raise self.error or TransportError(500, "upstream exploded", source="OpenAI proxy")
            return self._respond(key)
        finally:
            with self._lock:
                self.in_flight -= 1

    def close(self) -> None:
        self.closed = True

    def _respond(self, key: CallKey) -> dict:
        stage, side, group = key
        if stage == "stage1":
            return {
                "side": side,
                "quality": {"ok": True, "issues": [], "confidence": 0.9},
                "frame": {"axis": "horizontal_9_3"},
                "invalid_regions": [{"minute": [50, 55], "reason": "lid"}],
            }
        if stage == "stage2":
            return {
                "side": side,
                "group": group,
                "findings": [
                    {"type": GROUP_VOCABULARY[group][0], "minute": 10, "ring": [3, 4],
                     "confidence": 0.8, "status": "probable", "note": "x"},
                ],
                "quality_notes": "",
            }
        return self.report


def png_bytes(size: Tuple[int, int] = (8, 8), color: str = "gray") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def iris_images():
    data = png_bytes()
    return {
        "R": ImageInput(name="right.png", data=data, mime_type="image/png"),
        "L": ImageInput(name="left.png", data=data, mime_type="image/png"),
    }


@pytest.fixture
def log_lines():
    """A log(line, level) sink that keeps (level, line) pairs."""
    lines: List[Tuple[str, str]] = []

    def log(line: str, level: str = "info") -> None:
        lines.append((level, line))

    log.lines = lines  # type: ignore[attr-defined]
    return log
