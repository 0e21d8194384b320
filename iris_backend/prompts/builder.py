"""Prompt builder for the three pipeline stages.

Templates live beside this module as plain text and are read once at import;
the build functions only substitute ``<PLACEHOLDER>`` tokens, so they are pure.
"""
from __future__ import annotations
import os
import re
from pathlib import Path
from typing import Dict, NamedTuple

from iris_backend.coordinates import format_ring_map
from iris_backend.schema import DETECTION_GROUPS, GROUP_VOCABULARY, SIDES

PROMPTS_DIR = Path(__file__).resolve().parent

STAGE1_SYSTEM = (PROMPTS_DIR / "stage1_quality_system.txt").read_text(encoding="utf-8").strip()
STAGE1_TASK = (PROMPTS_DIR / "stage1_quality_task.txt").read_text(encoding="utf-8").strip()
STAGE2_SYSTEM = (PROMPTS_DIR / "stage2_detect_system.txt").read_text(encoding="utf-8").strip()
STAGE2_TASK = (PROMPTS_DIR / "stage2_detect_task.txt").read_text(encoding="utf-8").strip()
STAGE5_SYSTEM = (PROMPTS_DIR / "stage5_synthesis_system.txt").read_text(encoding="utf-8").strip()
STAGE5_TASK = (PROMPTS_DIR / "stage5_synthesis_task.txt").read_text(encoding="utf-8").strip()

# Language of human-readable strings in model output
REPORT_LANGUAGE = os.getenv("REPORT_LANGUAGE", "Bulgarian")

SIDE_NAMES = {"R": "right", "L": "left"}

_PLACEHOLDER_RE = re.compile(r"<([A-Z][A-Z_]*)>")


class PromptPair(NamedTuple):
    instruction: str
    task: str


def _fill(template: str, values: Dict[str, str]) -> str:
    # Single pass: substituted text is never scanned for further placeholders
    return _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def _check_side(side: str) -> None:
    if side not in SIDES:
        raise ValueError(f"Unknown side {side!r}; expected one of {SIDES}")


def group_instructions(group: str) -> str:
    return f"Detect ONLY: {', '.join(GROUP_VOCABULARY[group])}."


def build_quality_axis_prompt(side: str) -> PromptPair:
    """Stage 1: image usability + coordinate frame for one side."""
    _check_side(side)
    values = {"SIDE": side, "SIDE_NAME": SIDE_NAMES[side]}
    return PromptPair(_fill(STAGE1_SYSTEM, values), _fill(STAGE1_TASK, values))


def build_detection_prompt(side: str, group: str, language: str = REPORT_LANGUAGE) -> PromptPair:
    """Stage 2: detections restricted to a single group's vocabulary."""
    _check_side(side)
    if group not in DETECTION_GROUPS:
        raise ValueError(f"Unknown detection group {group!r}; expected one of {DETECTION_GROUPS}")
    values = {
        "SIDE": side,
        "GROUP": group,
        "RING_MAP": format_ring_map(),
        "GROUP_INSTRUCTIONS": group_instructions(group),
        "FINDING_TYPES": "|".join(GROUP_VOCABULARY[group]),
        "LANGUAGE": language,
    }
    return PromptPair(_fill(STAGE2_SYSTEM, values), _fill(STAGE2_TASK, values))


def build_synthesis_prompt(
    coord_map_text: str,
    questionnaire_text: str,
    detections_text: str,
    language: str = REPORT_LANGUAGE,
) -> PromptPair:
    """Stage 5: merge detections, zone map and questionnaire into the report.

    ``coord_map_text`` is expected to be already size-limited
    (see ``coord_map.compress_coord_map``).
    """
    values = {
        "LANGUAGE": language,
        "COORD_MAP_JSON": coord_map_text,
        "QUESTIONNAIRE": questionnaire_text,
        "DETECTIONS_JSON": detections_text,
    }
    return PromptPair(_fill(STAGE5_SYSTEM, values), _fill(STAGE5_TASK, values))
