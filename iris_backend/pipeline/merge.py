"""Coerce stage outputs into typed results and assemble the detection bundle.

Model output is trusted only as far as the coordinate frame allows: findings
and invalid regions outside minute 0..59 / ring 1..12, and finding types outside
the requested group's vocabulary, are dropped with a warning, never repaired.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from iris_backend.errors import ParseError
from iris_backend.schema import (
    DETECTION_GROUPS,
    GROUP_VOCABULARY,
    SIDES,
    DetectionBundle,
    DetectionResult,
    Finding,
    InvalidRegion,
    QualityAxisResult,
    SynthesisReport,
)

LogFn = Callable[..., None]


def _noop(line: str, level: str = "info") -> None:
    return None


@dataclass
class SideResult:
    side: str
    quality: QualityAxisResult
    detections: List[DetectionResult]


def _as_list(v: Any) -> List[Any]:
    return v if isinstance(v, list) else []


def parse_quality_result(raw: Any, side: str, log: Optional[LogFn] = None) -> QualityAxisResult:
    log = log or _noop
    if not isinstance(raw, dict):
        raise ParseError(f"{side}: stage 1 output is not a JSON object.")
    regions: List[InvalidRegion] = []
    for item in _as_list(raw.get("invalid_regions")):
        try:
            regions.append(InvalidRegion.model_validate(item))
        except ValidationError:
            log(f"{side}: dropped invalid region outside the frame: {item!r}", "warn")
    data = dict(raw, side=side, invalid_regions=regions)
    for key in ("quality", "frame"):
        if key in data and not isinstance(data[key], dict):
            log(f"{side}: stage 1 {key} is not an object ({data[key]!r}); using defaults", "warn")
            del data[key]
    try:
        return QualityAxisResult.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"{side}: stage 1 output does not match the schema: {e}") from e


def parse_detection_result(
    raw: Any,
    side: str,
    group: str,
    log: Optional[LogFn] = None,
) -> DetectionResult:
    log = log or _noop
    if not isinstance(raw, dict):
        raise ParseError(f"{side}/{group}: stage 2 output is not a JSON object.")
    vocab = GROUP_VOCABULARY[group]
    findings: List[Finding] = []
    for item in _as_list(raw.get("findings")):
        try:
            f = Finding.model_validate(item)
        except ValidationError:
            log(f"{side}/{group}: dropped finding outside the frame: {item!r}", "warn")
            continue
        if f.type not in vocab:
            log(f"{side}/{group}: dropped finding of foreign type {f.type!r}", "warn")
            continue
        findings.append(f)
    # The requested side/group win over whatever the model echoed back
    data = dict(raw, side=side, group=group, findings=findings)
    try:
        return DetectionResult.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"{side}/{group}: stage 2 output does not match the schema: {e}") from e


def merge_detections(side_results: List[SideResult]) -> DetectionBundle:
    """Pure assembly of both sides' stage-1 frames and stage-2 results."""
    by_side: Dict[str, SideResult] = {r.side: r for r in side_results}
    missing = [s for s in SIDES if s not in by_side]
    if missing:
        raise ValueError(f"Cannot merge: no results for side(s) {missing}")
    for s in SIDES:
        groups = [d.group for d in by_side[s].detections]
        if sorted(groups) != sorted(DETECTION_GROUPS):
            raise ValueError(f"Cannot merge: side {s} has detections for {groups}")
    return DetectionBundle(
        frames={s: by_side[s].quality for s in SIDES},
        per_side={s: by_side[s].detections for s in SIDES},
    )


def parse_synthesis_report(raw: Any) -> SynthesisReport:
    if not isinstance(raw, dict) or not isinstance(raw.get("analysis"), dict):
        raise ParseError("Report JSON has no 'analysis' object.")
    try:
        return SynthesisReport.model_validate(raw)
    except ValidationError as e:
        raise ParseError(f"Report JSON does not match the schema: {e}") from e
