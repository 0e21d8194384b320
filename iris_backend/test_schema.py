"""Data model normalization and stage-output merging."""
from __future__ import annotations
import json

import pytest
from pydantic import ValidationError

from iris_backend.errors import ParseError
from iris_backend.pipeline.merge import (
    SideResult,
    merge_detections,
    parse_detection_result,
    parse_quality_result,
    parse_synthesis_report,
)
from iris_backend.schema import DETECTION_GROUPS, Artifact, Finding, ProviderConfig, SynthesisReport, Zone


# ---------------------------------------------------------------- ProviderConfig
def test_provider_config_normalizes_names():
    cfg = ProviderConfig(provider="Google", transport_mode="relay", model_id=" gemini-2.0-flash ")
    assert cfg.provider == "gemini"
    assert cfg.transport_mode == "local"
    assert cfg.model_id == "gemini-2.0-flash"


def test_provider_config_credential_follows_provider():
    cfg = ProviderConfig(provider="openai", openai_api_key=" sk-1 ", gemini_api_key="g-1")
    assert cfg.credential() == "sk-1"
    assert cfg.model_copy(update={"provider": "gemini"}).credential() == "g-1"
    assert ProviderConfig(provider="gemini").credential() == ""


def test_provider_config_is_frozen_and_validated():
    cfg = ProviderConfig(model_id="gpt-4o")
    with pytest.raises(ValidationError):
        cfg.model_id = "other"
    with pytest.raises(ValidationError):
        ProviderConfig(provider="anthropic")
    with pytest.raises(ValidationError):
        ProviderConfig(max_concurrency=0)


# ---------------------------------------------------------------- findings
def test_finding_normalization():
    f = Finding.model_validate(
        {"type": "Pigment Spot", "minute": [12, 18], "ring": 4, "confidence": 1.7, "status": "Likely"}
    )
    assert f.type == "pigment_spot"
    assert f.confidence == 1.0
    assert f.status == "probable"
    assert f.note == ""


@pytest.mark.parametrize(
    "minute,ring",
    [(60, 3), (-1, 3), ([50, 61], 3), (10, 0), (10, 13), (10, [6, 4]), (10, [1, 2, 3])],
)
def test_finding_outside_frame_is_invalid(minute, ring):
    with pytest.raises(ValidationError):
        Finding.model_validate({"type": "lacuna", "minute": minute, "ring": ring})


def test_wraparound_minute_range_is_allowed():
    assert Finding.model_validate({"type": "lacuna", "minute": [58, 2], "ring": 5}).minute == [58, 2]


# ---------------------------------------------------------------- report
def test_report_normalization_and_aliases():
    report = SynthesisReport.model_validate({
        "analysis": {
            "zones": [{"id": 3, "status": "OK", "findings": ["a", "b"]}],
            "artifacts": [{"type": "lacuna", "severity": "Severe", "priority": "???"}],
            "overallHealth": 130,
            "systemScores": [{"system": "digestive", "score": "-4"}],
        }
    })
    a = report.analysis
    assert a.zones[0].status == "normal"
    assert a.zones[0].findings == "a; b"
    assert a.artifacts[0].severity == "high"
    assert a.artifacts[0].priority == "medium"
    assert a.overall_health == 100
    assert a.system_scores[0].score == 0

    exported = report.to_export_dict()
    assert exported["analysis"]["overallHealth"] == 100
    assert "systemScores" in exported["analysis"]
    assert exported["analysis"]["advice"] == {"top_actions": [], "foods_focus": [], "avoid": []}


def test_zone_and_artifact_defaults():
    assert Zone().status == "attention"
    assert Artifact(priority="low").priority == "low"


# ---------------------------------------------------------------- merge
def _warnings(log_lines):
    return [line for level, line in log_lines.lines if level == "warn"]


def test_detection_drops_out_of_frame_and_foreign_findings(log_lines):
    raw = {
        "side": "L",
        "group": "PIGMENT",
        "findings": [
            {"type": "lacuna", "minute": 10, "ring": 3},
            {"type": "lacuna", "minute": 75, "ring": 3},
            {"type": "pigment_spot", "minute": 30, "ring": 8},
        ],
        "quality_notes": ["glare", "lid"],
    }
    result = parse_detection_result(raw, "R", "LESIONS", log=log_lines)

    assert result.side == "R"
    assert result.group == "LESIONS"
    assert [f.minute for f in result.findings] == [10]
    assert result.quality_notes == "glare; lid"
    assert len(_warnings(log_lines)) == 2


def test_detection_non_object_is_parse_error():
    with pytest.raises(ParseError):
        parse_detection_result(["not", "a", "dict"], "R", "RINGS")


def test_quality_drops_regions_outside_frame(log_lines):
    raw = {
        "quality": {"ok": "true", "issues": "slight blur", "confidence": 0.7},
        "invalid_regions": [{"minute": [50, 70], "reason": "lid"}, {"minute": [0, 5], "reason": "glare"}],
    }
    result = parse_quality_result(raw, "L", log=log_lines)

    assert result.side == "L"
    assert result.quality.ok is True
    assert result.quality.issues == ["slight blur"]
    assert [r.minute for r in result.invalid_regions] == [[0, 5]]
    assert len(_warnings(log_lines)) == 1


def test_quality_with_non_object_fields_falls_back_to_defaults(log_lines):
    result = parse_quality_result({"quality": None, "frame": "horizontal"}, "R", log=log_lines)

    assert result.quality.ok is False
    assert result.quality.issues == []
    assert result.frame == {}
    assert len(_warnings(log_lines)) == 2


def _side(side):
    quality = parse_quality_result({"quality": {"ok": True}}, side)
    detections = [parse_detection_result({"findings": []}, side, g) for g in DETECTION_GROUPS]
    return SideResult(side=side, quality=quality, detections=detections)


def test_merge_requires_both_complete_sides():
    bundle = merge_detections([_side("L"), _side("R")])
    payload = json.loads(bundle.to_prompt_json())
    assert set(payload) == {"frames", "R", "L"}
    assert len(payload["R"]) == len(payload["L"]) == 5

    with pytest.raises(ValueError):
        merge_detections([_side("R")])
    incomplete = _side("L")
    incomplete.detections.pop()
    with pytest.raises(ValueError):
        merge_detections([_side("R"), incomplete])


def test_synthesis_report_needs_analysis_object():
    with pytest.raises(ParseError):
        parse_synthesis_report({"report": {}})
    with pytest.raises(ParseError):
        parse_synthesis_report({"analysis": "text"})
    assert parse_synthesis_report({"analysis": {}}).analysis.zones == []
