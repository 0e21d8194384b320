from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from iris_backend.coordinates import minute_in_range, ring_in_range

Side = Literal["R", "L"]
SIDES: Tuple[str, ...] = ("R", "L")

DetectionGroup = Literal["LESIONS", "RADIAL", "RINGS", "PIGMENT", "COLLARETTE"]
DETECTION_GROUPS: Tuple[str, ...] = ("LESIONS", "RADIAL", "RINGS", "PIGMENT", "COLLARETTE")

# Closed vocabulary per detection group
GROUP_VOCABULARY: Dict[str, Tuple[str, ...]] = {
    "LESIONS": ("lacuna", "crypt", "giant_lacuna", "collarette_defect_lesion", "atrophic_area"),
    "RADIAL": ("radial_furrow", "deep_radial_cleft", "transversal_fiber"),
    "RINGS": ("nerve_ring", "scurf_rim", "sodium_ring", "lymphatic_rosary"),
    "PIGMENT": ("pigment_spot", "pigment_cloud", "pigment_band", "brushfield_like_spots"),
    "COLLARETTE": ("collarette_position", "collarette_shape"),
}

TransportMode = Literal["local", "direct"]
Provider = Literal["openai", "gemini"]
Level = Literal["low", "medium", "high"]
FindingStatus = Literal["definite", "probable", "suspected"]
ZoneStatus = Literal["normal", "attention", "concern"]


def _norm(s: Any) -> str:
    return str(s or "").strip().lower()


# ---------------------------------------------------------------------------
# Run configuration and stage requests
# ---------------------------------------------------------------------------
class ProviderConfig(BaseModel):
    """Provider/transport selection for one pipeline run.

    Frozen: a run works on the snapshot it was started with.
    """

    transport_mode: TransportMode = "local"
    provider: Provider = "openai"
    model_id: str = ""
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    relay_url: str = "http://localhost:5173"
    max_concurrency: int = Field(1, ge=1)

    model_config = ConfigDict(frozen=True, extra="ignore", protected_namespaces=())

    @field_validator("provider", mode="before")
    @classmethod
    def _norm_provider(cls, v):  # type: ignore[no-untyped-def]
        s = _norm(v)
        if s in ("gemini", "google", "googleai", "google-ai"):
            return "gemini"
        if s in ("", "openai", "oai"):
            return "openai"
        return s

    @field_validator("transport_mode", mode="before")
    @classmethod
    def _norm_transport(cls, v):  # type: ignore[no-untyped-def]
        s = _norm(v)
        if s in ("", "local", "relay", "proxy"):
            return "local"
        return s

    @field_validator("model_id", mode="before")
    @classmethod
    def _strip_model(cls, v):  # type: ignore[no-untyped-def]
        return str(v or "").strip()

    def credential(self) -> str:
        """Credential for the selected provider (empty string if unset)."""
        key = self.gemini_api_key if self.provider == "gemini" else self.openai_api_key
        return (key or "").strip()


@dataclass(frozen=True)
class ImageInput:
    name: str
    data: bytes
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class StageRequest:
    stage_id: str
    instruction: str
    task: str
    side: Optional[str] = None
    group: Optional[str] = None
    image: Optional[ImageInput] = None


# ---------------------------------------------------------------------------
# Stage 1 – quality + axis
# ---------------------------------------------------------------------------
class QualityCheck(BaseModel):
    ok: bool = False
    issues: List[str] = Field(default_factory=list)
    confidence: float = 0.0

    model_config = ConfigDict(extra="ignore")

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):  # type: ignore[no-untyped-def]
        return _clamp_unit(v)

    @field_validator("issues", mode="before")
    @classmethod
    def _issues_list(cls, v):  # type: ignore[no-untyped-def]
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        return [str(x) for x in v]


class InvalidRegion(BaseModel):
    minute: List[int]
    reason: str = ""

    model_config = ConfigDict(extra="ignore")

    @field_validator("minute", mode="before")
    @classmethod
    def _minute_pair(cls, v):  # type: ignore[no-untyped-def]
        if isinstance(v, (int, float)):
            v = [v, v]
        return v

    @field_validator("minute")
    @classmethod
    def _minute_range(cls, v: List[int]) -> List[int]:
        if len(v) != 2 or not all(minute_in_range(m) for m in v):
            raise ValueError(f"minute range out of frame: {v}")
        return v


class QualityAxisResult(BaseModel):
    side: Side
    quality: QualityCheck = Field(default_factory=QualityCheck)
    frame: Dict[str, Any] = Field(default_factory=dict)
    invalid_regions: List[InvalidRegion] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# Stage 2 – detections
# ---------------------------------------------------------------------------
class Finding(BaseModel):
    type: str
    minute: Union[int, List[int]]
    ring: Union[int, List[int]]
    confidence: float = 0.0
    status: FindingStatus = "suspected"
    note: str = ""

    model_config = ConfigDict(extra="ignore")

    @field_validator("type", mode="before")
    @classmethod
    def _norm_type(cls, v):  # type: ignore[no-untyped-def]
        return _norm(v).replace(" ", "_")

    @field_validator("minute")
    @classmethod
    def _minute_range(cls, v):  # type: ignore[no-untyped-def]
        values = v if isinstance(v, list) else [v]
        if not 1 <= len(values) <= 2 or not all(minute_in_range(m) for m in values):
            raise ValueError(f"minute out of frame: {v}")
        return v

    @field_validator("ring")
    @classmethod
    def _ring_range(cls, v):  # type: ignore[no-untyped-def]
        values = v if isinstance(v, list) else [v]
        if not 1 <= len(values) <= 2 or not all(ring_in_range(r) for r in values):
            raise ValueError(f"ring out of range: {v}")
        if len(values) == 2 and values[0] > values[1]:
            raise ValueError(f"ring range reversed: {v}")
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):  # type: ignore[no-untyped-def]
        return _clamp_unit(v)

    @field_validator("status", mode="before")
    @classmethod
    def _norm_status(cls, v):  # type: ignore[no-untyped-def]
        s = _norm(v)
        if s in ("definite", "certain", "confirmed"):
            return "definite"
        if s in ("probable", "likely"):
            return "probable"
        return "suspected"

    @field_validator("note", mode="before")
    @classmethod
    def _note_str(cls, v):  # type: ignore[no-untyped-def]
        return str(v or "")


class DetectionResult(BaseModel):
    side: Side
    group: DetectionGroup
    findings: List[Finding] = Field(default_factory=list)
    quality_notes: str = ""

    model_config = ConfigDict(extra="ignore")

    @field_validator("quality_notes", mode="before")
    @classmethod
    def _notes_str(cls, v):  # type: ignore[no-untyped-def]
        if isinstance(v, list):
            return "; ".join(str(x) for x in v)
        return str(v or "")


class DetectionBundle(BaseModel):
    """Everything the synthesis pass sees from the two sides."""

    frames: Dict[str, QualityAxisResult]
    per_side: Dict[str, List[DetectionResult]]

    def to_prompt_json(self) -> str:
        payload: Dict[str, Any] = {
            "frames": {side: q.model_dump() for side, q in self.frames.items()},
        }
        for side, results in self.per_side.items():
            payload[side] = [r.model_dump() for r in results]
        return json.dumps(payload, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Stage 5 – synthesis report
# ---------------------------------------------------------------------------
class Zone(BaseModel):
    id: Optional[int] = None
    name: str = ""
    organ: str = ""
    status: ZoneStatus = "attention"
    findings: str = ""
    angle: List[float] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    @field_validator("status", mode="before")
    @classmethod
    def _norm_zone_status(cls, v):  # type: ignore[no-untyped-def]
        s = _norm(v)
        if s in ("normal", "ok", "good", "healthy"):
            return "normal"
        if s in ("concern", "alert", "problem", "critical"):
            return "concern"
        return "attention"

    @field_validator("findings", mode="before")
    @classmethod
    def _findings_text(cls, v):  # type: ignore[no-untyped-def]
        if isinstance(v, list):
            return "; ".join(str(x) for x in v)
        return str(v or "")


class Artifact(BaseModel):
    type: str = ""
    location: str = ""
    description: str = ""
    severity: Level = "medium"
    priority: Level = "medium"

    model_config = ConfigDict(extra="ignore")

    @field_validator("severity", "priority", mode="before")
    @classmethod
    def _norm_level(cls, v):  # type: ignore[no-untyped-def]
        return _norm_level(v)


class SystemScore(BaseModel):
    system: str = ""
    score: int = 0
    description: str = ""

    model_config = ConfigDict(extra="ignore")

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, v):  # type: ignore[no-untyped-def]
        return _clamp_percent(v)


class Advice(BaseModel):
    top_actions: List[str] = Field(default_factory=list)
    foods_focus: List[str] = Field(default_factory=list)
    avoid: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class Analysis(BaseModel):
    zones: List[Zone] = Field(default_factory=list)
    artifacts: List[Artifact] = Field(default_factory=list)
    overall_health: Optional[int] = Field(default=None, alias="overallHealth")
    system_scores: List[SystemScore] = Field(default_factory=list, alias="systemScores")
    advice: Advice = Field(default_factory=Advice)

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("overall_health", mode="before")
    @classmethod
    def _clamp_health(cls, v):  # type: ignore[no-untyped-def]
        if v is None or v == "":
            return None
        return _clamp_percent(v)


class SynthesisReport(BaseModel):
    analysis: Analysis

    model_config = ConfigDict(extra="ignore")

    def to_export_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _norm_level(v: Any) -> str:
    s = _norm(v)
    if s in ("high", "severe", "critical", "major"):
        return "high"
    if s in ("low", "minor", "mild", "slight"):
        return "low"
    return "medium"


def _clamp_unit(v: Any) -> float:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, f))


def _clamp_percent(v: Any) -> int:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return 0
    return int(round(max(0.0, min(100.0, f))))
