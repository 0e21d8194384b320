from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator


class Questionnaire(BaseModel):
    """Free-text context the synthesis pass weighs detections against."""

    age: int = 0
    gender: str = ""
    complaints: str = ""
    habits: str = ""

    model_config = ConfigDict(extra="ignore")

    @field_validator("age", mode="before")
    @classmethod
    def _age_int(cls, v):  # type: ignore[no-untyped-def]
        try:
            return max(0, int(float(v)))
        except (TypeError, ValueError):
            return 0

    @field_validator("gender", "complaints", "habits", mode="before")
    @classmethod
    def _strip(cls, v):  # type: ignore[no-untyped-def]
        return str(v or "").strip()

    def to_prompt_text(self) -> str:
        return (
            f"age={self.age}; gender={self.gender}; "
            f"complaints={self.complaints}; habits={self.habits}"
        )
