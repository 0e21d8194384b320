from .builder import (
    PromptPair,
    build_detection_prompt,
    build_quality_axis_prompt,
    build_synthesis_prompt,
)

__all__ = [
    "PromptPair",
    "build_quality_axis_prompt",
    "build_detection_prompt",
    "build_synthesis_prompt",
]
