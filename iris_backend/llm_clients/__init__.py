from .base import LLMVisionClient
from .factory import create_vision_client, invoke

__all__ = ["LLMVisionClient", "create_vision_client", "invoke"]
