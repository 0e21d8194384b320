"""Iris visual-analysis pipeline: prompt orchestration over vision LLMs plus a credential-hiding relay."""

__version__ = "0.1.0"
