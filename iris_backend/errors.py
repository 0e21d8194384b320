from __future__ import annotations
from typing import Optional


class IrisPipelineError(Exception):
    """Base class for every error that aborts a pipeline run."""


class ConfigurationError(IrisPipelineError):
    """Missing model id or a credential required by the selected transport."""


class InputError(IrisPipelineError):
    """Required uploaded image(s) missing or unreadable."""


class TransportError(IrisPipelineError):
    """Relay or upstream answered with a non-success HTTP status."""

    def __init__(self, status_code: Optional[int], body: str, source: str = "upstream"):
        self.status_code = status_code
        self.body = body
        self.source = source
        super().__init__(f"{source} HTTP {status_code}: {body}")


class EmptyResponseError(IrisPipelineError):
    """The provider response carried no extractable text."""


class ParseError(IrisPipelineError):
    """Neither strict nor fallback JSON extraction produced an object."""


class RunAbortedError(IrisPipelineError):
    """A call was skipped because another call of the same run already failed."""
