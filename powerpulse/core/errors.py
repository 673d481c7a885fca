"""
Pipeline error taxonomy. Raised by services, mapped to HTTP codes at the route boundary.
"""


class PipelineError(Exception):
    """Base for every error the content/audio pipeline raises on purpose."""


class GenerationError(PipelineError):
    """LLM call failed or the script is outside the spoken-length window."""


class TTSError(PipelineError):
    """Speech synthesis failed or returned no audio."""


class ValidationError(PipelineError, ValueError):
    """Audio buffer is empty, too large, or the wrong length. Nothing gets stored."""
