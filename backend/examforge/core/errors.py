"""
ExamForge - Error Types
Exceptions raised by the pipeline and mapped to HTTP responses by the API.
"""


class ExamForgeError(Exception):
    """Base class for all application errors."""


class InputError(ExamForgeError):
    """Malformed request payload, rejected before anything is enqueued."""


class NotFoundError(ExamForgeError):
    """Referenced entity does not exist."""


class PreconditionError(ExamForgeError):
    """Entity is not in the state the operation requires."""


class GroundingError(ExamForgeError):
    """Generated content cites a chunk reference that was never offered."""


class ProviderError(ExamForgeError):
    """Embedding, completion or remote-fetch call failed or returned garbage."""


class IngestionError(ExamForgeError):
    """A whole ingestion unit produced nothing usable."""
