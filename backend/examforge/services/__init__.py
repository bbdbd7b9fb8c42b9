"""ExamForge - Services initialization."""
from examforge.services.attempts import AttemptService
from examforge.services.papers import PaperService
from examforge.services.sources import SourceService

__all__ = [
    "AttemptService",
    "PaperService",
    "SourceService",
]
