"""ExamForge - Models initialization."""
from examforge.models.source import (
    Source,
    Document,
    Chunk,
    ChunkEmbedding,
    SourceType,
    SourceStatus,
    DocType,
)
from examforge.models.paper import (
    Paper,
    Question,
    QuestionCitation,
    PaperStatus,
    QuestionType,
)
from examforge.models.attempt import (
    Attempt,
    Answer,
    Grade,
    WrongItem,
    AttemptStatus,
)


__all__ = [
    # Source models
    "Source",
    "Document",
    "Chunk",
    "ChunkEmbedding",
    "SourceType",
    "SourceStatus",
    "DocType",
    # Paper models
    "Paper",
    "Question",
    "QuestionCitation",
    "PaperStatus",
    "QuestionType",
    # Attempt models
    "Attempt",
    "Answer",
    "Grade",
    "WrongItem",
    "AttemptStatus",
]
