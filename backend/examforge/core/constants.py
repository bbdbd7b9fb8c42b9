"""ExamForge - Shared constants and state enums."""
import uuid
from enum import Enum

from examforge.core.errors import InputError


class JobName(str, Enum):
    """Typed job names understood by the job runner."""
    FETCH_SOURCE = "fetch_source"
    CHUNK_AND_EMBED = "chunk_and_embed"
    GENERATE_PAPER = "generate_paper"
    GRADE_ATTEMPT = "grade_attempt"


class EntityKind(str, Enum):
    """Entities whose status is streamed to live viewers."""
    SOURCE = "source"
    PAPER = "paper"
    ATTEMPT = "attempt"


def topic_for(kind: EntityKind | str, entity_id) -> str:
    """Live-update topic for one entity instance, e.g. ``paper:<id>``."""
    kind = EntityKind(kind)
    return f"{kind.value}:{entity_id}"


# OpenAI text-embedding-3-small / ada-002 dimension
EMBEDDING_DIMENSIONS = 1536


def parse_uuid(value) -> uuid.UUID:
    """Coerce a job payload or path value into a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError) as e:
        raise InputError(f"Invalid id: {value!r}") from e
