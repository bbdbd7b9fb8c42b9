"""
ExamForge - Job Runner
Dispatches typed jobs to their handlers and owns failure bookkeeping.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

from examforge.core.constants import EntityKind, JobName, parse_uuid
from examforge.core.errors import InputError, NotFoundError
from examforge.core.telemetry import job_span
from examforge.generation.generator import GroundedGenerator
from examforge.grading.grader import AttemptGrader
from examforge.ingestion.pipeline import SourceIngestor
from examforge.jobs.status import FAILED, error_message, publish_status, record_failure

if TYPE_CHECKING:
    from examforge.core.context import AppContext

logger = logging.getLogger(__name__)

Handler = Callable[[uuid.UUID, dict], Awaitable[object]]


@dataclass
class JobSpec:
    """How to run one job type and which entity owns its failures."""
    handler: Handler
    kind: EntityKind
    id_key: str
    # The handler marks its entity FAILED itself before re-raising
    records_own_failure: bool = False


class JobRunner:
    """
    Runs one job to completion or raises.

    Unknown job names are acknowledged as a no-op. A failing handler gets
    its error persisted on the owning entity and a FAILED event published
    before the exception is re-raised for the queue's retry policy. A
    missing entity gets neither.
    """

    def __init__(self, context: "AppContext"):
        self.context = context
        self.ingestor = SourceIngestor(context)
        self.generator = GroundedGenerator(context)
        self.grader = AttemptGrader(context)

        self.registry: dict[str, JobSpec] = {
            JobName.FETCH_SOURCE.value: JobSpec(self._fetch_source, EntityKind.SOURCE, "sourceId"),
            JobName.CHUNK_AND_EMBED.value: JobSpec(self._chunk_and_embed, EntityKind.SOURCE, "sourceId"),
            JobName.GENERATE_PAPER.value: JobSpec(
                self._generate_paper, EntityKind.PAPER, "paperId", records_own_failure=True
            ),
            JobName.GRADE_ATTEMPT.value: JobSpec(self._grade_attempt, EntityKind.ATTEMPT, "attemptId"),
        }

    async def _fetch_source(self, entity_id: uuid.UUID, data: dict):
        return await self.ingestor.fetch(entity_id, data)

    async def _chunk_and_embed(self, entity_id: uuid.UUID, data: dict):
        return await self.ingestor.chunk_and_embed(entity_id)

    async def _generate_paper(self, entity_id: uuid.UUID, data: dict):
        return await self.generator.generate(entity_id)

    async def _grade_attempt(self, entity_id: uuid.UUID, data: dict):
        return await self.grader.grade(entity_id)

    async def run(self, name: str, data: dict) -> dict:
        spec = self.registry.get(name)
        if spec is None:
            logger.warning("Unknown job name: %s", name)
            return {"ok": False, "error": "Unknown job name"}

        data = data or {}
        try:
            entity_id = parse_uuid(data.get(spec.id_key))
        except InputError:
            logger.error("Job %s has no valid %s: %r", name, spec.id_key, data)
            return {"ok": False, "error": f"Missing or invalid {spec.id_key}"}

        logger.info("Running %s for %s %s", name, spec.kind.value, entity_id)
        with job_span(name, {spec.id_key: entity_id}):
            try:
                await spec.handler(entity_id, data)
            except Exception as e:
                await self._fail(spec, entity_id, e)
                raise

        logger.info("Completed %s for %s %s", name, spec.kind.value, entity_id)
        return {"ok": True}

    async def _fail(self, spec: JobSpec, entity_id: uuid.UUID, exc: Exception) -> None:
        message = error_message(exc)
        logger.error("Job for %s %s failed: %s", spec.kind.value, entity_id, message)
        if spec.records_own_failure or isinstance(exc, NotFoundError):
            return
        try:
            await record_failure(self.context.session_maker, spec.kind, entity_id, message)
        except Exception:
            logger.exception("Could not record failure on %s %s", spec.kind.value, entity_id)
        await publish_status(self.context.bus, spec.kind, entity_id, FAILED, message)
