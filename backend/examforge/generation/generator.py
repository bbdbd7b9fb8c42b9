"""
ExamForge - Grounded Generator
Builds an exam from a stride sample of a source's chunks; every question
must cite only the chunk references it was shown.
"""
import json
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, TypeVar

from pydantic import ValidationError
from sqlalchemy import delete, select, update

from examforge.core.constants import EntityKind
from examforge.core.errors import GroundingError, IngestionError, NotFoundError, ProviderError
from examforge.jobs.status import error_message, publish_status
from examforge.models import (
    Chunk,
    Document,
    Paper,
    PaperStatus,
    Question,
    QuestionCitation,
    QuestionType,
)
from examforge.schemas.llm import LlmMcqQuestion, LlmPaper

if TYPE_CHECKING:
    from examforge.core.context import AppContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

ELLIPSIS = "…"


def truncate(text: str, limit: int = 1200) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}{ELLIPSIS}"


def pick_evenly(items: list[T], limit: int) -> list[T]:
    """Stride sample of at most ``limit`` items spanning the whole list."""
    if len(items) <= limit:
        return list(items)
    step = len(items) / limit
    return [items[int(i * step)] for i in range(limit)]


@dataclass
class ChunkRef:
    """A chunk as shown to the model: opaque ref plus excerpt."""
    ref: str
    chunk_id: uuid.UUID
    text: str


def build_chunk_refs(chunks: list[tuple[uuid.UUID, str]], max_chars: int = 1200) -> list[ChunkRef]:
    return [
        ChunkRef(ref=f"c{i}", chunk_id=chunk_id, text=truncate(text, max_chars))
        for i, (chunk_id, text) in enumerate(chunks, start=1)
    ]


class GroundedGenerator:
    """Handler for the ``generate_paper`` job."""

    TEMPERATURE = 0.6

    SYSTEM_PROMPT = "\n".join([
        "You generate exam papers from provided study material excerpts (chunks).",
        "You MUST output a single JSON object, and nothing else.",
        "Every question MUST include citations referencing ONLY the provided chunk refs.",
        "Do not invent chunk ids/refs; use the exact refs from the list.",
        "Keep the exam answerable solely from the provided chunks.",
    ])

    INSTRUCTIONS = "\n".join([
        "Generate a paper according to the input JSON.",
        "Output must match the schema fields:",
        "- paperTitle: string",
        "- questions: array of MCQ or SHORT_ANSWER",
        "Every question has: type, difficulty (1-3), prompt, tags (array of strings), citations.",
        "MCQ rules:",
        "- options: exactly 4 options with ids A-D, as [{\"id\": \"A\", \"text\": \"...\"}, ...]",
        "- exactly one correct answerKey (A/B/C/D)",
        "- rationale MUST include 3 parts:",
        "  1) Why the correct option is right (cite source evidence)",
        "  2) Why each wrong option is wrong (briefly, 1 sentence each)",
        "  3) A short takeaway that helps the student remember the key concept",
        "SHORT_ANSWER rules:",
        "- referenceAnswer: short but complete",
        "- rubric: 3-6 points as [{\"id\": \"p1\", \"points\": 2, \"criteria\": \"...\"}], points sum ~5-10",
        "Citations rules:",
        "- citations[].chunkId must be one of the provided chunk refs (e.g. c1, c2...)",
        "- citations[].snippet (optional) should be <= 2 sentences",
        "Return JSON only.",
    ])

    def __init__(self, context: "AppContext"):
        self.context = context
        self.settings = context.settings
        self.session_maker = context.session_maker
        self.llm = context.llm

    async def _set_status(
        self,
        paper_id: uuid.UUID,
        status: PaperStatus,
        error: Optional[str] = None,
    ) -> None:
        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(
                    update(Paper).where(Paper.id == paper_id).values(status=status.value, error=error)
                )
        await publish_status(self.context.bus, EntityKind.PAPER, paper_id, status.value, error)

    async def generate(self, paper_id: uuid.UUID) -> int:
        """
        Generate and persist the paper's questions; returns how many.

        Missing provider credentials fail the paper without raising, since
        a retry cannot help. Every other failure marks the paper FAILED and
        re-raises for the queue's retry policy.
        """
        if not self.llm.has_credentials:
            message = f"{self.llm.missing_credentials_message}. Paper generation requires an LLM provider."
            logger.warning("Paper %s: %s", paper_id, message)
            await self._set_status(paper_id, PaperStatus.FAILED, message)
            return 0

        async with self.session_maker() as session:
            paper = await session.get(Paper, paper_id)
        if paper is None:
            raise NotFoundError(f"Paper not found: {paper_id}")

        try:
            await self._set_status(paper_id, PaperStatus.PROCESSING)
            refs = await self._sample_chunks(paper.source_id)
            llm_paper = await self._request_paper(paper, refs)
            count = await self._persist(paper_id, llm_paper, refs)
        except Exception as e:
            message = error_message(e)
            logger.warning("Paper %s generation failed: %s", paper_id, message)
            await self._set_status(paper_id, PaperStatus.FAILED, message)
            raise

        logger.info("Paper %s ready with %d questions", paper_id, count)
        return count

    async def _sample_chunks(self, source_id: uuid.UUID) -> list[ChunkRef]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(Chunk.id, Chunk.text)
                .join(Document, Document.id == Chunk.document_id)
                .where(Document.source_id == source_id)
                .order_by(Document.created_at, Document.id, Chunk.chunk_index)
                .limit(self.settings.GENERATION_CHUNK_SCAN_LIMIT)
            )
            rows = [(row.id, row.text) for row in result]

        if not rows:
            raise IngestionError("No chunks found for this source. Is the source READY?")

        picked = pick_evenly(rows, self.settings.GENERATION_MAX_CHUNKS)
        return build_chunk_refs(picked, self.settings.CHUNK_PROMPT_CHARS)

    async def _request_paper(self, paper: Paper, refs: list[ChunkRef]) -> LlmPaper:
        payload = json.dumps(
            {
                "paperTitle": paper.title,
                "config": paper.config or {},
                "chunks": [{"ref": r.ref, "text": r.text} for r in refs],
            },
            ensure_ascii=False,
            indent=2,
        )
        raw = await self.llm.generate_json(
            prompt=f"{self.INSTRUCTIONS}\n\nINPUT_JSON:\n{payload}\n",
            system_prompt=self.SYSTEM_PROMPT,
            temperature=self.TEMPERATURE,
            agent_name="GroundedGenerator",
        )
        try:
            return LlmPaper.model_validate(raw)
        except ValidationError as e:
            raise ProviderError(f"Model returned an invalid paper: {e}") from e

    async def _persist(self, paper_id: uuid.UUID, llm_paper: LlmPaper, refs: list[ChunkRef]) -> int:
        ref_to_chunk = {r.ref: r.chunk_id for r in refs}

        # Resolve every citation before touching the database
        resolved: list[list[tuple[uuid.UUID, Optional[str]]]] = []
        for question in llm_paper.questions:
            citations = []
            for citation in question.citations:
                chunk_id = ref_to_chunk.get(citation.chunk_id.strip())
                if chunk_id is None:
                    raise GroundingError(f"Model cited unknown chunk reference: {citation.chunk_id}")
                citations.append((chunk_id, citation.snippet))
            resolved.append(citations)

        async with self.session_maker() as session:
            async with session.begin():
                await session.execute(delete(Question).where(Question.paper_id == paper_id))

                for position, (question, citations) in enumerate(zip(llm_paper.questions, resolved)):
                    row = self._question_row(paper_id, position, question)
                    row.citations = [
                        QuestionCitation(chunk_id=chunk_id, snippet=snippet)
                        for chunk_id, snippet in citations
                    ]
                    session.add(row)

                await session.execute(
                    update(Paper)
                    .where(Paper.id == paper_id)
                    .values(status=PaperStatus.READY.value, error=None)
                )

        await publish_status(self.context.bus, EntityKind.PAPER, paper_id, PaperStatus.READY.value)
        return len(llm_paper.questions)

    @staticmethod
    def _question_row(paper_id: uuid.UUID, position: int, question) -> Question:
        if isinstance(question, LlmMcqQuestion):
            return Question(
                paper_id=paper_id,
                position=position,
                type=QuestionType.MCQ.value,
                difficulty=question.difficulty,
                prompt=question.prompt,
                options=[option.model_dump() for option in question.options],
                answer_key={"correctOptionId": question.answer_key, "rationale": question.rationale},
                rubric=None,
                tags=question.tags,
                max_score=1.0,
            )
        return Question(
            paper_id=paper_id,
            position=position,
            type=QuestionType.SHORT_ANSWER.value,
            difficulty=question.difficulty,
            prompt=question.prompt,
            options=None,
            answer_key={"referenceAnswer": question.reference_answer},
            rubric=[point.model_dump() for point in question.rubric],
            tags=question.tags,
            max_score=question.max_score,
        )
