"""
ExamForge - Job Runner Tests
"""
import json
import uuid

import pytest

from examforge.core.errors import IngestionError, NotFoundError
from examforge.jobs.runner import JobRunner
from examforge.models import Attempt, AttemptStatus, Paper, PaperStatus, Source, SourceStatus

from factories import add_mcq, create_attempt, create_paper, create_source


def _events(fake_redis, topic: str) -> list[dict]:
    return [json.loads(m) for c, m in fake_redis.published if c == topic]


@pytest.mark.asyncio
async def test_unknown_job_name_is_acknowledged(context):
    result = await JobRunner(context).run("reindex_everything", {})
    assert result == {"ok": False, "error": "Unknown job name"}


@pytest.mark.asyncio
async def test_missing_entity_id_is_acknowledged(context):
    runner = JobRunner(context)
    assert await runner.run("chunk_and_embed", {}) == {
        "ok": False,
        "error": "Missing or invalid sourceId",
    }
    assert await runner.run("grade_attempt", {"attemptId": "not-a-uuid"}) == {
        "ok": False,
        "error": "Missing or invalid attemptId",
    }


@pytest.mark.asyncio
async def test_chunk_and_embed_success(context, session_maker):
    source_id, _ = await create_source(
        session_maker, status=SourceStatus.PENDING, texts=("Cells are the unit of life.",)
    )

    result = await JobRunner(context).run("chunk_and_embed", {"sourceId": str(source_id)})

    assert result == {"ok": True}
    async with session_maker() as session:
        source = await session.get(Source, source_id)
    assert source.status == SourceStatus.READY.value


@pytest.mark.asyncio
async def test_failing_source_job_is_recorded_and_reraised(context, session_maker, fake_redis):
    source_id, _ = await create_source(session_maker, status=SourceStatus.PENDING, texts=("   ",))

    with pytest.raises(IngestionError, match="No chunks generated"):
        await JobRunner(context).run("chunk_and_embed", {"sourceId": str(source_id)})

    async with session_maker() as session:
        source = await session.get(Source, source_id)
    assert source.status == SourceStatus.FAILED.value
    assert source.error == "No chunks generated (empty input?)"
    assert _events(fake_redis, f"source:{source_id}")[-1] == {
        "type": "source",
        "id": str(source_id),
        "status": "FAILED",
        "error": "No chunks generated (empty input?)",
    }


@pytest.mark.asyncio
async def test_failing_grading_keeps_attempt_submitted(context, session_maker, fake_redis):
    source_id, _ = await create_source(session_maker)
    paper_id = await create_paper(session_maker, source_id, status=PaperStatus.READY)
    await add_mcq(session_maker, paper_id, 0)
    attempt_id = await create_attempt(session_maker, paper_id)

    async def explode(entity_id, data):
        raise RuntimeError("grader crashed")

    runner = JobRunner(context)
    runner.registry["grade_attempt"].handler = explode

    with pytest.raises(RuntimeError, match="grader crashed"):
        await runner.run("grade_attempt", {"attemptId": str(attempt_id)})

    async with session_maker() as session:
        attempt = await session.get(Attempt, attempt_id)
    assert attempt.status == AttemptStatus.SUBMITTED.value
    assert attempt.error == "grader crashed"
    assert _events(fake_redis, f"attempt:{attempt_id}") == [{
        "type": "attempt",
        "id": str(attempt_id),
        "status": "FAILED",
        "error": "grader crashed",
    }]


@pytest.mark.asyncio
async def test_failing_generation_publishes_failure_once(context, session_maker, fake_redis, fake_llm):
    source_id, _ = await create_source(session_maker, texts=("Photosynthesis happens in leaves.",))
    paper_id = await create_paper(session_maker, source_id)
    fake_llm.responses = [RuntimeError("provider timeout")]

    with pytest.raises(RuntimeError, match="provider timeout"):
        await JobRunner(context).run("generate_paper", {"paperId": str(paper_id)})

    statuses = [e["status"] for e in _events(fake_redis, f"paper:{paper_id}")]
    assert statuses == ["PROCESSING", "FAILED"]
    async with session_maker() as session:
        paper = await session.get(Paper, paper_id)
    assert paper.status == PaperStatus.FAILED.value
    assert paper.error == "provider timeout"


@pytest.mark.asyncio
async def test_missing_entity_fails_the_job_without_events(context, fake_redis):
    runner = JobRunner(context)

    with pytest.raises(NotFoundError, match="Source not found"):
        await runner.run("chunk_and_embed", {"sourceId": str(uuid.uuid4())})
    with pytest.raises(NotFoundError, match="Attempt not found"):
        await runner.run("grade_attempt", {"attemptId": str(uuid.uuid4())})

    assert fake_redis.published == []
