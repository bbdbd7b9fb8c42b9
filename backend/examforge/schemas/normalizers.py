"""
ExamForge - Provider Output Normalizers

Different models return structurally different but equivalent JSON.
Each adapter below rewrites one known variant into the canonical shape;
adapters run in order before strict validation and never invent data.
"""
from typing import Any, Callable

Adapter = Callable[[dict], dict]

OPTION_IDS = ("A", "B", "C", "D")


def normalize(value: Any, adapters: list[Adapter]) -> Any:
    """Run ``adapters`` over a dict payload; anything else passes through."""
    if not isinstance(value, dict):
        return value
    out = dict(value)
    for adapter in adapters:
        out = adapter(out)
    return out


def _rename(source: str, target: str) -> Adapter:
    """Copy ``source`` into ``target`` when ``target`` is absent."""
    def adapter(o: dict) -> dict:
        if o.get(target) is None and o.get(source) is not None:
            o[target] = o[source]
        return o
    adapter.__name__ = f"rename_{source}_to_{target}"
    return adapter


# ---------------------------------------------------------------------------
# Paper
# ---------------------------------------------------------------------------

PAPER_ADAPTERS: list[Adapter] = [
    _rename("title", "paperTitle"),
    _rename("items", "questions"),
]


# ---------------------------------------------------------------------------
# Question
# ---------------------------------------------------------------------------

_TYPE_ALIASES = {
    "MCQ": "MCQ",
    "MULTIPLE_CHOICE": "MCQ",
    "MULTIPLECHOICE": "MCQ",
    "SINGLE_CHOICE": "MCQ",
    "CHOICE": "MCQ",
    "SHORT_ANSWER": "SHORT_ANSWER",
    "SHORTANSWER": "SHORT_ANSWER",
    "SHORT": "SHORT_ANSWER",
    "OPEN": "SHORT_ANSWER",
    "FREE_RESPONSE": "SHORT_ANSWER",
}


def question_type_alias(o: dict) -> dict:
    raw = o.get("type")
    if isinstance(raw, str):
        key = raw.strip().upper().replace("-", "_").replace(" ", "_")
        o["type"] = _TYPE_ALIASES.get(key, raw)
    return o


def options_from_map(o: dict) -> dict:
    """``{"A": "...", ..., "D": "..."}`` -> ``[{"id": "A", "text": "..."}, ...]``."""
    options = o.get("options")
    if isinstance(options, dict) and all(isinstance(options.get(k), str) for k in OPTION_IDS):
        o["options"] = [{"id": k, "text": options[k]} for k in OPTION_IDS]
    return o


def options_from_strings(o: dict) -> dict:
    """Four bare strings are assigned ids A-D in order."""
    options = o.get("options")
    if (
        isinstance(options, list)
        and len(options) == len(OPTION_IDS)
        and all(isinstance(item, str) for item in options)
    ):
        o["options"] = [{"id": k, "text": text} for k, text in zip(OPTION_IDS, options)]
    return o


def short_answer_reference(o: dict) -> dict:
    if o.get("type") == "SHORT_ANSWER" and o.get("referenceAnswer") is None:
        for key in ("answer", "modelAnswer", "expectedAnswer"):
            if isinstance(o.get(key), str):
                o["referenceAnswer"] = o[key]
                break
    return o


def mcq_answer_key(o: dict) -> dict:
    if o.get("type") != "MCQ" or o.get("answerKey") is not None:
        return o
    for key in ("correctAnswer", "correctOptionId", "answer"):
        if isinstance(o.get(key), str):
            o["answerKey"] = o[key]
            break
    return o


def answer_key_case(o: dict) -> dict:
    key = o.get("answerKey")
    if isinstance(key, str):
        o["answerKey"] = key.strip().upper()
    return o


def citations_from_refs(o: dict) -> dict:
    """Citations given as bare ref strings or with a ``ref`` key."""
    citations = o.get("citations")
    if not isinstance(citations, list):
        return o
    fixed = []
    for item in citations:
        if isinstance(item, str):
            item = {"chunkId": item}
        elif isinstance(item, dict) and item.get("chunkId") is None and item.get("ref") is not None:
            item = {**item, "chunkId": item["ref"]}
        fixed.append(item)
    o["citations"] = fixed
    return o


QUESTION_ADAPTERS: list[Adapter] = [
    question_type_alias,
    _rename("question", "prompt"),
    options_from_map,
    options_from_strings,
    mcq_answer_key,
    answer_key_case,
    _rename("explanation", "rationale"),
    short_answer_reference,
    citations_from_refs,
]


# ---------------------------------------------------------------------------
# Rubric point
# ---------------------------------------------------------------------------

def rubric_criteria(o: dict) -> dict:
    if isinstance(o.get("criteria"), str):
        return o
    for key in ("description", "criterion", "text"):
        if isinstance(o.get(key), str):
            o["criteria"] = o[key]
            break
    return o


RUBRIC_POINT_ADAPTERS: list[Adapter] = [rubric_criteria]


# ---------------------------------------------------------------------------
# Grade
# ---------------------------------------------------------------------------

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def grade_rubric_breakdown(o: dict) -> dict:
    """
    Expand a compact ``rubricBreakdown`` list of
    ``{id, pointsAwarded, pointsPossible, evidence}`` into hit points,
    missing points and a plain feedback text.
    """
    breakdown = o.get("rubricBreakdown")
    if isinstance(o.get("feedbackMd"), str) or not isinstance(breakdown, list):
        return o

    hit_points = []
    missing_points = []
    lines = []
    if _is_number(o.get("score")) and _is_number(o.get("maxScore")):
        lines.append(f"Score: {_format_number(o['score'])}/{_format_number(o['maxScore'])}")
        lines.append("")
    lines.append("Rubric breakdown:")

    for item in breakdown:
        item = item if isinstance(item, dict) else {}
        point_id = item.get("id") if isinstance(item.get("id"), str) else ""
        awarded = item["pointsAwarded"] if _is_number(item.get("pointsAwarded")) else 0
        possible = item["pointsPossible"] if _is_number(item.get("pointsPossible")) else 0
        evidence = item["evidence"].strip() if isinstance(item.get("evidence"), str) else ""

        if point_id:
            if awarded > 0:
                hit = {"rubricPointId": point_id}
                if evidence:
                    hit["comment"] = evidence
                hit_points.append(hit)
            if possible > awarded:
                missing_points.append(
                    f"{point_id}: missing {_format_number(possible - awarded)} point(s)"
                )

        label = f"{point_id}: " if point_id else ""
        tail = f" ({evidence})" if evidence else ""
        lines.append(f"- {label}{_format_number(awarded)}/{_format_number(possible)}{tail}")

    if not isinstance(o.get("hitPoints"), list):
        o["hitPoints"] = hit_points
    if not isinstance(o.get("missingPoints"), list):
        o["missingPoints"] = missing_points
    o["feedbackMd"] = "\n".join(lines).strip() or "No feedback."
    return o


GRADE_ADAPTERS: list[Adapter] = [
    _rename("max_score", "maxScore"),
    _rename("suggestions", "actionableSuggestions"),
    _rename("modelAnswer", "suggestedAnswer"),
    _rename("feedback", "feedbackMd"),
    grade_rubric_breakdown,
]
