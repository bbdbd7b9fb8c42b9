"""
ExamForge - Content Chunker
Splits document text into bounded, heading-aware passages.
"""
import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_MAX_CHARS = 1800

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n+")
_HEADING = re.compile(r"^#{1,6}\s+(.*)$")


@dataclass
class ChunkPlan:
    """One planned chunk, before it is persisted."""
    text: str
    heading: Optional[str]
    start_paragraph: int
    end_paragraph: int

    @property
    def meta(self) -> dict:
        return {
            "heading": self.heading,
            "paraStart": self.start_paragraph,
            "paraEnd": self.end_paragraph,
        }


def normalize_text(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n").strip()


def split_paragraphs(text: str) -> list[str]:
    """Blank-line-delimited, trimmed, non-empty paragraphs."""
    text = normalize_text(text)
    if not text:
        return []
    return [p.strip() for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]


def extract_heading(paragraph: str) -> Optional[str]:
    """Heading text when the paragraph's first line is ``#``..``######``."""
    first_line = paragraph.split("\n", 1)[0]
    match = _HEADING.match(first_line)
    if not match:
        return None
    return match.group(1).strip() or None


class ContentChunker:
    """
    Greedy paragraph packer.

    Paragraphs are appended to a running buffer until the next one would
    push it over ``max_chars``; the buffer is then emitted, tagged with the
    heading that was active when it started. A single paragraph longer
    than the budget is emitted whole.
    """

    def __init__(self, max_chars: int = DEFAULT_MAX_CHARS):
        if max_chars <= 0:
            raise ValueError("max_chars must be positive")
        self.max_chars = max_chars

    def chunk(self, raw_text: str) -> list[ChunkPlan]:
        paragraphs = split_paragraphs(raw_text)
        chunks: list[ChunkPlan] = []

        heading: Optional[str] = None
        current = ""
        current_heading: Optional[str] = None
        start = 0

        for i, paragraph in enumerate(paragraphs):
            found = extract_heading(paragraph)
            if found:
                heading = found

            if not current:
                current, current_heading, start = paragraph, heading, i
                continue

            candidate = f"{current}\n\n{paragraph}"
            if len(candidate) > self.max_chars:
                chunks.append(ChunkPlan(current, current_heading, start, i - 1))
                current, current_heading, start = paragraph, heading, i
                continue

            current = candidate

        if current:
            chunks.append(ChunkPlan(current, current_heading, start, len(paragraphs) - 1))

        return chunks
