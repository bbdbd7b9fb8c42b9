"""
ExamForge - Content Chunker Tests
"""
import pytest

from examforge.ingestion.chunker import (
    ContentChunker,
    extract_heading,
    normalize_text,
    split_paragraphs,
)


def test_split_paragraphs_trims_and_drops_blank_runs():
    text = "  First para.\r\n\r\n\r\n  Second\npara.  \n   \n\nThird."
    assert split_paragraphs(text) == ["First para.", "Second\npara.", "Third."]


def test_split_paragraphs_of_whitespace_is_empty():
    assert split_paragraphs(" \n\n \t ") == []
    assert normalize_text("\r\n a \r") == "a"


@pytest.mark.parametrize("paragraph, expected", [
    ("# Title", "Title"),
    ("### Deep heading\nwith body", "Deep heading"),
    ("####### seven hashes", None),
    ("#no space", None),
    ("Plain text", None),
])
def test_extract_heading(paragraph, expected):
    assert extract_heading(paragraph) == expected


def test_small_document_is_one_chunk():
    chunks = ContentChunker(max_chars=1800).chunk("# Cells\n\nCells are small.\n\nThey divide.")
    assert len(chunks) == 1
    assert chunks[0].text == "# Cells\n\nCells are small.\n\nThey divide."
    assert chunks[0].meta == {"heading": "Cells", "paraStart": 0, "paraEnd": 2}


def test_packs_paragraphs_up_to_budget():
    paragraphs = ["a" * 40, "b" * 40, "c" * 40]
    chunks = ContentChunker(max_chars=90).chunk("\n\n".join(paragraphs))

    assert [c.text for c in chunks] == ["a" * 40 + "\n\n" + "b" * 40, "c" * 40]
    assert [(c.start_paragraph, c.end_paragraph) for c in chunks] == [(0, 1), (2, 2)]
    assert all(len(c.text) <= 90 for c in chunks)


def test_oversized_paragraph_is_emitted_whole():
    long_paragraph = "x" * 500
    chunks = ContentChunker(max_chars=100).chunk(f"short\n\n{long_paragraph}\n\ntail")

    assert [c.text for c in chunks] == ["short", long_paragraph, "tail"]


def test_chunk_keeps_heading_active_when_it_started():
    text = "# Intro\n\n" + "i" * 60 + "\n\n# Methods\n\n" + "m" * 60
    chunks = ContentChunker(max_chars=80).chunk(text)

    headings = [c.heading for c in chunks]
    assert headings[0] == "Intro"
    assert headings[-1] == "Methods"
    assert chunks[-1].text.endswith("m" * 60)


def test_text_before_any_heading_has_no_heading():
    chunks = ContentChunker(max_chars=10).chunk("preface\n\n# Later\n\nbody")
    assert chunks[0].heading is None
    assert chunks[0].text == "preface"


def test_empty_input_yields_no_chunks():
    assert ContentChunker().chunk("") == []
    assert ContentChunker().chunk("\n\n   \n") == []


def test_invalid_budget_is_rejected():
    with pytest.raises(ValueError):
        ContentChunker(max_chars=0)
