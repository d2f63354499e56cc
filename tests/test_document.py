"""Tests for the markdown document parser."""

from __future__ import annotations

import pytest

from readmeinfo.document import UNTERMINATED_FENCE, DocumentParser, parse_document
from readmeinfo.errors import ParseError
from readmeinfo.models import BlockKind


def test_blocks_carry_line_ranges() -> None:
    text = "\n".join(
        [
            "# Title",
            "",
            "Intro text",
            "spanning two lines.",
            "",
            "```JS",
            "npm install",
            "npm start",
            "```",
        ]
    )
    tree = parse_document(text)

    kinds = [block.kind for block in tree.blocks]
    assert kinds == [BlockKind.HEADING, BlockKind.PARAGRAPH, BlockKind.CODE]
    heading, paragraph, code = tree.blocks
    assert (heading.start_line, heading.end_line, heading.level) == (1, 1, 1)
    assert heading.text == "Title"
    assert (paragraph.start_line, paragraph.end_line) == (3, 4)
    assert (code.start_line, code.end_line) == (6, 9)
    assert code.text == "npm install\nnpm start"
    assert code.lines() == [(7, "npm install"), (8, "npm start")]
    assert tree.line_count == 9
    assert not tree.warnings


def test_code_tags_are_kept_verbatim() -> None:
    tree = parse_document("```JS title=app.js\nlet x;\n```\n\n```\nplain\n```\n")

    tagged, untagged = tree.code_blocks()
    assert tagged.tag == "JS"
    assert tagged.info == "JS title=app.js"
    assert untagged.tag == ""


def test_unterminated_fence_is_closed_at_end_of_document() -> None:
    tree = parse_document("# Demo\n\n```bash\nnpm install\nnpm test\n")

    code = tree.code_blocks()[0]
    assert code.closed is False
    assert code.end_line == 5
    assert code.text == "npm install\nnpm test"
    assert len(tree.warnings) == 1
    assert tree.warnings[0].code == UNTERMINATED_FENCE
    assert tree.warnings[0].line == 3


def test_longer_fence_contains_shorter_markers() -> None:
    tree = parse_document("````md\n```bash\nls\n```\n````\n")

    assert len(tree.code_blocks()) == 1
    assert tree.code_blocks()[0].text == "```bash\nls\n```"


def test_tilde_fences_and_setext_headings() -> None:
    text = "Project\n=======\n\nUsage\n-----\n\n~~~python\nprint('hi')\n~~~\n"
    tree = parse_document(text)

    headings = tree.headings()
    assert [(block.text, block.level) for block in headings] == [("Project", 1), ("Usage", 2)]
    assert tree.code_blocks()[0].tag == "python"


def test_windows_line_endings_are_normalised() -> None:
    tree = parse_document("# Title\r\n\r\nBody text.\r\n")

    assert [block.text for block in tree.blocks] == ["Title", "Body text."]
    assert tree.line_count == 3


def test_bytes_with_bom_are_decoded() -> None:
    tree = DocumentParser().parse(b"\xef\xbb\xbf# Title\n")

    assert tree.headings()[0].text == "Title"


def test_binary_input_raises_parse_error() -> None:
    with pytest.raises(ParseError):
        parse_document("abc\x00def")

    with pytest.raises(ParseError):
        DocumentParser().parse(b"\xff\xfe\x00")


def test_heading_lookup_and_block_addressing() -> None:
    tree = parse_document("# Title\n\n## Usage\n\nRun it.\n\n```sh\nmake\n```\n")

    paragraph = tree.paragraphs()[0]
    code = tree.code_blocks()[0]
    assert tree.heading_for(paragraph).text == "Usage"
    assert tree.heading_for(code).text == "Usage"
    assert tree.block_at(8) is code
    assert tree.block_at(2) is None
    assert tree.previous(code) is paragraph


def test_empty_document_has_no_blocks() -> None:
    tree = parse_document("")

    assert tree.blocks == ()
    assert tree.line_count == 0


def test_fences_nested_in_list_items_are_code_blocks() -> None:
    tree = parse_document("# Demo\n\n1. Install:\n\n    ```bash\n    npm install\n    ```\n")

    code = tree.code_blocks()[0]
    assert code.tag == "bash"
    assert code.text == "npm install"
    assert (code.start_line, code.end_line, code.column) == (5, 7, 5)
    assert code.closed is True
    assert tree.warnings == ()


def test_indented_fence_outside_a_list_stays_paragraph() -> None:
    tree = parse_document("Intro text.\n\n    ```bash\n    ls\n    ```\n")

    assert tree.code_blocks() == []
    assert [block.kind for block in tree.blocks] == [BlockKind.PARAGRAPH, BlockKind.PARAGRAPH]
