"""
Tests for the fenced tool-call parser used by text-protocol backends.
"""

from hostwatch.tools.tool_call_parser import (
    extract_tool_calls,
    scan_tool_blocks,
)


def _block(body: str) -> str:
    return f"```tool_call\n{body}\n```"


def test_n_blocks_give_n_requests_with_unique_ids() -> None:
    """Every well-formed block becomes one request; prose is kept verbatim."""

    text = (
        "Let me check.\n"
        + _block('{"tool": "get_disk_usage", "input": {}}')
        + "\nand also\n"
        + _block('{"tool": "get_container_logs", "input": {"container_name": "web", "lines": 20}}')
        + "\nDone."
    )
    visible, calls = extract_tool_calls(text, id_prefix="cli-1")

    assert [c.name for c in calls] == ["get_disk_usage", "get_container_logs"]
    assert calls[1].input == {"container_name": "web", "lines": 20}
    assert len({c.id for c in calls}) == 2
    assert visible == "Let me check.\n\nand also\n\nDone."


def test_malformed_json_is_skipped_and_removed() -> None:
    """A broken block does not stop parsing and never shows up in the text."""

    text = "A " + _block('{"tool": "x", "input": ') + " B " + _block('{"tool": "get_disk_usage"}')
    visible, calls = extract_tool_calls(text)

    assert [c.name for c in calls] == ["get_disk_usage"]
    assert calls[0].input == {}
    assert visible == "A  B "


def test_missing_tool_field_is_skipped() -> None:
    """A JSON object without a tool name is not a request."""

    visible, calls = extract_tool_calls(_block('{"input": {"a": 1}}'))
    assert calls == []
    assert visible == ""


def test_fence_inside_string_does_not_end_block() -> None:
    """Brace matching honours strings, so a fence inside a value is data."""

    body = '{"tool": "read_file", "input": {"path": "/srv/notes.md", "note": "ends with ```"}}'
    blocks = scan_tool_blocks("x " + _block(body) + " y")
    assert len(blocks) == 1
    assert blocks[0].payload["input"]["note"] == "ends with ```"


def test_other_fences_are_prose() -> None:
    """Plain code fences and unterminated tool blocks are left alone."""

    text = "```bash\ndocker ps\n```\n```tool_call\n{\"tool\": \"a\""
    visible, calls = extract_tool_calls(text)
    assert calls == []
    assert visible == text


def test_similar_tag_is_not_a_tool_call() -> None:
    """```tool_calls is a different tag."""

    assert scan_tool_blocks('```tool_calls\n{"tool": "x"}\n```') == []


def test_non_object_input_is_rejected() -> None:
    """input must be an object."""

    _, calls = extract_tool_calls(_block('{"tool": "x", "input": [1, 2]}'))
    assert calls == []
