"""
Parser for tool calls embedded in free text.

A text-only backend asks for tools by writing fenced blocks tagged ``tool_call``:

    ```tool_call
    {"tool": "<name>", "input": { ... }}
    ```

:func:`scan_tool_blocks` walks the text once and returns every such block with its decoded payload
(or ``None`` when the JSON is malformed).  :func:`extract_tool_calls` turns the good blocks into
:class:`~hostwatch.core.schema.ToolCallRequest` objects and returns the prose with *all* blocks cut
out, otherwise untouched.
"""

import json
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Tuple,
)

from hostwatch.core.schema import ToolCallRequest

logger = logging.getLogger(__name__)

FENCE = "```"
TOOL_CALL_TAG = "tool_call"


class ToolCallParseError(RuntimeError):
    """Raised when a fenced block cannot be read as a tool-call object."""


@dataclass
class FencedBlock:
    """One ```` ```tool_call ```` block found in the text."""

    raw: str
    start: int
    end: int
    payload: Optional[Dict[str, Any]]


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------
_WS = " \t\r\n"


def _skip_ws(s: str, i: int) -> int:
    while i < len(s) and s[i] in _WS:
        i += 1
    return i


def _skip_string(s: str, i: int) -> int:
    """Given s[i] == '"', return the index just past the closing quote (honours escapes)."""
    i += 1
    esc = False
    while i < len(s):
        ch = s[i]
        if esc:
            esc = False
        elif ch == "\\":
            esc = True
        elif ch == '"':
            return i + 1
        i += 1
    raise ToolCallParseError("unterminated string literal")


def _find_matching_brace(s: str, i: int) -> int:
    """Given s[i] == '{', return index just past its matching '}'."""
    depth = 0
    while i < len(s):
        ch = s[i]
        if ch == '"':
            i = _skip_string(s, i)  # a '}' or fence inside a string does not count
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    raise ToolCallParseError("unbalanced braces")


def _decode_payload(body: str) -> Dict[str, Any]:
    try:
        obj = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ToolCallParseError(f"invalid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise ToolCallParseError("tool call must be a JSON object")
    name = obj.get("tool")
    if not isinstance(name, str) or not name.strip():
        raise ToolCallParseError("'tool' must be a non-empty string")
    tool_input = obj.get("input", {})
    if tool_input is None:
        tool_input = {}
    if not isinstance(tool_input, dict):
        raise ToolCallParseError("'input' must be an object")
    return {"tool": name.strip(), "input": tool_input}


def _read_block(text: str, start: int) -> Tuple[int, Optional[Dict[str, Any]]]:
    """
    Read the block opening at *start*; return (end index, payload or None).

    The JSON object is delimited by brace matching, so a fence inside a string value does not end
    the block.  If that fails the block ends at the next fence and its payload is ``None``.
    """
    body_start = start + len(FENCE) + len(TOOL_CALL_TAG)
    i = _skip_ws(text, body_start)
    if i < len(text) and text[i] == "{":
        try:
            j = _find_matching_brace(text, i)
            k = _skip_ws(text, j)
            if text.startswith(FENCE, k):
                return k + len(FENCE), _decode_payload(text[i:j])
        except ToolCallParseError as exc:
            logger.warning("Skipping malformed tool_call block: %s", exc)
            close = text.find(FENCE, body_start)
            return (close + len(FENCE) if close >= 0 else -1), None

    close = text.find(FENCE, body_start)
    if close < 0:
        return -1, None
    logger.warning("Skipping malformed tool_call block at offset %d", start)
    return close + len(FENCE), None


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------
def scan_tool_blocks(text: str) -> List[FencedBlock]:
    """Return every complete ``tool_call`` fenced block in *text*, in order of appearance."""
    opener = FENCE + TOOL_CALL_TAG
    blocks: List[FencedBlock] = []
    pos = 0
    while True:
        start = text.find(opener, pos)
        if start < 0:
            break
        after = start + len(opener)
        # ```tool_calls or ```tool_call_x are not our tag
        if after < len(text) and text[after] not in _WS and text[after] != "{":
            pos = after
            continue
        end, payload = _read_block(text, start)
        if end < 0:
            break  # unterminated fence: leave the rest as prose
        blocks.append(FencedBlock(raw=text[start:end], start=start, end=end, payload=payload))
        pos = end
    return blocks


def extract_tool_calls(text: str, id_prefix: str = "call") -> Tuple[str, List[ToolCallRequest]]:
    """
    Split a text-protocol response into visible prose and tool-call requests.

    Returns
    -------
    Tuple[str, List[ToolCallRequest]]
        The text with every ``tool_call`` block removed (nothing else changed), and one request per
        well-formed block, ids ``f"{id_prefix}-{n}"`` numbered from 0.
    """
    blocks = scan_tool_blocks(text)
    pieces: List[str] = []
    requests: List[ToolCallRequest] = []
    pos = 0
    for block in blocks:
        pieces.append(text[pos : block.start])
        pos = block.end
        if block.payload is None:
            continue
        requests.append(
            ToolCallRequest(
                id=f"{id_prefix}-{len(requests)}",
                name=block.payload["tool"],
                input=block.payload["input"],
            )
        )
    pieces.append(text[pos:])
    return "".join(pieces), requests
