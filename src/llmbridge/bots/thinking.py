"""Split ``<think>``/``<thinking>`` blocks out of streamed answer text."""

from __future__ import annotations

import re
from dataclasses import dataclass

_THINK_BLOCK_RE = re.compile(r"<(think|thinking)>(.*?)(?:</\1>|\Z)", re.DOTALL)
_OPEN_TAGS = ("<think>", "<thinking>")
_CLOSE_TAGS = ("</think>", "</thinking>")
# A lone "<" is far more often real text than the start of a tag.
_MIN_PARTIAL_TAG = 2


@dataclass(slots=True)
class ThinkingSplit:
    text: str
    thinking: str | None


def _partial_tag_length(text: str, tags: tuple[str, ...]) -> int:
    """Length of the suffix of ``text`` that could still grow into a tag."""
    longest = max(len(tag) for tag in tags) - 1
    for size in range(min(longest, len(text)), _MIN_PARTIAL_TAG - 1, -1):
        suffix = text[-size:]
        if any(tag.startswith(suffix) for tag in tags):
            return size
    return 0


def split_thinking(text: str) -> ThinkingSplit:
    """Separate tagged reasoning from the visible answer.

    ``text`` is the cumulative answer so far, so a block may still be open or
    a tag may be cut in half at the end of the chunk. An open block counts as
    thinking up to the end of the text; a partial opening tag at the end of
    the visible text and a partial closing tag at the end of an open block are
    held back until the next chunk completes them.

    Returns:
        The visible text and the full thinking seen so far, or ``None`` as
        thinking when the text carries no thinking block.

    """
    blocks: list[str] = []
    visible_parts: list[str] = []
    last_end = 0
    block_open = False

    for match in _THINK_BLOCK_RE.finditer(text):
        visible_parts.append(text[last_end : match.start()])
        blocks.append(match.group(2))
        last_end = match.end()
        block_open = not match.group(0).endswith(f"</{match.group(1)}>")
    visible_parts.append(text[last_end:])

    if not blocks:
        return ThinkingSplit(text=text, thinking=None)

    if block_open:
        tail = blocks[-1]
        cut = _partial_tag_length(tail, _CLOSE_TAGS)
        if cut:
            blocks[-1] = tail[:-cut]

    visible = "".join(visible_parts)
    cut = _partial_tag_length(visible, _OPEN_TAGS)
    if cut:
        visible = visible[:-cut]

    thinking = "\n\n".join(block.strip("\n") for block in blocks)
    return ThinkingSplit(text=visible.lstrip(), thinking=thinking)


def thinking_diff(previous: str | None, current: str) -> str:
    """Return the part of ``current`` the caller has not been sent yet.

    When ``current`` extends a non-empty ``previous`` only the new tail is
    returned; on the first value, a reset or a shrink the whole of
    ``current`` is returned.
    """
    if previous and current.startswith(previous):
        return current[len(previous) :]
    return current
