from __future__ import annotations

import re

THINKING_BLOCK_PATTERN = re.compile(r"<<THINKING>>.*?</THINKING>>", re.DOTALL)
RESPONSE_MARKER_PATTERN = re.compile(r"<<RESPONSE>>|</RESPONSE>>")
THINK_BLOCK_PATTERN = re.compile(r"<think>.*?</think>", re.DOTALL)


def filter_content(text: str) -> str:
    """Strip reasoning markup from one upstream fragment.

    Thinking blocks are removed with their contents, response markers are
    removed but their contents kept. Markers split across two fragments are
    not paired and pass through unchanged.
    """

    if not text:
        return ""
    cleaned = THINKING_BLOCK_PATTERN.sub("", text)
    cleaned = RESPONSE_MARKER_PATTERN.sub("", cleaned)
    return THINK_BLOCK_PATTERN.sub("", cleaned)
