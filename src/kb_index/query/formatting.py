"""Plain-text renderings of search hits and answers."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import PurePath

from kb_index.clients.vector_store import SearchHit

OUTPUT_FORMATS = ("pretty", "json", "markdown", "smart")


def fence_language(source: str) -> str:
    """Fence language for a source path, taken from its extension."""
    suffix = PurePath(source).suffix
    return suffix[1:] if suffix else "text"


def format_context_chunk(hit: SearchHit) -> str:
    """Render a hit as one context chunk for the answering model."""
    return f"**File:** `{hit.source}`\n\n```{fence_language(hit.source)}\n{hit.content}\n```"


def render_hits(hits: Sequence[SearchHit], output_format: str) -> str:
    if output_format == "json":
        return json.dumps([hit.to_dict() for hit in hits], indent=2)
    if output_format == "markdown":
        blocks = [
            "\n".join(
                [
                    f"### Result {hit.index}",
                    "",
                    f"**Source:** `{hit.source}`  ",
                    f"**Distance:** `{hit.distance:.4f}`  ",
                    f"```{fence_language(hit.source)}",
                    hit.content,
                    "```",
                ]
            )
            for hit in hits
        ]
        return "\n\n".join(blocks)
    blocks = [
        "\n".join(
            [
                f"--- Result {hit.index} ---",
                f"Source: {hit.source}",
                f"Distance: {hit.distance:.4f}",
                hit.content,
            ]
        )
        for hit in hits
    ]
    return "\n\n".join(blocks)


def render_answer(answer: str, cached: bool, session_id: str | None, turns: int) -> str:
    heading = "Cached Answer:" if cached else "Answer:"
    lines = [heading, "", answer]
    if session_id is not None:
        lines.extend(["", f"Session: {session_id[:8]} (Q&A: {turns})"])
    return "\n".join(lines)
