from __future__ import annotations

from typing import Any, Sequence

from ..common import truncate


def render_memory_context(memories: Sequence[Any]) -> str:
    if not memories:
        return ""
    lines = ["THINGS YOU REMEMBER"]
    for memory in memories:
        lines.append(f"- [{memory.memory_type}] {truncate(memory.content, 200)}")
    return "\n".join(lines)


def render_server_context(
    *,
    ambient: Sequence[Any] = (),
    deep: Sequence[Any] = (),
    topics: Sequence[Any] = (),
    summaries: Sequence[Any] = (),
    ambient_snippet_chars: int = 80,
    deep_snippet_chars: int = 100,
    summary_chars: int = 150,
) -> str:
    """Each section is dropped when it has nothing to show."""
    sections: list[str] = []

    if ambient:
        lines = ["SERVER AWARENESS (recent activity)"]
        for item in ambient:
            where = "" if item.same_channel else f" in #{item.channel_label}"
            lines.append(
                f"- {item.author_name}{where} ({item.time_ago}): {truncate(item.content, ambient_snippet_chars)}"
            )
        sections.append("\n".join(lines))

    if deep:
        lines = ["RELEVANT SERVER MEMORIES"]
        for hit in deep:
            who = hit.author_name or "channel summary"
            lines.append(
                f"- {who} ({hit.time_ago}, {round(hit.similarity * 100)}% match): "
                f"{truncate(hit.content, deep_snippet_chars)}"
            )
        sections.append("\n".join(lines))

    if topics:
        lines = ["ONGOING DISCUSSIONS"]
        for topic in topics:
            lines.append(f"- {topic.name} (mentioned {topic.mention_count}x, last {topic.time_ago})")
        sections.append("\n".join(lines))

    if summaries:
        lines = ["RECENT CHANNEL ACTIVITY"]
        for summary in summaries:
            lines.append(
                f"- #{summary.channel_label} ({summary.period_type}): {truncate(summary.text, summary_chars)}"
            )
        sections.append("\n".join(lines))

    return "\n\n".join(sections)
