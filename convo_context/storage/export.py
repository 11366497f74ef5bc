"""Conversation export: JSON, markdown with YAML frontmatter, CSV."""

from __future__ import annotations

import csv
import io
import json

import yaml

from ..types import Conversation, ExportOptions
from .document import conversation_to_dict
from .helpers import dt_to_str

CSV_COLUMNS = [
    "conversation_id",
    "conversation_title",
    "message_id",
    "role",
    "timestamp",
    "model",
    "total_tokens",
    "content",
]


def select_for_export(conversations: list[Conversation], options: ExportOptions) -> list[Conversation]:
    selected = conversations
    if options.conversation_ids:
        wanted = set(options.conversation_ids)
        selected = [c for c in selected if c.id in wanted]
    if options.date_from is not None:
        selected = [c for c in selected if c.created_at >= options.date_from]
    if options.date_to is not None:
        selected = [c for c in selected if c.created_at <= options.date_to]
    return selected


def _to_json(conversations: list[Conversation], options: ExportOptions) -> str:
    out = []
    for conv in conversations:
        data = conversation_to_dict(conv)
        if not options.include_metadata:
            data.pop("metadata", None)
            data.pop("settings", None)
        if not options.include_usage:
            for msg in data["messages"]:
                msg.pop("usage", None)
            if "metadata" in data:
                data["metadata"].pop("totalTokensUsed", None)
        out.append(data)
    return json.dumps({"conversations": out}, indent=2, ensure_ascii=False)


def _conversation_to_markdown(conv: Conversation, options: ExportOptions) -> str:
    lines = []
    if options.include_metadata:
        frontmatter = {
            "id": conv.id,
            "title": conv.title,
            "model": conv.model,
            "created_at": dt_to_str(conv.created_at),
            "updated_at": dt_to_str(conv.updated_at),
            "message_count": len(conv.messages),
            "tags": list(conv.metadata.tags),
            "archived": conv.metadata.is_archived,
            "pinned": conv.metadata.is_pinned,
        }
        if options.include_usage:
            frontmatter["total_tokens_used"] = conv.metadata.total_tokens_used
        lines.append("---")
        lines.append(yaml.safe_dump(frontmatter, default_flow_style=False, sort_keys=False).strip())
        lines.append("---")
        lines.append("")

    lines.append(f"# {conv.title}")
    lines.append("")
    for msg in conv.messages:
        stamp = dt_to_str(msg.timestamp) if msg.timestamp else ""
        heading = "User" if msg.role == "user" else "Assistant"
        if msg.model and msg.role == "assistant":
            heading += f" ({msg.model})"
        lines.append(f"## {heading}")
        if stamp:
            lines.append(f"_{stamp}_")
        lines.append("")
        lines.append(msg.content)
        lines.append("")
        if options.include_usage and msg.usage is not None:
            lines.append(f"> tokens: {msg.usage.total_tokens}")
            lines.append("")
    return "\n".join(lines)


def _to_markdown(conversations: list[Conversation], options: ExportOptions) -> str:
    return "\n\n".join(_conversation_to_markdown(c, options) for c in conversations)


def _to_csv(conversations: list[Conversation], options: ExportOptions) -> str:
    buf = io.StringIO()
    columns = [c for c in CSV_COLUMNS if options.include_usage or c != "total_tokens"]
    writer = csv.DictWriter(buf, fieldnames=columns, extrasaction="ignore")
    writer.writeheader()
    for conv in conversations:
        for msg in conv.messages:
            writer.writerow({
                "conversation_id": conv.id,
                "conversation_title": conv.title,
                "message_id": msg.id,
                "role": msg.role,
                "timestamp": dt_to_str(msg.timestamp) if msg.timestamp else "",
                "model": msg.model or "",
                "total_tokens": msg.usage.total_tokens if msg.usage else "",
                "content": msg.content,
            })
    return buf.getvalue()


_EXPORTERS = {
    "json": _to_json,
    "markdown": _to_markdown,
    "csv": _to_csv,
}


def export_conversations(conversations: list[Conversation], options: ExportOptions) -> str:
    exporter = _EXPORTERS.get(options.format)
    if exporter is None:
        raise ValueError(f"Unknown export format: {options.format}")
    return exporter(select_for_export(conversations, options), options)
