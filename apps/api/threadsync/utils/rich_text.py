"""Rich-text (tiptap JSON) conversion helpers.

Message.content holds a serialized tiptap document: either a JSON array of
block nodes or a {"type": "doc", "content": [...]} object. Content imported
from platforms as plain text is wrapped into paragraph nodes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable

Node = dict[str, Any]

_BLOCK_TYPES = {"paragraph", "heading", "blockquote", "codeBlock"}


def text_to_nodes(text: str) -> list[Node]:
    """Wrap plain text into paragraph nodes, one per line."""
    nodes: list[Node] = []
    for line in (text or "").split("\n"):
        if line:
            nodes.append({"type": "paragraph", "content": [{"type": "text", "text": line}]})
        else:
            nodes.append({"type": "paragraph"})
    return nodes


def serialize_text(text: str) -> str:
    """Plain text -> serialized content for Message.content."""
    return json.dumps(text_to_nodes(text))


def safe_parse_content(raw: str | None) -> list[Node]:
    """Parse serialized content, falling back to a single text paragraph."""
    if raw is None:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        parsed = None
    if isinstance(parsed, list):
        return [n for n in parsed if isinstance(n, dict)]
    if isinstance(parsed, dict) and "content" in parsed:
        return [n for n in parsed.get("content") or [] if isinstance(n, dict)]
    return [{"type": "paragraph", "content": [{"type": "text", "text": str(raw)}]}]


# =============================================================================
# Plain text
# =============================================================================

def to_plain_text(content: list[Node] | Node | str) -> str:
    """Extract text, keeping block boundaries as newlines."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [to_plain_text(item) for item in content]
        return "\n".join(p for p in parts if p)
    if not isinstance(content, dict):
        return ""

    node_type = content.get("type")
    if node_type == "hardBreak":
        return "\n"
    if node_type == "text":
        return content.get("text") or ""

    children = content.get("content")
    if not isinstance(children, list):
        return "\n" if node_type in _BLOCK_TYPES else ""

    text = "".join(to_plain_text(child) for child in children)
    if node_type in _BLOCK_TYPES:
        return f"{text}\n" if text else "\n"
    if node_type == "listItem":
        return f"- {text}\n" if text else ""
    return text


def first_text(content: list[Node] | Node | str) -> str:
    """First text run, with an ellipsis when more blocks follow."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        if not content:
            return ""
        text = first_text(content[0])
        if text and len(content) > 1:
            return f"{text}..."
        return text
    if isinstance(content, dict):
        if content.get("type") == "text":
            return content.get("text") or ""
        children = content.get("content")
        if isinstance(children, list):
            return first_text(children)
    return ""


# =============================================================================
# Slack mrkdwn / Discord markdown
# =============================================================================

def _escape_mrkdwn(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


@dataclass(frozen=True)
class _Dialect:
    bold: str
    italic: str
    strike: str
    bullet: str
    link: Callable[[str, str], str]
    heading: Callable[[str], str]
    escape: Callable[[str], str]


SLACK_MRKDWN = _Dialect(
    bold="*",
    italic="_",
    strike="~",
    bullet="•",
    link=lambda href, text: f"<{href}|{text}>",
    heading=lambda text: f"*{text}*",
    escape=_escape_mrkdwn,
)

DISCORD_MARKDOWN = _Dialect(
    bold="**",
    italic="*",
    strike="~~",
    bullet="-",
    link=lambda href, text: f"[{text}]({href})",
    heading=lambda text: f"## {text}",
    escape=lambda text: text,
)


def _render_text_node(node: Node, dialect: _Dialect) -> str:
    text = node.get("text") or ""
    marks = node.get("marks") or []
    mark_types = {m.get("type") for m in marks if isinstance(m, dict)}

    if "code" in mark_types:
        # No other formatting applies inside inline code
        return f"`{text}`"

    rendered = dialect.escape(text)
    if "bold" in mark_types:
        rendered = f"{dialect.bold}{rendered}{dialect.bold}"
    if "italic" in mark_types:
        rendered = f"{dialect.italic}{rendered}{dialect.italic}"
    if "strike" in mark_types:
        rendered = f"{dialect.strike}{rendered}{dialect.strike}"
    for mark in marks:
        if isinstance(mark, dict) and mark.get("type") == "link":
            href = (mark.get("attrs") or {}).get("href")
            if href:
                rendered = dialect.link(href, rendered)
    return rendered


def _render_inline(nodes: list[Node], dialect: _Dialect) -> str:
    parts: list[str] = []
    for node in nodes:
        node_type = node.get("type")
        if node_type == "text":
            parts.append(_render_text_node(node, dialect))
        elif node_type == "hardBreak":
            parts.append("\n")
        elif node_type == "mention":
            attrs = node.get("attrs") or {}
            parts.append(f"@{attrs.get('label') or attrs.get('id') or ''}")
        elif isinstance(node.get("content"), list):
            parts.append(_render_inline(node["content"], dialect))
    return "".join(parts)


def _render_block(node: Node, dialect: _Dialect, depth: int = 0) -> list[str]:
    node_type = node.get("type")
    children = node.get("content") if isinstance(node.get("content"), list) else []

    if node_type == "paragraph":
        return [_render_inline(children, dialect)]
    if node_type == "heading":
        text = _render_inline(children, dialect)
        return [dialect.heading(text) if text else ""]
    if node_type == "codeBlock":
        code = "".join(c.get("text") or "" for c in children if c.get("type") == "text")
        return [f"```\n{code}\n```"]
    if node_type == "blockquote":
        lines: list[str] = []
        for child in children:
            for line in _render_block(child, dialect, depth):
                lines.extend(f"> {part}" for part in line.split("\n"))
        return lines
    if node_type in ("bulletList", "orderedList"):
        lines = []
        start = (node.get("attrs") or {}).get("start") or 1
        indent = "    " * depth
        for index, item in enumerate(children):
            bullet = f"{start + index}." if node_type == "orderedList" else dialect.bullet
            item_children = item.get("content") if isinstance(item.get("content"), list) else []
            first = True
            for child in item_children:
                if child.get("type") in ("bulletList", "orderedList"):
                    lines.extend(_render_block(child, dialect, depth + 1))
                    continue
                for line in _render_block(child, dialect, depth):
                    prefix = f"{indent}{bullet} " if first else f"{indent}   "
                    lines.append(f"{prefix}{line}")
                    first = False
        return lines
    if node_type == "horizontalRule":
        return ["---"]
    if node_type == "text" or node_type == "hardBreak":
        return [_render_inline([node], dialect)]
    if children:
        lines = []
        for child in children:
            lines.extend(_render_block(child, dialect, depth))
        return lines
    return []


def _render(content: list[Node] | Node | str, dialect: _Dialect) -> str:
    if isinstance(content, str):
        return dialect.escape(content)
    nodes = content if isinstance(content, list) else [content]
    lines: list[str] = []
    for node in nodes:
        if isinstance(node, dict):
            lines.extend(_render_block(node, dialect))
    return "\n".join(lines).strip("\n")


def to_slack_mrkdwn(content: list[Node] | Node | str) -> str:
    """Render tiptap content as Slack mrkdwn text for chat.postMessage."""
    return _render(content, SLACK_MRKDWN)


def to_discord_markdown(content: list[Node] | Node | str) -> str:
    """Render tiptap content as Discord markdown for webhook messages."""
    return _render(content, DISCORD_MARKDOWN)
