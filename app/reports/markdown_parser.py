"""Markdown -> rich-text blocks, using markdown-it-py.

The tokenizer runs the CommonMark preset with the GFM ``table`` and
``strikethrough`` rules enabled.  Its token stream is folded into a
``SyntaxTreeNode`` tree, and each top-level node becomes one block.

Nested lists are not kept as structure: a nested item's text is appended to
the text of the item that contains it.
"""
from __future__ import annotations

import re

from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode

from app.reports.blocks import (
    Blank,
    Block,
    Blockquote,
    CodeBlock,
    Heading,
    HorizontalRule,
    InlineNode,
    ListBlock,
    Paragraph,
    RawBlock,
    TableBlock,
    text_node,
)

_MARKDOWN_PARSER: MarkdownIt | None = None

_LIST_TYPES = ("bullet_list", "ordered_list")

# C0 controls other than tab, newline and carriage return; not allowed in XML.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def _markdown_parser() -> MarkdownIt:
    global _MARKDOWN_PARSER
    if _MARKDOWN_PARSER is None:
        _MARKDOWN_PARSER = MarkdownIt("commonmark").enable(["table", "strikethrough"])
    return _MARKDOWN_PARSER


def strip_control_chars(text: str) -> str:
    return _CONTROL_CHARS.sub("", text)


def parse_markdown(text: str) -> list[Block]:
    """Parse *text* into a list of blocks, in document order."""
    source = strip_control_chars(text.replace("\r\n", "\n").replace("\r", "\n"))
    root = SyntaxTreeNode(_markdown_parser().parse(source))
    lines = source.split("\n")
    return [_convert_block(node, lines) for node in root.children]


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------

def _convert_block(node: SyntaxTreeNode, lines: list[str]) -> Block:
    kind = node.type

    if kind == "heading":
        return Heading(level=int(node.tag[1:]), inline=_inline_children(node))
    if kind == "paragraph":
        return Paragraph(inline=_inline_children(node))
    if kind in _LIST_TYPES:
        return ListBlock(
            items=[_join(_segments(item), text_node(" ")) for item in node.children],
            ordered=kind == "ordered_list",
        )
    if kind == "table":
        return _convert_table(node)
    if kind in ("fence", "code_block"):
        return CodeBlock(raw_text=node.content.rstrip("\n"))
    if kind == "blockquote":
        return Blockquote(inline=_join(_segments(node), InlineNode(kind="hardbreak")))
    if kind == "hr":
        return HorizontalRule()

    raw = _raw_text(node, lines)
    if not raw.strip():
        return Blank()
    return RawBlock(kind=kind, raw_text=raw.rstrip("\n"))


def _convert_table(node: SyntaxTreeNode) -> TableBlock:
    header: list[list[InlineNode]] = []
    rows: list[list[list[InlineNode]]] = []
    for section in node.children:
        for tr in section.children:
            cells = [_inline_children(cell) for cell in tr.children]
            if section.type == "thead" and not header:
                header = cells
            else:
                rows.append(cells)
    return TableBlock(header=header, rows=rows)


def _raw_text(node: SyntaxTreeNode, lines: list[str]) -> str:
    if node.content:
        return node.content
    if node.map:
        start, end = node.map
        return "\n".join(lines[start:end])
    return ""


# ---------------------------------------------------------------------------
# Inline content
# ---------------------------------------------------------------------------

def _inline_children(node: SyntaxTreeNode) -> list[InlineNode]:
    """Inline nodes of a block whose only child is an ``inline`` token."""
    return [_convert_inline(child) for inline in node.children for child in inline.children]


def _convert_inline(node: SyntaxTreeNode) -> InlineNode:
    if node.type == "code_inline":
        return InlineNode(kind="code_inline", children=[text_node(node.content)])
    if node.type == "link":
        href = node.attrs.get("href")
        return InlineNode(
            kind="link",
            children=[_convert_inline(child) for child in node.children],
            href=str(href) if href is not None else None,
        )
    children = [_convert_inline(child) for child in node.children]
    return InlineNode(
        kind=node.type,
        text="" if children else node.content,
        children=children,
    )


def _segments(node: SyntaxTreeNode) -> list[list[InlineNode]]:
    """Collect the inline content of every text-bearing block under *node*."""
    segments: list[list[InlineNode]] = []
    for child in node.children:
        if child.type in ("paragraph", "heading"):
            segments.append(_inline_children(child))
        elif child.type in ("fence", "code_block", "html_block"):
            if child.content.strip():
                segments.append([text_node(child.content.strip("\n"))])
        elif child.type == "inline":
            segments.append([_convert_inline(c) for c in child.children])
        else:
            segments.extend(_segments(child))
    return [segment for segment in segments if segment]


def _join(segments: list[list[InlineNode]], separator: InlineNode) -> list[InlineNode]:
    joined: list[InlineNode] = []
    for index, segment in enumerate(segments):
        if index:
            joined.append(separator)
        joined.extend(segment)
    return joined
