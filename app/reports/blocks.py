"""Rich-text block model for quotation reports.

Markdown is parsed into a flat sequence of blocks (headings, paragraphs,
lists, tables, ...).  Blocks that carry text hold a tree of
:class:`InlineNode` objects; :func:`flatten_inline` walks that tree and
produces styled :class:`TextRun` objects for the document writer.

Formatting only accumulates on the way down: a ``strong`` inside an ``em``
is bold *and* italic, and nothing below an ancestor can switch a flag off.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace


# ---------------------------------------------------------------------------
# Inline content
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextFormat:
    bold: bool = False
    italic: bool = False
    strikethrough: bool = False
    monospace: bool = False

    def with_flag(self, name: str) -> TextFormat:
        """Return a copy with flag *name* switched on."""
        return replace(self, **{name: True})


PLAIN = TextFormat()


@dataclass(frozen=True)
class TextRun:
    text: str
    fmt: TextFormat = PLAIN
    line_break: bool = False


@dataclass
class InlineNode:
    """One node of an inline tree (``text``, ``strong``, ``link``, ...)."""

    kind: str
    text: str = ""
    children: list[InlineNode] = field(default_factory=list)
    href: str | None = None


_FLAG_BY_KIND = {
    "strong": "bold",
    "em": "italic",
    "code_inline": "monospace",
    "s": "strikethrough",
}


def flatten_inline(nodes: list[InlineNode], fmt: TextFormat = PLAIN) -> list[TextRun]:
    """Flatten *nodes* into runs, each carrying the format inherited from above."""
    runs: list[TextRun] = []
    for node in nodes:
        runs.extend(_flatten_node(node, fmt))
    return runs


def _flatten_node(node: InlineNode, fmt: TextFormat) -> list[TextRun]:
    if node.kind == "text":
        return [TextRun(node.text, fmt)] if node.text else []

    flag = _FLAG_BY_KIND.get(node.kind)
    if flag is not None:
        inner = fmt.with_flag(flag)
        if not node.children and node.text:
            return [TextRun(node.text, inner)]
        return flatten_inline(node.children, inner)

    if node.kind == "link":
        runs = flatten_inline(node.children, fmt)
        if node.href:
            runs.append(TextRun(f" ({node.href})", fmt.with_flag("italic")))
        return runs

    if node.kind == "hardbreak":
        return [TextRun("", fmt, line_break=True)]
    if node.kind == "softbreak":
        return [TextRun(" ", fmt)]

    if node.children:
        return flatten_inline(node.children, fmt)
    if node.text:
        return [TextRun(node.text, fmt)]
    return []


def plain_text(nodes: list[InlineNode]) -> str:
    return "".join(run.text for run in flatten_inline(nodes))


def text_node(value: str) -> InlineNode:
    return InlineNode(kind="text", text=value)


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------

@dataclass
class Heading:
    level: int
    inline: list[InlineNode]


@dataclass
class Paragraph:
    inline: list[InlineNode]


@dataclass
class ListBlock:
    items: list[list[InlineNode]]
    ordered: bool = False


@dataclass
class TableBlock:
    """A table whose rows always have exactly ``len(header)`` cells.

    Short rows are padded with empty cells and long rows are cut at the
    header width.
    """

    header: list[list[InlineNode]]
    rows: list[list[list[InlineNode]]] = field(default_factory=list)

    def __post_init__(self) -> None:
        width = len(self.header)
        self.rows = [
            (list(row) + [[] for _ in range(width - len(row))])[:width]
            for row in self.rows
        ]

    @property
    def column_count(self) -> int:
        return len(self.header)


@dataclass
class CodeBlock:
    raw_text: str


@dataclass
class Blockquote:
    inline: list[InlineNode]


@dataclass
class HorizontalRule:
    pass


@dataclass
class Blank:
    pass


@dataclass
class RawBlock:
    """A construct with no dedicated rendering; shown as its source text."""

    kind: str
    raw_text: str


Block = Heading | Paragraph | ListBlock | TableBlock | CodeBlock | Blockquote | HorizontalRule | Blank | RawBlock
