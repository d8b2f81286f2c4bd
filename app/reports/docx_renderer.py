"""Quotation report writer: markdown text -> ``.docx`` bytes.

Builds the document with python-docx from the block model produced by
:mod:`app.reports.markdown_parser`:

- a centered title and a "Generated on" line ahead of the content,
- one element per block (headings, body text, bullet items, bordered tables,
  monospace code, indented quotes, rules, spacers),
- a closing caption.

Anything the parser could not classify is written out as its raw source
text, so an odd markdown response still yields a readable document.  The
only failures are parse and serialization faults, which surface as
:class:`ReportGenerationError`.

Output is deterministic: core properties take their timestamps from the
``generated_on`` argument and zip entry times are pinned.
"""
from __future__ import annotations

import io
import logging
import zipfile
from datetime import date, datetime, time

import docx
from docx.enum.table import WD_ALIGN_VERTICAL, WD_TABLE_ALIGNMENT
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Emu, Inches, Pt, RGBColor

from app.reports.blocks import (
    PLAIN,
    Blank,
    Block,
    Blockquote,
    CodeBlock,
    Heading,
    HorizontalRule,
    ListBlock,
    Paragraph,
    RawBlock,
    TableBlock,
    TextFormat,
    TextRun,
    flatten_inline,
    plain_text,
)
from app.reports.markdown_parser import parse_markdown, strip_control_chars

logger = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

TITLE_PREFIX = "Software Project Quotation: "
DETAILS_LEAD_IN = "Quotation Details:"
CLOSING_CAPTION = "--- End of Report ---"
EMPTY_BODY_NOTICE = "This quotation has no report text, so no document content could be generated."

MONOSPACE_FONT = "Courier New"
HEADER_FILL_HEX = "D9E2F3"
BORDER_HEX = "808080"
RULE_HEX = "999999"
CAPTION_COLOR = RGBColor(0x99, 0x99, 0x99)

MIN_COLUMN_WIDTH = Inches(0.8)
MAX_COLUMN_WIDTH = Inches(3.0)
WIDTH_PER_CHAR = Inches(0.09)
QUOTE_INDENT = Inches(0.5)

_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


class ReportGenerationError(RuntimeError):
    """Raised when a quotation report cannot be parsed or serialized."""


def heading_style(level: int) -> str:
    """Map a markdown heading level (0 = document title) to a paragraph style."""
    if level <= 1:
        return "Heading 1"
    if level == 2:
        return "Heading 2"
    return "Heading 3"


def column_widths(table: TableBlock) -> list[Emu]:
    """Per-column width from the longest cell text, clamped to the allowed range."""
    widths: list[Emu] = []
    for col in range(table.column_count):
        cells = [table.header[col]] + [row[col] for row in table.rows]
        longest = max(len(plain_text(cell)) for cell in cells)
        width = min(max(longest * WIDTH_PER_CHAR, MIN_COLUMN_WIDTH), MAX_COLUMN_WIDTH)
        widths.append(Emu(int(width)))
    return widths


# ---------------------------------------------------------------------------
# Low-level OOXML helpers
# ---------------------------------------------------------------------------

def _set_cell_background(cell, hex_color: str) -> None:
    tcPr = cell._element.get_or_add_tcPr()
    shd = OxmlElement("w:shd")
    shd.set(qn("w:val"), "clear")
    shd.set(qn("w:color"), "auto")
    shd.set(qn("w:fill"), hex_color)
    tcPr.append(shd)


def _set_table_borders(table) -> None:
    tblPr = table._tbl.tblPr
    tblBorders = OxmlElement("w:tblBorders")
    for border_name in ("top", "left", "bottom", "right", "insideH", "insideV"):
        border = OxmlElement(f"w:{border_name}")
        border.set(qn("w:val"), "single")
        border.set(qn("w:sz"), "4")
        border.set(qn("w:space"), "0")
        border.set(qn("w:color"), BORDER_HEX)
        tblBorders.append(border)
    tblPr.append(tblBorders)


def _add_bottom_border(paragraph) -> None:
    pPr = paragraph._p.get_or_add_pPr()
    pBdr = OxmlElement("w:pBdr")
    bottom = OxmlElement("w:bottom")
    bottom.set(qn("w:val"), "single")
    bottom.set(qn("w:sz"), "6")
    bottom.set(qn("w:space"), "1")
    bottom.set(qn("w:color"), RULE_HEX)
    pBdr.append(bottom)
    pPr.append(pBdr)


def _add_runs(paragraph, runs: list[TextRun]) -> None:
    for run_data in runs:
        if run_data.line_break:
            paragraph.add_run().add_break()
            continue
        run = paragraph.add_run(run_data.text)
        _apply_format(run, run_data.fmt)


def _apply_format(run, fmt: TextFormat) -> None:
    # None leaves the value to the paragraph style (headings are bold already).
    run.bold = True if fmt.bold else None
    run.italic = True if fmt.italic else None
    if fmt.strikethrough:
        run.font.strike = True
    if fmt.monospace:
        run.font.name = MONOSPACE_FONT


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time())


def _pin_zip_timestamps(data: bytes) -> bytes:
    out = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(data)) as source, zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as target:
        for info in source.infolist():
            pinned = zipfile.ZipInfo(info.filename, date_time=_ZIP_EPOCH)
            pinned.compress_type = zipfile.ZIP_DEFLATED
            pinned.external_attr = info.external_attr
            target.writestr(pinned, source.read(info.filename))
    return out.getvalue()


# ---------------------------------------------------------------------------
# QuotationDocxRenderer
# ---------------------------------------------------------------------------

class QuotationDocxRenderer:
    """Render a quotation's markdown text as a Word document."""

    def __init__(self, author: str = "Quotation API") -> None:
        self.author = author

    def render(self, title: str, body_markdown: str | None, generated_on: date | datetime) -> bytes:
        """Return the ``.docx`` bytes for one quotation.

        Raises
        ------
        ReportGenerationError
            If the markdown cannot be parsed or the document cannot be saved.
        """
        title = strip_control_chars(title)
        try:
            document = docx.Document()
            self._setup_styles(document)

            if body_markdown is None or not body_markdown.strip():
                logger.warning("Quotation %r has no report text; writing notice document", title)
                document.add_paragraph(EMPTY_BODY_NOTICE)
            else:
                blocks = parse_markdown(body_markdown)
                self._add_front_matter(document, title, generated_on)
                for block in blocks:
                    self._add_block(document, block)
                self._add_closing(document)

            self._set_core_properties(document, title, generated_on)
            buffer = io.BytesIO()
            document.save(buffer)
            content = _pin_zip_timestamps(buffer.getvalue())
        except Exception as exc:
            logger.exception("Failed to generate DOCX for quotation %r", title)
            raise ReportGenerationError(f"DOCX generation failed: {exc}") from exc

        logger.info("DOCX created for quotation %r (%d bytes)", title, len(content))
        return content

    # -- document skeleton --------------------------------------------------

    def _setup_styles(self, document) -> None:
        normal = document.styles["Normal"]
        normal.font.size = Pt(11)

        caption = document.styles["Caption"]
        caption.font.italic = True
        caption.font.bold = False
        caption.font.size = Pt(10)
        caption.font.color.rgb = CAPTION_COLOR
        caption.paragraph_format.space_after = Pt(6)

    def _add_front_matter(self, document, title: str, generated_on: date | datetime) -> None:
        heading = document.add_paragraph(style=heading_style(0))
        heading.alignment = WD_ALIGN_PARAGRAPH.CENTER
        heading.add_run(f"{TITLE_PREFIX}{title}")

        document.add_paragraph()
        generated = document.add_paragraph()
        generated.add_run(f"Generated on: {generated_on:%Y-%m-%d}").italic = True
        document.add_paragraph()

        details = document.add_paragraph()
        details.paragraph_format.space_before = Pt(10)
        details.paragraph_format.space_after = Pt(5)
        run = details.add_run(DETAILS_LEAD_IN)
        run.bold = True
        run.font.size = Pt(14)

    def _add_closing(self, document) -> None:
        document.add_paragraph()
        closing = document.add_paragraph(CLOSING_CAPTION, style="Caption")
        closing.alignment = WD_ALIGN_PARAGRAPH.CENTER

    def _set_core_properties(self, document, title: str, generated_on: date | datetime) -> None:
        stamp = _as_datetime(generated_on)
        props = document.core_properties
        props.title = f"{TITLE_PREFIX}{title}"[:255]
        props.author = self.author
        props.last_modified_by = self.author
        props.created = stamp
        props.modified = stamp
        props.revision = 1

    # -- blocks -------------------------------------------------------------

    def _add_block(self, document, block: Block) -> None:
        if isinstance(block, Heading):
            paragraph = document.add_paragraph(style=heading_style(block.level))
            _add_runs(paragraph, flatten_inline(block.inline))
        elif isinstance(block, Paragraph):
            _add_runs(document.add_paragraph(), flatten_inline(block.inline))
        elif isinstance(block, ListBlock):
            style = "List Number" if block.ordered else "List Bullet"
            for item in block.items:
                _add_runs(document.add_paragraph(style=style), flatten_inline(item))
        elif isinstance(block, TableBlock):
            self._add_table(document, block)
        elif isinstance(block, CodeBlock):
            paragraph = document.add_paragraph()
            run = paragraph.add_run(block.raw_text)
            run.font.name = MONOSPACE_FONT
            run.font.size = Pt(9)
        elif isinstance(block, Blockquote):
            paragraph = document.add_paragraph()
            paragraph.paragraph_format.left_indent = QUOTE_INDENT
            _add_runs(paragraph, flatten_inline(block.inline))
        elif isinstance(block, HorizontalRule):
            _add_bottom_border(document.add_paragraph())
        elif isinstance(block, RawBlock):
            logger.warning("No renderer for markdown block %r; writing its raw text", block.kind)
            document.add_paragraph(block.raw_text)
        elif isinstance(block, Blank):
            document.add_paragraph()
        else:
            logger.warning("Skipping unknown block object %r", type(block).__name__)
            document.add_paragraph()

    def _add_table(self, document, block: TableBlock) -> None:
        if block.column_count == 0:
            return

        widths = column_widths(block)
        table = document.add_table(rows=1 + len(block.rows), cols=block.column_count)
        table.alignment = WD_TABLE_ALIGNMENT.LEFT
        table.autofit = False
        _set_table_borders(table)

        for col, width in enumerate(widths):
            table.columns[col].width = width

        all_rows = [(block.header, TextFormat(bold=True))] + [(row, PLAIN) for row in block.rows]
        for row_index, (cells, fmt) in enumerate(all_rows):
            for col, cell_nodes in enumerate(cells):
                cell = table.cell(row_index, col)
                cell.width = widths[col]
                # w:shd must precede w:vAlign inside w:tcPr.
                if row_index == 0:
                    _set_cell_background(cell, HEADER_FILL_HEX)
                cell.vertical_alignment = WD_ALIGN_VERTICAL.CENTER
                paragraph = cell.paragraphs[0]
                paragraph.alignment = WD_ALIGN_PARAGRAPH.LEFT
                _add_runs(paragraph, flatten_inline(cell_nodes, fmt))
