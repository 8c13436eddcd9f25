"""
Report exports: CSV, a spreadsheet-compatible HTML table, and PDF.

All exports are pure functions of an already filtered transaction list and
the cashbooks used to name them. The PDF is built in two steps:
``build_pdf_layout`` places every text line on a page (A4 portrait, points
from the top-left corner) and ``render_pdf`` draws the layout with
matplotlib's PDF backend.
"""

import csv
import html
import io
from pathlib import Path
from typing import Iterable, Optional, Union

from matplotlib.backends.backend_pdf import PdfPages
from matplotlib.figure import Figure
from pydantic import BaseModel, ConfigDict, Field

from coinflow.constants.currencies import DEFAULT_CURRENCY, format_currency
from coinflow.models.ledger import Cashbook, Transaction
from coinflow.reports.filters import ReportFilters, ReportSummary, summarize


REPORT_COLUMNS = ["Date", "Description", "Cashbook", "Category", "Mode", "Type", "Amount"]
UNNAMED_CASHBOOK = "Unnamed"
DEFAULT_REPORT_TITLE = "SmartCash Ledger Report"

# A4 portrait in points
PAGE_WIDTH = 595.28
PAGE_HEIGHT = 841.89
MARGIN_LEFT = 40
TOP_Y = 60
PAGE_BREAK_Y = 760


def cashbook_names(cashbooks: Iterable[Cashbook]) -> dict[str, str]:
    return {c.id: c.name for c in cashbooks}


def report_row(transaction: Transaction, names: dict[str, str]) -> list[str]:
    """One export row in ``REPORT_COLUMNS`` order."""
    return [
        transaction.date.isoformat(),
        transaction.description,
        names.get(transaction.cashbook_id, UNNAMED_CASHBOOK),
        transaction.category,
        transaction.mode,
        transaction.type.label,
        f"{transaction.amount:.2f}",
    ]


def export_csv(transactions: Iterable[Transaction], cashbooks: Iterable[Cashbook]) -> str:
    """CSV text with a header row; every field is quoted."""
    names = cashbook_names(cashbooks)
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(REPORT_COLUMNS)
    for transaction in transactions:
        writer.writerow(report_row(transaction, names))
    return buffer.getvalue()


def export_spreadsheet(transactions: Iterable[Transaction], cashbooks: Iterable[Cashbook]) -> str:
    """
    An HTML table that spreadsheet programs open as a workbook.

    Starts with a UTF-8 byte order mark so non-ASCII text survives the import.
    """
    names = cashbook_names(cashbooks)
    head = "".join(f"<th>{html.escape(column, quote=False)}</th>" for column in REPORT_COLUMNS)
    body = "".join(
        "<tr>"
        + "".join(f"<td>{html.escape(value, quote=False)}</td>" for value in report_row(t, names))
        + "</tr>"
        for t in transactions
    )
    return f"\ufeff<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"


# =============================================================================
# PDF
# =============================================================================

class PdfLine(BaseModel):
    """A line of text; ``y`` is the baseline distance from the page top."""
    model_config = ConfigDict(frozen=True)

    page: int
    x: float
    y: float
    size: int
    text: str


class PdfLayout(BaseModel):
    title: str = DEFAULT_REPORT_TITLE
    page_width: float = PAGE_WIDTH
    page_height: float = PAGE_HEIGHT
    lines: list[PdfLine] = Field(default_factory=list)

    @property
    def page_count(self) -> int:
        return max((line.page for line in self.lines), default=0) + 1

    def lines_on(self, page: int) -> list[PdfLine]:
        return [line for line in self.lines if line.page == page]


def _display_date(transaction: Transaction) -> str:
    d = transaction.date
    return f"{d.month}/{d.day}/{d.year}"


def build_pdf_layout(
    transactions: list[Transaction],
    cashbooks: Iterable[Cashbook],
    filters: Optional[ReportFilters] = None,
    summary: Optional[ReportSummary] = None,
    currency: str = DEFAULT_CURRENCY,
    title: str = DEFAULT_REPORT_TITLE,
) -> PdfLayout:
    """
    Lay out the report: title, filter description, totals, then three
    lines per transaction. A new page starts once the cursor passes the
    page-break line.
    """
    names = cashbook_names(cashbooks)
    filters = filters or ReportFilters()
    summary = summary or summarize(transactions)
    layout = PdfLayout(title=title)
    page = 0
    y = TOP_Y

    def text(value: str, size: int, advance: int) -> None:
        nonlocal y
        layout.lines.append(PdfLine(page=page, x=MARGIN_LEFT, y=y, size=size, text=value))
        y += advance

    if filters.cashbook_id is None:
        cashbook_label = "All"
    else:
        cashbook_label = names.get(filters.cashbook_id, UNNAMED_CASHBOOK)
    start = filters.start_date.isoformat() if filters.start_date else "-"
    end = filters.end_date.isoformat() if filters.end_date else "-"

    text(title, 18, 20)
    text(f"Period: {start} to {end}", 12, 16)
    text(f"Cashbook: {cashbook_label}", 12, 16)
    text(f"Type: {filters.type.label}", 12, 24)

    text(f"Total Cash In: {format_currency(summary.total_cash_in, currency)}", 12, 16)
    text(f"Total Cash Out: {format_currency(summary.total_cash_out, currency)}", 12, 16)
    text(f"Net Balance: {format_currency(summary.net_balance, currency)}", 12, 24)

    text("Transactions", 11, 14)
    for t in transactions:
        if y > PAGE_BREAK_Y:
            page += 1
            y = TOP_Y
        text(f"{_display_date(t)} - {names.get(t.cashbook_id, UNNAMED_CASHBOOK)}", 11, 14)
        text(f"{t.type.label} - {format_currency(t.amount, currency)} - {t.mode}", 11, 14)
        text(t.description, 11, 20)

    return layout


def render_pdf(layout: PdfLayout, output_path: Optional[Union[str, Path]] = None) -> bytes:
    """
    Draw `layout` as a PDF, one figure per page.

    Returns the PDF bytes and writes them to `output_path` when given.
    """
    buffer = io.BytesIO()
    with PdfPages(buffer, metadata={"Title": layout.title}) as pdf:
        for page in range(layout.page_count):
            fig = Figure(figsize=(layout.page_width / 72, layout.page_height / 72))
            for line in layout.lines_on(page):
                if not line.text:
                    continue
                fig.text(
                    line.x / layout.page_width,
                    1 - line.y / layout.page_height,
                    line.text,
                    fontsize=line.size,
                    ha="left",
                    va="baseline",
                )
            pdf.savefig(fig)

    data = buffer.getvalue()
    if output_path is not None:
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return data
