"""Report filtering, summaries and exports."""

from coinflow.reports.export import (
    REPORT_COLUMNS,
    PdfLayout,
    PdfLine,
    build_pdf_layout,
    export_csv,
    export_spreadsheet,
    render_pdf,
)
from coinflow.reports.filters import (
    ReportFilters,
    ReportSummary,
    ReportType,
    filter_transactions,
    summarize,
)

__all__ = [
    "PdfLayout",
    "PdfLine",
    "REPORT_COLUMNS",
    "ReportFilters",
    "ReportSummary",
    "ReportType",
    "build_pdf_layout",
    "export_csv",
    "export_spreadsheet",
    "filter_transactions",
    "render_pdf",
    "summarize",
]
