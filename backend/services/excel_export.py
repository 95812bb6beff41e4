"""
Revenue statement export (.xlsx).

Creates a workbook with up to 4 tabs:
  Tab 1: "Summary"  - label/value rows from RevenueSummary + report flags
  Tab 2: "Daily"    - one row per revenue bucket (gross, net, CPM)
  Tab 3: "Payouts"  - one row per PayoutRecord, in display order
  Tab 4: "Ad Slots" - one row per SlotRevenue (only when slots are given)

File naming: "brioCAST Revenue Statement {period} {as_of}.xlsx"

Formatting:
  - Bold header rows on all tabs
  - Auto-fit column widths (with min/max constraints)
  - Freeze top row (header) on all tabs
  - NTD currency format for money columns ("NT$"#,##0.00)
  - Comma-separated number format for impression counts (#,##0)
"""

import os
import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from openpyxl import Workbook
from openpyxl.styles import Font, Alignment
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

import config
from models.schemas import PayoutRecord, RevenueRecord, RevenueReport, SlotRevenue
from services.formatting import status_label
from services.revenue import average_cpm, net_revenue

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MIN_COL_WIDTH = 10      # Minimum column width (characters)
MAX_COL_WIDTH = 50      # Maximum column width (avoid super-wide columns)
HEADER_FONT = Font(bold=True)
CURRENCY_FORMAT = '"NT$"#,##0.00'
CPM_FORMAT = '"NT$"#,##0.000'
NUMBER_FORMAT = '#,##0'
PERCENT_FORMAT = '0.00%'


# ===========================================================================
# Public API
# ===========================================================================

def generate_report(
    report: RevenueReport,
    as_of: date,
    slots: Optional[list[SlotRevenue]] = None,
    output_dir: Optional[str] = None,
) -> str:
    """
    Write the revenue statement workbook.

    Args:
        report:     Built RevenueReport
        as_of:      Statement date (for filename)
        slots:      Optional ad-slot breakdown for Tab 4
        output_dir: Directory to save the file (defaults to config.OUTPUT_DIR)

    Returns:
        File path of the generated .xlsx statement.
    """
    if output_dir is None:
        output_dir = config.OUTPUT_DIR

    os.makedirs(output_dir, exist_ok=True)

    filename = statement_filename(report, as_of)
    filepath = os.path.join(output_dir, filename)

    logger.info(f"Generating statement: {filepath}")

    wb = Workbook()

    ws1 = wb.active
    ws1.title = "Summary"
    _build_summary_tab(ws1, report)

    ws2 = wb.create_sheet("Daily")
    _build_daily_tab(ws2, report.daily, report.fee_rate)

    ws3 = wb.create_sheet("Payouts")
    _build_payouts_tab(ws3, report.payouts)

    if slots is not None:
        ws4 = wb.create_sheet("Ad Slots")
        _build_slots_tab(ws4, slots)

    wb.save(filepath)
    logger.info(
        f"Statement saved: {filepath} "
        f"({len(report.daily)} buckets, {len(report.payouts)} payouts, "
        f"{len(slots) if slots is not None else 0} slots)"
    )

    return filepath


def statement_filename(report: RevenueReport, as_of: date) -> str:
    return f"brioCAST Revenue Statement {report.period.value} {as_of.isoformat()}.xlsx"


# ===========================================================================
# Tab 1: Summary
# ===========================================================================

def _build_summary_tab(ws: Worksheet, report: RevenueReport) -> None:
    """
    Tab 1: Metric | Value rows.

    Money rows get the currency format, the impressions row the number
    format, the fee rate a percent format.
    """
    ws.append(["Metric", "Value"])

    s = report.summary
    rows = [
        ("Period", report.period.value, None),
        ("Total Earnings", s.total_earnings_ntd, CURRENCY_FORMAT),
        ("This Period (Net)", s.this_period_ntd, CURRENCY_FORMAT),
        ("Last Period (Net)", s.last_period_ntd, CURRENCY_FORMAT),
        ("Pending Payout", s.pending_payout_ntd, CURRENCY_FORMAT),
        ("Gross Revenue", s.gross_revenue_ntd, CURRENCY_FORMAT),
        ("Net Revenue", s.net_revenue_ntd, CURRENCY_FORMAT),
        ("Impressions", s.total_impressions, NUMBER_FORMAT),
        ("Average CPM", s.average_cpm_ntd, CPM_FORMAT),
        ("Platform Fee Rate", report.fee_rate, PERCENT_FORMAT),
        ("Minimum Payout", report.minimum_payout_ntd, CURRENCY_FORMAT),
        ("Payout Requestable", "yes" if s.can_request_payout else "no", None),
        ("Revenue Data", "available" if report.revenue_available else "unavailable", None),
        ("Payout Data", "available" if report.payouts_available else "unavailable", None),
        ("Degraded Data", "yes" if report.degraded else "no", None),
    ]

    for label, value, fmt in rows:
        ws.append([label, value])
        if fmt is not None:
            ws.cell(row=ws.max_row, column=2).number_format = fmt

    _format_header_row(ws)
    _freeze_top_row(ws)
    _auto_fit_columns(ws)


# ===========================================================================
# Tab 2: Daily
# ===========================================================================

def _build_daily_tab(ws: Worksheet, daily: list[RevenueRecord], fee_rate: Decimal) -> None:
    """
    Tab 2: one row per bucket, in backend order.

    Columns:
      Date | Impressions | Gross | Net | CPM | Defaulted

    Per-row net and CPM are shown for reference; the summary figures are
    computed from the totals, not from these rows.
    """
    headers = ["Date", "Impressions", "Gross", "Net", "CPM", "Defaulted"]
    ws.append(headers)

    for r in daily:
        ws.append([
            r.date,
            r.impressions,
            r.gross_revenue_ntd,
            net_revenue(r.gross_revenue_ntd, fee_rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            average_cpm(r.gross_revenue_ntd, r.impressions).quantize(Decimal("0.001"), rounding=ROUND_HALF_UP),
            "yes" if r.defaulted else None,
        ])

    _format_header_row(ws)
    _freeze_top_row(ws)
    _apply_column_format(ws, col_idx=2, fmt=NUMBER_FORMAT, start_row=2)
    for col_idx in [3, 4]:
        _apply_column_format(ws, col_idx=col_idx, fmt=CURRENCY_FORMAT, start_row=2)
    _apply_column_format(ws, col_idx=5, fmt=CPM_FORMAT, start_row=2)
    _auto_fit_columns(ws)


# ===========================================================================
# Tab 3: Payouts
# ===========================================================================

def _build_payouts_tab(ws: Worksheet, payouts: list[PayoutRecord]) -> None:
    """
    Tab 3: one row per payout, newest period first (already ordered).

    Columns:
      Period | Status | Impressions | Gross | Fee | Net | Paid At | Defaulted
    """
    headers = ["Period", "Status", "Impressions", "Gross", "Fee", "Net", "Paid At", "Defaulted"]
    ws.append(headers)

    for p in payouts:
        ws.append([
            p.period,
            p.status_label or status_label(p.status),
            p.impressions,
            p.gross_ntd,
            p.fee_ntd,
            p.net_ntd,
            p.paid_at,
            "yes" if p.defaulted else None,
        ])

    _format_header_row(ws)
    _freeze_top_row(ws)
    _apply_column_format(ws, col_idx=3, fmt=NUMBER_FORMAT, start_row=2)
    for col_idx in [4, 5, 6]:
        _apply_column_format(ws, col_idx=col_idx, fmt=CURRENCY_FORMAT, start_row=2)
    _auto_fit_columns(ws)


# ===========================================================================
# Tab 4: Ad Slots
# ===========================================================================

def _build_slots_tab(ws: Worksheet, slots: list[SlotRevenue]) -> None:
    """
    Tab 4: one row per ad slot, highest monthly revenue first.

    Columns:
      Slot | Display | Active | Base CPM | Monthly Impressions |
      Monthly Revenue | Effective CPM
    """
    headers = [
        "Slot",
        "Display",
        "Active",
        "Base CPM",
        "Monthly Impressions",
        "Monthly Revenue",
        "Effective CPM",
    ]
    ws.append(headers)

    for s in slots:
        ws.append([
            s.slot_name,
            s.display_id,
            "yes" if s.is_active else "no",
            s.base_cpm_ntd,
            s.monthly_impressions,
            s.monthly_revenue_ntd,
            s.effective_cpm_ntd,
        ])

    _format_header_row(ws)
    _freeze_top_row(ws)
    _apply_column_format(ws, col_idx=4, fmt=CURRENCY_FORMAT, start_row=2)
    _apply_column_format(ws, col_idx=5, fmt=NUMBER_FORMAT, start_row=2)
    _apply_column_format(ws, col_idx=6, fmt=CURRENCY_FORMAT, start_row=2)
    _apply_column_format(ws, col_idx=7, fmt=CPM_FORMAT, start_row=2)
    _auto_fit_columns(ws)


# ===========================================================================
# Formatting helpers
# ===========================================================================

def _format_header_row(ws: Worksheet) -> None:
    """Bold the entire header row (row 1)."""
    for cell in ws[1]:
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")


def _freeze_top_row(ws: Worksheet) -> None:
    ws.freeze_panes = "A2"


def _apply_column_format(
    ws: Worksheet,
    col_idx: int,
    fmt: str,
    start_row: int = 2,
) -> None:
    """Apply a number format to every non-empty data cell in a 1-based column."""
    for row in range(start_row, ws.max_row + 1):
        cell = ws.cell(row=row, column=col_idx)
        if cell.value is not None:
            cell.number_format = fmt


def _auto_fit_columns(ws: Worksheet) -> None:
    """
    Auto-fit column widths to the widest header/data value,
    plus 2 chars of padding, within MIN_COL_WIDTH..MAX_COL_WIDTH.
    """
    for col_idx in range(1, ws.max_column + 1):
        max_length = 0
        col_letter = get_column_letter(col_idx)

        for row in range(1, ws.max_row + 1):
            cell = ws.cell(row=row, column=col_idx)
            if cell.value is not None:
                max_length = max(max_length, len(str(cell.value)))

        adjusted_width = max_length + 2
        adjusted_width = max(adjusted_width, MIN_COL_WIDTH)
        adjusted_width = min(adjusted_width, MAX_COL_WIDTH)
        ws.column_dimensions[col_letter].width = adjusted_width
