"""
Display formatting shared by every revenue view.

Currency:
  - "NT$" prefix
  - amounts below 1 → 3 decimal places (sub-dollar CPM fragments stay visible)
  - everything else → exactly 2 decimal places with thousands separators
  - rounding is half-up on the Decimal value, never on a binary float

Counts (impressions):
  >= 1,000,000 → "X.YM"
  >= 1,000     → "X.YK"
  otherwise    → the literal integer
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from models.schemas import PayoutStatus, RevenueReport, RevenueSummary, SlotRevenue

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
CURRENCY_PREFIX = "NT$"
SUB_UNIT_QUANTUM = Decimal("0.001")   # 3 places below NT$1
UNIT_QUANTUM = Decimal("0.01")        # 2 places otherwise
COUNT_QUANTUM = Decimal("0.1")        # one place for K / M

MILLION = 1_000_000
THOUSAND = 1_000

# Labels shown by the app next to each payout row
STATUS_LABELS = {
    PayoutStatus.PAID: "已付款",
    PayoutStatus.PROCESSING: "處理中",
    PayoutStatus.PENDING: "待處理",
    PayoutStatus.BELOW_THRESHOLD: "未達門檻",
    PayoutStatus.ELIGIBLE: "可提領",
}


# ===========================================================================
# Currency
# ===========================================================================

def format_currency(amount) -> str:
    """
    Render an NTD amount, e.g. NT$1,234.50 or NT$0.125.

    Unparseable input renders as zero.
    """
    value = _to_decimal(amount)

    sub_unit = value.copy_abs().quantize(SUB_UNIT_QUANTUM, rounding=ROUND_HALF_UP)
    if sub_unit < 1:
        rounded = sub_unit
        text = f"{rounded:.3f}"
    else:
        rounded = value.copy_abs().quantize(UNIT_QUANTUM, rounding=ROUND_HALF_UP)
        text = f"{rounded:,.2f}"

    sign = "-" if value < 0 and rounded != 0 else ""
    return f"{sign}{CURRENCY_PREFIX}{text}"


# ===========================================================================
# Counts
# ===========================================================================

def format_count(count) -> str:
    """Abbreviate an impression count: 1.2M, 45.3K or 999."""
    try:
        value = int(count)
    except (ValueError, TypeError):
        logger.debug(f"Could not format count: {repr(count)}")
        value = 0

    if value >= MILLION:
        return f"{_scaled(value, MILLION)}M"

    if value >= THOUSAND:
        scaled = _scaled(value, THOUSAND)
        # 999,950 would otherwise read "1000.0K"
        if scaled >= THOUSAND:
            return f"{_scaled(value, MILLION)}M"
        return f"{scaled}K"

    return str(value)


def _scaled(value: int, unit: int) -> Decimal:
    return (Decimal(value) / Decimal(unit)).quantize(COUNT_QUANTUM, rounding=ROUND_HALF_UP)


# ===========================================================================
# Status labels
# ===========================================================================

def status_label(status: PayoutStatus) -> str:
    return STATUS_LABELS.get(status, STATUS_LABELS[PayoutStatus.PENDING])


# ===========================================================================
# Report → display strings
# ===========================================================================

def format_summary(summary: RevenueSummary) -> dict[str, str]:
    """Display strings for every figure on the summary card."""
    return {
        "total_earnings": format_currency(summary.total_earnings_ntd),
        "this_period": format_currency(summary.this_period_ntd),
        "last_period": format_currency(summary.last_period_ntd),
        "pending_payout": format_currency(summary.pending_payout_ntd),
        "gross_revenue": format_currency(summary.gross_revenue_ntd),
        "net_revenue": format_currency(summary.net_revenue_ntd),
        "total_impressions": format_count(summary.total_impressions),
        "average_cpm": format_currency(summary.average_cpm_ntd),
    }


def format_report(report: RevenueReport) -> dict:
    """
    JSON-ready report: raw values (Decimals as strings) plus a `display`
    block holding the formatted strings the app renders verbatim.
    """
    data = report.model_dump(mode="json")
    data["display"] = {
        "summary": format_summary(report.summary),
        "minimum_payout": format_currency(report.minimum_payout_ntd),
        "payouts": [
            {
                "period": p.period,
                "status": p.status_label,
                "impressions": format_count(p.impressions),
                "gross": format_currency(p.gross_ntd),
                "fee": format_currency(p.fee_ntd),
                "net": format_currency(p.net_ntd),
            }
            for p in report.payouts
        ],
    }
    return data


def format_slot(slot: SlotRevenue) -> dict:
    data = slot.model_dump(mode="json")
    data["display"] = {
        "base_cpm": format_currency(slot.base_cpm_ntd),
        "effective_cpm": format_currency(slot.effective_cpm_ntd),
        "monthly_impressions": format_count(slot.monthly_impressions),
        "monthly_revenue": f"{format_currency(slot.monthly_revenue_ntd)}/月",
    }
    return data


# ===========================================================================
# Helpers
# ===========================================================================

def _to_decimal(amount) -> Decimal:
    if amount is None or isinstance(amount, bool):
        return Decimal("0")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        logger.debug(f"Could not format amount: {repr(amount)}")
        return Decimal("0")
    if not value.is_finite():
        return Decimal("0")
    return value
