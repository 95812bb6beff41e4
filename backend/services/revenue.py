"""
Revenue report builder: raw backend payloads → RevenueSummary + payout rows.

Every revenue-facing view (home card, revenue screen, statement export)
renders the output of this module, so the arithmetic lives here once.

Pipeline:
  1. parse_revenue_record / parse_revenue_totals / parse_payout_row
       → tolerant parsing; missing or malformed numbers become 0 and set
         `defaulted` on the parsed object (never raise)
  2. build_summary(records, fee_rate, totals, minimum_payout_ntd)
       → sums impressions + gross, applies the fee once, computes CPM
  3. build_payout_view(raw_payouts, threshold_ntd)
       → normalizes amounts to cents, derives status, orders newest first
  4. build_report(revenue_payload, payouts_payload, period, policy)
       → glues 1-3 together for one screen refresh

Arithmetic rules:
  net = gross * (1 - fee_rate)              (applied to the summed gross)
  CPM = gross / impressions * 1000          (ratio of totals, 0 if no impressions)
  payout: gross - fee == net exactly        (cent-quantized Decimals)

Status rules (build_payout_view):
  paid / processing (backend terminal states) → passed through unchanged
  anything else → eligible if net >= threshold, else below_threshold

Everything here is pure: no I/O, no shared state, safe to call from any
number of requests at once.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Union

from pydantic import ValidationError

import config
from models.schemas import (
    PayoutRecord,
    PayoutStatus,
    RevenuePeriod,
    RevenuePolicy,
    RevenueRecord,
    RevenueReport,
    RevenueSummary,
    RevenueTotals,
    SlotRevenue,
)
from services.formatting import status_label

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
ZERO = Decimal("0")
CENT = Decimal("0.01")
CPM_QUANTUM = Decimal("0.001")
CPM_MULTIPLIER = Decimal("1000")

# Largest amount or count accepted from a payload; anything above is malformed
MAX_AMOUNT = Decimal("1e15")

# Backend settlement states the client must never override
TERMINAL_STATUSES = {PayoutStatus.PAID, PayoutStatus.PROCESSING}

# Older payout rows report "completed" for a settled payout
STATUS_ALIASES = {"completed": PayoutStatus.PAID}

# Period labels, most specific first. Each yields the period's start date.
PERIOD_PATTERNS = [
    (re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})$"),
     lambda m: date(int(m[1]), int(m[2]), int(m[3]))),
    (re.compile(r"^(\d{4})-?W(\d{1,2})$", re.IGNORECASE),
     lambda m: date.fromisocalendar(int(m[1]), int(m[2]), 1)),
    (re.compile(r"^(\d{4})[-/](\d{1,2})$"),
     lambda m: date(int(m[1]), int(m[2]), 1)),
    (re.compile(r"^(\d{4})年(\d{1,2})月$"),
     lambda m: date(int(m[1]), int(m[2]), 1)),
    (re.compile(r"^(\d{4})$"),
     lambda m: date(int(m[1]), 1, 1)),
]

RecordInput = Union[RevenueRecord, Mapping[str, Any]]
Amount = Union[Decimal, float, int, str]


# ===========================================================================
# Policy
# ===========================================================================

def load_revenue_policy() -> RevenuePolicy:
    """
    Build the RevenuePolicy from PLATFORM_FEE_RATE / MINIMUM_PAYOUT_NTD.

    Raises:
        RuntimeError: If either value is unset or invalid. There is no
                      fallback split; the deployment must state its terms.
    """
    fee_rate = config.PLATFORM_FEE_RATE.strip()
    minimum = config.MINIMUM_PAYOUT_NTD.strip()

    missing = [
        name for name, value in (
            ("PLATFORM_FEE_RATE", fee_rate),
            ("MINIMUM_PAYOUT_NTD", minimum),
        )
        if not value
    ]
    if missing:
        raise RuntimeError(f"Revenue sharing is not configured: set {', '.join(missing)}")

    try:
        return RevenuePolicy(fee_rate=fee_rate, minimum_payout_ntd=minimum)
    except ValidationError as e:
        raise RuntimeError(f"Invalid revenue sharing configuration: {e}") from e


# ===========================================================================
# Arithmetic
# ===========================================================================

def net_revenue(gross_ntd: Decimal, fee_rate: Amount) -> Decimal:
    """net = gross * (1 - fee_rate); unrounded."""
    return gross_ntd * (1 - _validate_fee_rate(fee_rate))


def average_cpm(gross_ntd: Decimal, impressions: int) -> Decimal:
    """gross / impressions * 1000, or 0 when there were no impressions."""
    if impressions <= 0:
        return ZERO
    return gross_ntd / Decimal(impressions) * CPM_MULTIPLIER


# ===========================================================================
# buildSummary
# ===========================================================================

def build_summary(
    period_records: Iterable[RecordInput],
    fee_rate: Amount,
    totals: Optional[RevenueTotals] = None,
    minimum_payout_ntd: Optional[Amount] = None,
) -> RevenueSummary:
    """
    Summarize the active period's buckets.

    The fee is applied once, to the summed gross, and CPM is the ratio of
    summed gross to summed impressions. Averaging per-bucket CPMs would
    weight a 10-impression day the same as a 10,000-impression day.

    Args:
        period_records:     Buckets of the active period (RevenueRecord or raw dicts)
        fee_rate:           Platform commission in [0, 1]
        totals:             The backend's summary block, if fetched
        minimum_payout_ntd: Payout threshold; enables can_request_payout

    Returns:
        RevenueSummary. Empty input gives an all-zero, non-degraded summary.

    Raises:
        ValueError: If fee_rate is outside [0, 1]
    """
    rate = _validate_fee_rate(fee_rate)
    records = [parse_revenue_record(r) for r in period_records]

    gross = sum((r.gross_revenue_ntd for r in records), ZERO)
    impressions = sum(r.impressions for r in records)
    net = gross * (1 - rate)
    cpm = average_cpm(gross, impressions)

    degraded = any(r.defaulted for r in records)

    total_earnings = net
    last_period = ZERO
    pending = ZERO
    if totals is not None:
        degraded = degraded or totals.defaulted
        if totals.total_earnings_ntd is not None:
            total_earnings = totals.total_earnings_ntd
        last_period = totals.last_period_ntd or ZERO
        pending = totals.pending_payout_ntd or ZERO

    can_request = False
    if minimum_payout_ntd is not None:
        can_request = pending > 0 and pending >= Decimal(str(minimum_payout_ntd))

    summary = RevenueSummary(
        total_earnings_ntd=_to_cents(total_earnings),
        this_period_ntd=_to_cents(net),
        last_period_ntd=_to_cents(last_period),
        pending_payout_ntd=_to_cents(pending),
        gross_revenue_ntd=_to_cents(gross),
        net_revenue_ntd=_to_cents(net),
        total_impressions=impressions,
        average_cpm_ntd=cpm.quantize(CPM_QUANTUM, rounding=ROUND_HALF_UP),
        can_request_payout=can_request,
        degraded=degraded,
    )

    logger.debug(
        f"Summary: {len(records)} buckets, gross={gross}, net={net}, "
        f"impressions={impressions:,}, cpm={summary.average_cpm_ntd}, "
        f"degraded={degraded}"
    )
    return summary


# ===========================================================================
# buildPayoutView
# ===========================================================================

def build_payout_view(
    raw_payouts: Iterable[Any],
    threshold_ntd: Amount,
) -> list[PayoutRecord]:
    """
    Normalize backend payout rows for display.

    For each row:
      1. Amounts are quantized to cents; net is authoritative and gross is
         re-derived as net + fee if the three disagree
      2. Terminal statuses (paid, processing) pass through; anything else
         becomes eligible (net >= threshold) or below_threshold
    Rows are then ordered newest period first. Equal periods keep backend
    order; unparseable period labels go last, also in backend order.

    The input is never mutated and no row is dropped, so the output has the
    same length and the same total net as the input.

    Raises:
        ValueError: If threshold_ntd is negative or not a number
    """
    threshold = _validate_threshold(threshold_ntd)

    records = [parse_payout_row(raw, threshold) for raw in raw_payouts]
    ordered = sorted(records, key=lambda r: period_sort_key(r.period), reverse=True)

    by_status: dict[str, int] = {}
    for r in ordered:
        by_status[r.status.value] = by_status.get(r.status.value, 0) + 1

    logger.info(
        f"Payout view built: {len(ordered)} rows, "
        f"total net={sum((r.net_ntd for r in ordered), ZERO)}, "
        f"statuses={by_status}"
    )
    return ordered


def period_sort_key(label: Optional[str]) -> tuple:
    """Sort key for newest-first ordering; unparseable labels sort lowest."""
    start = period_start(label)
    if start is None:
        return (0, date.min)
    return (1, start)


def period_start(label: Optional[str]) -> Optional[date]:
    """
    First day of the period a label names, or None.

    Accepts 2024, 2024-03, 2024/03, 2024年3月, 2024-03-15, 2024/03/15,
    2024-W11 and 2024W11.
    """
    if not label:
        return None
    text = str(label).strip()
    for pattern, to_date in PERIOD_PATTERNS:
        match = pattern.match(text)
        if match:
            try:
                return to_date(match)
            except ValueError:
                logger.debug(f"Period label out of range: {repr(label)}")
                return None
    return None


# ===========================================================================
# Report assembly (one screen refresh)
# ===========================================================================

def build_report(
    revenue_payload: Optional[Any],
    payouts_payload: Optional[Any],
    period: RevenuePeriod,
    policy: RevenuePolicy,
) -> RevenueReport:
    """
    Build the full report from the two fetched payloads.

    A payload of None means its fetch failed; the report then carries
    revenue_available / payouts_available = False instead of pretending the
    period earned nothing. A payload that arrived but is malformed is read
    with defaulting and marks the report degraded.
    """
    revenue_available = revenue_payload is not None
    payouts_available = payouts_payload is not None

    records: list[RevenueRecord] = []
    totals: Optional[RevenueTotals] = None

    if revenue_available:
        body = revenue_payload if isinstance(revenue_payload, Mapping) else {}
        totals = parse_revenue_totals(body.get("summary"))
        records = _select_period_records(body.get("daily"), totals)

    summary = build_summary(records, policy.fee_rate, totals, policy.minimum_payout_ntd)

    if totals is not None and records:
        _check_reported_net(totals, summary)

    payouts: list[PayoutRecord] = []
    payouts_malformed = False
    if payouts_available:
        raw_payouts = payouts_payload.get("payouts") if isinstance(payouts_payload, Mapping) else None
        if isinstance(raw_payouts, list):
            payouts = build_payout_view(raw_payouts, policy.minimum_payout_ntd)
        else:
            logger.warning("Payouts payload has no 'payouts' list, showing none")
            payouts_malformed = True

    degraded = (
        summary.degraded
        or payouts_malformed
        or any(p.defaulted for p in payouts)
    )

    logger.info(
        f"Report built for period={period.value}: "
        f"net={summary.this_period_ntd}, impressions={summary.total_impressions:,}, "
        f"{len(payouts)} payouts, revenue_available={revenue_available}, "
        f"payouts_available={payouts_available}, degraded={degraded}"
    )

    return RevenueReport(
        period=period,
        summary=summary,
        daily=records,
        payouts=payouts,
        fee_rate=policy.fee_rate,
        minimum_payout_ntd=policy.minimum_payout_ntd,
        revenue_available=revenue_available,
        payouts_available=payouts_available,
        degraded=degraded,
    )


def _select_period_records(daily: Any, totals: RevenueTotals) -> list[RevenueRecord]:
    """
    Buckets for the active period.

    Uses `daily` when it has rows. Otherwise falls back to one record made
    from the summary's grossRevenue / impressions, if the backend sent them.
    """
    if isinstance(daily, list) and daily:
        return [parse_revenue_record(row) for row in daily]

    if totals.reported_gross_ntd is not None:
        logger.debug("No daily buckets, using summary grossRevenue/impressions")
        return [RevenueRecord(
            date=None,
            gross_revenue_ntd=totals.reported_gross_ntd,
            impressions=totals.reported_impressions or 0,
            defaulted=totals.reported_impressions is None,
        )]

    if daily is not None and not isinstance(daily, list):
        logger.warning(f"Revenue payload 'daily' is not a list: {type(daily).__name__}")
        return [RevenueRecord(defaulted=True)]

    return []


def _check_reported_net(totals: RevenueTotals, summary: RevenueSummary) -> None:
    """Warn when the backend's netRevenue disagrees with ours by more than a cent."""
    if totals.reported_net_ntd is None:
        return
    difference = abs(totals.reported_net_ntd - summary.net_revenue_ntd)
    if difference > CENT:
        logger.warning(
            f"Backend netRevenue={totals.reported_net_ntd} differs from computed "
            f"net={summary.net_revenue_ntd} by {difference}; showing computed value"
        )


# ===========================================================================
# Ad slot breakdown
# ===========================================================================

def build_slot_breakdown(raw_slots: Iterable[Any]) -> list[SlotRevenue]:
    """
    One row per ad slot, highest monthly revenue first (stable on ties).

    monthly_impressions / monthly_revenue are optional on a slot; absent
    means no plays yet. A value that is present but unreadable marks the
    row defaulted.
    """
    slots: list[SlotRevenue] = []

    for raw in raw_slots:
        if not isinstance(raw, Mapping):
            slots.append(SlotRevenue(defaulted=True))
            continue

        defaulted = False
        base_cpm, d = _optional_decimal(raw.get("base_cpm_ntd"))
        defaulted |= d
        revenue, d = _optional_decimal(raw.get("monthly_revenue"))
        defaulted |= d
        impressions, d = _optional_int(raw.get("monthly_impressions"))
        defaulted |= d

        slots.append(SlotRevenue(
            id=_optional_str(raw.get("id")),
            display_id=_optional_str(raw.get("display_id")),
            slot_name=str(raw.get("slot_name") or ""),
            is_active=bool(raw.get("is_active")),
            base_cpm_ntd=base_cpm,
            monthly_impressions=impressions,
            monthly_revenue_ntd=_to_cents(revenue),
            effective_cpm_ntd=average_cpm(revenue, impressions).quantize(
                CPM_QUANTUM, rounding=ROUND_HALF_UP
            ),
            defaulted=defaulted,
        ))

    ordered = sorted(slots, key=lambda s: s.monthly_revenue_ntd, reverse=True)
    logger.info(f"Slot breakdown built: {len(ordered)} slots")
    return ordered


# ===========================================================================
# Payload parsing
# ===========================================================================

def parse_revenue_record(raw: Any) -> RevenueRecord:
    """
    Parse one `daily` bucket: {date, impressions, revenue}.

    `revenue` is the bucket's gross. Missing or malformed numbers become 0
    and set defaulted. RevenueRecord instances pass through unchanged.
    """
    if isinstance(raw, RevenueRecord):
        return raw
    if not isinstance(raw, Mapping):
        logger.warning(f"Revenue bucket is not an object: {repr(raw)[:80]}")
        return RevenueRecord(defaulted=True)

    gross, gross_defaulted = _safe_decimal(_first_present(raw, "revenue", "grossRevenue"))
    impressions, impressions_defaulted = _safe_int(raw.get("impressions"))
    defaulted = gross_defaulted or impressions_defaulted

    if defaulted:
        logger.warning(
            f"Revenue bucket {raw.get('date')!r} has missing/malformed fields "
            f"(revenue={'defaulted' if gross_defaulted else 'ok'}, "
            f"impressions={'defaulted' if impressions_defaulted else 'ok'})"
        )

    return RevenueRecord(
        date=_optional_str(raw.get("date")),
        gross_revenue_ntd=gross,
        impressions=impressions,
        defaulted=defaulted,
    )


def parse_revenue_totals(raw: Any) -> RevenueTotals:
    """
    Parse the revenue `summary` block.

    pendingPayout and lastMonthRevenue are expected; missing either marks
    the totals defaulted. totalEarnings, netRevenue, grossRevenue and
    impressions are optional.
    """
    if not isinstance(raw, Mapping):
        logger.warning("Revenue payload has no summary block")
        return RevenueTotals(defaulted=True)

    pending, pending_defaulted = _safe_decimal(raw.get("pendingPayout"))
    last_period, last_defaulted = _safe_decimal(
        _first_present(raw, "lastPeriodRevenue", "lastMonthRevenue")
    )

    total_earnings, total_defaulted = _reported(raw.get("totalEarnings"), _safe_decimal)
    reported_net, net_defaulted = _reported(raw.get("netRevenue"), _safe_decimal)
    reported_gross, gross_defaulted = _reported(raw.get("grossRevenue"), _safe_decimal)
    reported_impressions, impressions_defaulted = _reported(raw.get("impressions"), _safe_int)

    return RevenueTotals(
        total_earnings_ntd=total_earnings,
        last_period_ntd=last_period,
        pending_payout_ntd=pending,
        reported_net_ntd=reported_net,
        reported_gross_ntd=reported_gross,
        reported_impressions=reported_impressions,
        defaulted=(
            pending_defaulted or last_defaulted or total_defaulted
            or net_defaulted or gross_defaulted or impressions_defaulted
        ),
    )


def parse_payout_row(raw: Any, threshold: Decimal) -> PayoutRecord:
    """
    Parse one payout row: {id, period, impressions, gross, fee, net, status, paid_at}.

    Amount reconciliation (all in cents):
      - net missing but gross and fee present → net = gross - fee
      - fee missing but gross and net present → fee = gross - net
      - still inconsistent (or gross missing) → gross = net + fee
    Any missing field, or any reconciliation, marks the row defaulted.
    The legacy `amount` field stands in for `net`.
    """
    if not isinstance(raw, Mapping):
        logger.warning(f"Payout row is not an object: {repr(raw)[:80]}")
        raw = {}

    gross = _cents_or_none(raw.get("gross"))
    fee = _cents_or_none(raw.get("fee"))
    net = _cents_or_none(_first_present(raw, "net", "amount"))
    impressions, impressions_defaulted = _safe_int(raw.get("impressions"))

    defaulted = impressions_defaulted or gross is None or fee is None or net is None

    if net is None and gross is not None and fee is not None and gross >= fee:
        net = gross - fee
    elif fee is None and gross is not None and net is not None and gross >= net:
        fee = gross - net

    net = net if net is not None else ZERO
    fee = fee if fee is not None else ZERO
    if gross is None or gross - fee != net:
        if gross is not None:
            logger.warning(
                f"Payout {raw.get('period')!r}: gross={gross} - fee={fee} != net={net}, "
                f"using gross={net + fee}"
            )
        gross = net + fee
        defaulted = True

    status = _resolve_status(raw.get("status"), net, threshold)

    return PayoutRecord(
        id=_optional_str(raw.get("id")),
        period=str(raw.get("period") or ""),
        impressions=impressions,
        gross_ntd=gross,
        fee_ntd=fee,
        net_ntd=net,
        status=status,
        status_label=status_label(status),
        paid_at=_optional_str(raw.get("paid_at")),
        defaulted=defaulted,
    )


def _resolve_status(raw_status: Any, net: Decimal, threshold: Decimal) -> PayoutStatus:
    normalized = str(raw_status).strip().lower() if raw_status is not None else ""
    status = STATUS_ALIASES.get(normalized)
    if status is None:
        try:
            status = PayoutStatus(normalized)
        except ValueError:
            status = None

    if status in TERMINAL_STATUSES:
        return status
    if net >= threshold:
        return PayoutStatus.ELIGIBLE
    return PayoutStatus.BELOW_THRESHOLD


# ===========================================================================
# Type parsing helpers
# ===========================================================================

def _safe_decimal(value: Any) -> tuple[Decimal, bool]:
    """
    Parse a required non-negative amount.

    Returns (amount, defaulted). Missing, non-numeric, non-finite, boolean,
    negative and above-MAX_AMOUNT values all give (0, True).
    """
    if value is None or isinstance(value, bool):
        return ZERO, True
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return ZERO, True
    if not amount.is_finite() or amount < 0 or amount > MAX_AMOUNT:
        return ZERO, True
    return amount, False


def _optional_decimal(value: Any) -> tuple[Decimal, bool]:
    """Like _safe_decimal, but an absent value is a plain 0."""
    if value is None:
        return ZERO, False
    return _safe_decimal(value)


def _safe_int(value: Any) -> tuple[int, bool]:
    """Parse a required non-negative whole count; fractions are malformed."""
    amount, defaulted = _safe_decimal(value)
    if defaulted:
        return 0, True
    if amount != amount.to_integral_value():
        return 0, True
    return int(amount), False


def _optional_int(value: Any) -> tuple[int, bool]:
    if value is None:
        return 0, False
    return _safe_int(value)


def _reported(value: Any, parse) -> tuple[Any, bool]:
    """Optional field: (None, False) if absent, (None, True) if unreadable."""
    if value is None:
        return None, False
    parsed, defaulted = parse(value)
    if defaulted:
        return None, True
    return parsed, False


def _cents_or_none(value: Any) -> Optional[Decimal]:
    amount, defaulted = _safe_decimal(value)
    if defaulted:
        return None
    return _to_cents(amount)


def _to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _first_present(raw: Mapping, *keys: str) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _validate_fee_rate(fee_rate: Amount) -> Decimal:
    try:
        rate = fee_rate if isinstance(fee_rate, Decimal) else Decimal(str(fee_rate))
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f"fee_rate must be a number, got {fee_rate!r}")
    if fee_rate is None or not rate.is_finite() or rate < 0 or rate > 1:
        raise ValueError(f"fee_rate must be within [0, 1], got {fee_rate!r}")
    return rate


def _validate_threshold(threshold_ntd: Amount) -> Decimal:
    try:
        threshold = threshold_ntd if isinstance(threshold_ntd, Decimal) else Decimal(str(threshold_ntd))
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f"threshold_ntd must be a number, got {threshold_ntd!r}")
    if threshold_ntd is None or not threshold.is_finite() or threshold < 0:
        raise ValueError(f"threshold_ntd must be non-negative, got {threshold_ntd!r}")
    return threshold
