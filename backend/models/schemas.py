"""
Pydantic models for the brioCAST revenue service.

Models:
  - RevenuePeriod: reporting granularity requested from the backend
  - PayoutStatus: settlement state of one payout row
  - RevenuePolicy: fee rate + minimum payout for the active deployment
  - Session: caller's auth token + API base, passed explicitly to the fetch layer
  - RevenueRecord: one raw revenue bucket (e.g. one day inside a month)
  - RevenueTotals: the backend's summary block (cumulative, last period, pending)
  - RevenueSummary: derived summary every revenue view renders
  - PayoutRecord: one display-ready settlement row
  - SlotRevenue: per ad-slot revenue row
  - RevenueReport: summary + payouts + availability/degraded flags
  - ExportRequest / ExportResponse: API request/response models
  - RevenueFetchResult: outcome of the parallel upstream fetch

Money is carried as Decimal everywhere. Rounding to cents happens only on
derived outputs, never on the raw buckets before they are summed.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class RevenuePeriod(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    BELOW_THRESHOLD = "below_threshold"
    ELIGIBLE = "eligible"
    PROCESSING = "processing"
    PAID = "paid"


# ---------------------------------------------------------------------------
# RevenuePolicy: revenue sharing terms for one deployment
#
# Both values come from configuration. Deployments disagree on the split
# (60/40 vs 70/30) and on the minimum (500 vs 1000 NTD), so neither is
# given a default here.
# ---------------------------------------------------------------------------
class RevenuePolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    fee_rate: Decimal = Field(ge=0, le=1)
    minimum_payout_ntd: Decimal = Field(ge=0)


# ---------------------------------------------------------------------------
# Session: per-request auth context for upstream calls
# ---------------------------------------------------------------------------
class Session(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    api_base: str

    @property
    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


# ---------------------------------------------------------------------------
# RevenueRecord: one bucket from the `daily` list of GET /api/ads/revenue
#
# defaulted = True when a numeric field was missing or malformed and was
# replaced by 0.
# ---------------------------------------------------------------------------
class RevenueRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: Optional[str] = None
    gross_revenue_ntd: Decimal = Decimal("0")
    impressions: int = 0
    defaulted: bool = False


# ---------------------------------------------------------------------------
# RevenueTotals: the `summary` block of GET /api/ads/revenue
#
# None means "not reported". The reported net/gross/impressions are kept
# only for cross-checking and as a fallback when no buckets are sent.
# ---------------------------------------------------------------------------
class RevenueTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_earnings_ntd: Optional[Decimal] = None
    last_period_ntd: Optional[Decimal] = None
    pending_payout_ntd: Optional[Decimal] = None
    reported_net_ntd: Optional[Decimal] = None
    reported_gross_ntd: Optional[Decimal] = None
    reported_impressions: Optional[int] = None
    defaulted: bool = False


# ---------------------------------------------------------------------------
# RevenueSummary: the figures every revenue view renders
#
# average_cpm_ntd = gross / impressions * 1000 (ratio of totals, 0 when
# impressions == 0). CPM is always against gross, never net.
# ---------------------------------------------------------------------------
class RevenueSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_earnings_ntd: Decimal = Decimal("0")
    this_period_ntd: Decimal = Decimal("0")
    last_period_ntd: Decimal = Decimal("0")
    pending_payout_ntd: Decimal = Decimal("0")
    gross_revenue_ntd: Decimal = Decimal("0")
    net_revenue_ntd: Decimal = Decimal("0")
    total_impressions: int = 0
    average_cpm_ntd: Decimal = Decimal("0")
    can_request_payout: bool = False
    degraded: bool = False


# ---------------------------------------------------------------------------
# PayoutRecord: one settlement row, normalized for display
#
# gross_ntd - fee_ntd == net_ntd holds exactly (all three are cent-quantized).
# ---------------------------------------------------------------------------
class PayoutRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    period: str = ""
    impressions: int = 0
    gross_ntd: Decimal = Decimal("0")
    fee_ntd: Decimal = Decimal("0")
    net_ntd: Decimal = Decimal("0")
    status: PayoutStatus = PayoutStatus.PENDING
    status_label: str = ""
    paid_at: Optional[str] = None
    defaulted: bool = False


# ---------------------------------------------------------------------------
# SlotRevenue: one ad slot from GET /api/ads/slots
# ---------------------------------------------------------------------------
class SlotRevenue(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    display_id: Optional[str] = None
    slot_name: str = ""
    is_active: bool = False
    base_cpm_ntd: Decimal = Decimal("0")
    monthly_impressions: int = 0
    monthly_revenue_ntd: Decimal = Decimal("0")
    effective_cpm_ntd: Decimal = Decimal("0")
    defaulted: bool = False


# ---------------------------------------------------------------------------
# RevenueReport: everything one revenue screen needs
#
# revenue_available / payouts_available are False when the matching fetch
# failed outright, which the shell must render differently from a genuine
# zero-revenue period.
# ---------------------------------------------------------------------------
class RevenueReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    period: RevenuePeriod
    summary: RevenueSummary
    daily: list[RevenueRecord] = []
    payouts: list[PayoutRecord] = []
    fee_rate: Decimal
    minimum_payout_ntd: Decimal
    revenue_available: bool = True
    payouts_available: bool = True
    degraded: bool = False


# ---------------------------------------------------------------------------
# API request / response models
# ---------------------------------------------------------------------------
class ExportRequest(BaseModel):
    period: str = RevenuePeriod.MONTH.value
    include_slots: bool = False


class ExportResponse(BaseModel):
    status: str
    filename: str
    summary: dict


# ---------------------------------------------------------------------------
# RevenueFetchResult: outcome of the parallel revenue + payouts fetch
#
# None on either side means that fetch failed; `errors` says why.
# ---------------------------------------------------------------------------
class RevenueFetchResult(BaseModel):
    revenue: Optional[Any] = None
    payouts: Optional[Any] = None
    errors: list[str] = []
