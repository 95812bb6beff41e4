"""
brioCAST revenue service - FastAPI application.

Backend-for-frontend for the app's revenue screens. Every endpoint takes
the caller's `Authorization: Bearer <token>` header, turns it into an
explicit Session and passes it to the upstream client.

  GET /api/revenue?period=month
    1. Validate period
    2. Load revenue sharing policy (fee rate + minimum payout)
    3. Fetch revenue + payouts concurrently (briocast.py)
    4. Build report (revenue.py) and return it with display strings

  GET /api/ad-slots/revenue
    Per-slot revenue breakdown, highest earning slot first.

  POST /api/revenue/export
    Steps 1-4, then write an .xlsx statement (excel_export.py).

  GET /api/download/{filename}
    Serve a generated .xlsx statement from the output directory.

Error handling:
  - Missing / non-Bearer Authorization header → 401
  - Unknown period → 400
  - Revenue sharing not configured → 503
  - Both upstream fetches fail → 502
  - One upstream fetch fails → 200 with that side marked unavailable
  - Statement not found → 404
"""

import os
import logging
from datetime import date
from typing import Optional

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from models.schemas import (
    ExportRequest,
    ExportResponse,
    RevenuePeriod,
    RevenuePolicy,
    RevenueReport,
    Session,
)
import config
from services.briocast import fetch_ad_slot_payload, fetch_revenue_bundle
from services.excel_export import generate_report
from services.formatting import format_report, format_slot
from services.revenue import build_report, build_slot_breakdown, load_revenue_policy

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="brioCAST Revenue Service",
    description="Revenue and payout reporting for brioCAST display owners",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Warn early when revenue sharing terms are missing; requests will 503."""
    try:
        policy = load_revenue_policy()
    except RuntimeError as e:
        logger.error(f"{e}. Revenue endpoints will return 503 until it is set.")
        return
    logger.info(
        f"Revenue policy: fee_rate={policy.fee_rate}, "
        f"minimum_payout_ntd={policy.minimum_payout_ntd}"
    )


# Ensure output directory exists at startup
os.makedirs(config.OUTPUT_DIR, exist_ok=True)


# ===========================================================================
# GET /health
# ===========================================================================

@app.get("/health")
async def health():
    return {"status": "ok"}


# ===========================================================================
# GET /api/revenue - revenue report for one period
# ===========================================================================

@app.get("/api/revenue")
async def get_revenue(
    period: str = RevenuePeriod.MONTH.value,
    authorization: Optional[str] = Header(None),
):
    """
    Revenue summary + payout history for the selected period.

    Returns raw values (money as decimal strings) and a `display` block of
    formatted strings.
    """
    report = await _build_period_report(period, authorization)
    return format_report(report)


# ===========================================================================
# GET /api/ad-slots/revenue - per-slot breakdown
# ===========================================================================

@app.get("/api/ad-slots/revenue")
async def get_slot_revenue(authorization: Optional[str] = Header(None)):
    session = _require_session(authorization)

    try:
        payload = await fetch_ad_slot_payload(session)
    except Exception as e:
        logger.error(f"Failed to fetch ad slots: {e}")
        raise HTTPException(
            status_code=502,
            detail={"status": "error", "message": "Failed to fetch ad slots"},
        )

    raw_slots = payload.get("slots") if isinstance(payload, dict) else None
    degraded = not isinstance(raw_slots, list)
    if degraded:
        logger.warning("Ad slots payload has no 'slots' list")
        raw_slots = []

    slots = build_slot_breakdown(raw_slots)
    return {
        "slots": [format_slot(s) for s in slots],
        "degraded": degraded or any(s.defaulted for s in slots),
    }


# ===========================================================================
# POST /api/revenue/export - .xlsx statement
# ===========================================================================

@app.post("/api/revenue/export", response_model=ExportResponse)
async def export_revenue(
    request: ExportRequest,
    authorization: Optional[str] = Header(None),
):
    report = await _build_period_report(request.period, authorization)

    slots = None
    if request.include_slots:
        slots = await _fetch_slots_for_export(_require_session(authorization))

    filepath = generate_report(report, as_of=date.today(), slots=slots)
    filename = os.path.basename(filepath)
    logger.info(f"Statement saved: {filename}")

    summary = {
        "period": report.period.value,
        "net_revenue": str(report.summary.net_revenue_ntd),
        "total_impressions": report.summary.total_impressions,
        "payout_count": len(report.payouts),
        "degraded": report.degraded,
    }

    return ExportResponse(status="success", filename=filename, summary=summary)


# ===========================================================================
# GET /api/download/{filename} - Serve generated .xlsx files
# ===========================================================================

@app.get("/api/download/{filename}")
async def download_report(filename: str):
    """
    Download a generated .xlsx statement from the output directory.

    Only bare filenames are served; anything with a path component is 404.
    """
    file_path = os.path.join(config.OUTPUT_DIR, filename)

    if os.path.basename(filename) != filename or not os.path.isfile(file_path):
        raise HTTPException(
            status_code=404,
            detail={
                "status": "error",
                "message": f"Statement not found: {filename}",
            },
        )

    return FileResponse(
        file_path,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
        },
    )


# ===========================================================================
# Helpers
# ===========================================================================

async def _build_period_report(period: str, authorization: Optional[str]) -> RevenueReport:
    """Validate → load policy → fetch both endpoints → build the report."""
    revenue_period = _parse_period(period)
    session = _require_session(authorization)
    policy = _require_policy()

    logger.info(f"Revenue report requested: period={revenue_period.value}")

    fetched = await fetch_revenue_bundle(session, revenue_period)

    if fetched.revenue is None and fetched.payouts is None:
        raise HTTPException(
            status_code=502,
            detail={
                "status": "error",
                "message": "Failed to fetch revenue data",
                "errors": fetched.errors,
            },
        )

    return build_report(fetched.revenue, fetched.payouts, revenue_period, policy)


async def _fetch_slots_for_export(session: Session):
    """Slot breakdown for the statement; a failed fetch leaves the tab out."""
    try:
        payload = await fetch_ad_slot_payload(session)
    except Exception as e:
        logger.warning(f"Ad slots unavailable for statement: {e}")
        return None

    raw_slots = payload.get("slots") if isinstance(payload, dict) else None
    if not isinstance(raw_slots, list):
        logger.warning("Ad slots payload has no 'slots' list, leaving the tab out")
        return None
    return build_slot_breakdown(raw_slots)


def _parse_period(period: str) -> RevenuePeriod:
    try:
        return RevenuePeriod(period.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail={
                "status": "error",
                "message": (
                    f"Unknown period '{period}', expected one of "
                    f"{', '.join(p.value for p in RevenuePeriod)}"
                ),
            },
        )


def _require_session(authorization: Optional[str]) -> Session:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=401,
            detail={"status": "error", "message": "Missing bearer token"},
        )
    return Session(token=token.strip(), api_base=config.BRIOCAST_API_BASE)


def _require_policy() -> RevenuePolicy:
    try:
        return load_revenue_policy()
    except RuntimeError as e:
        logger.error(str(e))
        raise HTTPException(
            status_code=503,
            detail={"status": "error", "message": "Revenue sharing is not configured"},
        )


# ===========================================================================
# Main entry point
# ===========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
