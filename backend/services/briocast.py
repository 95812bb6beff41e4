"""
brioCAST REST API client (revenue, payouts and ad-slot endpoints).

API details:
  Base:     config.BRIOCAST_API_BASE (overridable per Session)
  Auth:     Authorization: Bearer <session token>
  Revenue:  GET /api/ads/revenue?period={day|week|month|year}
  Payouts:  GET /api/ads/payouts
  Slots:    GET /api/ads/slots

The revenue and payouts endpoints are independent, so fetch_revenue_bundle
issues them concurrently. Each has its own deadline and a failure of one
never blocks the other: the failed side comes back as None and the
report builder renders what did arrive.

Retries (per request):
  - 429 and 5xx: wait RETRY_BACKOFF_BASE * attempt seconds, retry
  - network errors: same backoff, RuntimeError once retries run out
  - other 4xx: RuntimeError immediately
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

import config
from models.schemas import RevenueFetchResult, RevenuePeriod, Session

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MAX_RETRIES = 3            # Attempts per request
RETRY_BACKOFF_BASE = 2.0   # Linear backoff base (2s, 4s, 6s)

REVENUE_PATH = "/api/ads/revenue"
PAYOUTS_PATH = "/api/ads/payouts"
SLOTS_PATH = "/api/ads/slots"


# ===========================================================================
# Public API
# ===========================================================================

async def fetch_revenue_bundle(
    session: Session,
    period: RevenuePeriod,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RevenueFetchResult:
    """
    Fetch the revenue summary and payout history concurrently.

    Args:
        session:   Caller's token + API base
        period:    Reporting granularity for the revenue endpoint
        transport: Optional httpx transport (tests inject a MockTransport)

    Returns:
        RevenueFetchResult; a side whose fetch failed or timed out is None
        and its error message is listed in `errors`.
    """
    logger.info(f"Fetching revenue ({period.value}) and payouts from {session.api_base}")

    async with _make_client(session, transport) as client:
        results = await asyncio.gather(
            asyncio.wait_for(fetch_revenue(client, session, period), config.UPSTREAM_DEADLINE),
            asyncio.wait_for(fetch_payouts(client, session), config.UPSTREAM_DEADLINE),
            return_exceptions=True,
        )

    outcome = RevenueFetchResult()
    for name, result in zip(("revenue", "payouts"), results):
        if isinstance(result, BaseException):
            message = f"{name}: {_describe(result)}"
            logger.error(f"Failed to fetch {message}")
            outcome.errors.append(message)
        elif result is None:
            logger.error(f"Failed to fetch {name}: empty body")
            outcome.errors.append(f"{name}: empty body")
        else:
            setattr(outcome, name, result)

    logger.info(
        f"Fetch complete: revenue={'ok' if outcome.revenue is not None else 'failed'}, "
        f"payouts={'ok' if outcome.payouts is not None else 'failed'}"
    )
    return outcome


async def fetch_ad_slot_payload(
    session: Session,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Any:
    """Fetch GET /api/ads/slots. Raises RuntimeError on failure."""
    async with _make_client(session, transport) as client:
        return await asyncio.wait_for(fetch_ad_slots(client, session), config.UPSTREAM_DEADLINE)


async def fetch_revenue(client: httpx.AsyncClient, session: Session, period: RevenuePeriod) -> Any:
    return await _get_json(client, session, REVENUE_PATH, params={"period": period.value})


async def fetch_payouts(client: httpx.AsyncClient, session: Session) -> Any:
    return await _get_json(client, session, PAYOUTS_PATH)


async def fetch_ad_slots(client: httpx.AsyncClient, session: Session) -> Any:
    return await _get_json(client, session, SLOTS_PATH)


# ===========================================================================
# Request with retries
# ===========================================================================

async def _get_json(
    client: httpx.AsyncClient,
    session: Session,
    path: str,
    params: Optional[dict] = None,
) -> Any:
    """
    GET a JSON document with retry logic.

    Raises:
        RuntimeError: non-retryable status, undecodable body, or retries exhausted
    """
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            response = await client.get(path, params=params, headers=session.auth_headers)

            # --- Success ---
            if response.status_code == 200:
                try:
                    return response.json()
                except ValueError as e:
                    raise RuntimeError(f"{path} returned invalid JSON: {e}") from e

            # --- Rate limited (429) or server error (5xx) - retryable ---
            if response.status_code == 429 or response.status_code >= 500:
                wait_time = RETRY_BACKOFF_BASE * attempt
                logger.warning(
                    f"{path} returned {response.status_code}, "
                    f"attempt {attempt}/{MAX_RETRIES}, "
                    f"waiting {wait_time}s..."
                )
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(wait_time)
                continue

            # --- Client error (4xx, not 429) - not retryable ---
            logger.error(f"{path} returned {response.status_code}: {response.text[:300]}")
            raise RuntimeError(
                f"brioCAST API returned {response.status_code} for {path}: {response.text[:200]}"
            )

        except httpx.RequestError as e:
            wait_time = RETRY_BACKOFF_BASE * attempt
            logger.warning(
                f"Network error on {path}, attempt {attempt}/{MAX_RETRIES}: {e}. "
                f"Retrying in {wait_time}s..."
            )
            if attempt < MAX_RETRIES:
                await asyncio.sleep(wait_time)
            else:
                logger.error(f"All {MAX_RETRIES} retries exhausted for {path}")
                raise RuntimeError(
                    f"Failed to fetch {path} after {MAX_RETRIES} retries: {e}"
                ) from e

    logger.error(f"All {MAX_RETRIES} retries exhausted for {path}")
    raise RuntimeError(f"Failed to fetch {path} after {MAX_RETRIES} retries")


# ===========================================================================
# Helpers
# ===========================================================================

def _make_client(
    session: Session,
    transport: Optional[httpx.AsyncBaseTransport],
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=session.api_base,
        timeout=config.UPSTREAM_TIMEOUT,
        transport=transport,
    )


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return f"timed out after {config.UPSTREAM_DEADLINE}s"
    return str(error) or type(error).__name__
