"""
Shared test fixtures for the brioCAST revenue service test suite.

The autouse fixture `no_retry_wait` zeroes the upstream client's retry
backoff so retry tests finish instantly. The payload fixtures mirror the
shapes returned by GET /api/ads/revenue, /api/ads/payouts and /api/ads/slots.
"""

import os
import sys
from decimal import Decimal
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from models.schemas import RevenuePolicy


@pytest.fixture(autouse=True)
def no_retry_wait():
    with patch("services.briocast.RETRY_BACKOFF_BASE", 0.0):
        yield


@pytest.fixture
def policy():
    """70/30 split with a 500 NTD minimum."""
    return RevenuePolicy(fee_rate=Decimal("0.30"), minimum_payout_ntd=Decimal("500"))


@pytest.fixture
def configured_policy():
    """Set the revenue sharing env values the service reads."""
    with patch("config.PLATFORM_FEE_RATE", "0.30"), \
         patch("config.MINIMUM_PAYOUT_NTD", "500"):
        yield


@pytest.fixture
def revenue_payload():
    """
    Month view: 2 daily buckets, gross 2,000 over 40,000 impressions.

    At a 30% fee: net 1,400.00, CPM 50.000.
    """
    return {
        "success": True,
        "summary": {
            "netRevenue": 1400.0,
            "grossRevenue": 2000,
            "impressions": 40000,
            "pendingPayout": 1250.5,
            "lastMonthRevenue": 980,
            "totalEarnings": 15230.75,
        },
        "daily": [
            {"date": "2026-10-01", "impressions": 10000, "revenue": 500},
            {"date": "2026-10-02", "impressions": 30000, "revenue": 1500},
        ],
    }


@pytest.fixture
def payouts_payload():
    """Three settlement rows, returned oldest first by the backend."""
    return {
        "payouts": [
            {
                "id": "p1", "period": "2026-08", "impressions": 30000,
                "gross": 1500, "fee": 450, "net": 1050,
                "status": "paid", "paid_at": "2026-09-15",
            },
            {
                "id": "p2", "period": "2026-09", "impressions": 12000,
                "gross": 600, "fee": 180, "net": 420,
                "status": "pending",
            },
            {
                "id": "p3", "period": "2026-10", "impressions": 40000,
                "gross": 2000, "fee": 600, "net": 1400,
                "status": "pending",
            },
        ],
    }


@pytest.fixture
def slots_payload():
    return {
        "success": True,
        "slots": [
            {
                "id": "s2", "display_id": "d1", "slot_name": "Side panel",
                "slot_type": "banner", "position": "right",
                "base_cpm_ntd": 30, "max_duration_seconds": 15, "is_active": 0,
                "created_at": "2026-09-01T00:00:00Z",
            },
            {
                "id": "s1", "display_id": "d1", "slot_name": "Lobby banner",
                "slot_type": "banner", "position": "bottom",
                "base_cpm_ntd": 50, "max_duration_seconds": 15, "is_active": 1,
                "monthly_impressions": 20000, "monthly_revenue": 800,
                "created_at": "2026-08-01T00:00:00Z",
            },
        ],
    }
