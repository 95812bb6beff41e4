"""
Tests for main.py - FastAPI endpoints and request wiring.

Tests verify:
  1. GET /api/revenue
     - Happy path: report + display block
     - Missing / malformed Authorization → 401
     - Unknown period → 400
     - Revenue sharing not configured → 503
     - Both upstream fetches fail → 502
     - One fetch fails → 200 with that side unavailable
  2. GET /api/ad-slots/revenue
  3. POST /api/revenue/export
  4. GET /api/download/{filename}

The upstream fetch functions are replaced with AsyncMocks so no request
leaves the process.
"""

import os
import sys
from unittest.mock import AsyncMock, patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from fastapi.testclient import TestClient
from openpyxl import load_workbook

from models.schemas import RevenueFetchResult, RevenuePeriod
from main import app


AUTH = {"Authorization": "Bearer tok-123"}


# ===========================================================================
# Fixtures
# ===========================================================================

@pytest.fixture
def client(configured_policy):
    """FastAPI test client with revenue sharing configured."""
    return TestClient(app)


@pytest.fixture
def output_dir(tmp_path):
    """Override OUTPUT_DIR with a temp directory."""
    with patch("config.OUTPUT_DIR", str(tmp_path)):
        yield str(tmp_path)


@pytest.fixture
def fetched(revenue_payload, payouts_payload):
    return RevenueFetchResult(revenue=revenue_payload, payouts=payouts_payload)


def mock_bundle(result):
    return patch("main.fetch_revenue_bundle", AsyncMock(return_value=result))


# ===========================================================================
# 1. GET /api/revenue
# ===========================================================================

class TestGetRevenue:

    def test_happy_path(self, client, fetched):
        with mock_bundle(fetched) as fetch:
            response = client.get("/api/revenue?period=month", headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert data["summary"]["net_revenue_ntd"] == "1400.00"
        assert data["summary"]["can_request_payout"] is True
        assert data["display"]["summary"]["average_cpm"] == "NT$50.00"
        assert [p["status"] for p in data["payouts"]] == ["eligible", "below_threshold", "paid"]
        assert data["degraded"] is False

        session, period = fetch.call_args[0]
        assert session.token == "tok-123"
        assert session.auth_headers == {"Authorization": "Bearer tok-123"}
        assert period == RevenuePeriod.MONTH

    def test_default_period_is_month(self, client, fetched):
        with mock_bundle(fetched) as fetch:
            response = client.get("/api/revenue", headers=AUTH)
        assert response.status_code == 200
        assert fetch.call_args[0][1] == RevenuePeriod.MONTH

    def test_period_case_insensitive(self, client, fetched):
        with mock_bundle(fetched) as fetch:
            response = client.get("/api/revenue?period=WEEK", headers=AUTH)
        assert response.status_code == 200
        assert response.json()["period"] == "week"
        assert fetch.call_args[0][1] == RevenuePeriod.WEEK

    def test_unknown_period(self, client, fetched):
        with mock_bundle(fetched) as fetch:
            response = client.get("/api/revenue?period=quarter", headers=AUTH)
        assert response.status_code == 400
        assert response.json()["detail"]["status"] == "error"
        assert "quarter" in response.json()["detail"]["message"]
        fetch.assert_not_called()

    @pytest.mark.parametrize("headers", [{}, {"Authorization": "tok-123"}, {"Authorization": "Bearer   "}])
    def test_missing_token(self, client, fetched, headers):
        with mock_bundle(fetched) as fetch:
            response = client.get("/api/revenue", headers=headers)
        assert response.status_code == 401
        fetch.assert_not_called()

    def test_unconfigured_policy(self, fetched):
        client = TestClient(app)
        with patch("config.PLATFORM_FEE_RATE", ""), patch("config.MINIMUM_PAYOUT_NTD", ""):
            with mock_bundle(fetched) as fetch:
                response = client.get("/api/revenue", headers=AUTH)
        assert response.status_code == 503
        assert response.json()["detail"]["message"] == "Revenue sharing is not configured"
        fetch.assert_not_called()

    def test_both_fetches_fail(self, client):
        failed = RevenueFetchResult(errors=["revenue: boom", "payouts: boom"])
        with mock_bundle(failed):
            response = client.get("/api/revenue", headers=AUTH)
        assert response.status_code == 502
        assert response.json()["detail"]["errors"] == ["revenue: boom", "payouts: boom"]

    def test_payouts_fetch_fails(self, client, revenue_payload):
        partial = RevenueFetchResult(revenue=revenue_payload, errors=["payouts: timed out after 45.0s"])
        with mock_bundle(partial):
            response = client.get("/api/revenue", headers=AUTH)
        assert response.status_code == 200
        data = response.json()
        assert data["payouts_available"] is False
        assert data["revenue_available"] is True
        assert data["payouts"] == []
        assert data["summary"]["net_revenue_ntd"] == "1400.00"

    def test_revenue_fetch_fails(self, client, payouts_payload):
        partial = RevenueFetchResult(payouts=payouts_payload, errors=["revenue: boom"])
        with mock_bundle(partial):
            response = client.get("/api/revenue", headers=AUTH)
        data = response.json()
        assert data["revenue_available"] is False
        assert data["summary"]["net_revenue_ntd"] == "0.00"
        assert len(data["payouts"]) == 3


# ===========================================================================
# 2. GET /api/ad-slots/revenue
# ===========================================================================

class TestSlotRevenue:

    def test_happy_path(self, client, slots_payload):
        with patch("main.fetch_ad_slot_payload", AsyncMock(return_value=slots_payload)):
            response = client.get("/api/ad-slots/revenue", headers=AUTH)
        assert response.status_code == 200
        data = response.json()
        assert [s["id"] for s in data["slots"]] == ["s1", "s2"]
        assert data["slots"][0]["display"]["monthly_revenue"] == "NT$800.00/月"
        assert data["degraded"] is False

    def test_upstream_failure(self, client):
        with patch("main.fetch_ad_slot_payload", AsyncMock(side_effect=RuntimeError("boom"))):
            response = client.get("/api/ad-slots/revenue", headers=AUTH)
        assert response.status_code == 502

    def test_payload_without_slots(self, client):
        with patch("main.fetch_ad_slot_payload", AsyncMock(return_value={"success": False})):
            response = client.get("/api/ad-slots/revenue", headers=AUTH)
        assert response.status_code == 200
        assert response.json() == {"slots": [], "degraded": True}

    def test_requires_token(self, client):
        response = client.get("/api/ad-slots/revenue")
        assert response.status_code == 401


# ===========================================================================
# 3. POST /api/revenue/export
# ===========================================================================

class TestExport:

    def test_export(self, client, fetched, output_dir):
        with mock_bundle(fetched):
            response = client.post("/api/revenue/export", json={"period": "month"}, headers=AUTH)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        assert data["filename"].startswith("brioCAST Revenue Statement month ")
        assert data["summary"] == {
            "period": "month",
            "net_revenue": "1400.00",
            "total_impressions": 40000,
            "payout_count": 3,
            "degraded": False,
        }

        wb = load_workbook(os.path.join(output_dir, data["filename"]))
        assert wb.sheetnames == ["Summary", "Daily", "Payouts"]

    def test_export_with_slots(self, client, fetched, slots_payload, output_dir):
        with mock_bundle(fetched), \
             patch("main.fetch_ad_slot_payload", AsyncMock(return_value=slots_payload)):
            response = client.post(
                "/api/revenue/export",
                json={"period": "month", "include_slots": True},
                headers=AUTH,
            )
        wb = load_workbook(os.path.join(output_dir, response.json()["filename"]))
        assert "Ad Slots" in wb.sheetnames

    def test_slot_failure_leaves_tab_out(self, client, fetched, output_dir):
        with mock_bundle(fetched), \
             patch("main.fetch_ad_slot_payload", AsyncMock(side_effect=RuntimeError("boom"))):
            response = client.post(
                "/api/revenue/export",
                json={"period": "month", "include_slots": True},
                headers=AUTH,
            )
        assert response.status_code == 200
        wb = load_workbook(os.path.join(output_dir, response.json()["filename"]))
        assert "Ad Slots" not in wb.sheetnames

    def test_unknown_period(self, client, fetched, output_dir):
        with mock_bundle(fetched):
            response = client.post("/api/revenue/export", json={"period": "decade"}, headers=AUTH)
        assert response.status_code == 400
        assert os.listdir(output_dir) == []


# ===========================================================================
# 4. GET /api/download/{filename}
# ===========================================================================

class TestDownload:

    def test_download_existing(self, client, fetched, output_dir):
        with mock_bundle(fetched):
            filename = client.post("/api/revenue/export", json={}, headers=AUTH).json()["filename"]

        response = client.get(f"/api/download/{filename}")
        assert response.status_code == 200
        assert "spreadsheetml" in response.headers["content-type"]
        assert filename in response.headers["content-disposition"]

    def test_missing_file(self, client, output_dir):
        response = client.get("/api/download/nope.xlsx")
        assert response.status_code == 404
        assert response.json()["detail"]["status"] == "error"


class TestHealth:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}
