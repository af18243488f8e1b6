"""
API Tests

Integration tests for the transaction risk engine API.
"""

import pytest
from httpx import AsyncClient

from risk_engine.config import settings
from risk_engine.schemas import ManualReviewEntry, ReviewPriority, Transaction


async def seed_review(api_container, transaction_payload, priority=ReviewPriority.HIGH) -> ManualReviewEntry:
    """Queue a review for the sample transaction without scoring it."""
    await api_container.transactions.upsert(Transaction(**transaction_payload))
    return await api_container.reviews.create(ManualReviewEntry(
        transaction_id=transaction_payload["id"],
        risk_score=72,
        priority=priority,
    ))


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_returns_status(self, api_client: AsyncClient):
        """Test health endpoint returns status."""
        response = await api_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["policy_version"] == "1.0.0"

    @pytest.mark.asyncio
    async def test_metrics_exposed(self, api_client: AsyncClient):
        """Prometheus text format is served."""
        response = await api_client.get("/metrics")

        assert response.status_code == 200
        assert "risk_requests_total" in response.text

    @pytest.mark.asyncio
    async def test_metrics_can_be_disabled(self, api_client: AsyncClient, monkeypatch):
        """METRICS_ENABLED=false hides the endpoint."""
        monkeypatch.setattr(settings, "metrics_enabled", False)

        response = await api_client.get("/metrics")

        assert response.status_code == 404


class TestAnalyzeEndpoint:
    """Tests for transaction scoring."""

    @pytest.mark.asyncio
    async def test_low_risk_transaction(self, api_client: AsyncClient, transaction_payload):
        """An established customer on a known network scores LOW."""
        response = await api_client.post("/analyze-transaction", json=transaction_payload)

        assert response.status_code == 200
        data = response.json()
        assert data["transaction_id"] == "txn_api_1"
        assert data["risk_level"] == "low"
        assert data["risk_score"] < 30
        assert data["should_block"] is False
        assert len(data["risk_factors"]) == 7
        assert "PROCEED_NORMALLY" in data["recommendation"]["actions"]
        assert data["policy_version"] == "1.0.0"

    @pytest.mark.asyncio
    async def test_invalid_payload(self, api_client: AsyncClient, transaction_payload):
        """Negative amounts are rejected by validation."""
        transaction_payload["amount"] = -1

        response = await api_client.post("/analyze-transaction", json=transaction_payload)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_user_still_scored(self, api_client: AsyncClient, transaction_payload):
        """Missing history is a signal, not an error."""
        transaction_payload["id"] = "txn_api_new_user"
        transaction_payload["user_id"] = "user_unknown"

        response = await api_client.post("/analyze-transaction", json=transaction_payload)

        assert response.status_code == 200
        factors = {f["factor"]: f for f in response.json()["risk_factors"]}
        assert factors["user_history"]["score"] == 50

    @pytest.mark.asyncio
    async def test_get_analysis(self, api_client: AsyncClient, transaction_payload):
        """The latest analysis can be fetched by transaction id."""
        created = (await api_client.post("/analyze-transaction", json=transaction_payload)).json()

        response = await api_client.get("/analysis/txn_api_1")

        assert response.status_code == 200
        assert response.json()["analysis_id"] == created["analysis_id"]

    @pytest.mark.asyncio
    async def test_get_analysis_not_found(self, api_client: AsyncClient):
        """Unknown transactions return 404."""
        response = await api_client.get("/analysis/txn_missing")

        assert response.status_code == 404


class TestReportEndpoint:
    """Tests for the fraud report."""

    @pytest.mark.asyncio
    async def test_report(self, api_client: AsyncClient, transaction_payload):
        """Analyses inside the window are counted."""
        await api_client.post("/analyze-transaction", json=transaction_payload)

        response = await api_client.get("/report", params={"window": "7d"})

        assert response.status_code == 200
        data = response.json()
        assert data["timeframe"] == "7d"
        assert data["total_analyses"] == 1
        assert data["risk_distribution"]["low"] == 1
        assert set(data["risk_distribution"]) == {"low", "medium", "high", "critical"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("window", ["0d", "366d", "week"])
    async def test_invalid_window(self, api_client: AsyncClient, window):
        """Bad windows are a 400."""
        response = await api_client.get("/report", params={"window": window})

        assert response.status_code == 400


class TestManualReviewEndpoints:
    """Tests for the review queue and decisions."""

    @pytest.mark.asyncio
    async def test_queue_lists_pending(self, api_client: AsyncClient, api_container, transaction_payload):
        """Pending entries come back with their transaction."""
        entry = await seed_review(api_container, transaction_payload)

        response = await api_client.get("/manual-review-queue")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        item = data["items"][0]
        assert item["entry"]["id"] == entry.id
        assert item["transaction"]["amount"] == 150.0

    @pytest.mark.asyncio
    async def test_queue_filters_priority(self, api_client: AsyncClient, api_container, transaction_payload):
        """Priority filter narrows the queue."""
        await seed_review(api_container, transaction_payload, priority=ReviewPriority.LOW)

        response = await api_client.get("/manual-review-queue", params={"priority": "critical"})

        assert response.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_queue_rejects_large_limit(self, api_client: AsyncClient):
        """limit is capped at 100."""
        response = await api_client.get("/manual-review-queue", params={"limit": 500})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_decision_flow(self, api_client: AsyncClient, api_container, transaction_payload):
        """Approve once (200), then again (409)."""
        entry = await seed_review(api_container, transaction_payload)
        url = f"/manual-review/{entry.id}/decision"

        first = await api_client.post(url, json={"decision": "approve", "reviewer_id": "analyst_1"})
        second = await api_client.post(url, json={"decision": "reject", "reviewer_id": "analyst_2"})

        assert first.status_code == 200
        assert first.json()["entry"]["status"] == "approved"
        assert first.json()["transaction_status"] == "approved"
        assert second.status_code == 409

    @pytest.mark.asyncio
    async def test_invalid_decision(self, api_client: AsyncClient, api_container, transaction_payload):
        """Unknown decisions are a 400 and leave the entry pending."""
        entry = await seed_review(api_container, transaction_payload)

        response = await api_client.post(
            f"/manual-review/{entry.id}/decision",
            json={"decision": "escalate", "reviewer_id": "analyst_1"},
        )

        assert response.status_code == 400
        assert (await api_container.reviews.get(entry.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_unknown_entry(self, api_client: AsyncClient):
        """Unknown entries are a 404."""
        response = await api_client.post(
            "/manual-review/missing/decision",
            json={"decision": "approve", "reviewer_id": "analyst_1"},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_escalate_nothing_stale(self, api_client: AsyncClient, api_container, transaction_payload):
        """Fresh entries are not escalated."""
        await seed_review(api_container, transaction_payload)

        response = await api_client.post("/manual-review/escalate")

        assert response.status_code == 200
        assert response.json() == []


class TestSettingsEndpoints:
    """Tests for the risk policy endpoints."""

    @pytest.mark.asyncio
    async def test_get_settings(self, api_client: AsyncClient):
        """The active policy is returned."""
        response = await api_client.get("/settings")

        assert response.status_code == 200
        data = response.json()
        assert data["thresholds"] == {"low": 30, "medium": 60, "high": 80, "critical": 90}
        assert data["weights"]["payment"] == 0.25

    @pytest.mark.asyncio
    async def test_update_settings(self, api_client: AsyncClient, policy_manager):
        """Valid thresholds bump the PATCH version."""
        response = await api_client.put("/settings", json={
            "thresholds": {"low": 25, "medium": 55, "high": 75, "critical": 85},
        })

        assert response.status_code == 200
        assert response.json()["version"] == "1.0.1"
        assert policy_manager.policy.thresholds.critical == 85

    @pytest.mark.asyncio
    async def test_update_settings_rejects_unordered_thresholds(self, api_client: AsyncClient, policy_manager):
        """Non-increasing thresholds are a 400 and change nothing."""
        response = await api_client.put("/settings", json={
            "thresholds": {"low": 60, "medium": 60, "high": 80, "critical": 90},
        })

        assert response.status_code == 400
        assert policy_manager.version == "1.0.0"

    @pytest.mark.asyncio
    async def test_reload_without_file(self, api_client: AsyncClient):
        """A manager without a policy file cannot reload."""
        response = await api_client.post("/settings/reload")

        assert response.status_code == 500


class TestAuth:
    """Tests for token auth."""

    @pytest.mark.asyncio
    async def test_api_token_required(self, api_client: AsyncClient, transaction_payload, monkeypatch):
        """A configured API token must be presented."""
        monkeypatch.setattr(settings, "api_token", "secret")

        missing = await api_client.post("/analyze-transaction", json=transaction_payload)
        wrong = await api_client.get("/analysis/txn_api_1", headers={"X-API-Key": "nope"})
        bearer = await api_client.get("/analysis/txn_api_1", headers={"Authorization": "Bearer secret"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert bearer.status_code == 404

    @pytest.mark.asyncio
    async def test_admin_token_guards_settings(self, api_client: AsyncClient, monkeypatch):
        """Policy updates need the admin token, not the API token."""
        monkeypatch.setattr(settings, "api_token", "secret")
        monkeypatch.setattr(settings, "admin_token", "admin-secret")
        body = {"description": "tuned"}

        with_api = await api_client.put("/settings", json=body, headers={"X-API-Key": "secret"})
        with_admin = await api_client.put("/settings", json=body, headers={"X-API-Key": "admin-secret"})

        assert with_api.status_code == 401
        assert with_admin.status_code == 200

    @pytest.mark.asyncio
    async def test_health_is_open(self, api_client: AsyncClient, monkeypatch):
        """Health checks need no token."""
        monkeypatch.setattr(settings, "api_token", "secret")

        response = await api_client.get("/health")

        assert response.status_code == 200
