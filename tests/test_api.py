import pytest
import asyncio
from fastapi.testclient import TestClient
from unittest.mock import patch

from main import app, limiter
from engine import reset_engine

client = TestClient(app)


@pytest.fixture(autouse=True)
def reset_state():
    """Reset the shared ledger and rate limits before each test."""
    reset_engine()
    limiter.reset()


def post_action(kind, client_id, tx, amount=None):
    payload = {"type": kind, "client": client_id, "tx": tx}
    if amount is not None:
        payload["amount"] = amount
    return client.post("/actions", json=payload)


def accounts_by_client():
    return {a["client"]: a for a in client.get("/accounts").json()}


class TestBasicActions:
    """Test basic deposit and withdrawal handling."""

    def test_deposit_success(self):
        response = post_action("deposit", 1, 1, "100.50")

        assert response.status_code == 201
        data = response.json()

        assert data["status"] == "applied"
        assert data["transaction"]["tx"] == 1
        assert data["transaction"]["client"] == 1
        assert data["transaction"]["status"] == "succeeded"
        assert data["transaction"]["reason"] is None
        assert "timestamp" in data

    def test_withdrawal_is_stored_negated(self):
        post_action("deposit", 1, 1, "10")
        response = post_action("withdrawal", 1, 2, "4.25")

        assert response.status_code == 201
        assert response.json()["transaction"]["amount"] == "-4.25"
        assert accounts_by_client()[1]["available"] == "5.75"

    def test_insufficient_funds_is_recorded_not_rejected(self):
        response = post_action("withdrawal", 3, 1, "100")

        assert response.status_code == 201
        transaction = response.json()["transaction"]
        assert transaction["status"] == "failed"
        assert transaction["reason"] == "insufficient_funds"

        failed = client.get("/transactions/failed").json()
        assert [t["tx"] for t in failed] == [1]

    def test_type_is_case_insensitive(self):
        response = post_action("DEPOSIT", 1, 1, "1")

        assert response.status_code == 201


class TestStructuralErrors:
    """Test rejected actions."""

    def test_transaction_id_reuse(self):
        post_action("deposit", 1, 1, "5")
        response = post_action("deposit", 1, 1, "5")

        assert response.status_code == 409
        assert response.json()["error_code"] == "TRANSACTION_USED"
        assert accounts_by_client()[1]["available"] == "5"

    def test_missing_transaction(self):
        response = post_action("dispute", 1, 42)

        assert response.status_code == 404
        assert response.json()["error_code"] == "TRANSACTION_MISSING"

    def test_client_mismatch(self):
        post_action("deposit", 1, 1, "5.0")
        response = post_action("dispute", 2, 1)

        assert response.status_code == 409
        assert response.json()["error_code"] == "CLIENT_MISMATCH"

        transaction = client.get("/transactions/1").json()
        assert transaction["status"] == "succeeded"

    def test_missing_amount(self):
        response = post_action("deposit", 1, 1)

        assert response.status_code == 422
        assert response.json()["error_code"] == "NO_AMOUNT"

    @patch('engine.logger')
    def test_rejection_is_logged(self, mock_logger):
        response = post_action("resolve", 1, 999)

        assert response.status_code == 404
        mock_logger.warning.assert_called_once()
        mock_logger.error.assert_not_called()


class TestValidation:
    """Test input validation."""

    @pytest.mark.parametrize("payload", [
        {"type": "transfer", "client": 1, "tx": 1, "amount": "1"},
        {"type": "deposit", "client": 70000, "tx": 1, "amount": "1"},
        {"type": "deposit", "client": 1, "tx": -1, "amount": "1"},
        {"type": "deposit", "client": 1, "tx": 1, "amount": "lots"},
        {"type": "deposit", "client": 1},
    ])
    def test_invalid_payloads(self, payload):
        response = client.post("/actions", json=payload)

        assert response.status_code == 422

    def test_malformed_json(self):
        response = client.post(
            "/actions",
            content="{'invalid': 'json'",
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 422


class TestDisputeScenarios:
    """Test dispute, resolve and chargeback flows over HTTP."""

    def test_dispute_resolve_round_trip(self):
        for args in [("deposit", 1, 1, "1.5"), ("dispute", 1, 1), ("resolve", 1, 1),
                     ("withdrawal", 1, 2, "1.0")]:
            assert post_action(*args).status_code == 201

        account = accounts_by_client()[1]
        assert account == {
            "client": 1,
            "available": "0.5",
            "held": "0",
            "total": "0.5",
            "locked": False,
        }

    def test_chargeback_locks_account(self):
        post_action("deposit", 1, 1, "1.5")
        post_action("dispute", 1, 1)
        chargeback = post_action("chargeback", 1, 1)
        withdrawal = post_action("withdrawal", 1, 2, "1.0")

        assert chargeback.json()["transaction"]["status"] == "cancelled"
        assert withdrawal.json()["transaction"]["reason"] == "locked"

        account = accounts_by_client()[1]
        assert account["locked"] is True
        assert account["total"] == "0"

    def test_unknown_transaction_lookup(self):
        response = client.get("/transactions/7")

        assert response.status_code == 404
        assert response.json()["error_code"] == "TRANSACTION_MISSING"


class TestConcurrency:
    """Test concurrent producers against the shared ledger."""

    @pytest.mark.asyncio
    async def test_concurrent_withdrawals_same_account(self):
        import httpx

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            response = await ac.post("/actions", json={
                "type": "deposit", "client": 1, "tx": 1, "amount": "500"
            })
            assert response.status_code == 201

            tasks = [
                ac.post("/actions", json={
                    "type": "withdrawal", "client": 1, "tx": 100 + i, "amount": "200"
                })
                for i in range(5)
            ]
            results = await asyncio.gather(*tasks)

            assert all(r.status_code == 201 for r in results)
            statuses = [r.json()["transaction"]["status"] for r in results]
            assert statuses.count("succeeded") == 2
            assert statuses.count("failed") == 3

            accounts = (await ac.get("/accounts")).json()
            assert accounts[0]["available"] == "100"

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_ids(self):
        import httpx

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            tasks = [
                ac.post("/actions", json={"type": "deposit", "client": 1, "tx": 1, "amount": "3"})
                for _ in range(10)
            ]
            results = await asyncio.gather(*tasks)

            codes = sorted(r.status_code for r in results)
            assert codes == [201] + [409] * 9


class TestHealthAndUtility:
    """Test health check and utility endpoints."""

    def test_health_check(self):
        post_action("deposit", 1, 1, "1")
        post_action("deposit", 2, 2, "1")
        post_action("deposit", 2, 2, "1")

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()

        assert data["status"] == "healthy"
        assert "timestamp" in data
        assert data["accounts_count"] == 2
        assert data["transactions_processed"] == 2

    def test_root_endpoint(self):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()

        assert "message" in data
        assert "docs" in data
