"""Tests for XnScore eligibility and advance endpoints."""

from collections.abc import Callable
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from tests.fixtures.synthetic import (
    AUDITOR_KEY,
    ELDER_KEY,
    INTEGRATION_KEY,
    NEWCOMER_KEY,
    NOW,
    auth_headers,
)
from xnscore.audit.sink import InMemoryAuditSink
from xnscore.circles.directory import Circle
from xnscore.service import XnScoreService


@pytest.fixture
def members(service: XnScoreService, seed_elder: Callable[..., str]) -> tuple[str, str]:
    service.register_member("newcomer", "Newcomer", NOW - timedelta(days=20))
    elder = seed_elder()
    service.circles.add(Circle(circle_id="open", max_members=6))
    service.circles.add(Circle(circle_id="premium", max_members=6, min_xn_score=70))
    service.circles.add(
        Circle(
            circle_id="rotation",
            max_members=10,
            members={elder: NOW - timedelta(days=5), "newcomer": NOW - timedelta(days=5)},
        )
    )
    return elder, "newcomer"


def _eligibility(client: TestClient, member_id: str, circle_id: str, key: str = INTEGRATION_KEY):
    return client.get(
        "/v1/eligibility",
        params={"member_id": member_id, "circle_id": circle_id},
        headers=auth_headers(key),
    )


class TestEligibilityEndpoint:
    def test_elder_may_join_premium_circle(
        self, api_client: TestClient, members: tuple[str, str]
    ) -> None:
        elder, _ = members

        response = _eligibility(api_client, elder, "premium")

        assert response.status_code == 200
        body = response.json()
        assert body["eligible"] is True
        assert body["reasons"] == []
        assert body["tier"] == 1
        assert body["score"] > 88

    def test_newcomer_gets_every_failing_reason(
        self, api_client: TestClient, members: tuple[str, str]
    ) -> None:
        _, newcomer = members

        response = _eligibility(api_client, newcomer, "premium", key=NEWCOMER_KEY)

        assert response.status_code == 200
        body = response.json()
        assert body["eligible"] is False
        assert body["reasons"] == ["CRITICAL_TIER", "TIER_BELOW_CIRCLE_MINIMUM"]
        assert body["tier"] == 6

    def test_unknown_circle_is_a_reason_not_an_error(
        self, api_client: TestClient, members: tuple[str, str]
    ) -> None:
        elder, _ = members

        response = _eligibility(api_client, elder, "nope")

        assert response.status_code == 200
        assert response.json()["reasons"] == ["CIRCLE_NOT_FOUND"]

    def test_unknown_member_is_a_reason_not_an_error(
        self, api_client: TestClient, members: tuple[str, str]
    ) -> None:
        response = _eligibility(api_client, "ghost", "open")

        body = response.json()
        assert body["eligible"] is False
        assert body["reasons"] == ["MEMBER_NOT_FOUND"]
        assert body["tier"] is None
        assert body["score"] is None

    def test_member_cannot_query_another_member(
        self, api_client: TestClient, members: tuple[str, str]
    ) -> None:
        elder, _ = members

        response = _eligibility(api_client, elder, "open", key=NEWCOMER_KEY)

        assert response.status_code == 403
        assert response.json()["code"] == "ABAC_DENIED"

    def test_missing_query_parameter(self, api_client: TestClient) -> None:
        response = api_client.get(
            "/v1/eligibility",
            params={"member_id": "elder-1"},
            headers=auth_headers(INTEGRATION_KEY),
        )

        assert response.status_code == 422
        assert response.json()["code"] == "REQUEST_VALIDATION_FAILED"


class TestPayoutSlotEndpoint:
    def _slot(self, client: TestClient, member_id: str, slot: int):
        return client.get(
            "/v1/eligibility/payout-slot",
            params={"member_id": member_id, "circle_id": "rotation", "slot": slot},
            headers=auth_headers(INTEGRATION_KEY),
        )

    def test_elite_takes_first_slot(
        self, api_client: TestClient, members: tuple[str, str]
    ) -> None:
        elder, _ = members

        body = self._slot(api_client, elder, 1).json()

        assert body["eligible"] is True
        assert body["slot"] == 1

    def test_critical_tier_has_no_slot(
        self, api_client: TestClient, members: tuple[str, str]
    ) -> None:
        _, newcomer = members

        body = self._slot(api_client, newcomer, 10).json()

        assert body["eligible"] is False
        assert body["reasons"] == ["SLOT_NOT_ALLOWED_FOR_TIER"]

    def test_slot_outside_circle(self, api_client: TestClient, members: tuple[str, str]) -> None:
        elder, _ = members

        body = self._slot(api_client, elder, 11).json()

        assert body["reasons"] == ["INVALID_SLOT"]


class TestAdvanceEndpoint:
    def test_elder_receives_advance(
        self,
        api_client: TestClient,
        members: tuple[str, str],
        audit_sink: InMemoryAuditSink,
    ) -> None:
        elder, _ = members

        response = api_client.post(
            "/v1/advances", json={"amount": 2000}, headers=auth_headers(ELDER_KEY)
        )

        assert response.status_code == 201
        body = response.json()
        assert body["member_id"] == elder
        assert body["amount"] == 2000.0
        assert body["apr_pct"] == 6.0
        assert body["disbursed_at"] == NOW.isoformat()
        assert audit_sink.actions()[-1] == "advance.disbursed"

    def test_amount_over_tier_limit(
        self, api_client: TestClient, members: tuple[str, str]
    ) -> None:
        response = api_client.post(
            "/v1/advances", json={"amount": 6000}, headers=auth_headers(ELDER_KEY)
        )

        assert response.status_code == 403
        body = response.json()
        assert body["code"] == "ELIGIBILITY_DENIED"
        assert body["details"]["reasons"] == ["ADVANCE_LIMIT_EXCEEDED"]

    def test_newcomer_denied_with_reasons(
        self, api_client: TestClient, members: tuple[str, str], audit_sink: InMemoryAuditSink
    ) -> None:
        response = api_client.post(
            "/v1/advances", json={"amount": 100}, headers=auth_headers(NEWCOMER_KEY)
        )

        assert response.status_code == 403
        assert response.json()["details"]["reasons"] == ["ADVANCE_NOT_AVAILABLE"]
        assert "advance.disbursed" not in audit_sink.actions()

    @pytest.mark.parametrize("amount", [0, -50])
    def test_non_positive_amount_is_rejected(
        self, api_client: TestClient, members: tuple[str, str], amount: int
    ) -> None:
        response = api_client.post(
            "/v1/advances", json={"amount": amount}, headers=auth_headers(ELDER_KEY)
        )

        assert response.status_code == 422
        assert response.json()["details"]["errors"][0]["field"] == "amount"

    def test_auditor_cannot_request(
        self, api_client: TestClient, members: tuple[str, str]
    ) -> None:
        elder, _ = members

        response = api_client.post(
            "/v1/advances",
            json={"amount": 100, "member_id": elder},
            headers=auth_headers(AUDITOR_KEY),
        )

        assert response.status_code == 403
        assert response.json()["code"] == "RBAC_DENIED"
