"""HTTP-level tests for the session routes, middleware and health check.

The app runs in-process through httpx's ASGI transport against the per-test
SQLite database; the DB-session, session-factory and settings dependencies
are overridden.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, NoReturn

import httpx
import pytest
import pytest_asyncio

from exchange_sessions.api.deps import (
    get_app_settings,
    get_db_session,
    get_db_session_factory,
)
from exchange_sessions.api.routes import health as health_routes
from exchange_sessions.main import create_app

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from exchange_sessions.config import Settings

pytestmark = pytest.mark.integration

INITIATOR_ID = "owner-amina"
TAKER_ID = "taker-koffi"

FX_BODY = {
    "exchange_type": "FX",
    "initiator_id": INITIATOR_ID,
    "taker_id": TAKER_ID,
    "offer_id": "offer-1",
    "terms": {
        "from_amount": "100",
        "from_currency": "EUR",
        "to_currency": "XOF",
        "to_amount": "65500",
        "rate": "655",
    },
}


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = create_app()

    async def _db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _db_session
    app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[get_app_settings] = lambda: settings

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _create(client: httpx.AsyncClient, body: dict | None = None) -> dict:
    response = await client.post("/api/v1/sessions", json=body or FX_BODY)
    assert response.status_code == 201, response.text
    return response.json()


async def _act(client: httpx.AsyncClient, session_id: str, **payload: Any) -> httpx.Response:
    return await client.post(f"/api/v1/sessions/{session_id}/actions", json=payload)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_fx_session(self, client: httpx.AsyncClient) -> None:
        body = await _create(client)
        assert body["status"] == "PENDING_APPROVAL"
        assert body["status_label"] == "Pending"
        assert body["version"] == 1
        assert body["agreed_terms"]["rate"] == "655"
        assert body["initiator_confirmed"] is False

    @pytest.mark.asyncio
    async def test_create_shipping_session(self, client: httpx.AsyncClient) -> None:
        body = await _create(
            client,
            {
                "exchange_type": "SHIPPING",
                "initiator_id": INITIATOR_ID,
                "taker_id": TAKER_ID,
                "terms": {"description": "Two books", "weight": "1kg"},
            },
        )
        assert body["exchange_type"] == "SHIPPING"
        assert body["agreed_terms"]["description"] == "Two books"

    @pytest.mark.asyncio
    async def test_terms_must_match_type(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/sessions",
            json={**FX_BODY, "exchange_type": "SHIPPING"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_same_currency_is_invalid(self, client: httpx.AsyncClient) -> None:
        terms = {**FX_BODY["terms"], "to_currency": "EUR"}
        response = await client.post("/api/v1/sessions", json={**FX_BODY, "terms": terms})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_is_conflict(self, client: httpx.AsyncClient) -> None:
        await _create(client)
        response = await client.post("/api/v1/sessions", json=FX_BODY)
        assert response.status_code == 409
        assert response.json()["error"] == "DUPLICATE_SESSION"

    @pytest.mark.asyncio
    async def test_self_exchange(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/sessions", json={**FX_BODY, "taker_id": INITIATOR_ID}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "SELF_EXCHANGE"


class TestActions:
    @pytest.mark.asyncio
    async def test_s1_over_http(self, client: httpx.AsyncClient) -> None:
        session_id = (await _create(client))["id"]

        accepted = await _act(client, session_id, action="accept", actor_id=INITIATOR_ID)
        assert accepted.status_code == 200
        detail = accepted.json()
        assert detail["session"]["status"] == "ACCEPTED"
        assert detail["role"] == "initiator"
        assert [a["action"] for a in detail["actions"]] == ["confirm", "cancel"]

        wrong_side = await _act(
            client, session_id, action="confirm", actor_id=INITIATOR_ID, side="received"
        )
        assert wrong_side.status_code == 422
        assert wrong_side.json()["error"] == "INVALID_CONFIRMATION_SIDE"

        await _act(client, session_id, action="confirm", actor_id=INITIATOR_ID, side="sent")
        done = await _act(client, session_id, action="confirm", actor_id=TAKER_ID)
        body = done.json()
        assert body["session"]["status"] == "COMPLETED"
        assert body["actions"] == []
        assert body["progress"]["percent"] == 100

    @pytest.mark.asyncio
    async def test_illegal_action_is_conflict(self, client: httpx.AsyncClient) -> None:
        session_id = (await _create(client))["id"]
        response = await _act(client, session_id, action="complete", actor_id=INITIATOR_ID)
        assert response.status_code == 409
        assert response.json()["error"] == "SESSION_NOT_CONFIRMABLE"

        response = await _act(client, session_id, action="dispute", actor_id=INITIATOR_ID)
        assert response.status_code == 409
        assert response.json()["error"] == "ILLEGAL_TRANSITION"

    @pytest.mark.asyncio
    async def test_forbidden(self, client: httpx.AsyncClient) -> None:
        session_id = (await _create(client))["id"]

        outsider = await _act(client, session_id, action="accept", actor_id="mallory")
        assert outsider.status_code == 403
        assert outsider.json()["error"] == "UNAUTHORIZED"

        wrong_role = await _act(client, session_id, action="accept", actor_id=TAKER_ID)
        assert wrong_role.status_code == 403
        assert wrong_role.json()["error"] == "ACTION_NOT_PERMITTED"

    @pytest.mark.asyncio
    async def test_stale_version_is_retryable(self, client: httpx.AsyncClient) -> None:
        session_id = (await _create(client))["id"]
        await _act(client, session_id, action="accept", actor_id=INITIATOR_ID, expected_version=1)

        response = await _act(
            client, session_id, action="confirm", actor_id=TAKER_ID, expected_version=1
        )
        assert response.status_code == 409
        assert response.json() == {
            "error": "STALE_SESSION_STATE",
            "message": response.json()["message"],
            "retryable": True,
        }

    @pytest.mark.asyncio
    async def test_simultaneous_confirmations_complete_once(
        self, client: httpx.AsyncClient
    ) -> None:
        session_id = (await _create(client))["id"]
        await _act(client, session_id, action="accept", actor_id=INITIATOR_ID)

        responses = await asyncio.gather(
            _act(client, session_id, action="confirm", actor_id=INITIATOR_ID),
            _act(client, session_id, action="confirm", actor_id=TAKER_ID),
        )
        assert [r.status_code for r in responses] == [200, 200], [r.text for r in responses]

        detail = await client.get(
            f"/api/v1/sessions/{session_id}", params={"party_id": TAKER_ID}
        )
        assert detail.json()["session"]["status"] == "COMPLETED"
        events = (await client.get(f"/api/v1/sessions/{session_id}/events")).json()
        assert [e["event_type"] for e in events].count("SESSION_COMPLETED") == 1

    @pytest.mark.asyncio
    async def test_accept_with_amount_and_confirm_with_notes(
        self, client: httpx.AsyncClient
    ) -> None:
        session_id = (await _create(client))["id"]

        accepted = await _act(
            client, session_id, action="accept", actor_id=INITIATOR_ID, accepted_amount="40"
        )
        assert accepted.status_code == 200
        assert accepted.json()["session"]["agreed_terms"]["accepted_amount"] == "40"

        await _act(
            client, session_id, action="confirm", actor_id=TAKER_ID, notes="Cash ready at 5pm"
        )
        events = (await client.get(f"/api/v1/sessions/{session_id}/events")).json()
        assert events[1]["metadata"] == {"role": "initiator", "accepted_amount": "40"}
        assert events[2]["event_type"] == "CONFIRMATION_RECORDED"
        assert events[2]["metadata"]["notes"] == "Cash ready at 5pm"

    @pytest.mark.asyncio
    async def test_accepted_amount_is_validated(self, client: httpx.AsyncClient) -> None:
        session_id = (await _create(client))["id"]

        too_much = await _act(
            client, session_id, action="accept", actor_id=INITIATOR_ID, accepted_amount="500"
        )
        assert too_much.status_code == 422
        assert too_much.json()["error"] == "INVALID_TERMS"

        negative = await _act(
            client, session_id, action="accept", actor_id=INITIATOR_ID, accepted_amount="-1"
        )
        assert negative.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_session(self, client: httpx.AsyncClient) -> None:
        response = await _act(
            client,
            "00000000-0000-0000-0000-000000000000",
            action="accept",
            actor_id=INITIATOR_ID,
        )
        assert response.status_code == 404


class TestReads:
    @pytest.mark.asyncio
    async def test_detail_for_each_party(self, client: httpx.AsyncClient) -> None:
        session_id = (await _create(client))["id"]

        initiator = await client.get(
            f"/api/v1/sessions/{session_id}", params={"party_id": INITIATOR_ID}
        )
        assert initiator.status_code == 200
        body = initiator.json()
        assert body["requires_action"] is True
        assert [a["label"] for a in body["actions"]] == ["Accept", "Decline"]
        assert body["progress"]["step_label"] == "Request Sent"
        assert body["progress"]["total_steps"] == len(body["progress"]["steps"]) == 6

        taker = await client.get(f"/api/v1/sessions/{session_id}", params={"party_id": TAKER_ID})
        assert taker.json()["requires_action"] is False

        outsider = await client.get(
            f"/api/v1/sessions/{session_id}", params={"party_id": "mallory"}
        )
        assert outsider.status_code == 403

    @pytest.mark.asyncio
    async def test_list_with_legacy_status(self, client: httpx.AsyncClient) -> None:
        session_id = (await _create(client))["id"]
        await _act(client, session_id, action="reject", actor_id=INITIATOR_ID)

        declined = await client.get(
            "/api/v1/sessions", params={"party_id": TAKER_ID, "status": "declined"}
        )
        assert declined.status_code == 200
        assert [s["id"] for s in declined.json()["items"]] == [session_id]

        pending = await client.get(
            "/api/v1/sessions", params={"party_id": TAKER_ID, "status": "pending"}
        )
        assert pending.json() == {
            "items": [],
            "page": 1,
            "limit": 20,
            "total": 0,
            "total_pages": 0,
            "has_next": False,
            "has_prev": False,
        }

    @pytest.mark.asyncio
    async def test_list_pages_and_role(self, client: httpx.AsyncClient) -> None:
        for n in range(3):
            await _create(client, {**FX_BODY, "offer_id": f"offer-{n}"})

        first = await client.get(
            "/api/v1/sessions", params={"party_id": TAKER_ID, "page": 1, "limit": 2}
        )
        body = first.json()
        assert len(body["items"]) == 2
        assert body["items"][0]["offer_id"] == "offer-2"
        assert body["total"] == 3
        assert body["total_pages"] == 2
        assert body["has_next"] is True
        assert body["has_prev"] is False

        second = await client.get(
            "/api/v1/sessions", params={"party_id": TAKER_ID, "page": 2, "limit": 2}
        )
        assert [s["offer_id"] for s in second.json()["items"]] == ["offer-0"]
        assert second.json()["has_prev"] is True

        as_initiator = await client.get(
            "/api/v1/sessions", params={"party_id": TAKER_ID, "role": "initiator"}
        )
        assert as_initiator.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_list_limit_is_capped(self, client: httpx.AsyncClient) -> None:
        response = await client.get(
            "/api/v1/sessions", params={"party_id": TAKER_ID, "limit": 101}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_with_unknown_status(self, client: httpx.AsyncClient) -> None:
        response = await client.get(
            "/api/v1/sessions", params={"party_id": TAKER_ID, "status": "teleported"}
        )
        assert response.status_code == 422
        assert response.json()["error"] == "UNKNOWN_STATUS"

    @pytest.mark.asyncio
    async def test_events(self, client: httpx.AsyncClient) -> None:
        session_id = (await _create(client))["id"]
        await _act(client, session_id, action="cancel", actor_id=TAKER_ID, reason="Too slow")

        response = await client.get(f"/api/v1/sessions/{session_id}/events")
        assert response.status_code == 200
        events = response.json()
        assert [e["event_type"] for e in events] == ["SESSION_CREATED", "SESSION_CANCELLED"]
        assert events[1]["metadata"] == {"role": "taker", "reason": "Too slow"}
        assert events[1]["from_status"] == "PENDING_APPROVAL"
        assert events[1]["created_at"].endswith(("Z", "+00:00"))


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(
        self,
        client: httpx.AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(health_routes, "get_session_factory", lambda: session_factory)
        response = await client.get("/health")
        assert response.json() == {"status": "ok", "version": "0.1.0", "database": "healthy"}

    @pytest.mark.asyncio
    async def test_degraded(
        self, client: httpx.AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _unavailable() -> NoReturn:
            raise RuntimeError("connection refused")

        monkeypatch.setattr(health_routes, "get_session_factory", _unavailable)
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "degraded"
        assert "connection refused" in body["database"]

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client: httpx.AsyncClient) -> None:
        response = await client.get(
            "/api/v1/sessions", params={"party_id": TAKER_ID}, headers={"X-Request-ID": "req-42"}
        )
        assert response.headers["X-Request-ID"] == "req-42"
