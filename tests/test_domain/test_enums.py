"""Tests for domain enumerations."""

from __future__ import annotations

from exchange_sessions.domain.enums import (
    ConfirmationSide,
    EventType,
    ExchangeType,
    PartyRole,
    SessionAction,
    SessionStatus,
)


class TestSessionStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {
            "PENDING_APPROVAL", "ACCEPTED", "AWAITING_CONFIRMATION", "CONFIRMED",
            "IN_PROGRESS", "IN_TRANSIT", "DELIVERED", "DISPUTED",
            "COMPLETED", "CANCELLED", "REJECTED",
        }
        assert {s.value for s in SessionStatus} == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(SessionStatus.ACCEPTED, str)
        assert SessionStatus.ACCEPTED == "ACCEPTED"


class TestVocabulary:
    def test_exchange_types(self) -> None:
        assert {t.value for t in ExchangeType} == {"FX", "SHIPPING"}

    def test_roles_and_sides(self) -> None:
        assert PartyRole.INITIATOR == "initiator"
        assert PartyRole.TAKER == "taker"
        assert ConfirmationSide.SENT == "sent"
        assert ConfirmationSide.RECEIVED == "received"

    def test_actions(self) -> None:
        assert {a.value for a in SessionAction} == {
            "accept", "reject", "cancel", "confirm", "progress", "complete", "dispute",
        }


class TestEventType:
    def test_all_event_types_exist(self) -> None:
        # 4 lifecycle + 3 confirmation + 4 exchange + 2 dispute
        assert len(EventType) == 13

    def test_event_type_is_str_enum(self) -> None:
        assert isinstance(EventType.SESSION_CREATED, str)
