"""Agreed terms of an exchange session.

The shape depends on the exchange type. Terms are validated once, before the
session is created (see schemas/session.py); the domain trusts them afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from exchange_sessions.domain.enums import ExchangeType


def _decimal_or_none(value: Any) -> Decimal | None:
    return None if value is None else Decimal(str(value))


@dataclass(frozen=True)
class FxTerms:
    """Currency swap terms.

    Attributes:
        from_amount: Amount the initiator hands over, in ``from_currency``.
        to_amount: Amount the taker hands over. Absent when the rate is negotiable.
        from_currency: ISO-4217 code, e.g. "EUR".
        to_currency: ISO-4217 code, e.g. "XOF".
        rate: Agreed rate. Absent when pricing is negotiable.
        is_full_amount: Whether the taker takes the whole offer.
        accepted_amount: Portion of ``from_amount`` the initiator agreed to
            when accepting. Absent when the offer was accepted as proposed.
    """

    from_amount: Decimal
    from_currency: str
    to_currency: str
    to_amount: Decimal | None = None
    rate: Decimal | None = None
    is_full_amount: bool = True
    accepted_amount: Decimal | None = None

    exchange_type = ExchangeType.FX

    def to_dict(self) -> dict:
        """Serialize for storage in the agreed_terms JSON column."""
        return {
            "from_amount": str(self.from_amount),
            "to_amount": None if self.to_amount is None else str(self.to_amount),
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "rate": None if self.rate is None else str(self.rate),
            "is_full_amount": self.is_full_amount,
            "accepted_amount": (
                None if self.accepted_amount is None else str(self.accepted_amount)
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> FxTerms:
        return cls(
            from_amount=Decimal(str(data["from_amount"])),
            to_amount=_decimal_or_none(data.get("to_amount")),
            from_currency=data["from_currency"],
            to_currency=data["to_currency"],
            rate=_decimal_or_none(data.get("rate")),
            is_full_amount=bool(data.get("is_full_amount", True)),
            accepted_amount=_decimal_or_none(data.get("accepted_amount")),
        )


@dataclass(frozen=True)
class ShippingTerms:
    """Peer-carried shipment terms. Free text, no numeric invariants."""

    description: str
    weight: str | None = None
    price: str | None = None

    exchange_type = ExchangeType.SHIPPING

    def to_dict(self) -> dict:
        return {"description": self.description, "weight": self.weight, "price": self.price}

    @classmethod
    def from_dict(cls, data: dict) -> ShippingTerms:
        return cls(
            description=data["description"],
            weight=data.get("weight"),
            price=data.get("price"),
        )


AgreedTerms = FxTerms | ShippingTerms


def terms_from_dict(exchange_type: ExchangeType, data: dict) -> AgreedTerms:
    """Rebuild the terms variant for ``exchange_type`` from its stored form."""
    if ExchangeType(exchange_type) is ExchangeType.FX:
        return FxTerms.from_dict(data)
    return ShippingTerms.from_dict(data)
