"""Booking statuses, party roles and status derivation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from service_commons.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping

PENDING = "Pending"
NEGOTIATING = "Negotiating"
CONFIRMED = "Confirmed"
PAID = "Paid"
COMPLETED = "Completed"
CANCELLED = "Cancelled"

BOOKING_STATUSES: frozenset[str] = frozenset(
    {PENDING, NEGOTIATING, CONFIRMED, PAID, COMPLETED, CANCELLED}
)
NEGOTIABLE_STATUSES: frozenset[str] = frozenset({PENDING, NEGOTIATING})
# Statuses in which re-agreeing by a party that already agreed is a no-op.
AGREED_STATUSES: frozenset[str] = frozenset({PENDING, NEGOTIATING, CONFIRMED})
NON_CANCELLABLE_STATUSES: frozenset[str] = frozenset({PAID, COMPLETED, CANCELLED})

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "Paid"

FLAG_PENDING = "pending"
FLAG_COMPLETED = "completed"

_ROLE_ALIASES: dict[str, str] = {"user": "client"}


class Role(Enum):
    """A party's side of a booking."""

    CLIENT = "client"
    PROVIDER = "provider"

    @property
    def label(self) -> str:
        """Wire name of the role."""
        return self.value

    @property
    def counterpart(self) -> Role:
        """The other side of the booking."""
        return Role.PROVIDER if self is Role.CLIENT else Role.CLIENT

    @property
    def agreement_field(self) -> str:
        """Booking column holding this role's agreement flag."""
        return _AGREEMENT_FIELDS[self]

    @property
    def id_field(self) -> str:
        """Booking column holding this role's user id."""
        return _ID_FIELDS[self]

    def party_id(self, booking: Mapping[str, Any]) -> str:
        """User id of the party playing this role."""
        party: str = booking[self.id_field]
        return party

    def counterpart_id(self, booking: Mapping[str, Any]) -> str:
        """User id of the party on the other side."""
        return self.counterpart.party_id(booking)

    def has_agreed(self, booking: Mapping[str, Any]) -> bool:
        """Whether this role's agreement flag is set."""
        return bool(booking[self.agreement_field])

    @classmethod
    def parse(cls, value: object) -> Role:
        """
        Parse a wire role name.

        Raises:
            ValidationError: INVALID_ROLE for anything but client/user/provider
        """
        if isinstance(value, str):
            name = _ROLE_ALIASES.get(value.strip().lower(), value.strip().lower())
            for role in cls:
                if role.value == name:
                    return role
        raise ValidationError(
            "INVALID_ROLE",
            "Role must be 'client' or 'provider'",
            {"role": None if value is None else str(value)},
        )

    @classmethod
    def of(cls, booking: Mapping[str, Any], user_id: str) -> Role | None:
        """Role the user plays in the booking, or None for a stranger."""
        for role in cls:
            if role.party_id(booking) == user_id:
                return role
        return None


_AGREEMENT_FIELDS: dict[Role, str] = {
    Role.CLIENT: "agreed_by_client",
    Role.PROVIDER: "agreed_by_provider",
}
_ID_FIELDS: dict[Role, str] = {
    Role.CLIENT: "client_id",
    Role.PROVIDER: "provider_id",
}


def derive_status(booking: Mapping[str, Any]) -> str:
    """
    Compute booking status from the facts stored on the row.

    Priority: cancellation, completion, payment, dual agreement,
    an outstanding proposal, otherwise Pending.
    """
    if booking.get("cancelled_at"):
        return CANCELLED
    if booking.get("completed_at"):
        return COMPLETED
    if booking.get("paid_at"):
        return PAID
    if booking.get("agreed_by_client") and booking.get("agreed_by_provider"):
        return CONFIRMED
    if booking.get("last_proposed_by"):
        return NEGOTIATING
    return PENDING


def with_derived_status(booking: Mapping[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Return the updates extended with the status they imply for the booking."""
    return {**updates, "status": derive_status({**booking, **updates})}


AUDIT_BOOKING_CREATED = "BOOKING_CREATED"
AUDIT_BOOKING_ASSIGNED = "BOOKING_ASSIGNED"
AUDIT_PRICE_UPDATED = "BOOKING_PRICE_UPDATED"
AUDIT_PRICE_AGREED = "BOOKING_PRICE_AGREED"
AUDIT_CONFIRMED = "BOOKING_CONFIRMED"
AUDIT_AGREEMENT_GENERATED = "BOOKING_AGREEMENT_PDF_GENERATED"
AUDIT_CANCELLED = "BOOKING_CANCELLED"
AUDIT_CANCELLED_NOTIFIED = "BOOKING_CANCELLED_NOTIFIED"
AUDIT_PAID = "BOOKING_PAID"


def audit_entry(
    user_id: str | None,
    action: str,
    booking_id: str,
    created_at: str,
    **metadata: Any,
) -> dict[str, Any]:
    """One audit-trail row attributed to a user."""
    return {
        "user_id": user_id,
        "action": action,
        "booking_id": booking_id,
        "metadata": metadata,
        "created_at": created_at,
    }
