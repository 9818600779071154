"""Promotional pricing state machine.

A subscription's promotional state lives in its Stripe metadata. It is
decoded into one of three explicit states at the boundary, advanced by
``apply_event`` without any I/O, and the resulting effects are executed by
the webhook processor.

    Promotional(used < total) --payment succeeded--> Promotional(used + 1)
    Promotional(used == total - 1) --payment succeeded--> Regular
    any --subscription deleted--> Cancelled

Invoice ids already counted are kept in metadata so a redelivered event
never advances the counter twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from mealplan_billing.services.exceptions import SubscriptionStateError

WEEKS_USED = "promotional_weeks_used"
WEEKS_TOTAL = "promotional_weeks_total"
REGULAR_PRICE_AMOUNT = "regular_price_amount"
COUNTED_INVOICES = "promotional_invoices"
PLAN_TYPE = "plan_type"

PROMOTIONAL_KEYS = (WEEKS_USED, WEEKS_TOTAL, REGULAR_PRICE_AMOUNT, COUNTED_INVOICES)

# Stripe subscription statuses after which nothing is mutated.
TERMINAL_STATUSES = frozenset({"canceled", "incomplete_expired"})


class BillingEventType(str, Enum):
    payment_succeeded = "invoice.payment_succeeded"
    payment_failed = "invoice.payment_failed"
    subscription_deleted = "customer.subscription.deleted"


@dataclass(frozen=True)
class BillingEvent:
    id: str
    type: str
    subscription_id: str | None = None
    invoice_id: str | None = None

    @property
    def recognised(self) -> bool:
        return self.type in {t.value for t in BillingEventType}


# ── States ───────────────────────────────────────────────


@dataclass(frozen=True)
class Promotional:
    used: int
    total: int
    regular_price_amount: int
    counted_invoices: tuple[str, ...] = ()

    @property
    def phase(self) -> str:
        if self.used == self.total - 1:
            return "promotional-final-cycle"
        return "promotional-active"


@dataclass(frozen=True)
class Regular:
    phase: str = "regular"


@dataclass(frozen=True)
class Cancelled:
    phase: str = "cancelled"


SubscriptionState = Promotional | Regular | Cancelled


# ── Effects ──────────────────────────────────────────────


@dataclass(frozen=True)
class UpdateMetadata:
    """Metadata patch. Empty string values delete the key in Stripe."""

    values: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SwitchToRegularPrice:
    """Replace the promotional item price and drop the discount."""

    amount: int


Effect = UpdateMetadata | SwitchToRegularPrice


@dataclass(frozen=True)
class Transition:
    state: SubscriptionState
    effects: tuple[Effect, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.effects)


# ── Encoding ─────────────────────────────────────────────


def _parse_int(metadata: dict[str, str], key: str, subscription_id: str | None) -> int:
    raw = metadata.get(key)
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        raise SubscriptionStateError(
            f"Metadata {key}={raw!r} is not an integer", subscription_id
        ) from None


def decode_state(
    metadata: dict[str, str],
    status: str = "active",
    subscription_id: str | None = None,
) -> SubscriptionState:
    """Decode subscription metadata into an explicit state."""
    if status in TERMINAL_STATUSES:
        return Cancelled()

    present = [k for k in (WEEKS_USED, WEEKS_TOTAL, REGULAR_PRICE_AMOUNT) if metadata.get(k)]
    if not present:
        return Regular()
    if len(present) != 3:
        missing = sorted({WEEKS_USED, WEEKS_TOTAL, REGULAR_PRICE_AMOUNT} - set(present))
        raise SubscriptionStateError(
            f"Promotional metadata incomplete, missing {', '.join(missing)}",
            subscription_id,
        )

    used = _parse_int(metadata, WEEKS_USED, subscription_id)
    total = _parse_int(metadata, WEEKS_TOTAL, subscription_id)
    amount = _parse_int(metadata, REGULAR_PRICE_AMOUNT, subscription_id)
    if total < 1 or not 0 <= used <= total:
        raise SubscriptionStateError(
            f"Promotional counter out of range: used={used} total={total}",
            subscription_id,
        )
    if amount <= 0:
        raise SubscriptionStateError(
            f"Regular price amount must be positive, got {amount}", subscription_id
        )
    counted = tuple(
        i for i in (metadata.get(COUNTED_INVOICES) or "").split(",") if i.strip()
    )
    return Promotional(used=used, total=total, regular_price_amount=amount, counted_invoices=counted)


def initial_metadata(weeks_total: int, regular_price_amount: int) -> dict[str, str]:
    return {
        WEEKS_USED: "0",
        WEEKS_TOTAL: str(weeks_total),
        REGULAR_PRICE_AMOUNT: str(regular_price_amount),
    }


def cleared_metadata() -> dict[str, str]:
    return {key: "" for key in PROMOTIONAL_KEYS}


# ── Transition ───────────────────────────────────────────


def apply_event(state: SubscriptionState, event: BillingEvent) -> Transition:
    """Advance ``state`` by one billing event. Pure: no I/O."""
    if event.type == BillingEventType.subscription_deleted.value:
        return Transition(Cancelled())
    if event.type != BillingEventType.payment_succeeded.value:
        return Transition(state)
    if not isinstance(state, Promotional):
        return Transition(state)
    if not event.invoice_id or event.invoice_id in state.counted_invoices:
        return Transition(state)

    used = state.used + 1
    if used >= state.total:
        return Transition(
            Regular(),
            (
                SwitchToRegularPrice(amount=state.regular_price_amount),
                UpdateMetadata(cleared_metadata()),
            ),
        )

    next_state = Promotional(
        used=used,
        total=state.total,
        regular_price_amount=state.regular_price_amount,
        counted_invoices=state.counted_invoices + (event.invoice_id,),
    )
    return Transition(
        next_state,
        (
            UpdateMetadata(
                {
                    WEEKS_USED: str(used),
                    COUNTED_INVOICES: ",".join(next_state.counted_invoices),
                }
            ),
        ),
    )
