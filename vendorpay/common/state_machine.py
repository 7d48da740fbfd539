"""Payout record state machine enforced by the payout processor."""

PROCESSING = "processing"
IN_TRANSIT = "in_transit"
PAID = "paid"
FAILED = "failed"
RECONCILIATION_REQUIRED = "reconciliation_required"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PROCESSING: {PAID, IN_TRANSIT, FAILED, RECONCILIATION_REQUIRED},
    IN_TRANSIT: {PAID, FAILED},
    # Money may have moved; only an operator (resume or abandon) leaves this state.
    RECONCILIATION_REQUIRED: {PAID, IN_TRANSIT, FAILED},
    PAID: set(),
    FAILED: set(),
}

TERMINAL_STATES = frozenset({PAID, FAILED})


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
