"""
Tariff lifecycle state machine and validity-window arithmetic.
"""

from datetime import date
from typing import Dict, FrozenSet, Optional

from terminal_backend.app.core.exceptions import InvalidStateError
from terminal_backend.app.models.tariff_enums import TariffStatus

ALLOWED_TRANSITIONS: Dict[TariffStatus, FrozenSet[TariffStatus]] = {
    TariffStatus.DRAFT: frozenset({TariffStatus.ACTIVE, TariffStatus.INACTIVE}),
    TariffStatus.ACTIVE: frozenset({TariffStatus.INACTIVE, TariffStatus.EXPIRED, TariffStatus.SUPERSEDED}),
    TariffStatus.INACTIVE: frozenset({TariffStatus.ACTIVE, TariffStatus.EXPIRED}),
    TariffStatus.EXPIRED: frozenset({TariffStatus.SUPERSEDED}),
    TariffStatus.SUPERSEDED: frozenset(),
}


def can_transition(current: TariffStatus, target: TariffStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_status_transition(tariff_code: str, current: TariffStatus, target: TariffStatus) -> None:
    """
    Raise InvalidStateError unless `current -> target` is in the transition table.
    """
    if not can_transition(current, target):
        raise InvalidStateError(
            f"Invalid status transition for tariff {tariff_code} from {current.value} to {target.value}",
            tariff_code=tariff_code,
            details={"from_status": current.value, "to_status": target.value}
        )


def windows_overlap(
    a_start: date,
    a_end: Optional[date],
    b_start: date,
    b_end: Optional[date],
) -> bool:
    """
    Closed-interval intersection test; a missing end date is open-ended.

    a.start <= b.end AND b.start <= a.end
    """
    starts_before_b_ends = b_end is None or a_start <= b_end
    b_starts_before_a_ends = a_end is None or b_start <= a_end
    return starts_before_b_ends and b_starts_before_a_ends


def scope_key(tariff_type, client_id: Optional[str]) -> str:
    """Key of the (type, client scope) an active tariff is exclusive within."""
    return f"{tariff_type.value}:{client_id or '*'}"
