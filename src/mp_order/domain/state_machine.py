"""Order lifecycle transition table.

    pending → paid → pickup_scheduled → picked_up → delivery_scheduled
            → delivered → completed
    side branches: disputed, cancelled, refunded

completed / refunded / cancelled are terminal. Leaving ``disputed`` requires
a dispute resolution.
"""

from src.mp_common.enums import OrderStatus
from src.mp_common.errors import InvalidTransitionError

_S = OrderStatus

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    _S.PENDING.value: frozenset({_S.PAID.value, _S.CANCELLED.value}),
    _S.PAID.value: frozenset({_S.PICKUP_SCHEDULED.value, _S.DISPUTED.value, _S.CANCELLED.value}),
    _S.PICKUP_SCHEDULED.value: frozenset({_S.PICKED_UP.value, _S.DISPUTED.value}),
    _S.PICKED_UP.value: frozenset({_S.DELIVERY_SCHEDULED.value, _S.DISPUTED.value}),
    _S.DELIVERY_SCHEDULED.value: frozenset({_S.DELIVERED.value, _S.DISPUTED.value}),
    _S.DELIVERED.value: frozenset({_S.COMPLETED.value, _S.DISPUTED.value}),
    _S.DISPUTED.value: frozenset({_S.COMPLETED.value, _S.REFUNDED.value}),
    _S.COMPLETED.value: frozenset(),
    _S.REFUNDED.value: frozenset(),
    _S.CANCELLED.value: frozenset(),
}

# Statuses in which a dispute can be opened
DISPUTABLE_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if _S.DISPUTED.value in targets
)


def is_allowed(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(
    order_id: str,
    current: str,
    target: str,
    caller: str,
    has_resolution: bool = False,
) -> None:
    """Raise InvalidTransitionError unless ``current → target`` is a legal edge.

    Edges out of ``disputed`` are legal only when a resolution accompanies
    them.
    """
    if not is_allowed(current, target):
        raise InvalidTransitionError(order_id, current, target, caller)
    if current == _S.DISPUTED.value and not has_resolution:
        raise InvalidTransitionError(order_id, current, target, caller)
