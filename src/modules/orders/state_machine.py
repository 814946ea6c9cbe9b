"""Order state machine.

``plan_transition`` is pure: given the current status, the requested one
and whether the order's stock is currently reconciled, it decides whether
the move is legal and which inventory action and domain event go with it.
``OrderService.transition`` executes the plan inside one transaction.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Type

from modules.orders.constants import (
    RESERVING_STATES,
    VALID_TRANSITIONS,
    OrderStatus,
)
from modules.orders.events import (
    OrderCancelled,
    OrderConfirmed,
    OrderDelivered,
    OrderLifecycleEvent,
    OrderStatusChanged,
)
from modules.orders.exceptions import InvalidTransition


class InventoryAction(str, enum.Enum):
    NONE = "none"
    RESERVE = "reserve"
    RELEASE = "release"


@dataclass(frozen=True)
class TransitionPlan:
    current: str
    target: str
    inventory_action: InventoryAction
    event_class: Optional[Type[OrderLifecycleEvent]]
    reconciled_after: bool

    @property
    def is_noop(self) -> bool:
        return self.current == self.target


def plan_transition(current: str, target: str, reconciled: bool) -> TransitionPlan:
    """Validate ``current -> target`` and describe its side effects.

    Re-entering the current status is a no-op: no stock change, no event.

    Raises:
        InvalidTransition: *target* is not a known status, or it is not
            reachable from *current*.
    """
    if target not in OrderStatus.values:
        raise InvalidTransition(current, target, f"Unknown order status '{target}'.")

    if current == target:
        return TransitionPlan(
            current=current,
            target=target,
            inventory_action=InventoryAction.NONE,
            event_class=None,
            reconciled_after=reconciled,
        )

    if target not in VALID_TRANSITIONS.get(current, set()):
        raise InvalidTransition(current, target)

    action = InventoryAction.NONE
    if target in RESERVING_STATES and not reconciled:
        action = InventoryAction.RESERVE
    elif target == OrderStatus.CANCELLED and reconciled:
        action = InventoryAction.RELEASE

    if action is InventoryAction.RESERVE:
        reconciled_after = True
    elif action is InventoryAction.RELEASE:
        reconciled_after = False
    else:
        reconciled_after = reconciled

    return TransitionPlan(
        current=current,
        target=target,
        inventory_action=action,
        event_class=_event_for(target),
        reconciled_after=reconciled_after,
    )


def _event_for(target: str) -> Type[OrderLifecycleEvent]:
    if target == OrderStatus.CANCELLED:
        return OrderCancelled
    if target == OrderStatus.DELIVERED:
        return OrderDelivered
    if target == OrderStatus.CONFIRMED:
        return OrderConfirmed
    return OrderStatusChanged
