from __future__ import annotations

from enum import Enum
from typing import Optional

from ..schemas.live_classes import SubscriptionStatus
from .errors import InvalidState


class Action(str, Enum):
    register = "register"
    enroll_free = "enroll_free"
    approve = "approve"
    reject = "reject"
    pay_course_fee = "pay_course_fee"
    cancel = "cancel"
    revoke_access = "revoke_access"
    expire = "expire"


TERMINAL_STATUSES = frozenset(
    {
        SubscriptionStatus.cancelled,
        SubscriptionStatus.rejected,
        SubscriptionStatus.expired,
    }
)

# None stands for "no subscription row yet".
TRANSITIONS: dict[Action, frozenset[Optional[SubscriptionStatus]]] = {
    Action.register: frozenset({None, *TERMINAL_STATUSES}),
    Action.enroll_free: frozenset(
        {
            None,
            *TERMINAL_STATUSES,
            SubscriptionStatus.registered,
            SubscriptionStatus.pending_approval,
        }
    ),
    Action.approve: frozenset({SubscriptionStatus.pending_approval}),
    Action.reject: frozenset({SubscriptionStatus.pending_approval}),
    Action.pay_course_fee: frozenset({SubscriptionStatus.active}),
    Action.cancel: frozenset(
        {
            SubscriptionStatus.active,
            SubscriptionStatus.pending_approval,
            SubscriptionStatus.registered,
        }
    ),
    Action.revoke_access: frozenset({SubscriptionStatus.active}),
    Action.expire: frozenset({SubscriptionStatus.active}),
}


def current_status(subscription: dict | None) -> Optional[SubscriptionStatus]:
    if subscription is None:
        return None
    return SubscriptionStatus(subscription["status"])


def is_terminal(subscription: dict | None) -> bool:
    return current_status(subscription) in TERMINAL_STATUSES


def can_apply(action: Action, subscription: dict | None) -> bool:
    return current_status(subscription) in TRANSITIONS[action]


def ensure_transition(action: Action, subscription: dict | None) -> None:
    status = current_status(subscription)
    if status not in TRANSITIONS[action]:
        label = status.value if status else "none"
        raise InvalidState(f"Cannot {action.value.replace('_', ' ')} a subscription in status {label}")


__all__ = [
    "Action",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "can_apply",
    "current_status",
    "ensure_transition",
    "is_terminal",
]
