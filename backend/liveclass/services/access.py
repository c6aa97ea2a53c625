"""Effective access decisions for live classes.

Everything here is pure: callers pass the rows they already loaded and get a
fresh decision back. Nothing is cached on the subscription because the class
can go on or off air at any time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

CREDENTIAL_FIELDS = ("meeting_link", "meeting_id", "meeting_password", "host_link")


@dataclass(frozen=True)
class AccessDecision:
    is_registered: bool
    is_approved: bool
    has_access_to_links: bool
    can_join_class: bool


def is_fee_gated(live_class: Mapping[str, Any], module: Mapping[str, Any] | None = None) -> bool:
    if not live_class.get("course_fee_enabled"):
        return False
    return not (module is not None and module.get("is_free"))


def resolve(
    subscription: Mapping[str, Any] | None,
    live_class: Mapping[str, Any],
    module: Mapping[str, Any] | None = None,
) -> AccessDecision:
    is_registered = bool(subscription and subscription.get("is_registered"))
    is_approved = bool(subscription and subscription.get("is_approved"))
    if is_fee_gated(live_class, module):
        has_access = bool(subscription and subscription.get("has_access_to_links"))
    else:
        has_access = is_registered
    can_join = has_access and bool(live_class.get("is_on_classroom"))
    return AccessDecision(
        is_registered=is_registered,
        is_approved=is_approved,
        has_access_to_links=has_access,
        can_join_class=can_join,
    )


def resolve_module(
    class_subscription: Mapping[str, Any] | None,
    module_subscription: Mapping[str, Any] | None,
    live_class: Mapping[str, Any],
    module: Mapping[str, Any],
) -> AccessDecision:
    """A class-wide subscription covers every module; otherwise the module's own row decides."""
    class_decision = resolve(class_subscription, live_class)
    if class_decision.has_access_to_links:
        return class_decision
    return resolve(module_subscription, live_class, module)


def meeting_details(
    decision: AccessDecision, source: Mapping[str, Any]
) -> Optional[dict[str, Any]]:
    if not decision.can_join_class or not source.get("meeting_link"):
        return None
    return {
        "link": source.get("meeting_link"),
        "meeting_id": source.get("meeting_id"),
        "password": source.get("meeting_password"),
    }


def without_credentials(row: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in row.items() if key not in CREDENTIAL_FIELDS}


def public_live_class_view(
    live_class: Mapping[str, Any],
    modules: list[Mapping[str, Any]],
    *,
    class_subscription: Mapping[str, Any] | None = None,
    module_subscriptions: Mapping[str, Mapping[str, Any]] | None = None,
) -> dict[str, Any]:
    """
    Serialize a class for a student.

    Credential keys are dropped entirely unless the viewer can join right now;
    the host link is never exposed to students.
    """
    module_subscriptions = module_subscriptions or {}
    decision = resolve(class_subscription, live_class)
    view = without_credentials(live_class)
    details = meeting_details(decision, live_class)
    if details:
        view["meeting_link"] = details["link"]
        view["meeting_id"] = details["meeting_id"]
        view["meeting_password"] = details["password"]
    view["access"] = _decision_dict(decision)

    module_views = []
    for module in modules:
        module_decision = resolve_module(
            class_subscription,
            module_subscriptions.get(str(module["id"])),
            live_class,
            module,
        )
        module_view = without_credentials(module)
        module_details = meeting_details(module_decision, module)
        if module_details:
            module_view["meeting_link"] = module_details["link"]
            module_view["meeting_id"] = module_details["meeting_id"]
            module_view["meeting_password"] = module_details["password"]
        module_view["access"] = _decision_dict(module_decision)
        module_views.append(module_view)
    view["modules"] = module_views
    return view


def _decision_dict(decision: AccessDecision) -> dict[str, bool]:
    return {
        "is_registered": decision.is_registered,
        "is_approved": decision.is_approved,
        "has_access_to_links": decision.has_access_to_links,
        "can_join_class": decision.can_join_class,
    }


__all__ = [
    "AccessDecision",
    "CREDENTIAL_FIELDS",
    "is_fee_gated",
    "meeting_details",
    "public_live_class_view",
    "resolve",
    "resolve_module",
    "without_credentials",
]
