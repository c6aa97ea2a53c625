from __future__ import annotations

import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Iterable, Mapping

from psycopg import AsyncCursor, errors

from .. import db, metrics
from ..config import settings
from ..logging_context import bind_log_context
from ..repositories import live_classes as live_classes_repo
from ..repositories import payments as payments_repo
from ..repositories import subscriptions as subscriptions_repo
from ..schemas.live_classes import (
    AnalyticsResponse,
    BulkResultItem,
    BulkResultResponse,
    ClassPopularity,
    CourseAccessResponse,
    ExpirationResponse,
    MeetingDetails,
    PaymentListResponse,
    PaymentOrder,
    PaymentRecord,
    PaymentType,
    RegistrationResponse,
    SubscriptionRecord,
    SubscriptionStatus,
    SubscriptionStatusResponse,
    VerifiedSubscriptionResponse,
)
from ..scopes import ClassScope, Scope, scope_for
from . import access
from .errors import (
    InvalidSignature,
    InvalidState,
    NotApproved,
    NotFoundError,
    NotRegistered,
    ValidationError,
)
from .payment_gateway import PaymentGateway
from .transitions import Action, can_apply, ensure_transition, is_terminal

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _minor_units(amount: Any) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _fee(amount: Any) -> Decimal:
    return Decimal(str(amount or 0))


def _major_units(amount_minor: int) -> Decimal:
    return Decimal(amount_minor) / 100


def _receipt(kind: str, class_id: str, user_id: str) -> str:
    stamp = str(int(time.time() * 1000))[-8:]
    return f"lc_{kind}_{class_id[:8]}_{user_id[:8]}_{stamp}"


def _receipt_number(kind: str) -> str:
    return f"LC-{kind}-{secrets.token_hex(4).upper()}"


def _record(row: Mapping[str, Any]) -> SubscriptionRecord:
    return SubscriptionRecord.model_validate(dict(row))


def _has_live_registration(subscription: Mapping[str, Any] | None) -> bool:
    return bool(subscription and subscription["is_registered"] and not is_terminal(dict(subscription)))


class SubscriptionService:
    """
    Drives a subscription through registration, approval, course-fee payment and
    cancellation. Every mutation checks the transition table first; payment
    confirmations write the subscription and its payment row in one transaction.
    """

    def __init__(
        self,
        gateway: PaymentGateway,
        *,
        currency: str | None = None,
        period_days: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.gateway = gateway
        self.currency = currency or settings.payment_currency
        self.period_days = period_days or settings.subscription_period_days
        self._clock = clock

    # ------------------------------------------------------------------ helpers

    async def _load_target(
        self, cur: AsyncCursor, class_id: str, module_id: str | None = None
    ) -> tuple[dict[str, Any], dict[str, Any] | None]:
        live_class = await live_classes_repo.get_live_class_by_id_or_slug(cur, str(class_id))
        if not live_class:
            raise NotFoundError("Live class not found")
        module = None
        if module_id:
            module = await live_classes_repo.get_module(cur, live_class["id"], module_id)
            if not module:
                raise NotFoundError("Module not found")
        return live_class, module

    def _verify(self, order_id: str, payment_id: str, signature: str) -> None:
        if not self.gateway.verify(order_id, payment_id, signature):
            metrics.payment_signature_rejections_total.inc()
            logger.warning(
                "Rejected payment callback with invalid signature",
                extra={"order_id": order_id, "payment_id": payment_id},
            )
            raise InvalidSignature()

    def _registration_fields(self, *, free: bool, payment_id: str | None) -> dict[str, Any]:
        now = self._clock()
        fields: dict[str, Any] = {
            "is_registered": True,
            "registration_payment_id": payment_id,
            "start_date": now,
        }
        if free:
            fields.update(
                status=SubscriptionStatus.active.value,
                is_approved=True,
                has_access_to_links=True,
                end_date=None,
                next_payment_date=None,
            )
        else:
            period_end = now + timedelta(days=self.period_days)
            fields.update(
                status=SubscriptionStatus.pending_approval.value,
                is_approved=False,
                has_access_to_links=False,
                end_date=period_end,
                next_payment_date=period_end,
            )
        return fields

    async def _insert_or_lock(
        self,
        cur: AsyncCursor,
        user_id: str,
        scope: Scope,
        fields: Mapping[str, Any],
    ) -> tuple[dict[str, Any], bool]:
        """
        Insert the scope's row, or lock the row a concurrent request created first.

        The insert runs in a savepoint so a uniqueness conflict leaves the outer
        transaction usable.
        """
        try:
            async with db.savepoint(cur):
                row = await subscriptions_repo.insert_subscription(
                    cur, user_id=user_id, scope=scope, fields=fields
                )
            return row, True
        except errors.UniqueViolation:
            logger.info(
                "Subscription for scope already exists; updating it instead",
                extra={"user_id": user_id, "class_id": scope.class_id, "module_id": scope.module_id},
            )
        existing = await subscriptions_repo.get_subscription_for_scope(
            cur, user_id, scope, for_update=True
        )
        if existing is None:  # pragma: no cover - conflicting row vanished mid-transaction
            raise InvalidState("Subscription changed concurrently; please retry")
        return existing, False

    async def _record_payment(
        self,
        cur: AsyncCursor,
        *,
        subscription: Mapping[str, Any],
        user_id: str,
        payment_type: PaymentType,
        amount: Any,
        order_id: str,
        payment_id: str,
        signature: str,
    ) -> dict[str, Any]:
        kind = "REG" if payment_type is PaymentType.registration else "ACCESS"
        return await payments_repo.insert_payment(
            cur,
            subscription_id=subscription["id"],
            user_id=user_id,
            payment_type=payment_type.value,
            amount=_fee(amount),
            currency=self.currency,
            provider_order_id=order_id,
            provider_payment_id=payment_id,
            provider_signature=signature,
            receipt_number=_receipt_number(kind),
        )

    def _bind_order(
        self,
        order: Mapping[str, Any],
        *,
        user_id: str,
        payment_type: PaymentType,
        live_class: Mapping[str, Any],
        module: Mapping[str, Any] | None = None,
    ) -> int:
        """
        Check that a verified order was created for this user, class, module and
        payment type. Returns the amount the order charged, in minor units.
        """
        notes = order.get("notes") or {}
        expected = {
            "user_id": user_id,
            "live_class_id": str(live_class["id"]),
            "module_id": str(module["id"]) if module else "",
            "payment_type": payment_type.value,
        }
        mismatched = [key for key, value in expected.items() if str(notes.get(key) or "") != value]
        currency = order.get("currency")
        if currency and currency != self.currency:
            mismatched.append("currency")
        if mismatched:
            logger.warning(
                "Payment order does not match the confirmation",
                extra={"order_id": order.get("id"), "mismatched": mismatched},
            )
            raise ValidationError("Payment order does not match this purchase")
        return int(order.get("amount") or 0)

    async def _already_recorded(
        self,
        cur: AsyncCursor,
        payment: Mapping[str, Any],
        *,
        user_id: str,
        scope: Scope,
        payment_type: PaymentType,
    ) -> dict[str, Any]:
        if str(payment["user_id"]) != user_id:
            raise ValidationError("Payment has already been used")
        if str(payment["payment_type"]) != payment_type.value:
            raise ValidationError("Payment was made for a different purchase")
        subscription = await subscriptions_repo.get_subscription(cur, payment["subscription_id"])
        if subscription is None:  # pragma: no cover - cascade keeps these together
            raise NotFoundError("Subscription not found")
        if scope_for(subscription["live_class_id"], subscription["module_id"]) != scope:
            raise ValidationError("Payment was made for a different purchase")
        metrics.payment_duplicate_callbacks_total.inc()
        return subscription

    async def _replay_committed_payment(
        self, payment_id: str, *, user_id: str, scope: Scope, payment_type: PaymentType
    ) -> dict[str, Any]:
        async with db.get_conn() as cur:
            payment = await payments_repo.get_payment_by_provider_id(cur, payment_id)
            if payment is None:
                raise InvalidState("Payment could not be recorded; please retry")
            return await self._already_recorded(
                cur, payment, user_id=user_id, scope=scope, payment_type=payment_type
            )

    def _verified_response(
        self,
        subscription: Mapping[str, Any],
        live_class: Mapping[str, Any],
        module: Mapping[str, Any] | None = None,
    ) -> VerifiedSubscriptionResponse:
        decision = access.resolve(subscription, live_class, module)
        response = VerifiedSubscriptionResponse(
            subscription=_record(subscription),
            can_join_class=decision.can_join_class,
        )
        details = access.meeting_details(decision, module or live_class)
        if details:
            response.meeting_details = MeetingDetails(**details)
        return response

    def _order(self, order: Mapping[str, Any], payment_type: PaymentType) -> PaymentOrder:
        return PaymentOrder(
            order_id=order["id"],
            amount=int(order.get("amount") or 0),
            currency=order.get("currency") or self.currency,
            receipt=order.get("receipt") or "",
            key_id=self.gateway.key_id,
            payment_type=payment_type,
        )

    # ------------------------------------------------------------- registration

    async def initiate_registration(
        self,
        user: Mapping[str, Any],
        class_id: str,
        module_id: str | None = None,
    ) -> RegistrationResponse:
        user_id = str(user["id"])
        async with db.get_conn() as cur:
            live_class, module = await self._load_target(cur, class_id, module_id)
            scope = scope_for(live_class["id"], module["id"] if module else None)
            existing = await subscriptions_repo.get_subscription_for_scope(cur, user_id, scope)

        if _has_live_registration(existing):
            return RegistrationResponse(already_registered=True, subscription=_record(existing))

        if not live_class["is_active"]:
            raise ValidationError("This live class is not available")
        if not live_class["registration_enabled"]:
            raise ValidationError("Registration is closed for this class")

        if module is not None and module["is_free"]:
            subscription = await self.enroll_free(user_id, scope)
            return RegistrationResponse(free_enrollment=True, subscription=_record(subscription))

        fee = _fee(live_class["registration_fee"])
        if fee <= 0:
            raise ValidationError("Registration fee is not configured for this class")

        notes = {
            "user_id": user_id,
            "live_class_id": str(live_class["id"]),
            "module_id": scope.module_id,
            "payment_type": PaymentType.registration.value,
            "previous_subscription_id": str(existing["id"]) if existing else None,
        }
        order = await self.gateway.create_order(
            amount_minor=_minor_units(fee),
            currency=self.currency,
            receipt=_receipt("reg", str(live_class["id"]), user_id),
            notes=notes,
        )
        return RegistrationResponse(order=self._order(order, PaymentType.registration))

    async def confirm_registration(
        self,
        user: Mapping[str, Any],
        *,
        order_id: str,
        payment_id: str,
        signature: str,
        class_id: str,
        module_id: str | None = None,
    ) -> VerifiedSubscriptionResponse:
        self._verify(order_id, payment_id, signature)
        order = await self.gateway.fetch_order(order_id)
        user_id = str(user["id"])
        recorded = False
        try:
            async with db.transaction() as cur:
                live_class, module = await self._load_target(cur, class_id, module_id)
                scope = scope_for(live_class["id"], module["id"] if module else None)
                charged = self._bind_order(
                    order,
                    user_id=user_id,
                    payment_type=PaymentType.registration,
                    live_class=live_class,
                    module=module,
                )
                duplicate = await payments_repo.get_payment_by_provider_id(cur, payment_id)
                if duplicate:
                    subscription = await self._already_recorded(
                        cur,
                        duplicate,
                        user_id=user_id,
                        scope=scope,
                        payment_type=PaymentType.registration,
                    )
                else:
                    if charged != _minor_units(live_class["registration_fee"]):
                        raise ValidationError("Payment amount does not match the registration fee")
                    subscription = await self._apply_registration(
                        cur, user_id, scope, free=bool(module and module["is_free"]), payment_id=payment_id
                    )
                    await self._record_payment(
                        cur,
                        subscription=subscription,
                        user_id=user_id,
                        payment_type=PaymentType.registration,
                        amount=_major_units(charged),
                        order_id=order_id,
                        payment_id=payment_id,
                        signature=signature,
                    )
                    recorded = True
        except errors.UniqueViolation:
            logger.info("Payment %s recorded by a concurrent callback", payment_id)
            async with db.get_conn() as cur:
                live_class, module = await self._load_target(cur, class_id, module_id)
            subscription = await self._replay_committed_payment(
                payment_id,
                user_id=user_id,
                scope=scope_for(live_class["id"], module["id"] if module else None),
                payment_type=PaymentType.registration,
            )

        if recorded:
            metrics.payment_confirmations_total.labels(PaymentType.registration.value).inc()
            logger.info(
                "Registration payment confirmed",
                extra={"subscription_id": str(subscription["id"]), "status": subscription["status"]},
            )
        return self._verified_response(subscription, live_class, module)

    async def _apply_registration(
        self,
        cur: AsyncCursor,
        user_id: str,
        scope: Scope,
        *,
        free: bool,
        payment_id: str,
    ) -> dict[str, Any]:
        fields = self._registration_fields(free=free, payment_id=payment_id)
        existing = await subscriptions_repo.get_subscription_for_scope(
            cur, user_id, scope, for_update=True
        )
        if existing is None:
            existing, created = await self._insert_or_lock(cur, user_id, scope, fields)
            if created:
                metrics.subscription_transitions_total.labels(Action.register.value).inc()
                return existing
        if _has_live_registration(existing):
            # A second verified payment on a live registration is recorded without a transition.
            return existing
        action = Action.enroll_free if free else Action.register
        ensure_transition(action, existing)
        updated = await subscriptions_repo.update_subscription(cur, existing["id"], fields)
        metrics.subscription_transitions_total.labels(action.value).inc()
        return updated

    async def enroll_free(self, user_id: str, scope: Scope) -> dict[str, Any]:
        """Grant a free module without a payment order or payment row."""
        fields = self._registration_fields(free=True, payment_id=None)
        async with db.transaction() as cur:
            existing = await subscriptions_repo.get_subscription_for_scope(
                cur, user_id, scope, for_update=True
            )
            if existing is None:
                existing, created = await self._insert_or_lock(cur, user_id, scope, fields)
                if created:
                    metrics.subscription_transitions_total.labels(Action.enroll_free.value).inc()
                    return existing
            if existing["status"] == SubscriptionStatus.active.value:
                return existing
            ensure_transition(Action.enroll_free, existing)
            updated = await subscriptions_repo.update_subscription(cur, existing["id"], fields)
        metrics.subscription_transitions_total.labels(Action.enroll_free.value).inc()
        return updated

    # ---------------------------------------------------------------- approval

    async def _transition(
        self,
        subscription_id: str,
        action: Action,
        fields: Mapping[str, Any],
        *,
        actor: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        async with db.transaction() as cur:
            subscription = await subscriptions_repo.get_subscription(
                cur, subscription_id, for_update=True
            )
            if subscription is None:
                raise NotFoundError("Subscription not found")
            if actor is not None and not actor.get("is_admin"):
                if str(subscription["user_id"]) != str(actor["id"]):
                    raise NotFoundError("Subscription not found")
            ensure_transition(action, subscription)
            updated = await subscriptions_repo.update_subscription(cur, subscription["id"], fields)
        metrics.subscription_transitions_total.labels(action.value).inc()
        logger.info(
            "Subscription %s: %s -> %s",
            action.value,
            subscription["status"],
            updated["status"],
            extra={"subscription_id": str(subscription["id"])},
        )
        return updated

    async def approve(self, subscription_id: str) -> SubscriptionRecord:
        row = await self._transition(
            subscription_id,
            Action.approve,
            {"status": SubscriptionStatus.active.value, "is_approved": True},
        )
        return _record(row)

    async def reject(self, subscription_id: str) -> SubscriptionRecord:
        row = await self._transition(
            subscription_id,
            Action.reject,
            {
                "status": SubscriptionStatus.rejected.value,
                "is_approved": False,
                "has_access_to_links": False,
                "is_registered": False,
                "registration_payment_id": None,
            },
        )
        return _record(row)

    async def cancel(self, subscription_id: str, actor: Mapping[str, Any]) -> SubscriptionRecord:
        row = await self._transition(
            subscription_id,
            Action.cancel,
            {
                "status": SubscriptionStatus.cancelled.value,
                "is_registered": False,
                "has_access_to_links": False,
                "is_approved": False,
            },
            actor=actor,
        )
        return _record(row)

    # -------------------------------------------------------------- course fee

    async def initiate_course_access(
        self, user: Mapping[str, Any], class_id: str
    ) -> CourseAccessResponse:
        user_id = str(user["id"])
        async with db.get_conn() as cur:
            live_class, _ = await self._load_target(cur, class_id)
            subscription = await subscriptions_repo.get_subscription_for_scope(
                cur, user_id, ClassScope(str(live_class["id"]))
            )

        if not _has_live_registration(subscription):
            raise NotRegistered()
        if not subscription["is_approved"]:
            raise NotApproved()
        if access.resolve(subscription, live_class).has_access_to_links:
            return CourseAccessResponse(already_has_access=True, subscription=_record(subscription))

        fee = _fee(live_class["course_fee"])
        if fee <= 0:
            raise ValidationError("Course fee is not configured for this class")

        order = await self.gateway.create_order(
            amount_minor=_minor_units(fee),
            currency=self.currency,
            receipt=_receipt("access", str(live_class["id"]), user_id),
            notes={
                "user_id": user_id,
                "live_class_id": str(live_class["id"]),
                "payment_type": PaymentType.course_access.value,
                "subscription_id": str(subscription["id"]),
            },
        )
        return CourseAccessResponse(order=self._order(order, PaymentType.course_access))

    async def confirm_course_access(
        self,
        user: Mapping[str, Any],
        *,
        order_id: str,
        payment_id: str,
        signature: str,
        class_id: str,
    ) -> VerifiedSubscriptionResponse:
        self._verify(order_id, payment_id, signature)
        order = await self.gateway.fetch_order(order_id)
        user_id = str(user["id"])
        recorded = False
        try:
            async with db.transaction() as cur:
                live_class, _ = await self._load_target(cur, class_id)
                scope = ClassScope(str(live_class["id"]))
                charged = self._bind_order(
                    order,
                    user_id=user_id,
                    payment_type=PaymentType.course_access,
                    live_class=live_class,
                )
                duplicate = await payments_repo.get_payment_by_provider_id(cur, payment_id)
                if duplicate:
                    subscription = await self._already_recorded(
                        cur,
                        duplicate,
                        user_id=user_id,
                        scope=scope,
                        payment_type=PaymentType.course_access,
                    )
                else:
                    if charged != _minor_units(live_class["course_fee"]):
                        raise ValidationError("Payment amount does not match the course fee")
                    current = await subscriptions_repo.get_subscription_for_scope(
                        cur, user_id, scope, for_update=True
                    )
                    if not _has_live_registration(current):
                        raise NotRegistered()
                    if not current["is_approved"]:
                        raise NotApproved()
                    ensure_transition(Action.pay_course_fee, current)
                    subscription = await subscriptions_repo.update_subscription(
                        cur,
                        current["id"],
                        {
                            "status": SubscriptionStatus.active.value,
                            "is_approved": True,
                            "has_access_to_links": True,
                        },
                    )
                    await self._record_payment(
                        cur,
                        subscription=subscription,
                        user_id=user_id,
                        payment_type=PaymentType.course_access,
                        amount=_major_units(charged),
                        order_id=order_id,
                        payment_id=payment_id,
                        signature=signature,
                    )
                    recorded = True
        except errors.UniqueViolation:
            logger.info("Payment %s recorded by a concurrent callback", payment_id)
            async with db.get_conn() as cur:
                live_class, _ = await self._load_target(cur, class_id)
            subscription = await self._replay_committed_payment(
                payment_id,
                user_id=user_id,
                scope=ClassScope(str(live_class["id"])),
                payment_type=PaymentType.course_access,
            )

        if recorded:
            metrics.payment_confirmations_total.labels(PaymentType.course_access.value).inc()
            metrics.subscription_transitions_total.labels(Action.pay_course_fee.value).inc()
        return self._verified_response(subscription, live_class)

    # ------------------------------------------------------------------- reads

    async def check_subscription(
        self,
        user: Mapping[str, Any],
        class_identifier: str,
        module_id: str | None = None,
    ) -> SubscriptionStatusResponse:
        user_id = str(user["id"])
        async with db.get_conn() as cur:
            live_class, module = await self._load_target(cur, class_identifier, module_id)
            class_scope = ClassScope(str(live_class["id"]))
            class_subscription = await subscriptions_repo.get_subscription_for_scope(
                cur, user_id, class_scope
            )
            subscription = class_subscription
            if module is not None:
                subscription = await subscriptions_repo.get_subscription_for_scope(
                    cur, user_id, scope_for(live_class["id"], module["id"])
                )

        if module is not None and module["is_free"]:
            if subscription is None or subscription["status"] != SubscriptionStatus.active.value:
                subscription = await self.enroll_free(
                    user_id, scope_for(live_class["id"], module["id"])
                )

        if module is not None:
            decision = access.resolve_module(class_subscription, subscription, live_class, module)
        else:
            decision = access.resolve(subscription, live_class)

        details = access.meeting_details(decision, module or live_class)
        can_register = bool(
            live_class["is_active"]
            and live_class["registration_enabled"]
            and not _has_live_registration(subscription)
        )
        return SubscriptionStatusResponse(
            is_subscribed=bool(
                subscription and subscription["status"] == SubscriptionStatus.active.value
            ),
            is_registered=decision.is_registered,
            is_approved=decision.is_approved,
            has_access_to_links=decision.has_access_to_links,
            can_join_class=decision.can_join_class,
            is_on_classroom=bool(live_class["is_on_classroom"]),
            can_register=can_register,
            course_fee_enabled=bool(live_class["course_fee_enabled"]),
            registration_enabled=bool(live_class["registration_enabled"]),
            status=SubscriptionStatus(subscription["status"]) if subscription else None,
            subscription_id=str(subscription["id"]) if subscription else None,
            meeting_details=MeetingDetails(**details) if details else None,
        )

    async def list_my_subscriptions(self, user: Mapping[str, Any]) -> list[dict[str, Any]]:
        user_id = str(user["id"])
        items: list[dict[str, Any]] = []
        async with db.get_conn() as cur:
            rows = await subscriptions_repo.list_user_subscriptions(cur, user_id)
            classes: dict[str, dict[str, Any]] = {}
            for row in rows:
                class_key = str(row["live_class_id"])
                if class_key not in classes:
                    classes[class_key] = await live_classes_repo.get_live_class(
                        cur, row["live_class_id"]
                    )
                live_class = classes[class_key]
                module = None
                if row["module_id"] is not None:
                    module = await live_classes_repo.get_module(
                        cur, row["live_class_id"], row["module_id"]
                    )
                decision = access.resolve(row, live_class, module)
                item: dict[str, Any] = {
                    "subscription": _record(row).model_dump(mode="json"),
                    "live_class": {
                        "id": class_key,
                        "title": live_class["title"],
                        "slug": live_class["slug"],
                        "start_time": live_class["start_time"],
                        "is_on_classroom": bool(live_class["is_on_classroom"]),
                    },
                    "module_title": module["title"] if module else None,
                    "has_access_to_links": decision.has_access_to_links,
                    "can_join_class": decision.can_join_class,
                }
                details = access.meeting_details(decision, module or live_class)
                if details:
                    item["meeting_details"] = details
                items.append(item)
        return items

    # ------------------------------------------------------------ admin views

    async def bulk_approve(self, class_id: str, user_ids: Iterable[str]) -> BulkResultResponse:
        return await self._bulk(
            class_id,
            user_ids,
            action=Action.approve,
            fields={"status": SubscriptionStatus.active.value, "is_approved": True},
            already=lambda sub: sub["status"] == SubscriptionStatus.active.value
            and sub["is_approved"],
        )

    async def remove_access(self, class_id: str, user_ids: Iterable[str]) -> BulkResultResponse:
        return await self._bulk(
            class_id,
            user_ids,
            action=Action.revoke_access,
            fields={
                "status": SubscriptionStatus.pending_approval.value,
                "is_approved": False,
                "has_access_to_links": False,
            },
            already=lambda sub: sub["status"] == SubscriptionStatus.pending_approval.value
            and not sub["is_approved"],
        )

    async def _bulk(
        self,
        class_id: str,
        user_ids: Iterable[str],
        *,
        action: Action,
        fields: Mapping[str, Any],
        already: Callable[[Mapping[str, Any]], bool],
    ) -> BulkResultResponse:
        async with db.get_conn() as cur:
            live_class, _ = await self._load_target(cur, class_id)
        scope = ClassScope(str(live_class["id"]))
        results: list[BulkResultItem] = []
        for user_id in dict.fromkeys(str(value) for value in user_ids):
            async with db.transaction() as cur:
                subscription = await subscriptions_repo.get_subscription_for_scope(
                    cur, user_id, scope, for_update=True
                )
                if subscription is None or not subscription["is_registered"]:
                    results.append(
                        BulkResultItem(user_id=user_id, outcome="failed", detail="Not registered")
                    )
                    continue
                if already(subscription):
                    results.append(BulkResultItem(user_id=user_id, outcome="unchanged"))
                    continue
                if not can_apply(action, subscription):
                    results.append(
                        BulkResultItem(
                            user_id=user_id,
                            outcome="failed",
                            detail=f"Subscription is {subscription['status']}",
                        )
                    )
                    continue
                await subscriptions_repo.update_subscription(cur, subscription["id"], fields)
            metrics.subscription_transitions_total.labels(action.value).inc()
            results.append(BulkResultItem(user_id=user_id, outcome="updated"))

        response = BulkResultResponse(
            processed=len(results),
            succeeded=sum(1 for item in results if item.outcome == "updated"),
            unchanged=sum(1 for item in results if item.outcome == "unchanged"),
            failed=sum(1 for item in results if item.outcome == "failed"),
            results=results,
        )
        with bind_log_context(class_id=str(live_class["id"])):
            logger.info(
                "Bulk %s: %s updated, %s unchanged, %s failed",
                action.value,
                response.succeeded,
                response.unchanged,
                response.failed,
            )
        return response

    async def list_pending_approvals(self) -> list[SubscriptionRecord]:
        async with db.get_conn() as cur:
            rows = await subscriptions_repo.list_subscriptions(
                cur, status=SubscriptionStatus.pending_approval.value
            )
        return [_record(row) for row in rows]

    async def list_subscriptions(self, status: SubscriptionStatus | None = None) -> list[dict[str, Any]]:
        async with db.get_conn() as cur:
            rows = await subscriptions_repo.list_subscriptions(
                cur, status=status.value if status else None
            )
        return [
            {
                **_record(row).model_dump(mode="json"),
                "user_email": row.get("user_email"),
                "live_class_title": row.get("live_class_title"),
            }
            for row in rows
        ]

    async def list_class_registrations(self, class_id: str) -> list[dict[str, Any]]:
        async with db.get_conn() as cur:
            live_class, _ = await self._load_target(cur, class_id)
            rows = await subscriptions_repo.list_class_subscriptions(cur, live_class["id"])
        return [self._admin_row(row, live_class) for row in rows]

    async def list_class_attendees(self, class_id: str) -> list[dict[str, Any]]:
        """Registrants whose effective access lets them into the meeting room."""
        async with db.get_conn() as cur:
            live_class, _ = await self._load_target(cur, class_id)
            rows = await subscriptions_repo.list_class_subscriptions(
                cur,
                live_class["id"],
                statuses=[SubscriptionStatus.active.value],
            )
        return [
            self._admin_row(row, live_class)
            for row in rows
            if row["module_id"] is None and access.resolve(row, live_class).has_access_to_links
        ]

    def _admin_row(self, row: Mapping[str, Any], live_class: Mapping[str, Any]) -> dict[str, Any]:
        decision = access.resolve(row, live_class)
        return {
            **_record(row).model_dump(mode="json"),
            "user_email": row.get("user_email"),
            "user_name": row.get("user_name"),
            "effective_access": decision.has_access_to_links,
        }

    async def list_payments(self, *, page: int, limit: int) -> PaymentListResponse:
        offset = (page - 1) * limit
        async with db.get_conn() as cur:
            rows = await payments_repo.list_payments(cur, limit=limit, offset=offset)
            total = await payments_repo.count_payments(cur)
        return PaymentListResponse(
            items=[PaymentRecord.model_validate(row) for row in rows],
            total=total,
            page=page,
            limit=limit,
        )

    async def analytics(self) -> AnalyticsResponse:
        now = self._clock()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        async with db.get_conn() as cur:
            summary = await payments_repo.revenue_summary(cur, since=month_start)
            recent = await payments_repo.list_payments(cur, limit=5, offset=0)
            popularity = await payments_repo.class_popularity(cur)
        return AnalyticsResponse(
            total_classes=int(summary["total_classes"]),
            active_subscriptions=int(summary["active_subscriptions"]),
            pending_approvals=int(summary["pending_approvals"]),
            total_revenue=_fee(summary["total_revenue"]),
            monthly_revenue=_fee(summary["monthly_revenue"]),
            recent_payments=[PaymentRecord.model_validate(row) for row in recent],
            class_popularity=[
                ClassPopularity(
                    live_class_id=str(row["live_class_id"]),
                    title=row["title"],
                    active_subscriptions=int(row["active_subscriptions"]),
                )
                for row in popularity
            ],
        )

    async def expire_due(self) -> ExpirationResponse:
        """Expire active subscriptions whose paid period has run out."""
        now = self._clock()
        expired: list[str] = []
        async with db.transaction() as cur:
            rows = await subscriptions_repo.list_due_for_expiry(cur, now)
            for row in rows:
                ensure_transition(Action.expire, row)
                await subscriptions_repo.update_subscription(
                    cur,
                    row["id"],
                    {
                        "status": SubscriptionStatus.expired.value,
                        "is_registered": False,
                        "is_approved": False,
                        "has_access_to_links": False,
                    },
                )
                expired.append(str(row["id"]))
        if expired:
            metrics.subscription_transitions_total.labels(Action.expire.value).inc(len(expired))
            logger.info("Expired %s live-class subscriptions", len(expired))
        return ExpirationResponse(expired=len(expired), subscription_ids=expired)


__all__ = ["SubscriptionService"]
