"""In-memory stand-ins for the database, payment gateway and meeting provider."""

from __future__ import annotations

import copy
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping

from psycopg import errors

from liveclass import db
from liveclass.auth import create_access_token
from liveclass.repositories import live_classes as live_classes_repo
from liveclass.repositories import payments as payments_repo
from liveclass.repositories import subscriptions as subscriptions_repo
from liveclass.services.errors import ProvisioningError, ValidationError
from liveclass.services.meetings import MeetingCredentials
from liveclass.services.payment_gateway import compute_signature, verify_signature

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "rzp_test_secret_value"

_CLASS_DEFAULTS: dict[str, Any] = {
    "description": None,
    "author": None,
    "thumbnail_url": None,
    "end_time": None,
    "registration_fee": Decimal("0"),
    "course_fee": Decimal("0"),
    "course_fee_enabled": True,
    "registration_enabled": True,
    "has_modules": False,
    "is_first_module_free": False,
    "is_active": True,
    "is_on_classroom": False,
    "capacity": None,
    "meeting_link": None,
    "meeting_id": None,
    "meeting_password": None,
    "host_link": None,
}

_SUBSCRIPTION_DEFAULTS: dict[str, Any] = {
    "is_registered": False,
    "is_approved": False,
    "has_access_to_links": False,
    "start_date": None,
    "end_date": None,
    "next_payment_date": None,
    "registration_payment_id": None,
}

_CREDENTIAL_COLUMNS = ("meeting_link", "meeting_id", "meeting_password", "host_link")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_uuid(value: Any) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def sign(order_id: str, payment_id: str) -> str:
    return compute_signature(order_id, payment_id, TEST_KEY_SECRET)


def bearer(user: Mapping[str, Any]) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(str(user['id']))}"}


class InMemoryStore:
    """
    Replaces every repository function with a dict-backed version.

    ``db.transaction``/``db.get_conn``/``db.savepoint`` snapshot the tables on
    entry and restore them when the block raises, like a rolled-back
    transaction. Uniqueness of subscription scopes, provider payment ids and
    slugs is enforced with ``UniqueViolation``.
    """

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.classes: dict[str, dict[str, Any]] = {}
        self.modules: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.payments: dict[str, dict[str, Any]] = {}
        self.commits = 0
        self.rollbacks = 0

    # ----------------------------------------------------------------- wiring

    def install(self, monkeypatch) -> "InMemoryStore":
        monkeypatch.setattr(db, "get_conn", self.unit_of_work)
        monkeypatch.setattr(db, "transaction", self.unit_of_work)
        monkeypatch.setattr(db, "savepoint", self.savepoint)
        for module in (live_classes_repo, subscriptions_repo, payments_repo):
            for name in dir(module):
                if name.startswith("_"):
                    continue
                if callable(getattr(module, name)) and hasattr(self, name):
                    monkeypatch.setattr(module, name, getattr(self, name))
        return self

    def _snapshot(self) -> tuple:
        return copy.deepcopy(
            (self.users, self.classes, self.modules, self.subscriptions, self.payments)
        )

    def _restore(self, snapshot: tuple) -> None:
        (
            self.users,
            self.classes,
            self.modules,
            self.subscriptions,
            self.payments,
        ) = snapshot

    @asynccontextmanager
    async def unit_of_work(self):
        snapshot = self._snapshot()
        try:
            yield self
        except BaseException:
            self._restore(snapshot)
            self.rollbacks += 1
            raise
        self.commits += 1

    @asynccontextmanager
    async def savepoint(self, cur):
        snapshot = self._snapshot()
        try:
            yield cur
        except BaseException:
            self._restore(snapshot)
            raise

    # ----------------------------------------------------------------- seeding

    def add_user(self, *, is_admin: bool = False, email: str | None = None) -> dict[str, Any]:
        user_id = str(uuid.uuid4())
        user = {
            "id": user_id,
            "email": email or f"user_{user_id[:8]}@example.com",
            "full_name": "Test User",
            "is_admin": is_admin,
        }
        self.users[user_id] = user
        return dict(user)

    def add_class(self, **fields: Any) -> dict[str, Any]:
        fields.setdefault("title", "Evening Yoga")
        fields.setdefault("start_time", _now() + timedelta(days=1))
        fields.setdefault("slug", f"class-{uuid.uuid4().hex[:8]}")
        row = self._new_class(fields, created_by=None)
        return dict(row)

    def add_module(self, class_id: str, **fields: Any) -> dict[str, Any]:
        position = fields.pop("position", None) or (
            1 + sum(1 for row in self.modules.values() if row["live_class_id"] == class_id)
        )
        row = {
            "id": str(uuid.uuid4()),
            "live_class_id": class_id,
            "title": fields.pop("title", f"Module {position}"),
            "description": None,
            "start_time": None,
            "end_time": None,
            "position": position,
            "is_free": False,
            **{column: None for column in _CREDENTIAL_COLUMNS},
            "created_at": _now(),
            "updated_at": _now(),
        }
        row.update(fields)
        self.modules[row["id"]] = row
        self.classes[class_id]["has_modules"] = True
        return dict(row)

    def add_subscription(self, user_id: str, class_id: str, **fields: Any) -> dict[str, Any]:
        module_id = fields.pop("module_id", None)
        row = self._new_subscription(user_id, class_id, module_id, fields)
        return dict(row)

    def class_row(self, class_id: str) -> dict[str, Any]:
        return self.classes[str(class_id)]

    def subscription_row(self, subscription_id: str) -> dict[str, Any]:
        return self.subscriptions[str(subscription_id)]

    # --------------------------------------------------------------- internals

    def _new_class(self, fields: Mapping[str, Any], *, created_by: str | None) -> dict[str, Any]:
        slug = fields["slug"]
        if any(row["slug"] == slug for row in self.classes.values()):
            raise errors.UniqueViolation("duplicate key value violates unique constraint")
        row = {"id": str(uuid.uuid4()), **_CLASS_DEFAULTS}
        row.update(fields)
        row.update(created_by=created_by, created_at=_now(), updated_at=_now())
        self.classes[row["id"]] = row
        return row

    def _new_subscription(
        self,
        user_id: str,
        class_id: str,
        module_id: str | None,
        fields: Mapping[str, Any],
    ) -> dict[str, Any]:
        key = (str(user_id), str(class_id), None if module_id is None else str(module_id))
        for row in self.subscriptions.values():
            if (row["user_id"], row["live_class_id"], row["module_id"]) == key:
                raise errors.UniqueViolation("duplicate key value violates unique constraint")
        row = {
            "id": str(uuid.uuid4()),
            "user_id": key[0],
            "live_class_id": key[1],
            "module_id": key[2],
            "status": "REGISTERED",
            **_SUBSCRIPTION_DEFAULTS,
        }
        row.update(fields)
        row.update(created_at=_now(), updated_at=_now())
        self.subscriptions[row["id"]] = row
        return row

    def _class_modules(self, class_id: Any) -> list[dict[str, Any]]:
        rows = [row for row in self.modules.values() if row["live_class_id"] == str(class_id)]
        return sorted(rows, key=lambda row: row["position"])

    # ---------------------------------------------------- live class functions

    async def get_live_class(self, cur, class_id, *, for_update: bool = False):
        if not _is_uuid(class_id):
            return None
        row = self.classes.get(str(class_id))
        return dict(row) if row else None

    async def get_live_class_by_id_or_slug(self, cur, identifier):
        row = await self.get_live_class(cur, identifier)
        if row:
            return row
        for candidate in self.classes.values():
            if candidate["slug"] == identifier:
                return dict(candidate)
        return None

    async def slug_exists(self, cur, slug):
        return any(row["slug"] == slug for row in self.classes.values())

    async def list_live_classes(self, cur, *, active_only: bool = True):
        rows = [
            dict(row) for row in self.classes.values() if row["is_active"] or not active_only
        ]
        return sorted(rows, key=lambda row: row["start_time"])

    async def insert_live_class(self, cur, fields, *, created_by):
        return dict(self._new_class(dict(fields), created_by=created_by))

    async def update_live_class(self, cur, class_id, fields):
        row = self.classes.get(str(class_id))
        if row is None:
            return None
        row.update(fields)
        row["updated_at"] = _now()
        return dict(row)

    async def set_class_live(self, cur, class_id, credentials):
        row = self.classes.get(str(class_id))
        if row is None:
            return None
        row["is_on_classroom"] = True
        for column in _CREDENTIAL_COLUMNS:
            row[column] = credentials.get(column)
        return dict(row)

    async def clear_class_live(self, cur, class_id):
        row = self.classes.get(str(class_id))
        if row is None:
            return None
        row["is_on_classroom"] = False
        for column in _CREDENTIAL_COLUMNS:
            row[column] = None
        return dict(row)

    async def delete_live_class(self, cur, class_id):
        key = str(class_id)
        if self.classes.pop(key, None) is None:
            return False
        self.modules = {k: v for k, v in self.modules.items() if v["live_class_id"] != key}
        doomed = {k for k, v in self.subscriptions.items() if v["live_class_id"] == key}
        self.subscriptions = {k: v for k, v in self.subscriptions.items() if k not in doomed}
        self.payments = {
            k: v for k, v in self.payments.items() if v["subscription_id"] not in doomed
        }
        return True

    async def list_modules(self, cur, class_id):
        return [dict(row) for row in self._class_modules(class_id)]

    async def get_module(self, cur, class_id, module_id):
        if not _is_uuid(module_id):
            return None
        row = self.modules.get(str(module_id))
        if row is None or row["live_class_id"] != str(class_id):
            return None
        return dict(row)

    async def insert_module(
        self, cur, class_id, *, title, description, start_time, end_time, position, is_free
    ):
        row = self.add_module(
            str(class_id),
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            position=position,
            is_free=is_free,
        )
        return row

    async def update_module(
        self, cur, module_id, *, title, description, start_time, end_time, is_free
    ):
        row = self.modules.get(str(module_id))
        if row is None:
            return None
        row.update(
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            is_free=is_free,
            updated_at=_now(),
        )
        return dict(row)

    async def delete_modules_after(self, cur, class_id, position):
        doomed = {
            row["id"]
            for row in self._class_modules(class_id)
            if row["position"] > position
        }
        self.modules = {k: v for k, v in self.modules.items() if k not in doomed}
        self.subscriptions = {
            k: v for k, v in self.subscriptions.items() if v["module_id"] not in doomed
        }
        return len(doomed)

    async def set_module_credentials(self, cur, module_id, credentials):
        row = self.modules[str(module_id)]
        for column in _CREDENTIAL_COLUMNS:
            row[column] = credentials.get(column)

    async def clear_module_credentials(self, cur, class_id):
        rows = self._class_modules(class_id)
        for row in rows:
            for column in _CREDENTIAL_COLUMNS:
                row[column] = None
        return len(rows)

    # -------------------------------------------------- subscription functions

    async def get_subscription(self, cur, subscription_id, *, for_update: bool = False):
        row = self.subscriptions.get(str(subscription_id))
        return dict(row) if row else None

    async def get_subscription_for_scope(self, cur, user_id, scope, *, for_update: bool = False):
        key = (str(user_id), scope.class_id, scope.module_id)
        for row in self.subscriptions.values():
            if (row["user_id"], row["live_class_id"], row["module_id"]) == key:
                return dict(row)
        return None

    async def insert_subscription(self, cur, *, user_id, scope, fields):
        return dict(self._new_subscription(user_id, scope.class_id, scope.module_id, fields))

    async def update_subscription(self, cur, subscription_id, fields):
        row = self.subscriptions.get(str(subscription_id))
        if row is None:
            return None
        row.update(fields)
        row["updated_at"] = _now()
        return dict(row)

    async def list_user_subscriptions(self, cur, user_id):
        rows = []
        for row in self.subscriptions.values():
            if row["user_id"] != str(user_id):
                continue
            live_class = self.classes[row["live_class_id"]]
            rows.append(
                {
                    **row,
                    "live_class_title": live_class["title"],
                    "live_class_slug": live_class["slug"],
                }
            )
        return rows

    async def list_user_class_subscriptions(self, cur, user_id, class_id):
        return [
            dict(row)
            for row in self.subscriptions.values()
            if row["user_id"] == str(user_id) and row["live_class_id"] == str(class_id)
        ]

    async def list_class_subscriptions(
        self,
        cur,
        class_id,
        *,
        statuses: Iterable[str] | None = None,
        has_access_to_links: bool | None = None,
    ):
        wanted = set(statuses) if statuses is not None else None
        rows = []
        for row in self.subscriptions.values():
            if row["live_class_id"] != str(class_id):
                continue
            if wanted is not None and row["status"] not in wanted:
                continue
            if has_access_to_links is not None and row["has_access_to_links"] != has_access_to_links:
                continue
            user = self.users.get(row["user_id"], {})
            rows.append(
                {**row, "user_email": user.get("email"), "user_name": user.get("full_name")}
            )
        return rows

    async def list_subscriptions(self, cur, *, status: str | None = None):
        rows = []
        for row in self.subscriptions.values():
            if status and row["status"] != status:
                continue
            user = self.users.get(row["user_id"], {})
            rows.append(
                {
                    **row,
                    "user_email": user.get("email"),
                    "live_class_title": self.classes[row["live_class_id"]]["title"],
                }
            )
        return rows

    async def list_due_for_expiry(self, cur, now):
        return [
            dict(row)
            for row in self.subscriptions.values()
            if row["status"] == "ACTIVE"
            and row["next_payment_date"] is not None
            and row["next_payment_date"] <= now
        ]

    # ------------------------------------------------------- payment functions

    async def get_payment_by_provider_id(self, cur, provider_payment_id):
        for row in self.payments.values():
            if row["provider_payment_id"] == provider_payment_id:
                return dict(row)
        return None

    async def insert_payment(
        self,
        cur,
        *,
        subscription_id,
        user_id,
        payment_type,
        amount,
        currency,
        provider_order_id,
        provider_payment_id,
        provider_signature,
        receipt_number,
    ):
        for row in self.payments.values():
            if (
                row["provider_payment_id"] == provider_payment_id
                or row["receipt_number"] == receipt_number
            ):
                raise errors.UniqueViolation("duplicate key value violates unique constraint")
        row = {
            "id": str(uuid.uuid4()),
            "subscription_id": str(subscription_id),
            "user_id": str(user_id),
            "payment_type": payment_type,
            "amount": Decimal(amount),
            "currency": currency,
            "provider_order_id": provider_order_id,
            "provider_payment_id": provider_payment_id,
            "provider_signature": provider_signature,
            "receipt_number": receipt_number,
            "status": "COMPLETED",
            "created_at": _now(),
        }
        self.payments[row["id"]] = row
        return dict(row)

    def _payment_view(self, row: Mapping[str, Any]) -> dict[str, Any]:
        subscription = self.subscriptions[row["subscription_id"]]
        return {
            **row,
            "user_email": self.users.get(row["user_id"], {}).get("email"),
            "live_class_title": self.classes[subscription["live_class_id"]]["title"],
        }

    async def list_payments(self, cur, *, limit, offset):
        rows = sorted(self.payments.values(), key=lambda row: row["created_at"], reverse=True)
        return [self._payment_view(row) for row in rows[offset : offset + limit]]

    async def count_payments(self, cur):
        return len(self.payments)

    async def revenue_summary(self, cur, *, since):
        completed = [row for row in self.payments.values() if row["status"] == "COMPLETED"]
        return {
            "total_classes": len(self.classes),
            "active_subscriptions": sum(
                1 for row in self.subscriptions.values() if row["status"] == "ACTIVE"
            ),
            "pending_approvals": sum(
                1 for row in self.subscriptions.values() if row["status"] == "PENDING_APPROVAL"
            ),
            "total_revenue": sum((row["amount"] for row in completed), Decimal("0")),
            "monthly_revenue": sum(
                (row["amount"] for row in completed if row["created_at"] >= since),
                Decimal("0"),
            ),
        }

    async def class_popularity(self, cur, *, limit: int = 5):
        rows = []
        for live_class in self.classes.values():
            active = sum(
                1
                for row in self.subscriptions.values()
                if row["live_class_id"] == live_class["id"] and row["status"] == "ACTIVE"
            )
            rows.append(
                {
                    "live_class_id": live_class["id"],
                    "title": live_class["title"],
                    "active_subscriptions": active,
                }
            )
        rows.sort(key=lambda row: (-row["active_subscriptions"], row["title"]))
        return rows[:limit]


class FakePaymentGateway:
    """Records orders locally and verifies callbacks with the real HMAC check."""

    key_id = TEST_KEY_ID

    def __init__(self, *, secret: str = TEST_KEY_SECRET) -> None:
        self._secret = secret
        self.orders: list[dict[str, Any]] = []

    async def create_order(self, *, amount_minor, currency, receipt, notes):
        order = {
            "id": f"order_{uuid.uuid4().hex[:14]}",
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "notes": dict(notes),
            "status": "created",
        }
        self.orders.append(order)
        return order

    def add_order(self, order_id, *, amount_minor, notes, currency="INR"):
        """Seed an order as if the provider had created it earlier."""
        order = {
            "id": order_id,
            "amount": amount_minor,
            "currency": currency,
            "receipt": f"rcpt_{order_id}",
            "notes": dict(notes),
            "status": "paid",
        }
        self.orders.append(order)
        return order

    async def fetch_order(self, order_id):
        for order in self.orders:
            if order["id"] == order_id:
                return order
        raise ValidationError("Unknown payment order")

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        return verify_signature(order_id, payment_id, signature, self._secret)


class FakeMeetingProvider:
    """
    Hands out sequential meeting rooms.

    ``fail_titles`` makes creation fail for matching titles and ``crash_titles``
    makes it blow up with an unexpected error; ``fail_deletes`` lists meeting
    ids whose deletion reports failure.
    """

    def __init__(
        self,
        *,
        fail_titles: Iterable[str] = (),
        fail_all: bool = False,
        fail_deletes: Iterable[str] = (),
        crash_titles: Iterable[str] = (),
    ) -> None:
        self.fail_titles = set(fail_titles)
        self.crash_titles = set(crash_titles)
        self.fail_all = fail_all
        self.fail_deletes = set(fail_deletes)
        self.created: list[MeetingCredentials] = []
        self.deleted: list[str] = []
        self.delete_attempts: list[str] = []
        self._counter = 0

    async def create_meeting(self, title, start_time, end_time=None) -> MeetingCredentials:
        if any(fragment in title for fragment in self.crash_titles):
            raise RuntimeError("unexpected provider payload")
        if self.fail_all or any(fragment in title for fragment in self.fail_titles):
            raise ProvisioningError("Meeting provider unavailable")
        self._counter += 1
        meeting_id = f"9000{self._counter:04d}"
        credentials = MeetingCredentials(
            join_link=f"https://zoom.example/j/{meeting_id}",
            host_link=f"https://zoom.example/s/{meeting_id}",
            meeting_id=meeting_id,
            password=f"pw{self._counter}",
        )
        self.created.append(credentials)
        return credentials

    async def delete_meeting(self, meeting_id: str) -> bool:
        self.delete_attempts.append(meeting_id)
        if meeting_id in self.fail_deletes:
            return False
        self.deleted.append(meeting_id)
        return True
