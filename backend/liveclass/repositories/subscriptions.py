from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping
from uuid import UUID

from psycopg import AsyncCursor

from ..scopes import Scope
from .live_classes import is_uuid

_SUBSCRIPTION_COLUMNS = """
    s.id,
    s.user_id,
    s.live_class_id,
    s.module_id,
    s.status,
    s.is_registered,
    s.is_approved,
    s.has_access_to_links,
    s.start_date,
    s.end_date,
    s.next_payment_date,
    s.registration_payment_id,
    s.created_at,
    s.updated_at
"""

_RETURNING_COLUMNS = _SUBSCRIPTION_COLUMNS.replace("s.", "")

_UPDATABLE_COLUMNS = frozenset(
    {
        "status",
        "is_registered",
        "is_approved",
        "has_access_to_links",
        "start_date",
        "end_date",
        "next_payment_date",
        "registration_payment_id",
    }
)


async def get_subscription(
    cur: AsyncCursor, subscription_id: str | UUID, *, for_update: bool = False
) -> dict[str, Any] | None:
    if not is_uuid(str(subscription_id)):
        return None
    lock = "FOR UPDATE" if for_update else ""
    await cur.execute(
        f"""
        SELECT {_SUBSCRIPTION_COLUMNS}
        FROM app.live_class_subscriptions AS s
        WHERE s.id = %s
        {lock}
        """,
        (subscription_id,),
    )
    row = await cur.fetchone()
    return dict(row) if row else None


async def get_subscription_for_scope(
    cur: AsyncCursor, user_id: str | UUID, scope: Scope, *, for_update: bool = False
) -> dict[str, Any] | None:
    if not is_uuid(str(user_id)):
        return None
    lock = "FOR UPDATE" if for_update else ""
    await cur.execute(
        f"""
        SELECT {_SUBSCRIPTION_COLUMNS}
        FROM app.live_class_subscriptions AS s
        WHERE s.user_id = %s
          AND s.live_class_id = %s
          AND s.module_id IS NOT DISTINCT FROM %s
        {lock}
        """,
        (user_id, scope.class_id, scope.module_id),
    )
    row = await cur.fetchone()
    return dict(row) if row else None


async def insert_subscription(
    cur: AsyncCursor,
    *,
    user_id: str | UUID,
    scope: Scope,
    fields: Mapping[str, Any],
) -> dict[str, Any]:
    """Insert a new row; raises ``psycopg.errors.UniqueViolation`` if the scope is taken."""
    columns = [column for column in fields if column in _UPDATABLE_COLUMNS]
    columns_sql = ", ".join(["user_id", "live_class_id", "module_id", *columns])
    placeholders = ", ".join(["%s"] * (len(columns) + 3))
    params = [user_id, scope.class_id, scope.module_id]
    params.extend(fields[column] for column in columns)
    await cur.execute(
        f"""
        INSERT INTO app.live_class_subscriptions ({columns_sql})
        VALUES ({placeholders})
        RETURNING {_RETURNING_COLUMNS}
        """,
        params,
    )
    row = await cur.fetchone()
    return dict(row)


async def update_subscription(
    cur: AsyncCursor, subscription_id: str | UUID, fields: Mapping[str, Any]
) -> dict[str, Any] | None:
    updates = [(column, value) for column, value in fields.items() if column in _UPDATABLE_COLUMNS]
    if not updates:
        return await get_subscription(cur, subscription_id)
    set_clause = ", ".join(f"{column} = %s" for column, _ in updates)
    params = [value for _, value in updates]
    params.append(subscription_id)
    await cur.execute(
        f"""
        UPDATE app.live_class_subscriptions
        SET {set_clause}, updated_at = now()
        WHERE id = %s
        RETURNING {_RETURNING_COLUMNS}
        """,
        params,
    )
    row = await cur.fetchone()
    return dict(row) if row else None


async def list_user_subscriptions(
    cur: AsyncCursor, user_id: str | UUID
) -> list[dict[str, Any]]:
    await cur.execute(
        f"""
        SELECT {_SUBSCRIPTION_COLUMNS},
               c.title AS live_class_title,
               c.slug AS live_class_slug
        FROM app.live_class_subscriptions AS s
        JOIN app.live_classes AS c ON c.id = s.live_class_id
        WHERE s.user_id = %s
        ORDER BY s.created_at DESC
        """,
        (user_id,),
    )
    rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def list_user_class_subscriptions(
    cur: AsyncCursor, user_id: str | UUID, class_id: str | UUID
) -> list[dict[str, Any]]:
    await cur.execute(
        f"""
        SELECT {_SUBSCRIPTION_COLUMNS}
        FROM app.live_class_subscriptions AS s
        WHERE s.user_id = %s AND s.live_class_id = %s
        """,
        (user_id, class_id),
    )
    rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def list_class_subscriptions(
    cur: AsyncCursor,
    class_id: str | UUID,
    *,
    statuses: Iterable[str] | None = None,
    has_access_to_links: bool | None = None,
) -> list[dict[str, Any]]:
    clauses = ["s.live_class_id = %s"]
    params: list[Any] = [class_id]
    if statuses is not None:
        clauses.append("s.status = ANY(%s)")
        params.append(list(statuses))
    if has_access_to_links is not None:
        clauses.append("s.has_access_to_links = %s")
        params.append(has_access_to_links)
    where = " AND ".join(clauses)
    await cur.execute(
        f"""
        SELECT {_SUBSCRIPTION_COLUMNS},
               u.email AS user_email,
               u.full_name AS user_name
        FROM app.live_class_subscriptions AS s
        JOIN app.users AS u ON u.id = s.user_id
        WHERE {where}
        ORDER BY s.created_at ASC
        """,
        params,
    )
    rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def list_subscriptions(
    cur: AsyncCursor, *, status: str | None = None
) -> list[dict[str, Any]]:
    where = "WHERE s.status = %s" if status else ""
    params = (status,) if status else ()
    await cur.execute(
        f"""
        SELECT {_SUBSCRIPTION_COLUMNS},
               u.email AS user_email,
               c.title AS live_class_title
        FROM app.live_class_subscriptions AS s
        JOIN app.users AS u ON u.id = s.user_id
        JOIN app.live_classes AS c ON c.id = s.live_class_id
        {where}
        ORDER BY s.created_at DESC
        """,
        params,
    )
    rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def list_due_for_expiry(cur: AsyncCursor, now: datetime) -> list[dict[str, Any]]:
    await cur.execute(
        f"""
        SELECT {_SUBSCRIPTION_COLUMNS}
        FROM app.live_class_subscriptions AS s
        WHERE s.status = 'ACTIVE'
          AND s.next_payment_date IS NOT NULL
          AND s.next_payment_date <= %s
        FOR UPDATE SKIP LOCKED
        """,
        (now,),
    )
    rows = await cur.fetchall()
    return [dict(row) for row in rows]
