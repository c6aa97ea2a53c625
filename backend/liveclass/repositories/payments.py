from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from psycopg import AsyncCursor

_PAYMENT_COLUMNS = """
    p.id,
    p.subscription_id,
    p.user_id,
    p.payment_type,
    p.amount,
    p.currency,
    p.provider_order_id,
    p.provider_payment_id,
    p.receipt_number,
    p.status,
    p.created_at
"""


async def get_payment_by_provider_id(
    cur: AsyncCursor, provider_payment_id: str
) -> dict[str, Any] | None:
    await cur.execute(
        f"""
        SELECT {_PAYMENT_COLUMNS}
        FROM app.live_class_payments AS p
        WHERE p.provider_payment_id = %s
        """,
        (provider_payment_id,),
    )
    row = await cur.fetchone()
    return dict(row) if row else None


async def insert_payment(
    cur: AsyncCursor,
    *,
    subscription_id: str | UUID,
    user_id: str | UUID,
    payment_type: str,
    amount: Decimal,
    currency: str,
    provider_order_id: str,
    provider_payment_id: str,
    provider_signature: str,
    receipt_number: str,
) -> dict[str, Any]:
    """Record a verified payment; duplicate provider payment ids raise ``UniqueViolation``."""
    await cur.execute(
        """
        INSERT INTO app.live_class_payments (
            subscription_id,
            user_id,
            payment_type,
            amount,
            currency,
            provider_order_id,
            provider_payment_id,
            provider_signature,
            receipt_number,
            status
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, 'COMPLETED')
        RETURNING id,
                  subscription_id,
                  user_id,
                  payment_type,
                  amount,
                  currency,
                  provider_order_id,
                  provider_payment_id,
                  receipt_number,
                  status,
                  created_at
        """,
        (
            subscription_id,
            user_id,
            payment_type,
            amount,
            currency,
            provider_order_id,
            provider_payment_id,
            provider_signature,
            receipt_number,
        ),
    )
    row = await cur.fetchone()
    return dict(row)


async def list_payments(
    cur: AsyncCursor, *, limit: int, offset: int
) -> list[dict[str, Any]]:
    await cur.execute(
        f"""
        SELECT {_PAYMENT_COLUMNS},
               u.email AS user_email,
               c.title AS live_class_title
        FROM app.live_class_payments AS p
        JOIN app.users AS u ON u.id = p.user_id
        JOIN app.live_class_subscriptions AS s ON s.id = p.subscription_id
        JOIN app.live_classes AS c ON c.id = s.live_class_id
        ORDER BY p.created_at DESC
        LIMIT %s OFFSET %s
        """,
        (limit, offset),
    )
    rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def count_payments(cur: AsyncCursor) -> int:
    await cur.execute("SELECT count(*) AS total FROM app.live_class_payments")
    row = await cur.fetchone()
    return int(row["total"]) if row else 0


async def revenue_summary(cur: AsyncCursor, *, since: datetime) -> dict[str, Any]:
    await cur.execute(
        """
        SELECT
          (SELECT count(*) FROM app.live_classes) AS total_classes,
          (SELECT count(*) FROM app.live_class_subscriptions WHERE status = 'ACTIVE')
            AS active_subscriptions,
          (SELECT count(*) FROM app.live_class_subscriptions WHERE status = 'PENDING_APPROVAL')
            AS pending_approvals,
          COALESCE((SELECT sum(amount) FROM app.live_class_payments
                    WHERE status = 'COMPLETED'), 0) AS total_revenue,
          COALESCE((SELECT sum(amount) FROM app.live_class_payments
                    WHERE status = 'COMPLETED' AND created_at >= %s), 0) AS monthly_revenue
        """,
        (since,),
    )
    row = await cur.fetchone()
    return dict(row)


async def class_popularity(cur: AsyncCursor, *, limit: int = 5) -> list[dict[str, Any]]:
    await cur.execute(
        """
        SELECT c.id AS live_class_id,
               c.title,
               count(s.id) FILTER (WHERE s.status = 'ACTIVE') AS active_subscriptions
        FROM app.live_classes AS c
        LEFT JOIN app.live_class_subscriptions AS s ON s.live_class_id = c.id
        GROUP BY c.id, c.title
        ORDER BY active_subscriptions DESC, c.title ASC
        LIMIT %s
        """,
        (limit,),
    )
    rows = await cur.fetchall()
    return [dict(row) for row in rows]
