from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from psycopg import AsyncCursor

_LIVE_CLASS_COLUMNS = """
    id,
    slug,
    title,
    description,
    author,
    thumbnail_url,
    start_time,
    end_time,
    registration_fee,
    course_fee,
    course_fee_enabled,
    registration_enabled,
    has_modules,
    is_first_module_free,
    is_active,
    is_on_classroom,
    capacity,
    meeting_link,
    meeting_id,
    meeting_password,
    host_link,
    created_by,
    created_at,
    updated_at
"""

_MODULE_COLUMNS = """
    id,
    live_class_id,
    title,
    description,
    start_time,
    end_time,
    position,
    is_free,
    meeting_link,
    meeting_id,
    meeting_password,
    host_link,
    created_at,
    updated_at
"""

_UPDATABLE_CLASS_COLUMNS = frozenset(
    {
        "slug",
        "title",
        "description",
        "author",
        "thumbnail_url",
        "start_time",
        "end_time",
        "registration_fee",
        "course_fee",
        "course_fee_enabled",
        "registration_enabled",
        "has_modules",
        "is_first_module_free",
        "is_active",
        "capacity",
    }
)

_CREDENTIAL_COLUMNS = ("meeting_link", "meeting_id", "meeting_password", "host_link")


def is_uuid(value: str) -> bool:
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


async def get_live_class(
    cur: AsyncCursor, class_id: str | UUID, *, for_update: bool = False
) -> dict[str, Any] | None:
    if not is_uuid(str(class_id)):
        return None
    lock = "FOR UPDATE" if for_update else ""
    await cur.execute(
        f"""
        SELECT {_LIVE_CLASS_COLUMNS}
        FROM app.live_classes
        WHERE id = %s
        {lock}
        """,
        (class_id,),
    )
    row = await cur.fetchone()
    return dict(row) if row else None


async def get_live_class_by_id_or_slug(
    cur: AsyncCursor, identifier: str
) -> dict[str, Any] | None:
    if is_uuid(identifier):
        row = await get_live_class(cur, identifier)
        if row:
            return row
    await cur.execute(
        f"""
        SELECT {_LIVE_CLASS_COLUMNS}
        FROM app.live_classes
        WHERE slug = %s
        LIMIT 1
        """,
        (identifier,),
    )
    row = await cur.fetchone()
    return dict(row) if row else None


async def slug_exists(cur: AsyncCursor, slug: str) -> bool:
    await cur.execute("SELECT 1 FROM app.live_classes WHERE slug = %s", (slug,))
    return await cur.fetchone() is not None


async def list_live_classes(
    cur: AsyncCursor, *, active_only: bool = True
) -> list[dict[str, Any]]:
    where = "WHERE is_active" if active_only else ""
    await cur.execute(
        f"""
        SELECT {_LIVE_CLASS_COLUMNS}
        FROM app.live_classes
        {where}
        ORDER BY start_time ASC, created_at ASC
        """
    )
    rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def insert_live_class(
    cur: AsyncCursor, fields: Mapping[str, Any], *, created_by: str | None
) -> dict[str, Any]:
    columns = [column for column in fields if column in _UPDATABLE_CLASS_COLUMNS]
    columns_sql = ", ".join([*columns, "created_by"])
    placeholders = ", ".join(["%s"] * (len(columns) + 1))
    params = [fields[column] for column in columns]
    params.append(created_by)
    await cur.execute(
        f"""
        INSERT INTO app.live_classes ({columns_sql})
        VALUES ({placeholders})
        RETURNING {_LIVE_CLASS_COLUMNS}
        """,
        params,
    )
    row = await cur.fetchone()
    return dict(row)


async def update_live_class(
    cur: AsyncCursor, class_id: str | UUID, fields: Mapping[str, Any]
) -> dict[str, Any] | None:
    updates = [(column, value) for column, value in fields.items() if column in _UPDATABLE_CLASS_COLUMNS]
    if not updates:
        return await get_live_class(cur, class_id)
    set_clause = ", ".join(f"{column} = %s" for column, _ in updates)
    params = [value for _, value in updates]
    params.append(class_id)
    await cur.execute(
        f"""
        UPDATE app.live_classes
        SET {set_clause}, updated_at = now()
        WHERE id = %s
        RETURNING {_LIVE_CLASS_COLUMNS}
        """,
        params,
    )
    row = await cur.fetchone()
    return dict(row) if row else None


async def set_class_live(
    cur: AsyncCursor, class_id: str | UUID, credentials: Mapping[str, Any]
) -> dict[str, Any] | None:
    await cur.execute(
        f"""
        UPDATE app.live_classes
        SET is_on_classroom = true,
            meeting_link = %s,
            meeting_id = %s,
            meeting_password = %s,
            host_link = %s,
            updated_at = now()
        WHERE id = %s
        RETURNING {_LIVE_CLASS_COLUMNS}
        """,
        (*(credentials.get(column) for column in _CREDENTIAL_COLUMNS), class_id),
    )
    row = await cur.fetchone()
    return dict(row) if row else None


async def clear_class_live(cur: AsyncCursor, class_id: str | UUID) -> dict[str, Any] | None:
    await cur.execute(
        f"""
        UPDATE app.live_classes
        SET is_on_classroom = false,
            meeting_link = NULL,
            meeting_id = NULL,
            meeting_password = NULL,
            host_link = NULL,
            updated_at = now()
        WHERE id = %s
        RETURNING {_LIVE_CLASS_COLUMNS}
        """,
        (class_id,),
    )
    row = await cur.fetchone()
    return dict(row) if row else None


async def delete_live_class(cur: AsyncCursor, class_id: str | UUID) -> bool:
    await cur.execute("DELETE FROM app.live_classes WHERE id = %s RETURNING id", (class_id,))
    return await cur.fetchone() is not None


async def list_modules(cur: AsyncCursor, class_id: str | UUID) -> list[dict[str, Any]]:
    await cur.execute(
        f"""
        SELECT {_MODULE_COLUMNS}
        FROM app.live_class_modules
        WHERE live_class_id = %s
        ORDER BY position ASC
        """,
        (class_id,),
    )
    rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def get_module(
    cur: AsyncCursor, class_id: str | UUID, module_id: str | UUID
) -> dict[str, Any] | None:
    if not is_uuid(str(module_id)):
        return None
    await cur.execute(
        f"""
        SELECT {_MODULE_COLUMNS}
        FROM app.live_class_modules
        WHERE live_class_id = %s AND id = %s
        """,
        (class_id, module_id),
    )
    row = await cur.fetchone()
    return dict(row) if row else None


async def insert_module(
    cur: AsyncCursor,
    class_id: str | UUID,
    *,
    title: str,
    description: str | None,
    start_time: Any,
    end_time: Any,
    position: int,
    is_free: bool,
) -> dict[str, Any]:
    await cur.execute(
        f"""
        INSERT INTO app.live_class_modules (
            live_class_id,
            title,
            description,
            start_time,
            end_time,
            position,
            is_free
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING {_MODULE_COLUMNS}
        """,
        (class_id, title, description, start_time, end_time, position, is_free),
    )
    row = await cur.fetchone()
    return dict(row)


async def update_module(
    cur: AsyncCursor,
    module_id: str | UUID,
    *,
    title: str,
    description: str | None,
    start_time: Any,
    end_time: Any,
    is_free: bool,
) -> dict[str, Any] | None:
    await cur.execute(
        f"""
        UPDATE app.live_class_modules
        SET title = %s,
            description = %s,
            start_time = %s,
            end_time = %s,
            is_free = %s,
            updated_at = now()
        WHERE id = %s
        RETURNING {_MODULE_COLUMNS}
        """,
        (title, description, start_time, end_time, is_free, module_id),
    )
    row = await cur.fetchone()
    return dict(row) if row else None


async def delete_modules_after(
    cur: AsyncCursor, class_id: str | UUID, position: int
) -> int:
    """Drop modules past ``position`` so positions stay dense after shrinking the list."""
    await cur.execute(
        """
        DELETE FROM app.live_class_modules
        WHERE live_class_id = %s AND position > %s
        """,
        (class_id, position),
    )
    return cur.rowcount


async def set_module_credentials(
    cur: AsyncCursor, module_id: str | UUID, credentials: Mapping[str, Any]
) -> None:
    await cur.execute(
        """
        UPDATE app.live_class_modules
        SET meeting_link = %s,
            meeting_id = %s,
            meeting_password = %s,
            host_link = %s,
            updated_at = now()
        WHERE id = %s
        """,
        (*(credentials.get(column) for column in _CREDENTIAL_COLUMNS), module_id),
    )


async def clear_module_credentials(cur: AsyncCursor, class_id: str | UUID) -> int:
    await cur.execute(
        """
        UPDATE app.live_class_modules
        SET meeting_link = NULL,
            meeting_id = NULL,
            meeting_password = NULL,
            host_link = NULL,
            updated_at = now()
        WHERE live_class_id = %s
        """,
        (class_id,),
    )
    return cur.rowcount
