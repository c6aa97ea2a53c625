from __future__ import annotations

import logging
import re
import unicodedata
from typing import Any, Iterable, Mapping

from psycopg import AsyncCursor

from .. import db
from ..repositories import live_classes as live_classes_repo
from ..repositories import subscriptions as subscriptions_repo
from ..schemas.live_classes import LiveClassCreate, LiveClassUpdate, ModuleInput
from . import access
from .errors import NotFoundError, ValidationError
from .meetings import MeetingProvider, teardown_meetings

logger = logging.getLogger(__name__)

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")
_NULLABLE_COLUMNS = frozenset({"description", "author", "thumbnail_url", "end_time", "capacity"})


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    slug = _SLUG_STRIP.sub("-", normalized.lower()).strip("-")
    return slug or "live-class"


def _index_subscriptions(
    rows: Iterable[Mapping[str, Any]],
) -> tuple[dict[str, Mapping[str, Any]], dict[str, dict[str, Mapping[str, Any]]]]:
    by_class: dict[str, Mapping[str, Any]] = {}
    by_module: dict[str, dict[str, Mapping[str, Any]]] = {}
    for row in rows:
        class_key = str(row["live_class_id"])
        if row["module_id"] is None:
            by_class[class_key] = row
        else:
            by_module.setdefault(class_key, {})[str(row["module_id"])] = row
    return by_class, by_module


class LiveClassService:
    """Admin management of live classes and their modules, plus student-facing class views."""

    def __init__(self, meetings: MeetingProvider) -> None:
        self.meetings = meetings

    async def _unique_slug(self, cur: AsyncCursor, requested: str | None, title: str) -> str:
        if requested:
            slug = slugify(requested)
            if await live_classes_repo.slug_exists(cur, slug):
                raise ValidationError("A live class with this slug already exists")
            return slug
        base = slugify(title)
        slug = base
        suffix = 2
        while await live_classes_repo.slug_exists(cur, slug):
            slug = f"{base}-{suffix}"
            suffix += 1
        return slug

    async def _write_modules(
        self,
        cur: AsyncCursor,
        class_id: Any,
        modules: list[ModuleInput],
        *,
        first_free: bool,
        existing: list[dict[str, Any]] | None = None,
    ) -> list[dict[str, Any]]:
        """Write modules at dense 1-based positions, reusing existing rows by position."""
        existing = existing or []
        written = []
        for index, module in enumerate(modules):
            is_free = first_free and index == 0
            if index < len(existing):
                row = await live_classes_repo.update_module(
                    cur,
                    existing[index]["id"],
                    title=module.title,
                    description=module.description,
                    start_time=module.start_time,
                    end_time=module.end_time,
                    is_free=is_free,
                )
            else:
                row = await live_classes_repo.insert_module(
                    cur,
                    class_id,
                    title=module.title,
                    description=module.description,
                    start_time=module.start_time,
                    end_time=module.end_time,
                    position=index + 1,
                    is_free=is_free,
                )
            written.append(row)
        await live_classes_repo.delete_modules_after(cur, class_id, len(modules))
        return written

    # ------------------------------------------------------------------ admin

    async def create(self, payload: LiveClassCreate, actor: Mapping[str, Any]) -> dict[str, Any]:
        fields = payload.model_dump(exclude={"modules", "slug"})
        fields["has_modules"] = bool(payload.modules)
        async with db.transaction() as cur:
            fields["slug"] = await self._unique_slug(cur, payload.slug, payload.title)
            live_class = await live_classes_repo.insert_live_class(
                cur, fields, created_by=str(actor["id"])
            )
            modules = await self._write_modules(
                cur,
                live_class["id"],
                payload.modules,
                first_free=payload.is_first_module_free,
            )
        logger.info(
            "Created live class %s",
            live_class["id"],
            extra={"modules": len(modules)},
        )
        return {**live_class, "modules": modules}

    async def update(self, class_id: str, payload: LiveClassUpdate) -> dict[str, Any]:
        fields = payload.model_dump(exclude_unset=True, exclude={"modules"})
        fields = {
            key: value
            for key, value in fields.items()
            if value is not None or key in _NULLABLE_COLUMNS
        }
        removed_meetings: list[str] = []
        async with db.transaction() as cur:
            current = await live_classes_repo.get_live_class(cur, class_id, for_update=True)
            if not current:
                raise NotFoundError("Live class not found")

            if "slug" in fields:
                if not fields["slug"]:
                    fields.pop("slug")
                elif slugify(fields["slug"]) != current["slug"]:
                    fields["slug"] = await self._unique_slug(cur, fields["slug"], current["title"])
                else:
                    fields.pop("slug")
            start = fields.get("start_time") or current["start_time"]
            end = fields.get("end_time", current["end_time"])
            if end and start and end <= start:
                raise ValidationError("end_time must be after start_time")

            first_free = fields.get("is_first_module_free", current["is_first_module_free"])
            existing_modules = await live_classes_repo.list_modules(cur, current["id"])
            if payload.modules is not None:
                removed_meetings = [
                    row["meeting_id"]
                    for row in existing_modules[len(payload.modules):]
                    if row.get("meeting_id")
                ]
                modules = await self._write_modules(
                    cur,
                    current["id"],
                    payload.modules,
                    first_free=first_free,
                    existing=existing_modules,
                )
                fields["has_modules"] = bool(payload.modules)
            else:
                modules = existing_modules
                if "is_first_module_free" in fields and modules:
                    first = modules[0]
                    modules[0] = await live_classes_repo.update_module(
                        cur,
                        first["id"],
                        title=first["title"],
                        description=first["description"],
                        start_time=first["start_time"],
                        end_time=first["end_time"],
                        is_free=bool(first_free),
                    )
            if first_free and not modules:
                raise ValidationError("is_first_module_free requires at least one module")

            updated = await live_classes_repo.update_live_class(cur, current["id"], fields)

        await self._teardown(removed_meetings)
        return {**updated, "modules": modules}

    async def delete(self, class_id: str) -> None:
        async with db.transaction() as cur:
            current = await live_classes_repo.get_live_class(cur, class_id, for_update=True)
            if not current:
                raise NotFoundError("Live class not found")
            modules = await live_classes_repo.list_modules(cur, current["id"])
            meeting_ids = [
                row["meeting_id"] for row in (current, *modules) if row.get("meeting_id")
            ]
            await live_classes_repo.delete_live_class(cur, current["id"])
        logger.info("Deleted live class %s", class_id)
        await self._teardown(meeting_ids)

    async def set_course_fee_enabled(self, class_id: str, enabled: bool) -> dict[str, Any]:
        return await self._set_flag(class_id, "course_fee_enabled", enabled)

    async def set_registration_enabled(self, class_id: str, enabled: bool) -> dict[str, Any]:
        return await self._set_flag(class_id, "registration_enabled", enabled)

    async def _set_flag(self, class_id: str, column: str, value: bool) -> dict[str, Any]:
        async with db.transaction() as cur:
            updated = await live_classes_repo.update_live_class(cur, class_id, {column: value})
            if not updated:
                raise NotFoundError("Live class not found")
            modules = await live_classes_repo.list_modules(cur, updated["id"])
        logger.info("Live class %s: %s=%s", class_id, column, value)
        return {**updated, "modules": modules}

    async def list_admin(self) -> list[dict[str, Any]]:
        async with db.get_conn() as cur:
            classes = await live_classes_repo.list_live_classes(cur, active_only=False)
            result = []
            for live_class in classes:
                modules = await live_classes_repo.list_modules(cur, live_class["id"])
                result.append({**live_class, "modules": modules})
        return result

    async def _teardown(self, meeting_ids: Iterable[str]) -> None:
        await teardown_meetings(self.meetings, meeting_ids)

    # ---------------------------------------------------------------- student

    async def list_public(self, user: Mapping[str, Any] | None) -> list[dict[str, Any]]:
        async with db.get_conn() as cur:
            classes = await live_classes_repo.list_live_classes(cur, active_only=True)
            subscriptions: list[dict[str, Any]] = []
            if user:
                subscriptions = await subscriptions_repo.list_user_subscriptions(
                    cur, str(user["id"])
                )
            by_class, by_module = _index_subscriptions(subscriptions)
            views = []
            for live_class in classes:
                class_key = str(live_class["id"])
                modules = await live_classes_repo.list_modules(cur, live_class["id"])
                views.append(
                    access.public_live_class_view(
                        live_class,
                        modules,
                        class_subscription=by_class.get(class_key),
                        module_subscriptions=by_module.get(class_key),
                    )
                )
        return views

    async def get_public(
        self, identifier: str, user: Mapping[str, Any] | None
    ) -> dict[str, Any]:
        async with db.get_conn() as cur:
            live_class = await live_classes_repo.get_live_class_by_id_or_slug(cur, identifier)
            if not live_class or not live_class["is_active"]:
                raise NotFoundError("Live class not found")
            modules = await live_classes_repo.list_modules(cur, live_class["id"])
            subscriptions: list[dict[str, Any]] = []
            if user:
                subscriptions = await subscriptions_repo.list_user_class_subscriptions(
                    cur, str(user["id"]), live_class["id"]
                )
        by_class, by_module = _index_subscriptions(subscriptions)
        class_key = str(live_class["id"])
        return access.public_live_class_view(
            live_class,
            modules,
            class_subscription=by_class.get(class_key),
            module_subscriptions=by_module.get(class_key),
        )


__all__ = ["LiveClassService", "slugify"]
