from __future__ import annotations

import logging
from typing import Any, Iterable

from .. import db, metrics
from ..logging_context import bind_log_context
from ..repositories import live_classes as live_classes_repo
from .errors import NotFoundError, ProvisioningError
from .meetings import MeetingCredentials, MeetingProvider, teardown_meetings

logger = logging.getLogger(__name__)


class LiveToggleService:
    """
    Puts a class on or off air.

    Going live creates every meeting room before the single commit that
    publishes them; going off air commits first and only then deletes the
    remote rooms, so a failed deletion never keeps a class live.
    """

    def __init__(self, meetings: MeetingProvider) -> None:
        self.meetings = meetings

    async def set_live(self, class_id: str, live: bool) -> dict[str, Any]:
        with bind_log_context(class_id=class_id):
            if live:
                return await self._go_live(class_id)
            return await self._go_off_air(class_id)

    async def _go_live(self, class_id: str) -> dict[str, Any]:
        async with db.get_conn() as cur:
            live_class = await live_classes_repo.get_live_class(cur, class_id)
            if not live_class:
                raise NotFoundError("Live class not found")
            modules = await live_classes_repo.list_modules(cur, live_class["id"])
        if live_class["is_on_classroom"]:
            logger.info("Class %s is already live", class_id)
            return {**live_class, "modules": modules}

        try:
            class_room = await self.meetings.create_meeting(
                live_class["title"], live_class["start_time"], live_class["end_time"]
            )
        except ProvisioningError:
            metrics.meeting_provision_failures_total.labels("class").inc()
            logger.warning("Could not provision meeting room for class %s", class_id)
            raise

        module_rooms: dict[str, MeetingCredentials] = {}
        try:
            for module in modules:
                title = f"{live_class['title']} - {module['title']}"
                try:
                    module_rooms[str(module["id"])] = await self.meetings.create_meeting(
                        title,
                        module["start_time"] or live_class["start_time"],
                        module["end_time"],
                    )
                except ProvisioningError as exc:
                    metrics.meeting_provision_failures_total.labels("module").inc()
                    logger.warning(
                        "Skipping meeting room for module %s of class %s: %s",
                        module["id"],
                        class_id,
                        exc.detail,
                    )
        except Exception:
            logger.exception("Provisioning module rooms for class %s failed", class_id)
            await self._teardown(
                room.meeting_id for room in (class_room, *module_rooms.values())
            )
            raise

        created = [class_room, *module_rooms.values()]
        lost_race = False
        try:
            async with db.transaction() as cur:
                current = await live_classes_repo.get_live_class(
                    cur, live_class["id"], for_update=True
                )
                if current is None:
                    raise NotFoundError("Live class not found")
                if current["is_on_classroom"]:
                    # Another request published its rooms first; ours are surplus.
                    lost_race = True
                    updated = current
                else:
                    updated = await live_classes_repo.set_class_live(
                        cur, current["id"], class_room.as_columns()
                    )
                    for module_id, room in module_rooms.items():
                        await live_classes_repo.set_module_credentials(
                            cur, module_id, room.as_columns()
                        )
                updated_modules = await live_classes_repo.list_modules(cur, current["id"])
        except Exception:
            logger.exception("Publishing meeting rooms for class %s failed", class_id)
            await self._teardown(room.meeting_id for room in created)
            raise

        if lost_race:
            await self._teardown(room.meeting_id for room in created)
            return {**updated, "modules": updated_modules}

        logger.info(
            "Class %s is live",
            class_id,
            extra={"modules_provisioned": len(module_rooms), "modules_total": len(modules)},
        )
        return {**updated, "modules": updated_modules}

    async def _go_off_air(self, class_id: str) -> dict[str, Any]:
        async with db.transaction() as cur:
            live_class = await live_classes_repo.get_live_class(cur, class_id, for_update=True)
            if not live_class:
                raise NotFoundError("Live class not found")
            modules = await live_classes_repo.list_modules(cur, live_class["id"])
            meeting_ids = [
                row["meeting_id"] for row in (live_class, *modules) if row.get("meeting_id")
            ]
            updated = await live_classes_repo.clear_class_live(cur, live_class["id"])
            await live_classes_repo.clear_module_credentials(cur, live_class["id"])
            updated_modules = await live_classes_repo.list_modules(cur, live_class["id"])

        # Local state is already cleared; remote cleanup below is best-effort.
        await self._teardown(meeting_ids)
        logger.info("Class %s is off air", class_id)
        return {**updated, "modules": updated_modules}

    async def _teardown(self, meeting_ids: Iterable[str]) -> int:
        return await teardown_meetings(self.meetings, meeting_ids)


__all__ = ["LiveToggleService"]
