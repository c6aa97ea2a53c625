from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from liveclass.schemas.live_classes import LiveClassCreate, LiveClassUpdate, ModuleInput
from liveclass.services.errors import NotFoundError, ValidationError
from liveclass.services.live_class_service import slugify

pytestmark = pytest.mark.anyio("asyncio")

START = datetime(2026, 5, 1, 10, 0, tzinfo=timezone.utc)


def _payload(**overrides):
    fields = {
        "title": "Morning Meditation",
        "start_time": START,
        "end_time": START + timedelta(hours=2),
        "registration_fee": Decimal("500"),
        "course_fee": Decimal("1000"),
        "is_first_module_free": True,
        "modules": [ModuleInput(title="Welcome"), ModuleInput(title="Practice")],
    }
    fields.update(overrides)
    return LiveClassCreate(**fields)


def test_slugify():
    assert slugify("Morning Meditation!") == "morning-meditation"
    assert slugify("Śiva  Sūtra") == "siva-sutra"
    assert slugify("???") == "live-class"


def test_create_payload_validation():
    with pytest.raises(ValueError):
        _payload(end_time=START - timedelta(hours=1))
    with pytest.raises(ValueError):
        _payload(modules=[])


async def test_create_class_with_free_first_module(store, class_service):
    admin = store.add_user(is_admin=True)

    created = await class_service.create(_payload(), admin)

    assert created["slug"] == "morning-meditation"
    assert created["has_modules"] is True
    assert created["created_by"] == admin["id"]
    assert [module["position"] for module in created["modules"]] == [1, 2]
    assert [module["is_free"] for module in created["modules"]] == [True, False]


async def test_duplicate_titles_get_distinct_slugs(store, class_service):
    admin = store.add_user(is_admin=True)
    first = await class_service.create(_payload(), admin)
    second = await class_service.create(_payload(), admin)
    assert first["slug"] == "morning-meditation"
    assert second["slug"] == "morning-meditation-2"

    with pytest.raises(ValidationError):
        await class_service.create(_payload(slug="morning-meditation"), admin)


async def test_update_shrinks_modules_and_tears_down_removed_rooms(
    store, meetings, class_service, toggle_service
):
    admin = store.add_user(is_admin=True)
    created = await class_service.create(_payload(), admin)
    await toggle_service.set_live(created["id"], True)
    removed_meeting = store.modules[created["modules"][1]["id"]]["meeting_id"]
    kept_id = created["modules"][0]["id"]

    updated = await class_service.update(
        created["id"],
        LiveClassUpdate(title="Evening Meditation", modules=[ModuleInput(title="Only one")]),
    )

    assert updated["title"] == "Evening Meditation"
    assert [module["id"] for module in updated["modules"]] == [kept_id]
    assert updated["modules"][0]["title"] == "Only one"
    assert removed_meeting in meetings.deleted


async def test_update_rejects_window_inversion(store, class_service):
    admin = store.add_user(is_admin=True)
    created = await class_service.create(_payload(), admin)

    with pytest.raises(ValidationError):
        await class_service.update(
            created["id"], LiveClassUpdate(end_time=START - timedelta(minutes=5))
        )
    assert store.class_row(created["id"])["end_time"] == START + timedelta(hours=2)


async def test_update_toggles_first_module_free(store, class_service):
    admin = store.add_user(is_admin=True)
    created = await class_service.create(_payload(), admin)

    updated = await class_service.update(
        created["id"], LiveClassUpdate(is_first_module_free=False)
    )
    assert updated["is_first_module_free"] is False
    assert updated["modules"][0]["is_free"] is False


async def test_delete_cascades_and_tears_down(store, meetings, class_service, toggle_service):
    admin = store.add_user(is_admin=True)
    user = store.add_user()
    created = await class_service.create(_payload(), admin)
    store.add_subscription(user["id"], created["id"], status="PENDING_APPROVAL", is_registered=True)
    await toggle_service.set_live(created["id"], True)

    await class_service.delete(created["id"])

    assert created["id"] not in store.classes
    assert store.modules == {}
    assert store.subscriptions == {}
    assert len(meetings.deleted) == 3

    with pytest.raises(NotFoundError):
        await class_service.delete(created["id"])


async def test_flag_toggles(store, class_service):
    live_class = store.add_class()
    updated = await class_service.set_course_fee_enabled(live_class["id"], False)
    assert updated["course_fee_enabled"] is False
    updated = await class_service.set_registration_enabled(live_class["id"], False)
    assert updated["registration_enabled"] is False

    with pytest.raises(NotFoundError):
        await class_service.set_course_fee_enabled("00000000-0000-4000-8000-000000000000", True)


async def test_public_listing_hides_inactive_and_credentials(
    store, class_service, toggle_service
):
    visible = store.add_class(title="Visible")
    store.add_class(title="Hidden", is_active=False)
    await toggle_service.set_live(visible["id"], True)

    anonymous = await class_service.list_public(None)
    assert [item["title"] for item in anonymous] == ["Visible"]
    assert "meeting_link" not in anonymous[0]
    assert "host_link" not in anonymous[0]

    user = store.add_user()
    store.add_subscription(
        user["id"],
        visible["id"],
        status="ACTIVE",
        is_registered=True,
        is_approved=True,
        has_access_to_links=True,
    )
    view = await class_service.get_public(visible["slug"], user)
    assert view["meeting_link"] == store.class_row(visible["id"])["meeting_link"]
    assert "host_link" not in view
