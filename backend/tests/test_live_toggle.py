import pytest
from prometheus_client import REGISTRY

from liveclass.repositories import live_classes as live_classes_repo
from liveclass.services.errors import NotFoundError, ProvisioningError

pytestmark = pytest.mark.anyio("asyncio")

_CREDENTIALS = ("meeting_link", "meeting_id", "meeting_password", "host_link")


def _sample(name: str, labels: dict | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def _assert_off_air(row):
    assert row["is_on_classroom"] is False
    for column in _CREDENTIALS:
        assert row[column] is None


async def test_go_live_provisions_class_and_modules(store, meetings, toggle_service):
    live_class = store.add_class(title="Breathwork")
    first = store.add_module(live_class["id"], title="Basics")
    second = store.add_module(live_class["id"], title="Advanced")

    result = await toggle_service.set_live(live_class["id"], True)

    row = store.class_row(live_class["id"])
    assert row["is_on_classroom"] is True
    assert row["meeting_link"] == meetings.created[0].join_link
    assert row["host_link"] == meetings.created[0].host_link
    assert store.modules[first["id"]]["meeting_id"] is not None
    assert store.modules[second["id"]]["meeting_id"] is not None
    assert len(meetings.created) == 3
    assert result["is_on_classroom"] is True
    assert len(result["modules"]) == 2


async def test_go_live_is_idempotent(store, meetings, toggle_service):
    live_class = store.add_class()
    await toggle_service.set_live(live_class["id"], True)
    link = store.class_row(live_class["id"])["meeting_link"]

    await toggle_service.set_live(live_class["id"], True)

    assert len(meetings.created) == 1
    assert store.class_row(live_class["id"])["meeting_link"] == link


async def test_provider_failure_leaves_class_off_air_and_can_retry(
    store, meetings, toggle_service
):
    live_class = store.add_class()
    meetings.fail_all = True
    before = _sample("liveclass_meeting_provision_failures_total", {"scope": "class"})

    with pytest.raises(ProvisioningError):
        await toggle_service.set_live(live_class["id"], True)

    _assert_off_air(store.class_row(live_class["id"]))
    assert meetings.created == []
    assert _sample("liveclass_meeting_provision_failures_total", {"scope": "class"}) == before + 1

    meetings.fail_all = False
    await toggle_service.set_live(live_class["id"], True)
    assert store.class_row(live_class["id"])["is_on_classroom"] is True


async def test_module_failure_is_skipped(store, meetings, toggle_service):
    live_class = store.add_class(title="Sound Healing")
    ok_module = store.add_module(live_class["id"], title="Gongs")
    broken_module = store.add_module(live_class["id"], title="Bowls")
    meetings.fail_titles = {"Bowls"}

    await toggle_service.set_live(live_class["id"], True)

    assert store.class_row(live_class["id"])["is_on_classroom"] is True
    assert store.modules[ok_module["id"]]["meeting_link"] is not None
    assert store.modules[broken_module["id"]]["meeting_link"] is None


async def test_commit_failure_tears_down_created_rooms(
    store, meetings, toggle_service, monkeypatch
):
    live_class = store.add_class()
    store.add_module(live_class["id"])

    async def broken_publish(cur, class_id, credentials):
        raise RuntimeError("statement timeout")

    monkeypatch.setattr(live_classes_repo, "set_class_live", broken_publish)

    with pytest.raises(RuntimeError):
        await toggle_service.set_live(live_class["id"], True)

    assert sorted(meetings.deleted) == sorted(room.meeting_id for room in meetings.created)
    assert len(meetings.deleted) == 2
    _assert_off_air(store.class_row(live_class["id"]))


async def test_go_off_air_clears_credentials_despite_delete_failure(
    store, meetings, toggle_service
):
    live_class = store.add_class()
    module = store.add_module(live_class["id"])
    await toggle_service.set_live(live_class["id"], True)
    module_meeting = store.modules[module["id"]]["meeting_id"]
    class_meeting = store.class_row(live_class["id"])["meeting_id"]
    meetings.fail_deletes = {module_meeting}
    before = _sample("liveclass_meeting_teardown_failures_total")

    result = await toggle_service.set_live(live_class["id"], False)

    _assert_off_air(store.class_row(live_class["id"]))
    for column in _CREDENTIALS:
        assert store.modules[module["id"]][column] is None
    assert set(meetings.delete_attempts) == {class_meeting, module_meeting}
    assert meetings.deleted == [class_meeting]
    assert _sample("liveclass_meeting_teardown_failures_total") == before + 1
    assert result["is_on_classroom"] is False


async def test_going_off_air_twice_is_harmless(store, meetings, toggle_service):
    live_class = store.add_class()
    await toggle_service.set_live(live_class["id"], False)
    _assert_off_air(store.class_row(live_class["id"]))
    assert meetings.delete_attempts == []


async def test_unknown_class(store, toggle_service):
    with pytest.raises(NotFoundError):
        await toggle_service.set_live("00000000-0000-4000-8000-000000000000", True)


async def test_unexpected_module_error_tears_down_created_rooms(store, meetings, toggle_service):
    live_class = store.add_class(title="Sound Bath")
    store.add_module(live_class["id"], title="Warmup")
    store.add_module(live_class["id"], title="Gong")
    meetings.crash_titles = {"Gong"}

    with pytest.raises(RuntimeError):
        await toggle_service.set_live(live_class["id"], True)

    created_ids = [room.meeting_id for room in meetings.created]
    assert len(created_ids) == 2
    assert sorted(meetings.deleted) == sorted(created_ids)
    _assert_off_air(store.class_row(live_class["id"]))
