"""
Weekly menu planner tests

  1. Publish versioning and immutable snapshots
  2. Draft edits, revert, copy from the previous week
  3. Slot limits and availability warnings
  4. Optimistic locking: a stale publisher retries instead of clobbering
"""
from datetime import timedelta

import pytest

from canteen.core.exceptions import InvalidTransitionError, NoPreviousMenuError, NotFoundError, VersionNotFoundError
from canteen.db import catalog_ops, weekly_menu_ops
from canteen.models.menu import MEAL_TYPES, WEEKDAYS, PublishStatus


# ─── Publish ───────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_first_publish_is_version_one_with_matching_snapshot(db, published_week):
    assert published_week.publish_status == PublishStatus.PUBLISHED
    assert published_week.current_version == 1
    assert published_week.published_at is not None

    versions = await weekly_menu_ops.list_versions(db, published_week.week_start)
    assert [v.version for v in versions] == [1]
    assert versions[0].menu_items_by_day == published_week.menu_items_by_day
    assert versions[0].created_by == "admin-001"


@pytest.mark.asyncio
async def test_republish_appends_exactly_one_version(db, next_monday, rice, juice, published_week):
    new_content = {"Monday": {"breakfast": [juice.id], "lunch": [rice.id]}}

    menu = await weekly_menu_ops.publish_weekly_menu(db, next_monday, new_content)

    assert menu.current_version == 2
    versions = await weekly_menu_ops.list_versions(db, next_monday)
    assert [v.version for v in versions] == [2, 1]
    assert versions[0].menu_items_by_day == menu.menu_items_by_day
    assert versions[0].menu_items_by_day == weekly_menu_ops.normalize_menu_by_day(new_content)


@pytest.mark.asyncio
async def test_publish_accepts_any_day_of_the_week(db, next_monday, rice):
    menu = await weekly_menu_ops.publish_weekly_menu(db, next_monday + timedelta(days=3), {"Monday": {"lunch": [rice.id]}})
    assert menu.week_start == next_monday
    assert (await weekly_menu_ops.get_weekly_menu(db, next_monday + timedelta(days=4))).id == menu.id


@pytest.mark.asyncio
async def test_update_after_publish_is_draft_with_unchanged_version(db, next_monday, rice, juice):
    await weekly_menu_ops.publish_weekly_menu(db, next_monday, {"Monday": {"lunch": [rice.id, juice.id]}})

    menu = await weekly_menu_ops.update_weekly_menu(db, next_monday, {"Monday": {"lunch": [rice.id]}})

    assert menu.publish_status == PublishStatus.DRAFT
    assert menu.current_version == 1
    assert menu.menu_items_by_day["Monday"]["lunch"] == [rice.id]
    assert [v.version for v in await weekly_menu_ops.list_versions(db, next_monday)] == [1]
    assert await weekly_menu_ops.get_published_menu(db, next_monday) is None


@pytest.mark.asyncio
async def test_new_draft_starts_at_version_zero(db, next_monday, rice):
    menu = await weekly_menu_ops.update_weekly_menu(db, next_monday, {"Friday": {"snack": [rice.id]}})
    assert menu.publish_status == PublishStatus.DRAFT
    assert menu.current_version == 0
    assert await weekly_menu_ops.list_versions(db, next_monday) == []


# ─── Revert / copy ─────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_revert_restores_snapshot_as_draft(db, next_monday, rice, juice, published_week):
    v1 = (await weekly_menu_ops.list_versions(db, next_monday))[0].menu_items_by_day
    await weekly_menu_ops.publish_weekly_menu(db, next_monday, {"Monday": {"lunch": [juice.id]}})

    menu = await weekly_menu_ops.revert_to_version(db, next_monday, 1)

    assert menu.menu_items_by_day == v1
    assert menu.publish_status == PublishStatus.DRAFT
    assert menu.current_version == 2


@pytest.mark.asyncio
async def test_revert_to_unknown_version(db, next_monday, published_week):
    with pytest.raises(VersionNotFoundError):
        await weekly_menu_ops.revert_to_version(db, next_monday, 7)


@pytest.mark.asyncio
async def test_copy_from_previous_week_creates_draft(db, next_monday, published_week):
    following = next_monday + timedelta(days=7)

    copied = await weekly_menu_ops.copy_from_previous_week(db, following)

    assert copied.week_start == following
    assert copied.publish_status == PublishStatus.DRAFT
    assert copied.menu_items_by_day == published_week.menu_items_by_day


@pytest.mark.asyncio
async def test_copy_without_previous_week(db, next_monday):
    with pytest.raises(NoPreviousMenuError):
        await weekly_menu_ops.copy_from_previous_week(db, next_monday)


# ─── Status changes ────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_unpublish_archive_and_republish(db, next_monday, rice, published_week):
    menu = await weekly_menu_ops.unpublish_weekly_menu(db, next_monday)
    assert menu.publish_status == PublishStatus.DRAFT

    menu = await weekly_menu_ops.archive_weekly_menu(db, next_monday)
    assert menu.publish_status == PublishStatus.ARCHIVED
    archived_at = menu.archived_at
    assert (await weekly_menu_ops.archive_weekly_menu(db, next_monday)).archived_at == archived_at

    with pytest.raises(InvalidTransitionError):
        await weekly_menu_ops.unpublish_weekly_menu(db, next_monday)

    menu = await weekly_menu_ops.publish_weekly_menu(db, next_monday, {"Monday": {"lunch": [rice.id]}})
    assert menu.publish_status == PublishStatus.PUBLISHED
    assert menu.current_version == 2
    assert menu.archived_at is None


@pytest.mark.asyncio
async def test_delete_weekly_menu_drops_versions(db, next_monday, published_week):
    await weekly_menu_ops.delete_weekly_menu(db, next_monday)

    assert await weekly_menu_ops.get_weekly_menu(db, next_monday) is None
    assert await weekly_menu_ops.list_versions(db, next_monday) == []
    with pytest.raises(NotFoundError):
        await weekly_menu_ops.delete_weekly_menu(db, next_monday)


# ─── Validation ────────────────────────────────────────────────────────────────
def test_normalize_keeps_weekdays_and_known_meals_only():
    menu = weekly_menu_ops.normalize_menu_by_day({
        "monday": {"LUNCH": ["a", "b"]},
        "Saturday": {"lunch": ["c"]},
        "Friday": {"brunch": ["d"]},
    })

    assert list(menu) == list(WEEKDAYS)
    assert all(list(meals) == list(MEAL_TYPES) for meals in menu.values())
    assert menu["Monday"]["lunch"] == ["a", "b"]
    assert all(ids == [] for ids in menu["Friday"].values())


def test_validate_menu_flags_the_overfull_slot():
    limit = weekly_menu_ops.max_items_for("lunch")
    menu = weekly_menu_ops.normalize_menu_by_day(
        {day: {meal: ["x"] for meal in MEAL_TYPES} for day in WEEKDAYS}
    )
    menu["Tuesday"]["lunch"] = [f"item-{n}" for n in range(limit + 1)]

    report = weekly_menu_ops.validate_menu(menu)

    assert report.is_valid is False
    assert len(report.errors) == 1
    issue = report.errors[0]
    assert (issue.day, issue.meal_type) == ("Tuesday", "lunch")
    assert issue.message == f"Tuesday - Lunch: Exceeds maximum of {limit} items (has {limit + 1})"
    assert report.warnings == []


def test_validate_menu_warns_on_empty_slots():
    report = weekly_menu_ops.validate_menu({"Monday": {"snack": []}})
    assert report.is_valid is True
    assert [w.message for w in report.warnings] == ["Monday - Snack: No items selected"]


@pytest.mark.asyncio
async def test_availability_report(db, rice, juice):
    await catalog_ops.set_availability(db, juice.id, False)

    report = await weekly_menu_ops.validate_items_availability(
        db, {"Monday": {"lunch": [rice.id], "drinks": [juice.id, "ghost"]}},
    )

    assert report.is_valid is False
    assert report.unavailable_item_ids == [juice.id]
    assert report.warnings == [
        'Monday - Drinks: "Juice" is unavailable',
        "Item ID ghost not found in database",
    ]


@pytest.mark.asyncio
async def test_items_for_day_skips_unavailable(db, next_monday, rice, juice, published_week):
    await catalog_ops.set_availability(db, juice.id, False)

    items = await weekly_menu_ops.items_for_day(db, next_monday, "monday")
    assert [i.name for i in items] == ["Rice"]
    assert await weekly_menu_ops.items_for_day(db, next_monday, "Monday", "drinks") == []


# ─── Optimistic locking ────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_stale_publisher_retries_on_fresh_version(session_factory, next_monday, rice, juice, published_week):
    """
    Session B reads v1, session A publishes v2, then B publishes.
    B's compare-and-set misses, it retries on v2 and lands v3.
    """
    async with session_factory() as a, session_factory() as b:
        stale = await weekly_menu_ops.get_weekly_menu(b, next_monday)
        assert stale.current_version == 1

        await weekly_menu_ops.publish_weekly_menu(a, next_monday, {"Monday": {"lunch": [juice.id]}})
        menu = await weekly_menu_ops.publish_weekly_menu(b, next_monday, {"Monday": {"lunch": [rice.id]}})

        assert menu.current_version == 3
        assert menu.menu_items_by_day["Monday"]["lunch"] == [rice.id]
        versions = await weekly_menu_ops.list_versions(b, next_monday)
        assert [v.version for v in versions] == [3, 2, 1]
