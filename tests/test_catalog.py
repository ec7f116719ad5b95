"""
Menu catalog tests

  1. Case-insensitive name uniqueness on create and rename
  2. Spreadsheet import: per-row failures, duplicates, re-runs
  3. Delete cleans weekly menu references, even when cleanup fails
  4. Published menus drive available_days and day filtering
"""
from datetime import timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from canteen.core.exceptions import DuplicateNameError, InvalidPriceError, NotFoundError, ValidationError
from canteen.db import catalog_ops, weekly_menu_ops
from canteen.models.menu import PublishStatus

HEADERS = ["Name", "Description", "Price", "Category"]


# ─── Create / update ───────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_create_rejects_name_differing_only_in_case(db, rice):
    with pytest.raises(DuplicateNameError):
        await catalog_ops.create_menu_item(db, name="  rICE ", price=1500, category="Lunch")


@pytest.mark.asyncio
async def test_create_rejects_negative_price(db):
    with pytest.raises(InvalidPriceError):
        await catalog_ops.create_menu_item(db, name="Soup", price=-1, category="Lunch")


@pytest.mark.asyncio
async def test_rename_to_existing_name_conflicts(db, rice, juice):
    with pytest.raises(DuplicateNameError):
        await catalog_ops.update_menu_item(db, juice.id, {"name": "RICE"})

    # Renaming an item to its own name in another case is allowed.
    renamed = await catalog_ops.update_menu_item(db, rice.id, {"name": "rice"})
    assert renamed.name == "rice"


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(db, rice):
    with pytest.raises(ValidationError):
        await catalog_ops.update_menu_item(db, rice.id, {"available_days": ["Monday"]})


@pytest.mark.asyncio
async def test_get_missing_item_returns_none(db):
    assert await catalog_ops.get_menu_item(db, "no-such-item") is None


@pytest.mark.asyncio
async def test_search_and_counts(db, rice, juice):
    await catalog_ops.set_availability(db, juice.id, False)

    assert [i.name for i in await catalog_ops.search_menu_items(db, "steam")] == ["Rice"]
    assert await catalog_ops.search_menu_items(db, "juice", available_only=True) == []
    assert await catalog_ops.list_categories(db) == ["Drinks", "Lunch"]
    assert await catalog_ops.count_menu_items(db) == {"total": 2, "available": 1}


# ─── Bulk import ───────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_import_reports_invalid_price_with_spreadsheet_row_number(db):
    rows = [
        ["Rice", "Steamed rice", "20.00", "Lunch"],
        ["Soup", "Lentil soup", "-5", "Lunch"],
        ["Juice", "Fresh orange", "10", "Drinks"],
    ]
    result = await catalog_ops.bulk_import_menu_items(db, HEADERS, rows)

    assert result.success == 2
    assert result.duplicates == 0
    assert len(result.failed) == 1
    assert result.failed[0]["row"] == 3
    assert "Invalid price" in result.failed[0]["error"]

    items = await catalog_ops.list_menu_items(db)
    assert {i.name: i.price for i in items} == {"Juice": 1000, "Rice": 2000}


@pytest.mark.asyncio
async def test_reimport_counts_existing_names_as_duplicates(db):
    rows = [["Rice", "Steamed rice", "20", "Lunch"], ["Juice", "Fresh", "10", "Drinks"]]
    await catalog_ops.bulk_import_menu_items(db, HEADERS, rows)

    again = await catalog_ops.bulk_import_menu_items(db, HEADERS, rows + [["JUICE", "Again", "10", "Drinks"]])

    assert again.success == 0
    assert again.duplicates == 3
    assert again.failed == []
    assert (await catalog_ops.count_menu_items(db))["total"] == 2


@pytest.mark.asyncio
async def test_import_requires_core_columns(db):
    with pytest.raises(ValidationError) as exc:
        await catalog_ops.bulk_import_menu_items(db, ["Name", "Description", "Category"], [])
    assert exc.value.details["missing"] == ["price"]


@pytest.mark.asyncio
async def test_import_skips_blank_names_and_reports_missing_fields(db):
    rows = [
        ["", "No name", "5", "Snack"],
        ["Cookie", "", "5", "Snack"],
        ["Apple", "Crunchy", "abc", "Snack"],
    ]
    result = await catalog_ops.bulk_import_menu_items(db, HEADERS, rows)

    assert result.success == 0
    assert result.failed == [
        {"row": 3, "error": "Missing required fields: description"},
        {"row": 4, "error": "Invalid price: abc"},
    ]


@pytest.mark.asyncio
async def test_import_reads_optional_columns_and_legacy_flags(db):
    headers = HEADERS + ["Allergens", "isVegetarian", "isVegan", "prepTimeMinutes", "isAvailable"]
    rows = [["Dal", "Lentils", "4.50", "Lunch", "legumes, mustard", "yes", "false", "15", "no"]]

    result = await catalog_ops.bulk_import_menu_items(db, headers, rows)

    assert result.success == 1
    dal = await catalog_ops.find_by_name(db, "dal")
    assert dal.price == 450
    assert dal.allergens == ["legumes", "mustard"]
    assert dal.dietary_labels == ["Vegetarian"]
    assert dal.prep_time_minutes == 15
    assert dal.is_available is False


@pytest.mark.asyncio
async def test_import_commits_in_chunks(db):
    rows = [[f"Item {n}", "Thing", "1", "Snack"] for n in range(7)]
    result = await catalog_ops.bulk_import_menu_items(db, HEADERS, rows, chunk_size=3)
    assert result.success == 7
    assert (await catalog_ops.count_menu_items(db))["total"] == 7


# ─── Delete ────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_delete_removes_item_from_every_week(db, next_monday, rice, juice, published_week):
    following = next_monday + timedelta(days=7)
    await weekly_menu_ops.update_weekly_menu(db, following, {"Tuesday": {"lunch": [rice.id, juice.id]}})

    result = await catalog_ops.delete_menu_item(db, rice.id)

    assert result.deleted is True
    assert result.warnings == []
    assert sorted(result.cleaned_weeks) == [next_monday.isoformat(), following.isoformat()]
    assert await catalog_ops.get_menu_item(db, rice.id) is None

    for week in (next_monday, following):
        menu = await weekly_menu_ops.get_weekly_menu(db, week)
        for meals in menu.menu_items_by_day.values():
            for ids in meals.values():
                assert rice.id not in ids

    published = await weekly_menu_ops.get_weekly_menu(db, next_monday)
    assert published.publish_status == PublishStatus.PUBLISHED
    assert published.current_version == 1


@pytest.mark.asyncio
async def test_delete_stands_when_cleanup_fails(db, rice, published_week, monkeypatch):
    async def broken_cleanup(db, item_id):
        raise SQLAlchemyError("connection reset")

    monkeypatch.setattr(catalog_ops, "remove_item_from_weekly_menus", broken_cleanup)

    result = await catalog_ops.delete_menu_item(db, rice.id)

    assert result.deleted is True
    assert result.cleaned_weeks == []
    assert result.warnings == ["Weekly menu cleanup failed: SQLAlchemyError"]
    assert await catalog_ops.get_menu_item(db, rice.id) is None


@pytest.mark.asyncio
async def test_delete_missing_item(db):
    with pytest.raises(NotFoundError):
        await catalog_ops.delete_menu_item(db, "no-such-item")


# ─── Available days ────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_publish_sets_available_days(db, next_monday, rice, juice):
    await weekly_menu_ops.publish_weekly_menu(
        db, next_monday, {"Monday": {"lunch": [rice.id]}, "Wednesday": {"snack": [rice.id]}},
    )

    assert rice.available_days == ["Monday", "Wednesday"]
    monday_items = await catalog_ops.list_menu_items(db, day="Monday")
    assert [i.name for i in monday_items] == ["Rice"]
    assert await catalog_ops.list_menu_items(db, day="Friday") == []
