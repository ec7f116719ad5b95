"""
Canteen Service - Weekly menu planner

One WeeklyMenu per Monday. Content is {weekday: {meal_type: [item ids]}}
normalized to Monday..Friday x breakfast/lunch/snack/drinks.

Publishing bumps current_version with an optimistic compare-and-set:
  - READ:  fetch the menu and its current_version
  - WRITE: UPDATE ... WHERE current_version = <read_version>
  - If another publish committed first → StaleDataError → retry
and appends an immutable WeeklyMenuVersion snapshot in the same transaction.
Every other edit moves the menu back to draft without a snapshot.
"""
import copy
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.config import get_settings
from canteen.core.exceptions import (
    InvalidTransitionError,
    NoPreviousMenuError,
    NotFoundError,
    VersionNotFoundError,
)
from canteen.core.retry import StaleDataError, with_optimistic_retry, with_transient_retry
from canteen.core.utils import monday_of, utcnow
from canteen.db.catalog_ops import get_menu_items_by_ids, update_available_days
from canteen.models.menu import MEAL_TYPES, WEEKDAYS, MealType, MenuItem, PublishStatus, WeeklyMenu, WeeklyMenuVersion

settings = get_settings()
logger = logging.getLogger(__name__)

MenuByDay = dict[str, dict[str, list[str]]]


@dataclass
class SlotIssue:
    day: str
    meal_type: str
    message: str


@dataclass
class MenuValidation:
    errors: list[SlotIssue] = field(default_factory=list)
    warnings: list[SlotIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass
class AvailabilityReport:
    warnings: list[str] = field(default_factory=list)
    unavailable_item_ids: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.warnings


def _display(meal_type: str) -> str:
    try:
        return MealType(meal_type).display_name
    except ValueError:
        return meal_type.capitalize()


def normalize_menu_by_day(menu_by_day: Mapping[str, Any] | None) -> MenuByDay:
    """
    Exactly five weekdays x four meal types. Day and meal keys are matched
    case-insensitively; anything else (weekends, unknown meal types) is dropped
    and missing slots become empty lists.
    """
    source = {str(day).strip().capitalize(): meals for day, meals in (menu_by_day or {}).items()}
    normalized: MenuByDay = {}
    for day in WEEKDAYS:
        meals = source.get(day) or {}
        by_meal = {str(meal).strip().lower(): ids for meal, ids in meals.items()}
        normalized[day] = {meal: [str(i) for i in (by_meal.get(meal) or [])] for meal in MEAL_TYPES}
    return normalized


def max_items_for(meal_type: str) -> int:
    return settings.MAX_ITEMS_PER_MEAL.get(meal_type.lower(), settings.DEFAULT_MAX_ITEMS_PER_MEAL)


def validate_menu(menu_by_day: Mapping[str, Mapping[str, Sequence[str]]]) -> MenuValidation:
    """Slots over their limit are errors; empty slots are warnings."""
    report = MenuValidation()
    for day, meals in menu_by_day.items():
        for meal_type, ids in (meals or {}).items():
            count = len(ids or [])
            limit = max_items_for(meal_type)
            label = f"{day} - {_display(meal_type)}"
            if count > limit:
                report.errors.append(SlotIssue(
                    day, meal_type, f"{label}: Exceeds maximum of {limit} items (has {count})",
                ))
            elif count == 0:
                report.warnings.append(SlotIssue(day, meal_type, f"{label}: No items selected"))
    return report


async def validate_items_availability(
    db: AsyncSession, menu_by_day: Mapping[str, Mapping[str, Sequence[str]]],
) -> AvailabilityReport:
    """Warn about scheduled items that are unavailable or no longer exist."""
    all_ids = {i for meals in menu_by_day.values() for ids in (meals or {}).values() for i in (ids or [])}
    items = await get_menu_items_by_ids(db, all_ids)

    report = AvailabilityReport()
    for day, meals in menu_by_day.items():
        for meal_type, ids in (meals or {}).items():
            for item_id in ids or []:
                item = items.get(item_id)
                if item is None:
                    report.warnings.append(f"Item ID {item_id} not found in database")
                elif not item.is_available:
                    report.warnings.append(f'{day} - {_display(meal_type)}: "{item.name}" is unavailable')
                    if item_id not in report.unavailable_item_ids:
                        report.unavailable_item_ids.append(item_id)
    return report


# ── Reads ─────────────────────────────────────────────────────

async def _load(db: AsyncSession, monday: date) -> WeeklyMenu | None:
    result = await db.execute(select(WeeklyMenu).where(WeeklyMenu.week_start == monday))
    return result.scalar_one_or_none()


async def _require(db: AsyncSession, monday: date) -> WeeklyMenu:
    menu = await _load(db, monday)
    if menu is None:
        raise NotFoundError("WeeklyMenu", monday.isoformat())
    return menu


@with_transient_retry()
async def get_weekly_menu(db: AsyncSession, week_start: date) -> WeeklyMenu | None:
    return await _load(db, monday_of(week_start))


@with_transient_retry()
async def get_published_menu(db: AsyncSession, day: date) -> WeeklyMenu | None:
    menu = await _load(db, monday_of(day))
    if menu is None or menu.publish_status != PublishStatus.PUBLISHED:
        return None
    return menu


@with_transient_retry()
async def list_weekly_menus(
    db: AsyncSession, *, status: PublishStatus | None = None, limit: int = 52,
) -> list[WeeklyMenu]:
    stmt = select(WeeklyMenu).order_by(WeeklyMenu.week_start.desc()).limit(limit)
    if status:
        stmt = stmt.where(WeeklyMenu.publish_status == status)
    return list((await db.execute(stmt)).scalars())


@with_transient_retry()
async def list_versions(db: AsyncSession, week_start: date) -> list[WeeklyMenuVersion]:
    """Snapshots for one week, latest first. Empty when the week has no menu."""
    result = await db.execute(
        select(WeeklyMenuVersion)
        .where(WeeklyMenuVersion.week_start == monday_of(week_start))
        .order_by(WeeklyMenuVersion.version.desc())
    )
    return list(result.scalars())


@with_transient_retry()
async def publish_history(db: AsyncSession, *, limit: int = 20) -> list[WeeklyMenuVersion]:
    result = await db.execute(
        select(WeeklyMenuVersion).order_by(WeeklyMenuVersion.created_at.desc()).limit(limit)
    )
    return list(result.scalars())


async def items_for_day(
    db: AsyncSession, week_start: date, day: str, meal_type: str | None = None,
) -> list[MenuItem]:
    """Available items on the published menu for one weekday, in schedule order."""
    menu = await get_published_menu(db, week_start)
    if menu is None:
        return []
    meals = (menu.menu_items_by_day or {}).get(day.capitalize()) or {}
    if meal_type:
        ids = list(meals.get(meal_type.lower()) or [])
    else:
        ids = [i for meal in MEAL_TYPES for i in (meals.get(meal) or [])]
    items = await get_menu_items_by_ids(db, ids)
    ordered = [items[i] for i in dict.fromkeys(ids) if i in items]
    return [item for item in ordered if item.is_available]


# ── Writes ────────────────────────────────────────────────────

@with_optimistic_retry()
async def publish_weekly_menu(
    db: AsyncSession,
    week_start: date,
    menu_by_day: Mapping[str, Any],
    actor_id: str | None = None,
) -> WeeklyMenu:
    """
    Publish content for the week containing week_start.
    New menus start at version 1; existing ones go to current_version + 1.
    """
    monday = monday_of(week_start)
    content = normalize_menu_by_day(menu_by_day)
    now = utcnow()
    menu = await _load(db, monday)

    try:
        if menu is None:
            menu = WeeklyMenu(
                week_start=monday,
                menu_items_by_day=content,
                publish_status=PublishStatus.PUBLISHED,
                current_version=1,
                published_at=now,
            )
            db.add(menu)
            await db.flush()
            new_version = 1
        else:
            expected = menu.current_version
            new_version = expected + 1
            result = await db.execute(
                update(WeeklyMenu)
                .where(WeeklyMenu.id == menu.id, WeeklyMenu.current_version == expected)
                .values(
                    menu_items_by_day=content,
                    publish_status=PublishStatus.PUBLISHED,
                    current_version=new_version,
                    published_at=now,
                    archived_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await db.rollback()
                raise StaleDataError("Optimistic lock conflict: weekly menu version changed concurrently.")

        db.add(WeeklyMenuVersion(
            weekly_menu_id=menu.id,
            version=new_version,
            week_start=monday,
            menu_items_by_day=copy.deepcopy(content),
            created_by=actor_id,
        ))
        await update_available_days(db, content)
        await db.commit()
    except IntegrityError:
        # Concurrent first publish of the same week, or a duplicate version number.
        await db.rollback()
        raise StaleDataError("Weekly menu was created or versioned concurrently.")

    await db.refresh(menu)
    logger.info("Weekly menu %s published as version %d", monday, new_version)
    return menu


@with_optimistic_retry()
async def update_weekly_menu(db: AsyncSession, week_start: date, menu_by_day: Mapping[str, Any]) -> WeeklyMenu:
    """Save content as a draft. Creates a version-0 draft when the week is new."""
    monday = monday_of(week_start)
    content = normalize_menu_by_day(menu_by_day)
    now = utcnow()
    menu = await _load(db, monday)
    try:
        if menu is None:
            menu = WeeklyMenu(
                week_start=monday,
                menu_items_by_day=content,
                publish_status=PublishStatus.DRAFT,
                current_version=0,
            )
            db.add(menu)
        else:
            menu.menu_items_by_day = content
            menu.publish_status = PublishStatus.DRAFT
            menu.updated_at = now
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise StaleDataError("Weekly menu was created concurrently.")
    return menu


async def unpublish_weekly_menu(db: AsyncSession, week_start: date) -> WeeklyMenu:
    menu = await _require(db, monday_of(week_start))
    if menu.publish_status == PublishStatus.ARCHIVED:
        raise InvalidTransitionError("weekly menu", PublishStatus.ARCHIVED.value, PublishStatus.DRAFT.value)
    menu.publish_status = PublishStatus.DRAFT
    menu.published_at = None
    menu.updated_at = utcnow()
    await db.commit()
    return menu


async def archive_weekly_menu(db: AsyncSession, week_start: date) -> WeeklyMenu:
    menu = await _require(db, monday_of(week_start))
    if menu.publish_status != PublishStatus.ARCHIVED:
        now = utcnow()
        menu.publish_status = PublishStatus.ARCHIVED
        menu.archived_at = now
        menu.updated_at = now
        await db.commit()
    return menu


async def revert_to_version(db: AsyncSession, week_start: date, version: int) -> WeeklyMenu:
    """Copy a snapshot back into the live content as a draft. current_version is unchanged."""
    monday = monday_of(week_start)
    menu = await _require(db, monday)
    snapshot = (await db.execute(
        select(WeeklyMenuVersion).where(
            WeeklyMenuVersion.weekly_menu_id == menu.id,
            WeeklyMenuVersion.version == version,
        )
    )).scalar_one_or_none()
    if snapshot is None:
        raise VersionNotFoundError(monday, version)

    menu.menu_items_by_day = copy.deepcopy(snapshot.menu_items_by_day)
    menu.publish_status = PublishStatus.DRAFT
    menu.updated_at = utcnow()
    await db.commit()
    logger.info("Weekly menu %s reverted to version %d", monday, version)
    return menu


async def copy_from_previous_week(db: AsyncSession, target_week_start: date) -> WeeklyMenu:
    """Copy last week's content into the target week as a draft."""
    target = monday_of(target_week_start)
    previous_monday = target - timedelta(days=7)
    previous = await _load(db, previous_monday)
    if previous is None:
        raise NoPreviousMenuError(previous_monday)
    return await update_weekly_menu(db, target, copy.deepcopy(previous.menu_items_by_day))


async def delete_weekly_menu(db: AsyncSession, week_start: date) -> None:
    menu = await _require(db, monday_of(week_start))
    await db.execute(delete(WeeklyMenuVersion).where(WeeklyMenuVersion.weekly_menu_id == menu.id))
    await db.delete(menu)
    await db.commit()
    logger.info("Weekly menu %s deleted", menu.week_start)
