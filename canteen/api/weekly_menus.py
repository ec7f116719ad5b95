"""
Canteen Service - Weekly menu API

week_start in paths may be any date; it is normalized to that week's Monday.
Parents only ever see published menus.
"""
from datetime import date

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.api.deps import CurrentUser, get_current_user, require_admin
from canteen.core.events import TOPIC_WEEKLY_MENUS, ChangeFeed, get_change_feed
from canteen.core.exceptions import NotFoundError, ValidationError
from canteen.core.utils import monday_of, utcnow
from canteen.db import weekly_menu_ops
from canteen.db.database import get_db
from canteen.models.menu import PublishStatus
from canteen.schemas.menu import MenuItemResponse
from canteen.schemas.weekly_menu import (
    AvailabilityResponse,
    CopyWeekRequest,
    MenuValidationResponse,
    WeeklyMenuResponse,
    WeeklyMenuVersionResponse,
    WeeklyMenuWrite,
    version_list,
)

router = APIRouter(prefix="/weekly-menus", tags=["weekly-menus"])


def _validation_response(report: weekly_menu_ops.MenuValidation) -> MenuValidationResponse:
    return MenuValidationResponse(
        is_valid=report.is_valid,
        errors=[vars(e) for e in report.errors],
        warnings=[vars(w) for w in report.warnings],
    )


async def _changed(feed: ChangeFeed, action: str, week_start: date) -> None:
    await feed.publish(TOPIC_WEEKLY_MENUS, {"action": action, "week_start": monday_of(week_start).isoformat()})


# ── Reads ─────────────────────────────────────────────────────

@router.get("", response_model=list[WeeklyMenuResponse])
async def list_weekly_menus(
    publish_status: PublishStatus | None = None,
    limit: int = 52,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    menus = await weekly_menu_ops.list_weekly_menus(db, status=publish_status, limit=limit)
    return [WeeklyMenuResponse.from_model(m) for m in menus]


@router.get("/history", response_model=list[WeeklyMenuVersionResponse])
async def publish_history(
    limit: int = 20,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return version_list(await weekly_menu_ops.publish_history(db, limit=limit))


@router.get("/current", response_model=WeeklyMenuResponse)
async def current_menu(
    on: date | None = None,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    """The published menu for the week containing `on` (default: today)."""
    day = on or utcnow().date()
    menu = await weekly_menu_ops.get_published_menu(db, day)
    if menu is None:
        raise NotFoundError("WeeklyMenu", monday_of(day).isoformat())
    return WeeklyMenuResponse.from_model(menu)


@router.get("/{week_start}", response_model=WeeklyMenuResponse)
async def get_weekly_menu(
    week_start: date,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    if user.is_admin:
        menu = await weekly_menu_ops.get_weekly_menu(db, week_start)
    else:
        menu = await weekly_menu_ops.get_published_menu(db, week_start)
    if menu is None:
        raise NotFoundError("WeeklyMenu", monday_of(week_start).isoformat())
    return WeeklyMenuResponse.from_model(menu)


@router.get("/{week_start}/items", response_model=list[MenuItemResponse])
async def items_for_day(
    week_start: date,
    day: str,
    meal_type: str | None = None,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    items = await weekly_menu_ops.items_for_day(db, week_start, day, meal_type)
    return [MenuItemResponse.from_model(i) for i in items]


@router.get("/{week_start}/versions", response_model=list[WeeklyMenuVersionResponse])
async def list_versions(
    week_start: date,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return version_list(await weekly_menu_ops.list_versions(db, week_start))


# ── Validation ────────────────────────────────────────────────

@router.post("/validate", response_model=MenuValidationResponse)
async def validate_menu(
    payload: WeeklyMenuWrite,
    admin: CurrentUser = Depends(require_admin),
):
    return _validation_response(weekly_menu_ops.validate_menu(payload.menu_items_by_day))


@router.post("/validate-availability", response_model=AvailabilityResponse)
async def validate_availability(
    payload: WeeklyMenuWrite,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    report = await weekly_menu_ops.validate_items_availability(db, payload.menu_items_by_day)
    return AvailabilityResponse(
        is_valid=report.is_valid,
        warnings=report.warnings,
        unavailable_item_ids=report.unavailable_item_ids,
    )


# ── Writes ────────────────────────────────────────────────────

@router.put("/{week_start}", response_model=WeeklyMenuResponse)
async def save_draft(
    week_start: date,
    payload: WeeklyMenuWrite,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    menu = await weekly_menu_ops.update_weekly_menu(db, week_start, payload.menu_items_by_day)
    await _changed(feed, "updated", week_start)
    return WeeklyMenuResponse.from_model(menu)


@router.post("/{week_start}/publish", response_model=WeeklyMenuResponse)
async def publish(
    week_start: date,
    payload: WeeklyMenuWrite,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    content = weekly_menu_ops.normalize_menu_by_day(payload.menu_items_by_day)
    report = weekly_menu_ops.validate_menu(content)
    if not report.is_valid:
        raise ValidationError(
            "Menu exceeds the per-meal item limits.",
            details={"errors": [e.message for e in report.errors]},
        )
    menu = await weekly_menu_ops.publish_weekly_menu(db, week_start, content, actor_id=admin.id)
    await _changed(feed, "published", week_start)
    return WeeklyMenuResponse.from_model(menu)


@router.post("/{week_start}/unpublish", response_model=WeeklyMenuResponse)
async def unpublish(
    week_start: date,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    menu = await weekly_menu_ops.unpublish_weekly_menu(db, week_start)
    await _changed(feed, "unpublished", week_start)
    return WeeklyMenuResponse.from_model(menu)


@router.post("/{week_start}/archive", response_model=WeeklyMenuResponse)
async def archive(
    week_start: date,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    menu = await weekly_menu_ops.archive_weekly_menu(db, week_start)
    await _changed(feed, "archived", week_start)
    return WeeklyMenuResponse.from_model(menu)


@router.post("/{week_start}/revert/{version}", response_model=WeeklyMenuResponse)
async def revert(
    week_start: date,
    version: int,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    menu = await weekly_menu_ops.revert_to_version(db, week_start, version)
    await _changed(feed, "reverted", week_start)
    return WeeklyMenuResponse.from_model(menu)


@router.post("/copy-previous", response_model=WeeklyMenuResponse)
async def copy_previous_week(
    payload: CopyWeekRequest,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    menu = await weekly_menu_ops.copy_from_previous_week(db, payload.target_week_start)
    await _changed(feed, "copied", payload.target_week_start)
    return WeeklyMenuResponse.from_model(menu)


@router.delete("/{week_start}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_weekly_menu(
    week_start: date,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    await weekly_menu_ops.delete_weekly_menu(db, week_start)
    await _changed(feed, "deleted", week_start)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
