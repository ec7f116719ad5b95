"""
Canteen Service - Menu catalog API

Reads are open to any signed-in user; writes are admin-only and publish a
change message for the menu streams.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.api.deps import CurrentUser, get_current_user, require_admin
from canteen.core.events import TOPIC_MENU_ITEMS, TOPIC_WEEKLY_MENUS, ChangeFeed, get_change_feed
from canteen.core.exceptions import NotFoundError
from canteen.core.utils import to_cents
from canteen.db import catalog_ops
from canteen.db.database import get_db
from canteen.schemas.menu import (
    AvailabilityUpdate,
    DeleteResponse,
    ImportRequest,
    ImportResponse,
    MenuItemCounts,
    MenuItemCreate,
    MenuItemResponse,
    MenuItemUpdate,
)

router = APIRouter(prefix="/menu-items", tags=["menu-items"])


@router.get("", response_model=list[MenuItemResponse])
async def list_menu_items(
    category: str | None = None,
    available_only: bool = False,
    day: str | None = Query(None, description="Weekday name, e.g. Monday"),
    q: str | None = Query(None, description="Search name and description"),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    if q:
        items = await catalog_ops.search_menu_items(db, q, available_only=available_only)
    else:
        items = await catalog_ops.list_menu_items(
            db, category=category, available_only=available_only, day=day,
        )
    return [MenuItemResponse.from_model(i) for i in items]


@router.get("/categories", response_model=list[str])
async def list_categories(
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    return await catalog_ops.list_categories(db)


@router.get("/counts", response_model=MenuItemCounts)
async def count_menu_items(
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return await catalog_ops.count_menu_items(db)


@router.get("/{item_id}", response_model=MenuItemResponse)
async def get_menu_item(
    item_id: str,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
):
    item = await catalog_ops.get_menu_item(db, item_id)
    if item is None:
        raise NotFoundError("MenuItem", item_id)
    return MenuItemResponse.from_model(item)


@router.post("", response_model=MenuItemResponse, status_code=status.HTTP_201_CREATED)
async def create_menu_item(
    payload: MenuItemCreate,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    data = payload.model_dump()
    data["price"] = to_cents(payload.price)
    item = await catalog_ops.create_menu_item(db, **data)
    await feed.publish(TOPIC_MENU_ITEMS, {"action": "created", "id": item.id})
    return MenuItemResponse.from_model(item)


@router.patch("/{item_id}", response_model=MenuItemResponse)
async def update_menu_item(
    item_id: str,
    payload: MenuItemUpdate,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("price") is not None:
        changes["price"] = to_cents(changes["price"])
    item = await catalog_ops.update_menu_item(db, item_id, changes)
    await feed.publish(TOPIC_MENU_ITEMS, {"action": "updated", "id": item.id})
    return MenuItemResponse.from_model(item)


@router.put("/{item_id}/availability", response_model=MenuItemResponse)
async def set_availability(
    item_id: str,
    payload: AvailabilityUpdate,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    item = await catalog_ops.set_availability(db, item_id, payload.is_available)
    await feed.publish(TOPIC_MENU_ITEMS, {"action": "availability", "id": item.id})
    return MenuItemResponse.from_model(item)


@router.delete("/{item_id}", response_model=DeleteResponse)
async def delete_menu_item(
    item_id: str,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    result = await catalog_ops.delete_menu_item(db, item_id)
    await feed.publish(TOPIC_MENU_ITEMS, {"action": "deleted", "id": item_id})
    if result.cleaned_weeks:
        await feed.publish(TOPIC_WEEKLY_MENUS, {"action": "item_removed", "weeks": result.cleaned_weeks})
    return DeleteResponse(**vars(result))


@router.post("/import", response_model=ImportResponse)
async def import_menu_items(
    payload: ImportRequest,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """Import rows already parsed from a spreadsheet. The first header row is not part of rows."""
    result = await catalog_ops.bulk_import_menu_items(db, payload.headers, payload.rows)
    if result.success:
        await feed.publish(TOPIC_MENU_ITEMS, {"action": "imported", "count": result.success})
    return ImportResponse(success=result.success, duplicates=result.duplicates, failed=result.failed)
