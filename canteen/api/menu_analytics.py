"""
Canteen Service - Weekly menu analytics API (admin only)

GET    /weekly-menus/analytics/recent?weeks=N
GET    /weekly-menus/analytics/compare?week1=&week2=
GET    /weekly-menus/{week_start}/analytics
GET    /weekly-menus/{week_start}/analytics/categories
POST   /weekly-menus/{week_start}/analytics/refresh
DELETE /weekly-menus/{week_start}/analytics
"""
from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.api.deps import CurrentUser, require_admin
from canteen.core.exceptions import NotFoundError
from canteen.core.utils import monday_of
from canteen.db import analytics_ops
from canteen.db.catalog_ops import get_menu_items_by_ids
from canteen.db.database import get_db
from canteen.schemas.weekly_menu import ItemCount, WeekAnalyticsResponse, WeekComparisonResponse

router = APIRouter(prefix="/weekly-menus", tags=["menu-analytics"])


async def _stored(db: AsyncSession, week_start: date) -> analytics_ops.WeekAnalytics:
    analytics = await analytics_ops.get_week_analytics(db, week_start)
    if analytics is None:
        raise NotFoundError("MenuAnalytics", monday_of(week_start).isoformat())
    return analytics


@router.get("/analytics/recent", response_model=list[WeekAnalyticsResponse])
async def recent_analytics(
    weeks: int = Query(4, ge=1, le=52),
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return [WeekAnalyticsResponse.from_result(a) for a in await analytics_ops.recent_analytics(db, weeks)]


@router.get("/analytics/compare", response_model=WeekComparisonResponse)
async def compare_weeks(
    week1: date,
    week2: date,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return WeekComparisonResponse.from_result(await analytics_ops.compare_weeks(db, week1, week2))


@router.get("/{week_start}/analytics", response_model=WeekAnalyticsResponse)
async def week_analytics(
    week_start: date,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return WeekAnalyticsResponse.from_result(await _stored(db, week_start))


@router.get("/{week_start}/analytics/categories", response_model=dict[str, list[ItemCount]])
async def top_by_category(
    week_start: date,
    limit: int = Query(3, ge=1, le=20),
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    analytics = await _stored(db, week_start)
    items = await get_menu_items_by_ids(db, list(analytics.total_order_counts))
    return {
        category: [ItemCount(menu_item_id=i, quantity=q) for i, q in ranked]
        for category, ranked in analytics.top_by_category(items, limit).items()
    }


@router.post("/{week_start}/analytics/refresh", response_model=WeekAnalyticsResponse)
async def refresh_analytics(
    week_start: date,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    return WeekAnalyticsResponse.from_result(await analytics_ops.refresh_week_analytics(db, week_start))


@router.delete("/{week_start}/analytics", status_code=status.HTTP_204_NO_CONTENT)
async def delete_analytics(
    week_start: date,
    db: AsyncSession = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
):
    await analytics_ops.delete_week_analytics(db, week_start)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
