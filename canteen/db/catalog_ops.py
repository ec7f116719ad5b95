"""
Canteen Service - Menu catalog operations

Admin CRUD over menu_items, spreadsheet-row import, and the derived
available_days projection that weekly menu publishes keep up to date.
"""
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.config import get_settings
from canteen.core.exceptions import DuplicateNameError, InvalidPriceError, NotFoundError, ValidationError
from canteen.core.retry import with_transient_retry
from canteen.core.utils import to_cents, utcnow
from canteen.models.menu import WEEKDAYS, MenuItem, WeeklyMenu

settings = get_settings()
logger = logging.getLogger(__name__)

REQUIRED_IMPORT_COLUMNS = ("name", "description", "price", "category")
UPDATABLE_FIELDS = frozenset({
    "name", "description", "price", "category", "allergens", "dietary_labels",
    "is_available", "prep_time_minutes", "image_url",
})
LEGACY_LABEL_COLUMNS = (
    ("isvegetarian", "Vegetarian"),
    ("isvegan", "Vegan"),
    ("isglutenfree", "Gluten-Free"),
)
TRUE_VALUES = frozenset({"true", "yes", "1"})


@dataclass
class DeleteResult:
    item_id: str
    deleted: bool = True
    cleaned_weeks: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class ImportResult:
    success: int = 0
    duplicates: int = 0
    failed: list[dict[str, Any]] = field(default_factory=list)

    def fail(self, row_number: int, error: str) -> None:
        self.failed.append({"row": row_number, "error": error})


# ── Lookups ───────────────────────────────────────────────────

async def find_by_name(db: AsyncSession, name: str, *, exclude_id: str | None = None) -> MenuItem | None:
    stmt = select(MenuItem).where(func.lower(MenuItem.name) == name.strip().lower())
    if exclude_id:
        stmt = stmt.where(MenuItem.id != exclude_id)
    return (await db.execute(stmt)).scalars().first()


@with_transient_retry()
async def get_menu_item(db: AsyncSession, item_id: str) -> MenuItem | None:
    return await db.get(MenuItem, item_id)


@with_transient_retry()
async def list_menu_items(
    db: AsyncSession,
    *,
    category: str | None = None,
    available_only: bool = False,
    day: str | None = None,
) -> list[MenuItem]:
    stmt = select(MenuItem).order_by(MenuItem.name)
    if category:
        stmt = stmt.where(MenuItem.category == category)
    if available_only:
        stmt = stmt.where(MenuItem.is_available.is_(True))
    items = list((await db.execute(stmt)).scalars())
    if day:
        # available_days is a JSON array; filtering in Python keeps this dialect-neutral.
        items = [item for item in items if day in (item.available_days or [])]
    return items


@with_transient_retry()
async def search_menu_items(db: AsyncSession, query: str, *, available_only: bool = False) -> list[MenuItem]:
    """Case-insensitive substring match on name or description."""
    needle = query.strip().lower()
    if not needle:
        return []
    stmt = (
        select(MenuItem)
        .where(or_(
            func.lower(MenuItem.name).contains(needle, autoescape=True),
            func.lower(MenuItem.description).contains(needle, autoescape=True),
        ))
        .order_by(MenuItem.name)
    )
    if available_only:
        stmt = stmt.where(MenuItem.is_available.is_(True))
    return list((await db.execute(stmt)).scalars())


@with_transient_retry()
async def list_categories(db: AsyncSession) -> list[str]:
    result = await db.execute(select(MenuItem.category).distinct().order_by(MenuItem.category))
    return [c for c in result.scalars() if c]


@with_transient_retry()
async def count_menu_items(db: AsyncSession) -> dict[str, int]:
    total = await db.scalar(select(func.count()).select_from(MenuItem))
    available = await db.scalar(
        select(func.count()).select_from(MenuItem).where(MenuItem.is_available.is_(True))
    )
    return {"total": total or 0, "available": available or 0}


async def get_menu_items_by_ids(db: AsyncSession, item_ids: Iterable[str]) -> dict[str, MenuItem]:
    """Fetch items keyed by id, in batches so IN lists stay under the driver limit."""
    unique_ids = list(dict.fromkeys(str(i) for i in item_ids if i))
    found: dict[str, MenuItem] = {}
    batch = settings.DB_IN_QUERY_LIMIT
    for start in range(0, len(unique_ids), batch):
        chunk = unique_ids[start:start + batch]
        result = await db.execute(select(MenuItem).where(MenuItem.id.in_(chunk)))
        for item in result.scalars():
            found[item.id] = item
    return found


# ── Writes ────────────────────────────────────────────────────

def _check_price(price: int) -> int:
    if isinstance(price, bool) or not isinstance(price, int) or price < 0:
        raise InvalidPriceError(f"Invalid price: {price}")
    return price


async def create_menu_item(
    db: AsyncSession,
    *,
    name: str,
    price: int,
    category: str,
    description: str = "",
    allergens: Sequence[str] = (),
    dietary_labels: Sequence[str] = (),
    is_available: bool = True,
    prep_time_minutes: int | None = None,
    image_url: str | None = None,
) -> MenuItem:
    """Create one catalog item. price is in cents."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Menu item name is required.")
    if not (category or "").strip():
        raise ValidationError("Menu item category is required.")
    _check_price(price)

    if await find_by_name(db, name) is not None:
        raise DuplicateNameError(name)

    item = MenuItem(
        name=name,
        description=description or "",
        price=price,
        category=category.strip(),
        allergens=list(allergens),
        dietary_labels=list(dietary_labels),
        is_available=is_available,
        prep_time_minutes=prep_time_minutes,
        image_url=image_url,
        available_days=[],
    )
    db.add(item)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent insert of the same name.
        await db.rollback()
        raise DuplicateNameError(name)
    logger.info("Menu item created: %s (%s)", item.name, item.id)
    return item


async def update_menu_item(db: AsyncSession, item_id: str, changes: Mapping[str, Any]) -> MenuItem:
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

    item = await db.get(MenuItem, item_id)
    if item is None:
        raise NotFoundError("MenuItem", item_id)

    if "name" in changes:
        new_name = (changes["name"] or "").strip()
        if not new_name:
            raise ValidationError("Menu item name is required.")
        if await find_by_name(db, new_name, exclude_id=item_id) is not None:
            raise DuplicateNameError(new_name)
        changes = {**changes, "name": new_name}
    if "price" in changes:
        _check_price(changes["price"])

    for key, value in changes.items():
        if key in ("allergens", "dietary_labels"):
            value = list(value or [])
        setattr(item, key, value)
    item.updated_at = utcnow()

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateNameError(changes.get("name", item_id))
    return item


async def set_availability(db: AsyncSession, item_id: str, is_available: bool) -> MenuItem:
    return await update_menu_item(db, item_id, {"is_available": is_available})


async def remove_item_from_weekly_menus(db: AsyncSession, item_id: str) -> list[str]:
    """
    Strip item_id from every weekly menu that references it.
    Status and version are left alone; published snapshots keep the old content.
    Returns the affected week_start dates as ISO strings.
    """
    touched: list[str] = []
    now = utcnow()
    menus = (await db.execute(select(WeeklyMenu))).scalars().all()
    for menu in menus:
        content = menu.menu_items_by_day or {}
        changed = False
        cleaned: dict[str, dict[str, list[str]]] = {}
        for day, meals in content.items():
            cleaned[day] = {}
            for meal, ids in (meals or {}).items():
                kept = [i for i in (ids or []) if i != item_id]
                changed = changed or len(kept) != len(ids or [])
                cleaned[day][meal] = kept
        if changed:
            menu.menu_items_by_day = cleaned
            menu.updated_at = now
            touched.append(menu.week_start.isoformat())
    if touched:
        await db.commit()
    return touched


async def delete_menu_item(db: AsyncSession, item_id: str) -> DeleteResult:
    """
    Delete the item, then clean up weekly menu references.
    The cleanup is best-effort: if it fails the deletion stands and the
    failure is reported as a warning.
    """
    item = await db.get(MenuItem, item_id)
    if item is None:
        raise NotFoundError("MenuItem", item_id)
    await db.delete(item)
    await db.commit()

    result = DeleteResult(item_id=item_id)
    try:
        result.cleaned_weeks = await remove_item_from_weekly_menus(db, item_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("Weekly menu cleanup failed after deleting %s: %s", item_id, exc)
        result.warnings.append(f"Weekly menu cleanup failed: {exc.__class__.__name__}")
    logger.info("Menu item deleted: %s (cleaned %d weeks)", item_id, len(result.cleaned_weeks))
    return result


async def update_available_days(db: AsyncSession, menu_by_day: Mapping[str, Mapping[str, Sequence[str]]]) -> int:
    """
    Recompute available_days for every item referenced by menu_by_day.
    Does not commit; the caller owns the transaction. Returns the number of items touched.
    """
    days_by_item: dict[str, list[str]] = {}
    for day in WEEKDAYS:
        for ids in (menu_by_day.get(day) or {}).values():
            for item_id in ids or []:
                days = days_by_item.setdefault(item_id, [])
                if day not in days:
                    days.append(day)

    items = await get_menu_items_by_ids(db, days_by_item)
    for item_id, item in items.items():
        item.available_days = days_by_item[item_id]
    missing = len(days_by_item) - len(items)
    if missing:
        logger.debug("Skipped %d unknown item ids while updating available days", missing)
    return len(items)


# ── Bulk import ───────────────────────────────────────────────

def _cell(row: Sequence[Any], index: int | None) -> str:
    if index is None or index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()


def _split_list(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parse_price(raw: str) -> int:
    try:
        cents = to_cents(raw)
    except ValueError:
        raise InvalidPriceError(f"Invalid price: {raw}")
    if cents < 0:
        raise InvalidPriceError(f"Invalid price: {raw}")
    return cents


def _item_from_row(values: dict[str, str]) -> MenuItem:
    price = _parse_price(values["price"])

    dietary = _split_list(values.get("dietarylabels", ""))
    if not dietary:
        dietary = [label for column, label in LEGACY_LABEL_COLUMNS
                   if values.get(column, "").lower() in TRUE_VALUES]

    prep_raw = values.get("preptimeminutes", "")
    prep_time = int(prep_raw) if prep_raw.isdigit() else None

    available_raw = values.get("isavailable", "")
    is_available = available_raw.lower() in TRUE_VALUES if available_raw else True

    return MenuItem(
        name=values["name"],
        description=values["description"],
        price=price,
        category=values["category"],
        allergens=_split_list(values.get("allergens", "")),
        dietary_labels=dietary,
        is_available=is_available,
        prep_time_minutes=prep_time,
        available_days=[],
    )


async def _commit_chunk(db: AsyncSession, chunk: list[tuple[int, MenuItem]], result: ImportResult) -> None:
    db.add_all([item for _, item in chunk])
    try:
        await db.commit()
        result.success += len(chunk)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("Import chunk of %d rows failed: %s", len(chunk), exc)
        for row_number, _ in chunk:
            result.fail(row_number, f"Insert failed: {exc.__class__.__name__}")


async def bulk_import_menu_items(
    db: AsyncSession,
    headers: Sequence[Any],
    rows: Sequence[Sequence[Any]],
    *,
    chunk_size: int | None = None,
) -> ImportResult:
    """
    Import parsed spreadsheet rows. Header names are matched case-insensitively.

    Row numbers in the report count the header as row 1. Rows with a blank
    name are skipped silently. Names already in the catalog (or earlier in the
    file) count as duplicates, which makes re-running an import harmless.
    Valid rows are committed in chunks of IMPORT_CHUNK_SIZE.
    """
    columns = [str(h or "").strip().lower() for h in headers]
    missing = [c for c in REQUIRED_IMPORT_COLUMNS if c not in columns]
    if missing:
        raise ValidationError(
            "Import must contain required columns: " + ", ".join(REQUIRED_IMPORT_COLUMNS),
            details={"missing": missing},
        )
    index: dict[str, int] = {}
    for position, column in enumerate(columns):
        if column and column not in index:
            index[column] = position

    size = chunk_size or settings.IMPORT_CHUNK_SIZE
    known = {name.lower() for name in (await db.execute(select(MenuItem.name))).scalars()}
    result = ImportResult()
    pending: list[tuple[int, MenuItem]] = []

    for offset, row in enumerate(rows):
        row_number = offset + 2
        values = {column: _cell(row, position) for column, position in index.items()}
        if not values.get("name"):
            continue

        absent = [c for c in ("description", "category") if not values.get(c)]
        if absent:
            result.fail(row_number, "Missing required fields: " + ", ".join(absent))
            continue

        key = values["name"].lower()
        if key in known:
            result.duplicates += 1
            continue

        try:
            item = _item_from_row(values)
        except ValidationError as exc:
            result.fail(row_number, exc.message)
            continue

        known.add(key)
        pending.append((row_number, item))
        if len(pending) >= size:
            await _commit_chunk(db, pending, result)
            pending = []

    if pending:
        await _commit_chunk(db, pending, result)

    result.failed.sort(key=lambda f: f["row"])
    logger.info(
        "Menu import finished: %d created, %d duplicates, %d failed",
        result.success, result.duplicates, len(result.failed),
    )
    return result
