import logging
import math
import re
from datetime import date
from typing import Dict, List, Optional, Tuple, Type

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from . import models
from .enums import RecordFamily


logger = logging.getLogger(__name__)


class NotFoundError(LookupError):
    pass


class CategoryHierarchyError(ValueError):
    pass


RECORD_MODELS: Dict[RecordFamily, Type] = {
    RecordFamily.EPS: models.EpsRecord,
    RecordFamily.PE: models.PeRecord,
    RecordFamily.ROA_ROE: models.RoaRoeRecord,
    RecordFamily.FINANCIAL_RATIO: models.FinancialRatioRecord,
}

# API sort key -> column attribute
RECORD_SORT_FIELDS: Dict[RecordFamily, Dict[str, str]] = {
    RecordFamily.EPS: {
        "reportDate": "report_date", "eps": "eps", "epsNganh": "eps_nganh", "epsRate": "eps_rate",
    },
    RecordFamily.PE: {
        "reportDate": "report_date", "pe": "pe", "peNganh": "pe_nganh", "peRate": "pe_rate",
    },
    RecordFamily.ROA_ROE: {
        "reportDate": "report_date", "roa": "roa", "roe": "roe",
        "roeNganh": "roe_nganh", "roaNganh": "roa_nganh",
    },
    RecordFamily.FINANCIAL_RATIO: {
        "reportDate": "report_date", "debtEquity": "debt_equity",
        "assetsEquity": "assets_equity", "debtEquityPct": "debt_equity_pct",
    },
}

RECORD_METRIC_COLUMNS: Dict[RecordFamily, List[str]] = {
    family: [column for column in fields.values() if column != "report_date"]
    for family, fields in RECORD_SORT_FIELDS.items()
}

Q_INDEX_SORT_FIELDS = ("date", "open", "high", "low")


def build_pagination(total: int, item_count: int, page: int, limit: int) -> dict:
    return {
        "total_items": total,
        "item_count": item_count,
        "items_per_page": limit,
        "total_pages": math.ceil(total / limit) if limit else 0,
        "current_page": page,
    }


def _order(column, sort_order: str):
    return column.desc() if sort_order == "desc" else column.asc()


# --- Stocks ---

def get_stock_by_symbol(db: Session, symbol: str) -> Optional[models.Stock]:
    stmt = select(models.Stock).where(models.Stock.symbol == symbol.upper())
    return db.scalars(stmt).first()


def get_stock_by_id(db: Session, stock_id: int) -> Optional[models.Stock]:
    return db.get(models.Stock, stock_id)


def get_stocks(
    db: Session,
    page: int = 1,
    limit: int = 10,
    name: Optional[str] = None,
    symbol: Optional[str] = None,
) -> Tuple[List[models.Stock], int]:
    stmt = select(models.Stock)
    if name:
        stmt = stmt.where(models.Stock.name.ilike(f"%{name}%"))
    if symbol:
        stmt = stmt.where(models.Stock.symbol == symbol.upper())

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    stmt = stmt.order_by(models.Stock.symbol.asc()).offset((page - 1) * limit).limit(limit)
    return list(db.scalars(stmt).all()), total


def search_stocks(db: Session, query: str, limit: int = 10) -> List[models.Stock]:
    pattern = f"%{query}%"
    stmt = (
        select(models.Stock)
        .where(or_(models.Stock.symbol.ilike(pattern), models.Stock.name.ilike(pattern)))
        .order_by(models.Stock.symbol.asc())
        .limit(limit)
    )
    return list(db.scalars(stmt).all())


# --- Q-indices ---

def get_q_indices_by_stock_id(
    db: Session,
    stock_id: int,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "date",
    sort_order: str = "desc",
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> Tuple[List[models.StockQIndex], int]:
    stmt = select(models.StockQIndex).where(models.StockQIndex.stock_id == stock_id)
    if date_from is not None:
        stmt = stmt.where(models.StockQIndex.date >= date_from)
    if date_to is not None:
        stmt = stmt.where(models.StockQIndex.date <= date_to)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    if sort_by in Q_INDEX_SORT_FIELDS:
        order_by = _order(getattr(models.StockQIndex, sort_by), sort_order)
    else:
        order_by = models.StockQIndex.date.desc()
    stmt = stmt.order_by(order_by).offset((page - 1) * limit).limit(limit)
    return list(db.scalars(stmt).all()), total


def get_q_index_by_id(db: Session, q_index_id: int) -> Optional[models.StockQIndex]:
    return db.get(models.StockQIndex, q_index_id)


def get_last_q_index_date(db: Session) -> Optional[str]:
    stmt = select(func.max(models.StockQIndex.date))
    result = db.execute(stmt).scalar_one_or_none()
    # Return ISO string or None
    return result.isoformat() if result is not None else None


def get_stock_ids_by_symbol(db: Session, symbols: List[str]) -> Dict[str, int]:
    if not symbols:
        return {}
    stmt = select(models.Stock.symbol, models.Stock.id).where(models.Stock.symbol.in_(symbols))
    return {symbol: stock_id for symbol, stock_id in db.execute(stmt).all()}


def upsert_stocks(db: Session, data: List[dict]) -> Tuple[int, int]:
    """Insert stocks, refreshing name/exchange/industry of symbols that already exist.

    Returns ``(created, updated)``.
    """
    if not data:
        return 0, 0

    existing = set(get_stock_ids_by_symbol(db, [row["symbol"] for row in data]))

    insert = _insert_for(db)
    stmt = insert(models.Stock).values(data)
    update_dict = {
        "name": stmt.excluded.name,
        "exchange": stmt.excluded.exchange,
        "industry": stmt.excluded.industry,
        "updated_at": func.now(),
    }
    # On conflict, update existing rows
    stmt = stmt.on_conflict_do_update(index_elements=["symbol"], set_=update_dict)
    try:
        db.execute(stmt)
        db.commit()
    except Exception:
        db.rollback()
        raise

    updated = sum(1 for row in data if row["symbol"] in existing)
    return len(data) - updated, updated


def _insert_for(db: Session):
    if db.get_bind().dialect.name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        from sqlalchemy.dialects.postgresql import insert
    return insert


def bulk_insert_q_indices(db: Session, data: List[dict]) -> int:
    """Insert Q-index rows, skipping (stock_id, date) pairs that already exist.

    Returns the number of rows actually inserted.
    """
    if not data:
        return 0

    insert = _insert_for(db)
    stmt = (
        insert(models.StockQIndex)
        .values(data)
        .on_conflict_do_nothing(index_elements=["stock_id", "date"])
        .returning(models.StockQIndex.id)
    )
    try:
        inserted_ids = list(db.execute(stmt).scalars().all())
        db.commit()
    except Exception:
        db.rollback()
        raise
    return len(inserted_ids)


# --- Fundamental-ratio records ---

def get_records_by_symbol(
    db: Session,
    family: RecordFamily,
    symbol: str,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "reportDate",
    sort_order: str = "desc",
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Tuple[list, int]:
    model = RECORD_MODELS[family]
    stmt = select(model).where(model.symbol == symbol)
    if start_date is not None:
        stmt = stmt.where(model.report_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(model.report_date <= end_date)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    column_name = RECORD_SORT_FIELDS[family].get(sort_by)
    if column_name is not None:
        order_by = _order(getattr(model, column_name), sort_order)
    else:
        order_by = model.report_date.desc()
    stmt = stmt.order_by(order_by).offset((page - 1) * limit).limit(limit)
    return list(db.scalars(stmt).all()), total


def upsert_records(db: Session, family: RecordFamily, data: List[dict]) -> Tuple[int, int]:
    """Insert records, overwriting the metrics of existing ``(symbol, report_date)`` rows.

    Returns ``(created, updated)``.
    """
    if not data:
        return 0, 0

    model = RECORD_MODELS[family]
    symbols = sorted({row["symbol"] for row in data})
    key_stmt = select(model.symbol, model.report_date).where(model.symbol.in_(symbols))
    existing = {(symbol, report_date) for symbol, report_date in db.execute(key_stmt).all()}

    insert = _insert_for(db)
    stmt = insert(model).values(data)
    update_dict = {column: getattr(stmt.excluded, column) for column in RECORD_METRIC_COLUMNS[family]}
    update_dict["updated_at"] = func.now()
    stmt = stmt.on_conflict_do_update(index_elements=["symbol", "report_date"], set_=update_dict)
    try:
        db.execute(stmt)
        db.commit()
    except Exception:
        db.rollback()
        raise

    updated = sum(1 for row in data if (row["symbol"], row["report_date"]) in existing)
    return len(data) - updated, updated


# --- Settings ---

def get_settings(db: Session) -> List[models.Setting]:
    stmt = select(models.Setting).order_by(models.Setting.key.asc())
    return list(db.scalars(stmt).all())


def get_setting_by_key(db: Session, key: str) -> Optional[models.Setting]:
    stmt = select(models.Setting).where(models.Setting.key == key)
    return db.scalars(stmt).first()


def get_settings_by_type(db: Session, setting_type: str) -> List[models.Setting]:
    stmt = (
        select(models.Setting)
        .where(models.Setting.type == setting_type)
        .order_by(models.Setting.key.asc())
    )
    return list(db.scalars(stmt).all())


# --- Categories ---

def generate_slug(title: str) -> str:
    slug = title.lower()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^\w\-]+", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def get_categories(db: Session) -> List[models.Category]:
    stmt = select(models.Category).order_by(models.Category.id.asc())
    return list(db.scalars(stmt).all())


def get_category(db: Session, category_id: int) -> Optional[models.Category]:
    return db.get(models.Category, category_id)


def _ensure_valid_parent(db: Session, category_id: Optional[int], parent_id: int) -> None:
    """Walk the parent chain from ``parent_id`` and reject self-parenting or cycles."""
    if category_id is not None and parent_id == category_id:
        raise CategoryHierarchyError("Category cannot be its own parent.")

    parent = db.get(models.Category, parent_id)
    if parent is None:
        raise NotFoundError(f"Parent category {parent_id} not found")

    seen = set()
    current = parent
    while current is not None:
        if current.id == category_id:
            raise CategoryHierarchyError(
                f"Setting parent {parent_id} would create a cycle in the category tree."
            )
        if current.id in seen:
            # Existing data is already cyclic; refuse to extend it
            raise CategoryHierarchyError(f"Category {current.id} is part of an existing cycle.")
        seen.add(current.id)
        current = db.get(models.Category, current.parent_id) if current.parent_id else None


def create_category(
    db: Session,
    title: str,
    slug: Optional[str] = None,
    description: Optional[str] = None,
    thumbnail: Optional[str] = None,
    parent_id: Optional[int] = None,
) -> models.Category:
    if parent_id is not None:
        _ensure_valid_parent(db, None, parent_id)

    final_slug = slug.strip() if slug and slug.strip() else generate_slug(title)
    category = models.Category(
        title=title,
        slug=final_slug,
        description=description,
        thumbnail=thumbnail,
        parent_id=parent_id,
    )
    db.add(category)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(category)
    return category


def update_category(db: Session, category_id: int, changes: dict) -> models.Category:
    """Apply ``changes`` to a category.

    ``changes`` only holds the fields the caller sent; ``parent_id: None``
    detaches the category from its parent.
    """
    category = db.get(models.Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")

    if "parent_id" in changes and changes["parent_id"] is not None:
        _ensure_valid_parent(db, category_id, changes["parent_id"])

    slug = changes.get("slug")
    if not slug and changes.get("title"):
        slug = generate_slug(changes["title"])

    if changes.get("title"):
        category.title = changes["title"]
    if slug:
        category.slug = slug
    for field in ("description", "thumbnail", "parent_id"):
        if field in changes:
            setattr(category, field, changes[field])

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(category)
    return category


def delete_category(db: Session, category_id: int) -> None:
    category = db.get(models.Category, category_id)
    if category is None:
        raise NotFoundError(f"Category {category_id} not found")
    # The ORM detaches loaded children (parent_id -> NULL) before the delete
    db.delete(category)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Deleted category %s", category_id)
