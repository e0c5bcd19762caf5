import logging
import os
from datetime import date
from typing import List, Optional

import pandas as pd
from fastapi import Depends, FastAPI, File, HTTPException, Query, Response, UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from import_job.import_qindices import import_q_index_frame
from import_job.import_records import import_record_frame, import_stock_frame

from . import charts, crud, schemas
from .aggregation import process_records
from .database import Base, engine, get_db
from .enums import FundamentalPeriod, RecordFamily, SortOrder, TechnicalPeriod, ViewMode
from .windows import resolve_date_range


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Stock Info API", version="1.0.0")

CHART_ROW_LIMIT = 10000


@app.on_event("startup")
def on_startup() -> None:
    # Ensure DB tables exist
    Base.metadata.create_all(bind=engine)


def _stock_or_404(db: Session, symbol: str):
    stock = crud.get_stock_by_symbol(db, symbol)
    if stock is None:
        raise HTTPException(status_code=404, detail=f"Stock with symbol '{symbol}' not found")
    return stock


def _read_csv_upload(file: UploadFile) -> pd.DataFrame:
    try:
        return pd.read_csv(file.file)
    except (ValueError, pd.errors.ParserError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid CSV file: {exc}")


@app.get("/status")
def get_status(db: Session = Depends(get_db)):
    return {"last_q_index_date": crud.get_last_q_index_date(db)}


# --- Stocks ---

@app.get("/stocks", response_model=schemas.StockList)
def get_stocks(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=1000),
    name: Optional[str] = None,
    symbol: Optional[str] = None,
    db: Session = Depends(get_db),
):
    stocks, total = crud.get_stocks(db, page=page, limit=limit, name=name, symbol=symbol)
    return {"data": stocks, "pagination": crud.build_pagination(total, len(stocks), page, limit)}


@app.post("/stocks/bulk-import", response_model=schemas.UpsertImportSummary)
def bulk_import_stocks(file: UploadFile = File(...), db: Session = Depends(get_db)):
    return import_stock_frame(db, _read_csv_upload(file))


@app.get("/stocks/search", response_model=List[schemas.Stock])
def search_stocks(q: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    return crud.search_stocks(db, q)


@app.get("/stocks/symbol/{symbol}", response_model=schemas.Stock)
def get_stock_by_symbol(symbol: str, db: Session = Depends(get_db)):
    stock = crud.get_stock_by_symbol(db, symbol)
    if stock is None:
        raise HTTPException(status_code=404, detail="Stock not found")
    return stock


@app.get("/stocks/{stock_id}", response_model=schemas.Stock)
def get_stock(stock_id: int, db: Session = Depends(get_db)):
    stock = crud.get_stock_by_id(db, stock_id)
    if stock is None:
        raise HTTPException(status_code=404, detail="Stock not found")
    return stock


# --- Q-indices ---

@app.get("/stocks/{stock_id}/qindices", response_model=schemas.StockQIndexList)
@app.get("/qindices/stock/{stock_id}", response_model=schemas.StockQIndexList)
def get_q_indices_by_stock_id(
    stock_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=CHART_ROW_LIMIT),
    sort_by: str = Query("date", alias="sortBy"),
    sort_order: SortOrder = Query(SortOrder.DESC, alias="sortOrder"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
):
    if crud.get_stock_by_id(db, stock_id) is None:
        raise HTTPException(status_code=404, detail=f"Stock with ID {stock_id} not found")

    rows, total = crud.get_q_indices_by_stock_id(
        db,
        stock_id,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order.value,
        date_from=date_from,
        date_to=date_to,
    )
    return {"data": rows, "pagination": crud.build_pagination(total, len(rows), page, limit)}


@app.post("/qindices/import", response_model=schemas.QIndexImportSummary, status_code=201)
def import_q_indices(file: UploadFile = File(...), db: Session = Depends(get_db)):
    return import_q_index_frame(db, _read_csv_upload(file))


@app.get("/qindices/{q_index_id}", response_model=schemas.StockQIndexDetail)
def get_q_index(q_index_id: int, db: Session = Depends(get_db)):
    row = crud.get_q_index_by_id(db, q_index_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Stock Q-index record not found")
    return row


# --- Fundamental-ratio records ---

def _records_endpoint(family: RecordFamily):
    def get_records_by_symbol(
        symbol: str,
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=1000),
        sort_by: str = Query("reportDate", alias="sortBy"),
        sort_order: SortOrder = Query(SortOrder.DESC, alias="sortOrder"),
        start_date: Optional[date] = Query(None, alias="startDate"),
        end_date: Optional[date] = Query(None, alias="endDate"),
        db: Session = Depends(get_db),
    ):
        stock = _stock_or_404(db, symbol)
        records, total = crud.get_records_by_symbol(
            db,
            family,
            stock.symbol,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order.value,
            start_date=start_date,
            end_date=end_date,
        )
        return {"data": records, "pagination": crud.build_pagination(total, len(records), page, limit)}

    get_records_by_symbol.__name__ = f"get_{family.value}_records_by_symbol"
    return get_records_by_symbol


def _records_import_endpoint(family: RecordFamily):
    def import_records(file: UploadFile = File(...), db: Session = Depends(get_db)):
        return import_record_frame(db, family, _read_csv_upload(file))

    import_records.__name__ = f"import_{family.value}_records"
    return import_records


for _family, _path, _model in (
    (RecordFamily.EPS, "eps-records", schemas.EpsRecordList),
    (RecordFamily.PE, "pe-records", schemas.PeRecordList),
    (RecordFamily.ROA_ROE, "roa-roe-records", schemas.RoaRoeRecordList),
    (RecordFamily.FINANCIAL_RATIO, "financial-ratio-records", schemas.FinancialRatioRecordList),
):
    app.get(f"/{_path}/symbol/{{symbol}}", response_model=_model)(_records_endpoint(_family))
    app.post(f"/{_path}/import", response_model=schemas.UpsertImportSummary)(
        _records_import_endpoint(_family)
    )


# --- Charts ---

@app.get("/stocks/symbol/{symbol}/charts/fundamentals", response_model=schemas.FundamentalCharts)
def get_fundamental_charts(
    symbol: str,
    period: FundamentalPeriod = FundamentalPeriod.THREE_YEARS,
    view: ViewMode = ViewMode.QUARTER,
    db: Session = Depends(get_db),
):
    stock = _stock_or_404(db, symbol)
    result = {}
    for family in RecordFamily:
        records, _ = crud.get_records_by_symbol(
            db, family, stock.symbol, limit=CHART_ROW_LIMIT, sort_order="asc"
        )
        processed = process_records(records, period, view)
        result[family.value] = charts.build_chart_data(processed, family, view)
    return {"symbol": stock.symbol, "period": period, "view": view, "charts": result}


@app.get("/stocks/symbol/{symbol}/charts/technical", response_model=schemas.TechnicalCharts)
def get_technical_charts(
    symbol: str,
    period: TechnicalPeriod = TechnicalPeriod.THREE_MONTHS,
    db: Session = Depends(get_db),
):
    stock = _stock_or_404(db, symbol)
    date_range = resolve_date_range(period)
    rows, _ = crud.get_q_indices_by_stock_id(
        db,
        stock.id,
        limit=CHART_ROW_LIMIT,
        sort_order="asc",
        date_from=date.fromisoformat(date_range.start_date),
        date_to=date.fromisoformat(date_range.end_date),
    )
    return {
        "symbol": stock.symbol,
        "period": period,
        "range": date_range._asdict(),
        "candlestick": charts.candlestick_series(rows),
        "trend_q": charts.line_series(rows, "trend_q"),
        "fq": charts.line_series(rows, "fq"),
        "qv1": charts.histogram_series(rows),
    }


# --- Settings ---

@app.get("/settings", response_model=List[schemas.Setting])
def get_settings(db: Session = Depends(get_db)):
    return crud.get_settings(db)


@app.get("/settings/type/{setting_type}", response_model=List[schemas.Setting])
def get_settings_by_type(setting_type: str, db: Session = Depends(get_db)):
    return crud.get_settings_by_type(db, setting_type)


@app.get("/settings/{key}", response_model=schemas.Setting)
def get_setting(key: str, db: Session = Depends(get_db)):
    setting = crud.get_setting_by_key(db, key)
    if setting is None:
        raise HTTPException(status_code=404, detail=f"Setting with key '{key}' not found")
    return setting


# --- Categories ---

@app.get("/categories", response_model=List[schemas.Category])
def get_categories(db: Session = Depends(get_db)):
    return crud.get_categories(db)


@app.get("/categories/{category_id}", response_model=schemas.Category)
def get_category(category_id: int, db: Session = Depends(get_db)):
    category = crud.get_category(db, category_id)
    if category is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return category


@app.post("/categories", response_model=schemas.Category, status_code=201)
def create_category(payload: schemas.CategoryCreate, db: Session = Depends(get_db)):
    try:
        return crud.create_category(db, **payload.model_dump())
    except crud.CategoryHierarchyError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except crud.NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except IntegrityError:
        raise HTTPException(status_code=409, detail="A category with this title or slug already exists")


@app.put("/categories/{category_id}", response_model=schemas.Category)
def update_category(category_id: int, payload: schemas.CategoryUpdate, db: Session = Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True)
    try:
        return crud.update_category(db, category_id, changes)
    except crud.CategoryHierarchyError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except crud.NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Category with this title/slug already exists")


@app.delete("/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        crud.delete_category(db, category_id)
    except crud.NotFoundError:
        raise HTTPException(status_code=404, detail="Category not found")
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Category still has posts")
    return Response(status_code=204)
