"""Pytest configuration and fixtures."""

import os
from datetime import date

# Must be set before stockinfo.database is imported
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient

from stockinfo import models
from stockinfo.database import Base, SessionLocal, engine, get_db
from stockinfo.main import app


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_stock(db_session):
    def _make(symbol="VNM", name="Vinamilk", exchange="HOSE", industry="Food"):
        stock = models.Stock(symbol=symbol, name=name, exchange=exchange, industry=industry)
        db_session.add(stock)
        db_session.commit()
        db_session.refresh(stock)
        return stock

    return _make


@pytest.fixture
def make_q_index(db_session):
    def _make(stock, day: date, **fields):
        row = models.StockQIndex(stock_id=stock.id, date=day, **fields)
        db_session.add(row)
        db_session.commit()
        db_session.refresh(row)
        return row

    return _make
