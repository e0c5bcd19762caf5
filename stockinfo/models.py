from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base
from .enums import UserRole


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password = Column(String(255), nullable=False)
    role = Column(Enum(UserRole, name="user_role"), default=UserRole.USER, nullable=False)
    phone = Column(String(20))
    thumbnail = Column(String(255))
    verified = Column(Boolean, default=False, nullable=False)

    posts = relationship("Post", back_populates="author")


class Category(TimestampMixin, Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    description = Column(Text)
    thumbnail = Column(String(255))
    parent_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), index=True)

    parent = relationship("Category", remote_side=[id], back_populates="children")
    children = relationship("Category", back_populates="parent")
    posts = relationship("Post", back_populates="category")


class Stock(TimestampMixin, Base):
    __tablename__ = "stocks"

    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String(20), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    exchange = Column(String(50))
    industry = Column(String(255))

    posts = relationship("Post", back_populates="stock")
    q_indices = relationship("StockQIndex", back_populates="stock", cascade="all, delete-orphan")


class Post(TimestampMixin, Base):
    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False)
    content = Column(Text)
    thumbnail = Column(String(255))
    category_id = Column(Integer, ForeignKey("categories.id"), index=True, nullable=False)
    author_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    stock_id = Column(Integer, ForeignKey("stocks.id", ondelete="SET NULL"), index=True)

    category = relationship("Category", back_populates="posts")
    author = relationship("User", back_populates="posts")
    stock = relationship("Stock", back_populates="posts")


class Image(TimestampMixin, Base):
    __tablename__ = "images"

    id = Column(Integer, primary_key=True, index=True)
    filename = Column(String(255), nullable=False)
    processed_filename = Column(String(255))
    path = Column(String(512), nullable=False)
    url = Column(String(512), nullable=False)
    alt_text = Column(String(255))
    width = Column(Integer)
    height = Column(Integer)
    size = Column(Integer)
    mimetype = Column(String(100))


class StockQIndex(Base):
    __tablename__ = "stock_q_indices"

    id = Column(Integer, primary_key=True, index=True)
    stock_id = Column(Integer, ForeignKey("stocks.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    open = Column(Numeric(20, 6))
    low = Column(Numeric(20, 6))
    high = Column(Numeric(20, 6))
    close = Column(Numeric(20, 6))
    trend_q = Column(Float)
    fq = Column(Float)
    qv1 = Column(Integer)
    band_down = Column(Numeric(20, 6))
    band_up = Column(Numeric(20, 6))

    stock = relationship("Stock", back_populates="q_indices")

    __table_args__ = (
        UniqueConstraint("stock_id", "date", name="uq_stock_q_index_stock_date"),
        Index("ix_stock_q_index_stock_date", "stock_id", "date"),
    )


class EpsRecord(TimestampMixin, Base):
    __tablename__ = "eps_records"

    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String(20), index=True, nullable=False)
    report_date = Column(Date, nullable=False)
    eps = Column(Float)
    eps_nganh = Column(Float)
    eps_rate = Column(Float)

    __table_args__ = (UniqueConstraint("symbol", "report_date", name="uq_eps_symbol_report_date"),)


class PeRecord(TimestampMixin, Base):
    __tablename__ = "pe_records"

    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String(20), index=True, nullable=False)
    report_date = Column(Date, nullable=False)
    pe = Column(Float)
    pe_nganh = Column(Float)
    pe_rate = Column(Float)

    __table_args__ = (UniqueConstraint("symbol", "report_date", name="uq_pe_symbol_report_date"),)


class RoaRoeRecord(TimestampMixin, Base):
    __tablename__ = "roa_roe_records"

    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String(20), index=True, nullable=False)
    report_date = Column(Date, nullable=False)
    roa = Column(Float)
    roe = Column(Float)
    roe_nganh = Column(Float)
    roa_nganh = Column(Float)

    __table_args__ = (
        UniqueConstraint("symbol", "report_date", name="uq_roa_roe_symbol_report_date"),
    )


class FinancialRatioRecord(TimestampMixin, Base):
    __tablename__ = "financial_ratio_records"

    id = Column(Integer, primary_key=True, index=True)
    symbol = Column(String(20), index=True, nullable=False)
    report_date = Column(Date, nullable=False)
    debt_equity = Column(Float)
    assets_equity = Column(Float)
    debt_equity_pct = Column(Float)

    __table_args__ = (
        UniqueConstraint("symbol", "report_date", name="uq_financial_ratio_symbol_report_date"),
    )


class Setting(TimestampMixin, Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(255), unique=True, nullable=False)
    value = Column(Text, nullable=False)
    description = Column(Text)
    type = Column(String(50), default="text", nullable=False)
