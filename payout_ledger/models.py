from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payout_ledger.database import Base


class Shop(Base):
    __tablename__ = "shops"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text)
    owner_id: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class SalesLine(Base):
    __tablename__ = "sales_records"
    __table_args__ = (UniqueConstraint("order_id", "sku", name="sales_records_order_sku_key"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    shop_id: Mapped[str] = mapped_column(ForeignKey("shops.id"))
    order_id: Mapped[str] = mapped_column(String(64))
    sku: Mapped[str] = mapped_column(String(128), default="")
    seller_sku: Mapped[str | None] = mapped_column(Text)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[float] = mapped_column(Float, default=0)
    order_date: Mapped[date | None] = mapped_column(Date)
    order_status: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32), default="pending")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class PayoutLine(Base):
    __tablename__ = "payout_records"
    __table_args__ = (UniqueConstraint("order_id", "sku", name="payout_records_order_sku_key"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    shop_id: Mapped[str] = mapped_column(ForeignKey("shops.id"))
    sales_line_id: Mapped[int | None] = mapped_column(ForeignKey("sales_records.id", ondelete="SET NULL"))
    order_id: Mapped[str] = mapped_column(String(64))
    sku: Mapped[str] = mapped_column(String(128), default="")
    statement_date: Mapped[date | None] = mapped_column(Date)
    settlement_amount: Mapped[float] = mapped_column(Float, default=0)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(32), default="paid")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    order_created_date: Mapped[date | None] = mapped_column(Date)
