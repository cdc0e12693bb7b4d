from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
import sys

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from payout_ledger import main
from payout_ledger.database import Base

PAYOUT_HEADER = [
    "Order/adjustment ID",
    "Type",
    "SKU ID",
    "Quantity",
    "Statement date",
    "Total settlement amount",
    "Status",
    "Order created date",
]
SALES_HEADER = [
    "Order ID",
    "Order Status",
    "SKU ID",
    "Seller SKU",
    "Quantity",
    "Order Amount",
    "Created Time",
]


@pytest.fixture()
def engine(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def db_session(engine):
    SessionTesting = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    db = SessionTesting()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client_and_engine(engine):
    SessionTesting = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def override_get_db():
        db = SessionTesting()
        try:
            yield db
        finally:
            db.close()

    original_startup = list(main.app.router.on_startup)
    original_shutdown = list(main.app.router.on_shutdown)
    original_lifespan = main.app.router.lifespan_context

    async def _noop_lifespan(_app):
        yield

    main.app.router.on_startup = []
    main.app.router.on_shutdown = []
    main.app.router.lifespan_context = _noop_lifespan
    main.app.dependency_overrides[main.get_db] = override_get_db

    client = TestClient(main.app)
    try:
        yield client, engine
    finally:
        client.close()
        main.app.dependency_overrides.clear()
        main.app.router.on_startup = original_startup
        main.app.router.on_shutdown = original_shutdown
        main.app.router.lifespan_context = original_lifespan


def seed_shop(engine, shop_id: str, name: str):
    with engine.begin() as conn:
        conn.execute(
            text("INSERT INTO shops (id, name, created_at) VALUES (:id, :name, :created_at)"),
            {"id": shop_id, "name": name, "created_at": datetime.now(timezone.utc)},
        )


def seed_sales_line(
    engine,
    line_id: int,
    shop_id: str,
    order_id: str,
    sku: str,
    *,
    status: str = "pending",
):
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                INSERT INTO sales_records (id, shop_id, order_id, sku, quantity, revenue, status)
                VALUES (:id, :shop_id, :order_id, :sku, 1, 100, :status)
                """
            ),
            {"id": line_id, "shop_id": shop_id, "order_id": order_id, "sku": sku, "status": status},
        )


def seed_payout_line(engine, shop_id: str, order_id: str, sku: str, amount: float = 10.0):
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                INSERT INTO payout_records (shop_id, order_id, sku, settlement_amount, quantity, status)
                VALUES (:shop_id, :order_id, :sku, :amount, 1, 'paid')
                """
            ),
            {"shop_id": shop_id, "order_id": order_id, "sku": sku, "amount": amount},
        )


def build_workbook_bytes(rows, *, preamble=(), header=PAYOUT_HEADER) -> bytes:
    wb = Workbook()
    sheet = wb.active
    sheet.title = "Statement"
    for line in preamble:
        sheet.append(list(line))
    if header is not None:
        sheet.append(list(header))
    for row in rows:
        sheet.append(list(row))

    out = BytesIO()
    wb.save(out)
    return out.getvalue()


def post_payouts(client, workbook_bytes: bytes, shop_id: str, import_mode: str = "apply"):
    return client.post(
        "/api/payouts/import",
        data={"shop_id": shop_id, "import_mode": import_mode},
        files={
            "workbook_file": (
                "statement.xlsx",
                workbook_bytes,
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            )
        },
    )
