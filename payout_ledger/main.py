import logging

import uvicorn
from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from payout_ledger import models  # noqa: F401  registers tables on Base.metadata
from payout_ledger.config import settings
from payout_ledger.database import Base, SessionLocal, engine
from payout_ledger.payout_import import import_payout_workbook
from payout_ledger.report import ImportReport
from payout_ledger.sales_import import import_sales_workbook

app = FastAPI(title="Payout Ledger")
logger = logging.getLogger(__name__)

VALID_IMPORT_MODES = {"apply", "preview"}


@app.on_event("startup")
def ensure_ledger_tables():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def parse_import_mode(value: str) -> str:
    mode = value.strip().lower() or "apply"
    if mode not in VALID_IMPORT_MODES:
        raise HTTPException(status_code=400, detail="Invalid import mode. Use preview or apply.")
    return mode


def ensure_shop_exists(db: Session, shop_id: str) -> str:
    cleaned = shop_id.strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="Please select a shop")
    exists = db.execute(
        text("SELECT 1 FROM shops WHERE id = :shop_id"),
        {"shop_id": cleaned},
    ).scalar()
    if not exists:
        raise HTTPException(status_code=400, detail="Invalid shop_id")
    return cleaned


def report_response(report: ImportReport) -> JSONResponse:
    status_code = 200
    if report.aborted:
        status_code = 400
    elif report.failed:
        status_code = 500
    return JSONResponse(content=report.as_dict(), status_code=status_code)


@app.get("/health")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"ok": True}


@app.get("/api/shops")
def list_shops(db: Session = Depends(get_db)):
    rows = db.execute(
        text("SELECT id, name, owner_id FROM shops ORDER BY name")
    ).mappings().all()
    return {"items": [dict(r) for r in rows]}


@app.get("/api/sales")
def list_sales(shop_id: str = Query(default=""), db: Session = Depends(get_db)):
    rows = db.execute(
        text(
            """
            SELECT r.id, r.shop_id, r.order_id, r.sku, r.seller_sku, r.quantity, r.revenue,
                   r.order_date, r.order_status, r.status
            FROM sales_records r
            WHERE (:shop_id = '' OR r.shop_id = :shop_id)
            ORDER BY r.order_date DESC, r.order_id, r.sku
            LIMIT 1000
            """
        ),
        {"shop_id": shop_id.strip()},
    ).mappings().all()
    return {"items": [dict(r) for r in rows]}


@app.get("/api/payouts")
def list_payouts(shop_id: str = Query(default=""), db: Session = Depends(get_db)):
    rows = db.execute(
        text(
            """
            SELECT p.id, p.shop_id, p.sales_line_id, p.order_id, p.sku, p.statement_date,
                   p.settlement_amount, p.quantity, p.status, p.created_at, p.order_created_date,
                   COALESCE(s.name, '') AS shop_name
            FROM payout_records p
            LEFT JOIN shops s ON s.id = p.shop_id
            WHERE (:shop_id = '' OR p.shop_id = :shop_id)
            ORDER BY p.statement_date DESC, p.order_id, p.sku
            LIMIT 1000
            """
        ),
        {"shop_id": shop_id.strip()},
    ).mappings().all()
    return {"items": [dict(r) for r in rows]}


@app.post("/api/payouts/import")
async def import_payouts(
    shop_id: str = Form(...),
    workbook_file: UploadFile = File(...),
    import_mode: str = Form("apply"),
    db: Session = Depends(get_db),
):
    mode = parse_import_mode(import_mode)
    resolved_shop = ensure_shop_exists(db, shop_id)
    payload = await workbook_file.read()
    try:
        report = import_payout_workbook(
            db,
            content=payload,
            shop_id=resolved_shop,
            dry_run=(mode == "preview"),
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Unexpected database error during payout import")
        raise HTTPException(status_code=500, detail="Unexpected import database error.") from exc
    return report_response(report)


@app.post("/api/sales/import")
async def import_sales(
    shop_id: str = Form(...),
    workbook_file: UploadFile = File(...),
    import_mode: str = Form("apply"),
    db: Session = Depends(get_db),
):
    mode = parse_import_mode(import_mode)
    resolved_shop = ensure_shop_exists(db, shop_id)
    payload = await workbook_file.read()
    try:
        report = import_sales_workbook(
            db,
            content=payload,
            shop_id=resolved_shop,
            dry_run=(mode == "preview"),
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Unexpected database error during sales import")
        raise HTTPException(status_code=500, detail="Unexpected import database error.") from exc
    return report_response(report)


def run():
    uvicorn.run("payout_ledger.main:app", host=settings.app_host, port=settings.app_port)
