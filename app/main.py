from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging

# Import database components
from app.database.database import sync_engine, SessionLocal, Base

# Import middleware
from app.common.middleware import SecurityHeadersMiddleware, RequestTimingMiddleware

# Import routers
from app.modules.auth.router import auth_router
from app.modules.products.router import product_router
from app.modules.menu.router import menu_router
from app.modules.inventory.router import inventory_router, stock_router, stock_issue_router
from app.modules.vat.router import vat_settings_router, vat_reports_router
from app.modules.sales.router import sales_router
from app.modules.kitchen.router import kitchen_router
from app.modules.receipts.router import receipts_router
from app.modules.payments.router import payments_router
from app.modules.expenses.router import expenses_router
from app.modules.reports.router import reports_router
from app.modules.sync.router import offline_router, sync_router
from app.modules.auth.service import ensure_default_admin

# Import models for table creation
import app.modules.auth.models
import app.modules.products.models
import app.modules.menu.models
import app.modules.inventory.models
import app.modules.vat.models
import app.modules.sales.models
import app.modules.kitchen.models
import app.modules.receipts.models
import app.modules.payments.models
import app.modules.expenses.models
import app.modules.sync.models
import app.common.sequences

from app.core.config import settings

API_PREFIX = "/api/v1"

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Lanka POS API",
    description="Restaurant point of sale back office for Sri Lanka: menu, stock, VAT, sales, "
                "payments, receipts and offline till sync",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestTimingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router, prefix="/auth", tags=["Auth"])
for router in (
    product_router,
    menu_router,
    inventory_router,
    stock_router,
    stock_issue_router,
    vat_settings_router,
    vat_reports_router,
    sales_router,
    kitchen_router,
    receipts_router,
    payments_router,
    expenses_router,
    reports_router,
    offline_router,
    sync_router,
):
    app.include_router(router, prefix=API_PREFIX)

# Create database tables (only outside production - use migrations there)
if settings.ENVIRONMENT in ("development", "test"):
    Base.metadata.create_all(bind=sync_engine)


@app.get("/")
async def read_root():
    return {
        "message": "Lanka POS API is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("Lanka POS API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    db = SessionLocal()
    try:
        ensure_default_admin(db)
    except Exception as e:
        db.rollback()
        logger.warning(f"Default admin check skipped: {e}")
    finally:
        db.close()


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Lanka POS API shutting down...")
