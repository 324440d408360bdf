"""TaxiHub: FastAPI application."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from sqlalchemy.exc import SQLAlchemyError

from taxihub.config import settings
from taxihub.database import AsyncSessionLocal, async_engine, create_all_tables

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting TaxiHub API...")

    # Verify DB connection
    try:
        async with async_engine.begin() as conn:
            await conn.exec_driver_sql("SELECT 1")
        logger.info("Database connection verified")
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database connection failed: {e}")

    if settings.AUTO_CREATE_TABLES:
        try:
            await create_all_tables()
            logger.info("Database tables ensured")
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Table creation failed: {e}")

    from taxihub.services.bootstrap import ensure_bootstrap_admin

    try:
        async with AsyncSessionLocal() as session:
            await ensure_bootstrap_admin(session)
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Bootstrap admin check failed: {e}")

    logger.info("TaxiHub API started successfully")
    yield

    # Shutdown
    await async_engine.dispose()
    logger.info("TaxiHub API shut down")


app = FastAPI(
    title="TaxiHub",
    description="Taxi-rank coordination: public rank directory and marshal back office",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from taxihub.routes import admin, auth, loads, meetings, payments, public, ranks, reports, taxis

app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(ranks.router)
app.include_router(taxis.router)
app.include_router(loads.router)
app.include_router(payments.router)
app.include_router(meetings.router)
app.include_router(reports.router)
app.include_router(public.router)


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "service": "TaxiHub API", "version": "1.0.0"}
