"""
OratoriaAI Backend API
Speech/presentation analysis with monthly per-tier quotas.
"""
from dotenv import load_dotenv
load_dotenv()

import logging
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

# Configure logging for Render compatibility
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True  # Override any existing configuration
)

logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Run Alembic migrations on startup. Uses alembic.ini and DATABASE_URL.
    Fails startup if migrations fail, so the DB is never left out of sync."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found, skipping Alembic migrations")
        return
    db_url = os.getenv("DATABASE_URL")
    if not db_url:
        logger.error("DATABASE_URL is not set. Alembic migrations will not run.")
        return
    # Normalize postgres:// -> postgresql:// for SQLAlchemy
    if db_url.startswith("postgres://"):
        db_url = "postgresql://" + db_url[10:]
    try:
        alembic_cfg = Config(str(alembic_ini))
        alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
        alembic_cfg.set_main_option("sqlalchemy.url", db_url)
        command.upgrade(alembic_cfg, "head")
        logger.info("Alembic migrations completed successfully")
    except Exception as e:
        logger.exception("Alembic migration failed: %s", e)
        raise


from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.api.routes import auth, analysis, stripe as stripe_router, paypal as paypal_router, webhooks
from app.core.errors import OratoriaError
from app.db.session import engine
from app.db.base import Base
# Import all models to ensure they're registered with Base
from app.models import User, Subscription, AnalysisUsage, AnalysisRecord  # noqa: F401

app = FastAPI(title="OratoriaAI")


@app.on_event("startup")
async def startup_event():
    """Create tables, then run Alembic migrations on every server restart.
    If migrations fail, the server refuses to start until the cause is fixed."""
    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Running Alembic migrations...")
    run_migrations()


@app.exception_handler(OratoriaError)
async def oratoria_error_handler(request: Request, exc: OratoriaError):
    if exc.status_code >= 500:
        logger.error("[%s %s] %s: %s", request.method, request.url.path, exc.error, exc.message)
    else:
        logger.info("[%s %s] %s: %s", request.method, request.url.path, exc.error, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _cors_origins():
    raw = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_origin_regex=r"https://.*\.(onrender\.com|vercel\.app)",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(auth.router, prefix="/auth", tags=["Auth"])
app.include_router(analysis.router, prefix="/api", tags=["Analysis"])
app.include_router(stripe_router.router, prefix="/api/stripe", tags=["Stripe"])
app.include_router(paypal_router.router, prefix="/api/paypal", tags=["PayPal"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/health")
def health():
    return {"status": "ok"}
