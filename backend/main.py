import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.endpoints import account, admin, billing, readings
from app.core.database import engine, Base
from app.core.settings import settings
from app.models import achievement_unlock, credit_account, credit_ledger, reading  # noqa: F401  (register tables)

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("credits")

app = FastAPI(title="Credit Ledger & Rewards API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

@app.on_event("startup")
def startup() -> None:
    if settings.is_production and not settings.auth_jwks_url:
        raise RuntimeError("AUTH_JWKS_URL must be set in production")
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)
    logger.info("startup.ready environment=%s bonus_timezone=%s", settings.environment, settings.bonus_timezone)


# API Routes
app.include_router(account.router, prefix="/api", tags=["account"])
app.include_router(readings.router, prefix="/api", tags=["readings"])
app.include_router(admin.router, prefix="/api", tags=["admin"])
app.include_router(billing.router, prefix="/api", tags=["billing"])

@app.get("/health")
async def health_check():
    return {"status": "healthy"}
