import asyncio
import contextlib
import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.engine.url import make_url

from realmgate.auth.router import router as auth_router
from realmgate.clients.router import router as clients_router
from realmgate.core.config import settings
from realmgate.db.init_db import init_db
from realmgate.db.session import engine
from realmgate.realms.router import router as realms_router
from realmgate.roles.router import router as roles_router
from realmgate.system.router import router as system_router
from realmgate.system.tasks import run_token_sweeper
from realmgate.users.router import router as users_router

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Realmgate Identity and Access Service",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Bootstrap-Secret"],
)

_sweeper_task: asyncio.Task | None = None


@app.on_event("startup")
async def on_startup() -> None:
    global _sweeper_task
    db_url = make_url(settings.DATABASE_URL)
    logger.info(
        "Config sanity: env=%s db_host=%s cors_origins=%s access_exp_min=%s refresh_exp_days=%s sweep_min=%s",
        settings.ENV,
        db_url.host or "local",
        len(settings.CORS_ORIGINS),
        settings.ACCESS_TOKEN_EXP_MINUTES,
        settings.REFRESH_TOKEN_EXP_DAYS,
        settings.TOKEN_SWEEP_INTERVAL_MINUTES,
    )
    init_db()
    _sweeper_task = asyncio.create_task(
        run_token_sweeper(settings.TOKEN_SWEEP_INTERVAL_MINUTES * 60)
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    if _sweeper_task:
        _sweeper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _sweeper_task


# --- Routers ---
app.include_router(auth_router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(realms_router, prefix="/api/v1/realms", tags=["realms"])
app.include_router(clients_router, prefix="/api/v1/clients", tags=["clients"])
app.include_router(users_router, prefix="/api/v1/users", tags=["users"])
app.include_router(roles_router, prefix="/api/v1/roles", tags=["roles"])
app.include_router(system_router, prefix="/api/v1/system", tags=["system"])


# --- System ---
@app.get("/health", tags=["system"])
def health():
    return {"status": "ok"}


@app.get("/ready", tags=["system"])
def readiness():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        raise HTTPException(status_code=503, detail="Database not ready")
    return {"status": "ready"}
