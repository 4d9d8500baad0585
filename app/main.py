from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from app.api.routers import auth, departments, organizations, users
from app.infra.db import check_db_ready
from app.infra.events import view_bus
from app.infra.log_config import configure_logging
from app.infra.redis_state import RedisViewCache, check_redis_ready

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    handler = RedisViewCache().invalidate
    view_bus.subscribe(handler)
    logger.info("redis view cache subscribed to invalidation bus")
    try:
        yield
    finally:
        view_bus.unsubscribe(handler)


app = FastAPI(
    title="org-admin",
    description="Multi-tenant administration backend: users, departments and organizations.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(departments.router, prefix="/api/departments", tags=["departments"])
app.include_router(organizations.router, prefix="/api/organizations", tags=["organizations"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
