import asyncio
import logging
import time
from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text

from flag_service.services import resolve_services

router = APIRouter()
logger = logging.getLogger(__name__)

_CHECK_TIMEOUT_SECONDS = 2.0


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.head("/healthz")
async def healthz_head() -> Response:
    return Response(status_code=200)


async def _db_check(request: Request) -> tuple[bool, dict[str, Any]]:
    session_factory = getattr(request.app.state, "db_session_factory", None)
    if session_factory is None:
        return False, {"message": "database session factory unavailable"}

    async def _ping_db():
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))

    try:
        await asyncio.wait_for(_ping_db(), timeout=_CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        return False, {"message": "database check timed out", "timeout_seconds": _CHECK_TIMEOUT_SECONDS}
    except Exception as exc:  # noqa: BLE001
        logger.debug("database_check_failed", exc_info=exc)
        return False, {"message": "database check failed", "error": exc.__class__.__name__}

    return True, {"message": "database reachable"}


async def _cache_check(request: Request) -> tuple[bool, dict[str, Any]]:
    services = resolve_services(request.app)
    if services is None:
        return False, {"message": "result cache unavailable"}
    backend = type(services.result_cache).__name__
    try:
        ok = await asyncio.wait_for(services.result_cache.ping(), timeout=_CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        return False, {"message": "cache check timed out", "backend": backend}
    return ok, {"message": "cache reachable" if ok else "cache unreachable", "backend": backend}


async def _run_check(name: str, check_fn) -> dict[str, Any]:  # noqa: ANN001
    start = time.perf_counter()
    ok: bool
    detail: dict[str, Any]
    try:
        ok, detail = await check_fn()
    except Exception as exc:  # noqa: BLE001
        logger.exception("readiness_check_failed", extra={"extra": {"check": name}})
        ok = False
        detail = {"message": "unexpected error", "error": type(exc).__name__}
    elapsed_ms = (time.perf_counter() - start) * 1000
    return {"name": name, "ok": bool(ok), "ms": round(elapsed_ms, 2), "detail": detail}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    checks = [
        await _run_check("db", lambda: _db_check(request)),
        await _run_check("cache", lambda: _cache_check(request)),
    ]

    overall_ok = all(check["ok"] for check in checks)
    status_code = 200 if overall_ok else 503
    return JSONResponse(status_code=status_code, content={"ok": overall_ok, "checks": checks})
