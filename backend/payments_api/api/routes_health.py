import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

router = APIRouter()
logger = logging.getLogger(__name__)

_DB_CHECK_TIMEOUT_SECONDS = 2.0


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.head("/healthz")
async def healthz_head() -> Response:
    return Response(status_code=200)


async def _db_check(request: Request) -> tuple[bool, str | None]:
    database = getattr(request.app.state, "database", None)
    if database is None:
        return False, "database_not_configured"

    async def _ping() -> None:
        async with database.session() as session:
            await session.execute(text("SELECT 1"))

    try:
        await asyncio.wait_for(_ping(), timeout=_DB_CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("health_db_timeout")
        return False, "timeout"
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("health_db_unavailable", extra={"extra": {"error_type": type(exc).__name__}})
        return False, type(exc).__name__
    return True, None


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    ok, reason = await _db_check(request)
    payload = {
        "status": "OK" if ok else "ERROR",
        "message": "Servidor funcionando" if ok else "Banco de dados indisponível",
        "database": "connected" if ok else "disconnected",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if not ok:
        payload["reason"] = reason
        return JSONResponse(status_code=503, content=payload)
    return JSONResponse(status_code=200, content=payload)
