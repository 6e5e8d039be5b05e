"""FastAPI application exposing the refresh trigger.

Endpoints
- GET /update-stocks?secret=...: run one refresh cycle (secret required).
- GET /: health check.

Startup/shutdown use FastAPI lifespan to configure logging, open the shared
connection pool and ensure the schema.
"""

from typing import Dict, List, Optional
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import time
import logging
import sys
import threading
from contextlib import asynccontextmanager
import asyncio

from .db_init import init_database
from .errors import AuthorizationError, ConfigurationError, StockHeatmapError
from .fetch_from_db import DatabasePool
from .refresh import check_trigger_secret, trigger_refresh

logger = logging.getLogger(__name__)


def setup_app_logging():
    """Configure root and package loggers for the API process."""
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    # Ensure a stream handler to stdout exists
    has_stream = any(isinstance(h, logging.StreamHandler) for h in root.handlers)
    if not has_stream:
        sh = logging.StreamHandler(stream=sys.stdout)
        sh.setLevel(logging.INFO)
        sh.setFormatter(fmt)
        root.addHandler(sh)
    logging.getLogger("stock_heatmap").setLevel(logging.INFO)


def _get_client_id(request: Request) -> str:
    """Return a client identifier for logs.

    Prefers X-Client-Id or X-Request-Id header, else falls back to client IP.
    """
    hdr = request.headers.get("X-Client-Id") or request.headers.get("X-Request-Id")
    if hdr:
        return hdr
    return getattr(request.client, "host", None) or "unknown"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown manager: logging, shared pool, schema."""
    setup_app_logging()
    logger.info("[api] logging configured")
    pool = DatabasePool()
    app.state.pool = pool
    ok = await run_in_thread(init_database, pool)
    logger.info("[api] database init ok=%s", ok)
    try:
        yield
    finally:
        await run_in_thread(pool.close)


app = FastAPI(title="Stock Heatmap Refresh API", lifespan=lifespan)

# one refresh cycle at a time per process
_refresh_lock = threading.Lock()


class RefreshResponse(BaseModel):
    """Response model for a completed refresh cycle."""
    success: bool
    updated: int
    tickers: List[str]
    skipped: Dict[str, str]
    message: str


async def run_in_thread(func, *args, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


def get_pool(request: Request) -> DatabasePool:
    """Return the process pool, creating it when lifespan did not run."""
    pool = getattr(request.app.state, "pool", None)
    if pool is None:
        pool = DatabasePool()
        request.app.state.pool = pool
    return pool


def _run_locked(secret: Optional[str], pool: DatabasePool):
    check_trigger_secret(secret)
    if not _refresh_lock.acquire(blocking=False):
        return None
    try:
        return trigger_refresh(secret, pool)
    finally:
        _refresh_lock.release()


@app.get("/update-stocks", response_model=RefreshResponse)
async def update_stocks(
    request: Request,
    secret: Optional[str] = Query(None, description="Shared secret (UPDATE_SECRET_KEY)"),
    pool: DatabasePool = Depends(get_pool),
):
    """Run one refresh cycle and return its summary.

    Failures are answered with a JSON body; the process keeps serving.
    """
    t0 = time.time()
    cid = _get_client_id(request)
    logger.info("[api] GET /update-stocks start cid=%s", cid)
    try:
        summary = await run_in_thread(_run_locked, secret, pool)
    except AuthorizationError as e:
        logger.warning("[api] GET /update-stocks unauthorized cid=%s", cid)
        return JSONResponse(status_code=401, content={"success": False, "message": f"Unauthorized: {e}"})
    except ConfigurationError as e:
        logger.error("[api] GET /update-stocks configuration error cid=%s err=%s", cid, e)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
    except StockHeatmapError as e:
        logger.error("[api] GET /update-stocks failed cid=%s err=%s context=%s", cid, e, e.context)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
    except Exception as e:
        logger.exception("[api] GET /update-stocks unexpected error cid=%s", cid)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    if summary is None:
        logger.warning("[api] GET /update-stocks rejected; cycle already running cid=%s", cid)
        return JSONResponse(
            status_code=409,
            content={"success": False, "error": "A refresh cycle is already running."},
        )
    logger.info(
        "[api] GET /update-stocks end cid=%s duration=%.3fs updated=%d",
        cid, (time.time() - t0), summary.updated_count,
    )
    return summary.to_dict()


@app.get("/")
async def health(request: Request):
    """Health endpoint that also logs a client id for traceability."""
    logger.info("[api] GET / healthcheck cid=%s", _get_client_id(request))
    return {"status": "ok"}
