"""
Commerce Import API

Serves the preview, import and run-history endpoints under /api.
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from contextlib import asynccontextmanager
import os
import asyncio
from dotenv import load_dotenv
import logging
import json
import sys
import time
import uuid as _uuid
from typing import Callable

load_dotenv()

from settings import CORS_ORIGINS, LOG_LEVEL
from routers import imports
from database import init_db, check_db_health


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for the container log collector."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "severity": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = LOG_LEVEL) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    # INFO here echoes every bulk insert statement
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Commerce Import API starting")
    if os.getenv("INIT_DB_ON_STARTUP", "false").lower() == "true":
        try:
            await asyncio.wait_for(init_db(), timeout=120)
            logger.info("Import tables ready")
        except asyncio.TimeoutError:
            logger.error("Creating import tables timed out after 120s; serving without them")
        except Exception as e:
            logger.error(f"Creating import tables failed; serving without them: {e}", exc_info=True)
    yield
    logger.info("Commerce Import API stopped")


app = FastAPI(
    title="Commerce Import API",
    description="Bulk import of commerce and CRM exports",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id and logs one line in, one line out."""

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-Id") or str(_uuid.uuid4())
        start = time.time()
        request.state.request_id = request_id

        # upload size comes from the header; the body belongs to the route
        logger.info(
            f"REQ {request.method} {request.url.path} "
            f"bytes={request.headers.get('content-length', '-')} "
            f"ip={request.client.host if request.client else '-'} rid={request_id}"
        )
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Request failed rid={request_id}")
            raise

        dur_ms = int((time.time() - start) * 1000)
        logger.info(
            f"RES {request.method} {request.url.path} "
            f"status={response.status_code} durMs={dur_ms} rid={request_id}"
        )
        response.headers["X-Request-Id"] = request_id
        return response

app.add_middleware(RequestIDMiddleware)


@app.get("/")
async def root_endpoint():
    return {"ok": True, "service": "commerce-import"}

@app.get("/healthz")
async def healthz():
    return {"ok": True}


@app.get("/api/health")
async def api_health():
    """Liveness plus a round trip to the import database."""
    db_health = await check_db_health()
    return {
        "status": "healthy" if db_health["status"] == "healthy" else "degraded",
        "database": db_health,
        "timestamp": time.time(),
    }


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Rejected {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": exc.errors(), "error": "Validation failed"})

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


app.include_router(imports.router, prefix="/api", tags=["imports"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=os.getenv("NODE_ENV") != "production"
    )
