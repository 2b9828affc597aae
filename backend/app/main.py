import logging
import uuid
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.config import settings
from app.routers import ebay_accounts, inventory, messages, orders, post_order
from app.services.ebay_errors import EbayGatewayError
from app.utils.logger import logger

app = FastAPI(title="eBay Account Integration Gateway", version="1.0.0")

origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


# Request logging middleware with request ID
@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logging.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
        logging.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        logging.exception("Unhandled error rid=%s: %s", rid, str(e))
        error_resp = JSONResponse(
            {"error": "internal_error", "rid": rid, "type": type(e).__name__},
            status_code=500
        )
        error_resp.headers["X-Request-ID"] = rid
        return error_resp


@app.exception_handler(EbayGatewayError)
async def gateway_error_handler(request: Request, exc: EbayGatewayError):
    rid = getattr(request.state, "rid", None)
    log = logger.error if exc.http_status >= 500 else logger.warning
    log("%s %s failed code=%s rid=%s: %s", request.method, request.url.path, exc.code, rid, exc.message)
    return JSONResponse({"detail": exc.to_dict()}, status_code=exc.http_status)


app.include_router(ebay_accounts.router)
app.include_router(orders.router)
app.include_router(post_order.router)
app.include_router(inventory.router)
app.include_router(messages.router)


@app.on_event("startup")
async def startup_event():
    logger.info("eBay Account Integration Gateway starting up (default environment: %s)", settings.EBAY_ENVIRONMENT)
    if settings.DATABASE_URL.startswith("sqlite"):
        # Dev mode: no migrations, create the credential tables in place.
        from app.models_sqlalchemy import Base, engine
        from app.models_sqlalchemy import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Using SQLite database - credential tables ensured")
    else:
        logger.info("Using PostgreSQL database - run `alembic upgrade head` to apply migrations")


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/healthz/db")
async def healthz_db():
    """Database health check endpoint"""
    try:
        from app.models_sqlalchemy import engine
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"status": "ok", "database": "connected"}
    except Exception as e:
        logger.exception("Database health check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database unavailable: {type(e).__name__}"
        )


@app.get("/")
async def root():
    return {
        "message": "eBay Account Integration Gateway",
        "version": "1.0.0",
        "docs": "/docs"
    }
