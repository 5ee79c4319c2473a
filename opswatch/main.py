"""FastAPI application entry point."""
import logging
import logging.config
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from opswatch.api.routes import router
from opswatch.database import init_db
from opswatch.errors import ConfigurationError, PassInProgressError, StorageError

# Configure structured logging at startup
logging.config.dictConfig({
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            "datefmt": "%Y-%m-%dT%H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "root": {
        "level": "INFO",
        "handlers": ["console"],
    },
})

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("OpsWatch starting up, initializing database tables")
    try:
        init_db()
        logger.info("Database ready")
    except Exception as e:
        # Don't block startup: server must bind so /health passes
        logger.warning("Database init failed (server will start anyway): %s", e)
    yield
    logger.info("OpsWatch shutting down")


app = FastAPI(
    title="OpsWatch",
    description="Turns payment, invoice and workspace signals into de-duplicated, scored customer alerts.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(router, prefix="/api", tags=["api"])


@app.exception_handler(ConfigurationError)
def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PassInProgressError)
def pass_in_progress_handler(request: Request, exc: PassInProgressError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StorageError)
def storage_error_handler(request: Request, exc: StorageError):
    logger.error("Storage error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Storage failure; the pass was rolled back"})


@app.get("/health")
def health():
    return {"status": "ok"}
