"""
RentScout API - serves the scraped listings store and runs scrape jobs.
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import config
from .database import get_db_connection, init_db
from .routes import listings_router, scrape_router, stats_router

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(config.LOG_FILE_PATH)
    ]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.validate()
    init_db()
    logger.info(
        f"RentScout API ready: db={config.DB_PATH}, "
        f"scrape on empty search={'on' if config.SCRAPE_ON_EMPTY else 'off'} ({config.DEFAULT_SOURCES})"
    )
    yield
    logger.info("RentScout API stopped")


app = FastAPI(
    title=config.API_TITLE,
    version=config.API_VERSION,
    description=config.API_DESCRIPTION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=config.CORS_ALLOW_CREDENTIALS,
    allow_methods=config.CORS_ALLOW_METHODS,
    allow_headers=config.CORS_ALLOW_HEADERS,
)

app.include_router(listings_router)
app.include_router(stats_router)
app.include_router(scrape_router)


@app.exception_handler(Exception)
async def unhandled_error(request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health_check():
    """Store reachability plus the number of active listings."""
    try:
        with get_db_connection() as conn:
            active = conn.execute("SELECT COUNT(*) FROM properties WHERE status = 'active'").fetchone()[0]
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Listings store unavailable")
    return {"status": "healthy", "version": config.API_VERSION, "active_properties": active}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("rentscout_api.main:app", host="0.0.0.0", port=8000, log_level=config.LOG_LEVEL.lower())
