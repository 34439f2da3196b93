"""
Scheduled scrape job handlers.

A job runs the whole pipeline inside the request, with pages per source
capped so it fits a bounded execution window, and records itself in the
scraping_jobs table.
"""
import logging
from fastapi import APIRouter, HTTPException, Depends

from rentscout.core import parse_sources, run_pipeline
from rentscout.database import create_job, finish_job, get_job
from rentscout.models import IngestSummary
from rentscout.utils import slugify

from ..models import JobOut, ScrapeRequest, ScrapeResponse
from ..database import get_db_connection
from ..config import config

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["scrape"])


def get_scraper_factory():
    """Scraper factory for jobs; None means the real source scrapers."""
    return None


@router.post("/scrape", response_model=ScrapeResponse)
async def run_scrape_job(body: ScrapeRequest, scraper_factory=Depends(get_scraper_factory)):
    """Run a scrape for one source (or "all") and store the results."""
    try:
        sources = parse_sources(body.source)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    city = slugify(body.city or config.DEFAULT_CITY)

    report = None
    with get_db_connection() as conn:
        job_id = create_job(conn, body.source)
        logger.info(f"Job {job_id}: scraping {body.source} for {city}")
        try:
            report = await run_pipeline(
                sources,
                city=city,
                max_pages=config.BATCH_MAX_PAGES,
                conn=conn,
                scraper_factory=scraper_factory,
            )
        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}", exc_info=True)
            finish_job(conn, job_id, IngestSummary(), errors=[str(e)], failed=True)
        else:
            errors = report.errors
            # Sink write failures fail the job; source errors are reported only
            finish_job(conn, job_id, report.summary, errors=errors, failed=bool(report.summary.errors))

    if report is None:
        raise HTTPException(status_code=500, detail=f"Scrape job {job_id} failed")

    summary = report.summary
    logger.info(
        f"Job {job_id}: found {summary.found}, added {summary.added}, "
        f"updated {summary.updated}, {len(errors)} errors"
    )
    return ScrapeResponse(
        success=True,
        job_id=job_id,
        properties_found=summary.found,
        properties_added=summary.added,
        properties_updated=summary.updated,
        errors=errors or None,
    )


@router.get("/scrape/jobs/{job_id}", response_model=JobOut)
async def get_scrape_job(job_id: int):
    """Get the record of a scrape job."""
    with get_db_connection() as conn:
        job = get_job(conn, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobOut(**job)