"""
Core scraping orchestration: run sources, merge, dedupe, score and store.
"""
import asyncio
import logging
import sqlite3
import time
from typing import Callable, Dict, Iterable, List, Optional, Set, Type, Union

from .base import SourceScraper
from .config import config
from .database import db_connect, db_init, ingest_records
from .facebook import FacebookScraper
from .models import (
    IngestSummary, OrchestratorResult, PipelineReport, ScrapedRecord,
    ScraperResult, Source, SourceRun,
)
from .private_property import PrivatePropertyScraper
from .property24 import Property24Scraper
from .scam import scam_detector
from .utils import now_iso

logger = logging.getLogger(__name__)

SCRAPERS: Dict[Source, Type[SourceScraper]] = {
    Source.PRIVATE_PROPERTY: PrivatePropertyScraper,
    Source.PROPERTY24: Property24Scraper,
    Source.FACEBOOK: FacebookScraper,
}

ScraperFactory = Callable[[Source], Optional[SourceScraper]]


def parse_sources(sources: Union[str, Iterable[Union[str, Source]]]) -> List[Source]:
    """'all', 'property24,facebook' or a list of ids -> Source members."""
    if isinstance(sources, str):
        if sources.strip().lower() == "all":
            return list(SCRAPERS)
        sources = [s for s in sources.split(",") if s.strip()]
    out: List[Source] = []
    for s in sources:
        source = s if isinstance(s, Source) else Source(str(s).strip().lower())
        if source not in out:
            out.append(source)
    return out


def get_scraper_for_source(source: Union[str, Source], **kwargs) -> Optional[SourceScraper]:
    """New scraper instance for `source`, or None when there is none."""
    try:
        source = Source(source)
    except ValueError:
        return None
    scraper_cls = SCRAPERS.get(source)
    return scraper_cls(**kwargs) if scraper_cls else None


def merge_results(results: List[ScraperResult], labels: List[str]) -> ScraperResult:
    """Fold per-suburb runs of one source into a single result."""
    merged = ScraperResult(success=any(r.success for r in results))
    for label, r in zip(labels, results):
        merged.properties.extend(r.properties)
        merged.errors.extend(f"{label}: {e}" for e in r.errors)
        merged.pages_scraped += r.pages_scraped
        merged.duration += r.duration
    return merged


class ScraperOrchestrator:
    """
    Run a set of source scrapers for one city and collect a result per source.

    Sources run concurrently (one task each) or one after another. A source
    that raises yields a failed, zero-record result. One that overruns its
    deadline keeps the pages it finished. Neither takes the whole run down.
    """

    def __init__(
        self,
        sources: Union[str, Iterable[Union[str, Source]]],
        city: Optional[str] = None,
        suburbs: Optional[List[str]] = None,
        concurrent: bool = True,
        max_pages: Optional[int] = None,
        deadline: Optional[float] = None,
        scraper_factory: Optional[ScraperFactory] = None,
    ):
        self.sources = parse_sources(sources)
        self.city = city or config.DEFAULT_CITY
        self.suburbs = [s for s in (suburbs or []) if s]
        self.concurrent = concurrent
        self.max_pages = max_pages
        self.deadline = deadline or config.SOURCE_DEADLINE
        self.scraper_factory = scraper_factory or self._default_factory

    def _default_factory(self, source: Source) -> Optional[SourceScraper]:
        return get_scraper_for_source(source, max_pages=self.max_pages, deadline=self.deadline)

    async def _scrape_source(self, scraper, finished: List[ScraperResult]) -> ScraperResult:
        if not self.suburbs:
            return await scraper.scrape(self.city)
        for suburb in self.suburbs:
            finished.append(await scraper.scrape(self.city, suburb))
        return merge_results(finished, self.suburbs)

    def _timed_out(self, scraper, finished: List[ScraperResult], started: float) -> ScraperResult:
        """Whatever the source collected before its deadline cut it off."""
        partial = list(finished)
        current = getattr(scraper, "progress", None)
        if current is not None and all(current is not r for r in partial):
            partial.append(current)

        if self.suburbs:
            result = merge_results(partial, self.suburbs[:len(partial)])
        else:
            result = partial[0] if partial else ScraperResult(success=False)
        result.errors.append(f"Timed out after {self.deadline:g}s")
        result.success = bool(result.properties)
        result.duration = (time.monotonic() - started) * 1000
        return result

    async def run_source(self, source: Source) -> SourceRun:
        started = time.monotonic()
        scraper = self.scraper_factory(source)
        if scraper is None:
            return SourceRun(source, ScraperResult.failure(f"No scraper available for {source.value}"))

        finished: List[ScraperResult] = []
        try:
            result = await asyncio.wait_for(self._scrape_source(scraper, finished), timeout=self.deadline)
        except asyncio.TimeoutError:
            result = self._timed_out(scraper, finished, started)
            logger.error(
                "[%s] Timed out after %gs, keeping %d properties", source.value, self.deadline, len(result.properties)
            )
        except Exception as e:
            logger.exception("[%s] Scraper failed", source.value)
            result = ScraperResult.failure(str(e) or e.__class__.__name__, (time.monotonic() - started) * 1000)
        finally:
            await scraper.aclose()

        logger.info(
            "[%s] done: success=%s properties=%d pages=%d errors=%d",
            source.value, result.success, len(result.properties), result.pages_scraped, len(result.errors),
        )
        return SourceRun(source, result)

    async def run(self) -> OrchestratorResult:
        started = time.monotonic()
        logger.info(
            ">>> Scraping %s for %s%s (%s)",
            ", ".join(s.value for s in self.sources), self.city,
            f" [{', '.join(self.suburbs)}]" if self.suburbs else "",
            "concurrent" if self.concurrent else "sequential",
        )

        if self.concurrent:
            runs = list(await asyncio.gather(*(self.run_source(s) for s in self.sources)))
        else:
            runs = []
            for source in self.sources:
                runs.append(await self.run_source(source))

        return OrchestratorResult(
            success=any(r.result.success for r in runs),
            total_properties=sum(len(r.result.properties) for r in runs),
            results=runs,
            duration=(time.monotonic() - started) * 1000,
        )

    @staticmethod
    def deduplicate_properties(properties: List[ScrapedRecord]) -> List[ScrapedRecord]:
        """One record per (suburb, title prefix, price); first seen wins."""
        seen: Dict[tuple, ScrapedRecord] = {}
        for p in properties:
            key = ((p.suburb or "").lower(), (p.title or "").lower()[:50], p.price)
            if key not in seen:
                seen[key] = p
        return list(seen.values())


async def run_pipeline(
    sources: Union[str, Iterable[Union[str, Source]]],
    city: Optional[str] = None,
    suburbs: Optional[List[str]] = None,
    concurrent: bool = True,
    max_pages: Optional[int] = None,
    conn: Optional[sqlite3.Connection] = None,
    db_path: Optional[str] = None,
    scraper_factory: Optional[ScraperFactory] = None,
) -> PipelineReport:
    """
    Scrape, dedupe across sources, score and upsert.

    Writes go to `conn` if given, else to a connection opened on `db_path`
    (closed afterwards). With neither, nothing is stored (dry run).
    """
    started_at = now_iso()
    orchestrator = ScraperOrchestrator(
        sources, city=city, suburbs=suburbs, concurrent=concurrent,
        max_pages=max_pages, scraper_factory=scraper_factory,
    )
    result = await orchestrator.run()

    properties = ScraperOrchestrator.deduplicate_properties(result.all_properties())
    analyses = [scam_detector.analyze(p) for p in properties]
    logger.info(
        ">>> %d properties scraped, %d after dedup", result.total_properties, len(properties)
    )

    summary = IngestSummary(found=len(properties))
    own_conn = conn is None and db_path is not None
    if own_conn:
        conn = db_connect(db_path)
        db_init(conn)
    if conn is not None:
        try:
            summary = ingest_records(conn, zip(properties, analyses))
        finally:
            if own_conn:
                conn.close()
        logger.info(
            ">>> In DB: added %d, updated %d, price changes %d, failed %d",
            summary.added, summary.updated, summary.price_changed, len(summary.errors),
        )

    return PipelineReport(
        orchestrator=result,
        properties=properties,
        analyses=analyses,
        summary=summary,
        started_at=started_at,
    )


# Strong references to detached runs so they are not garbage collected
_background_tasks: Set[asyncio.Task] = set()


def _on_background_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        logger.warning("Background scrape %s was cancelled", task.get_name())
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background scrape %s failed", task.get_name(), exc_info=exc)
        return
    report = task.result()
    logger.info(
        "Background scrape %s finished: %d found, %d added, %d updated",
        task.get_name(), report.summary.found, report.summary.added, report.summary.updated,
    )


def spawn_background_scrape(
    sources: Union[str, Iterable[Union[str, Source]]],
    city: Optional[str] = None,
    suburbs: Optional[List[str]] = None,
    db_path: Optional[str] = None,
    **kwargs,
) -> asyncio.Task:
    """
    Start a pipeline run without waiting for it.

    Must be called from a running event loop. Failures are logged by the
    task's done callback and never reach the caller.
    """
    task = asyncio.create_task(
        run_pipeline(sources, city=city, suburbs=suburbs, db_path=db_path or config.DB_PATH, **kwargs),
        name=f"scrape-{city or config.DEFAULT_CITY}",
    )
    _background_tasks.add(task)
    task.add_done_callback(_on_background_done)
    return task
