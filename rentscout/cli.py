"""
Command-line entry point: scrape rental sources into SQLite and export.
"""
import argparse
import asyncio
import os
import sys

from .config import config
from .core import parse_sources, run_pipeline
from .database import db_connect, db_init
from .export import export_new_since_run, export_price_history, save_frame, save_output_rows
from .models import Source
from .utils import init_logger


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="South African rental listings scraper with SQLite, price history and scam scoring")
    ap.add_argument("--sources", type=str, default=config.DEFAULT_SOURCES,
                    help="Comma-separated sources or 'all' (%s)" % ", ".join(s.value for s in Source))
    ap.add_argument("--city", type=str, default=config.DEFAULT_CITY, help="City slug, e.g. cape-town")
    ap.add_argument("--suburbs", type=str, default="", help="Comma-separated suburb slugs, e.g. sea-point,green-point")
    ap.add_argument("--sequential", action="store_true", help="Run sources one after another instead of concurrently")
    ap.add_argument("--max-pages", type=int, default=None, help="Page cap per source (default: source's own limit)")
    ap.add_argument("--db", type=str, default=config.DB_PATH, help="Path to SQLite DB")
    ap.add_argument("--out", type=str, default="", help="CSV/XLSX to export scraped rows (or --export-new / --export-prices)")
    ap.add_argument("--export-new", action="store_true", help="Export only listings first seen in this run (uses --out)")
    ap.add_argument("--export-prices", action="store_true", help="Export price_history to CSV/XLSX (uses --out)")
    ap.add_argument("--dry-run", action="store_true", help="Scrape and score without writing to the DB")
    # Logging
    lvl_choices = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    ap.add_argument("--log-level", choices=lvl_choices, default=None,
                    help="Global log level for both console and file (overrides --log-console/--log-file).")
    ap.add_argument("--log-console", choices=lvl_choices, default=config.LOG_CONSOLE,
                    help="Console log level (default from env LOG_CONSOLE or INFO).")
    ap.add_argument("--log-file", choices=lvl_choices, default=config.LOG_FILE,
                    help="File log level (default from env LOG_FILE or DEBUG).")
    ap.add_argument("--log-file-path", default=config.LOG_FILE_PATH,
                    help="Path to log file (default from env LOG_FILE_PATH or rentscout.log).")
    ap.add_argument("--no-file-log", action="store_true",
                    help="Disable file logging (only console output).")

    args = ap.parse_args(argv)
    try:
        args.sources = parse_sources(args.sources)
    except ValueError as e:
        ap.error(str(e))
    if args.max_pages is not None and args.max_pages < 1:
        ap.error("--max-pages must be at least 1")
    if (args.export_new or args.export_prices) and not args.out:
        ap.error("--export-new and --export-prices need --out")
    if args.dry_run and (args.export_new or args.export_prices):
        ap.error("--dry-run cannot be combined with DB exports")
    return args


def main(argv=None) -> int:
    args = parse_args(argv)
    eff_console = args.log_level or args.log_console
    eff_file = args.log_level or args.log_file
    logger = init_logger(
        console_level=eff_console,
        file_level=eff_file,
        log_file=None if args.no_file_log else args.log_file_path
    )
    logger.info(
        "Logger initialized: console=%s, file=%s, path=%s",
        eff_console,
        "DISABLED" if args.no_file_log else eff_file,
        "N/A" if args.no_file_log else args.log_file_path,
    )
    config.validate()

    conn = None
    if not args.dry_run:
        conn = db_connect(args.db)
        db_init(conn)

    try:
        report = asyncio.run(run_pipeline(
            args.sources,
            city=args.city,
            suburbs=[s.strip() for s in args.suburbs.split(",") if s.strip()],
            concurrent=not args.sequential,
            max_pages=args.max_pages,
            conn=conn,
        ))
        logger.info(">>> Run started at %s complete", report.started_at)

        for run in report.orchestrator.results:
            logger.info(
                ">>> %s: %d properties, %d pages, %d errors",
                run.source.value, len(run.result.properties), run.result.pages_scraped, len(run.result.errors),
            )
        for err in report.errors:
            logger.warning("  %s", err)

        if args.out:
            if args.export_prices:
                dfp = export_price_history(conn)
                save_frame(dfp, args.out)
                logger.info(">>> Export price_history: %d rows -> %s", len(dfp), args.out)
            elif args.export_new:
                dfn = export_new_since_run(conn, report.started_at)
                save_frame(dfn, args.out)
                logger.info(">>> Export only new items: %d rows -> %s", len(dfn), args.out)
            else:
                os.makedirs(os.path.dirname(args.out) or ".", exist_ok=True)
                save_output_rows(report.properties, args.out, report.analyses)
    finally:
        if conn is not None:
            conn.close()

    return 0 if report.success else 1


if __name__ == "__main__":
    sys.exit(main())
