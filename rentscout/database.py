"""
SQLite sink for scraped rental listings.

Listings are keyed by (source, external_id). Upserts are idempotent: a second
write of the same record refreshes ``last_seen_at`` and the scam fields, and
only a changed price adds a row to ``price_history``.
"""
import json
import logging
import os
import sqlite3
from typing import Dict, Iterable, List, Optional, Tuple

from .models import IngestSummary, ScamAnalysis, ScrapedRecord
from .utils import now_iso

logger = logging.getLogger(__name__)


# Schema definitions
DDL_PROPERTIES = """
CREATE TABLE IF NOT EXISTS properties (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  external_id TEXT NOT NULL,
  source TEXT NOT NULL,
  source_url TEXT,
  title TEXT,
  description TEXT,
  property_type TEXT,
  address TEXT,
  suburb TEXT,
  city TEXT,
  province TEXT,
  postal_code TEXT,
  latitude REAL,
  longitude REAL,
  price REAL NOT NULL,
  price_frequency TEXT,
  deposit REAL,
  bedrooms INTEGER DEFAULT 0,
  bathrooms INTEGER DEFAULT 0,
  parking INTEGER DEFAULT 0,
  size_sqm REAL,
  furnished INTEGER DEFAULT 0,
  pet_friendly INTEGER DEFAULT 0,
  images TEXT,
  agent_name TEXT,
  agent_phone TEXT,
  agent_email TEXT,
  agency_name TEXT,
  scam_score REAL DEFAULT 0,
  scam_flags TEXT,
  status TEXT DEFAULT 'active',
  first_seen_at TEXT,
  last_seen_at TEXT,
  UNIQUE (source, external_id)
);
"""

DDL_PRICE_HISTORY = """
CREATE TABLE IF NOT EXISTS price_history (
  source TEXT,
  external_id TEXT,
  ts TEXT,
  price REAL,
  price_frequency TEXT,
  PRIMARY KEY (source, external_id, ts)
);
"""

DDL_SCRAPING_JOBS = """
CREATE TABLE IF NOT EXISTS scraping_jobs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  source TEXT NOT NULL,
  status TEXT NOT NULL,
  started_at TEXT,
  completed_at TEXT,
  properties_found INTEGER DEFAULT 0,
  properties_added INTEGER DEFAULT 0,
  properties_updated INTEGER DEFAULT 0,
  error_message TEXT
);
"""

DDL_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_properties_last_seen ON properties(last_seen_at);",
    "CREATE INDEX IF NOT EXISTS idx_properties_city ON properties(city);",
    "CREATE INDEX IF NOT EXISTS idx_properties_price ON properties(price);",
    "CREATE INDEX IF NOT EXISTS idx_price_history_key ON price_history(source, external_id);",
]

# Columns written from a ScrapedRecord, in insert order
RECORD_COLUMNS = [
    "external_id", "source", "source_url", "title", "description", "property_type",
    "address", "suburb", "city", "province", "postal_code", "latitude", "longitude",
    "price", "price_frequency", "deposit", "bedrooms", "bathrooms", "parking",
    "size_sqm", "furnished", "pet_friendly", "images",
    "agent_name", "agent_phone", "agent_email", "agency_name",
]
JSON_COLUMNS = ("images", "scam_flags")
BOOL_COLUMNS = ("furnished", "pet_friendly")


def db_connect(path: str) -> sqlite3.Connection:
    """Create database connection with optimized settings."""
    if path != ":memory:":
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def db_init(conn: sqlite3.Connection):
    """Initialize database schema with tables and indexes."""
    conn.execute(DDL_PROPERTIES)
    conn.execute(DDL_PRICE_HISTORY)
    conn.execute(DDL_SCRAPING_JOBS)
    for ddl in DDL_INDEXES:
        conn.execute(ddl)
    conn.commit()


def row_to_dict(cur, row):
    """Convert a result row to a dictionary keyed by column name."""
    return {desc[0]: row[i] for i, desc in enumerate(cur.description)}


def decode_property_row(row: Dict) -> Dict:
    """JSON columns back to lists, integer flags back to booleans."""
    out = dict(row)
    for col in JSON_COLUMNS:
        if col in out:
            out[col] = json.loads(out[col]) if out[col] else []
    for col in BOOL_COLUMNS:
        if col in out:
            out[col] = bool(out[col])
    return out


def _record_values(record: ScrapedRecord) -> List:
    row = record.to_row()
    row["images"] = json.dumps(row["images"], ensure_ascii=False)
    row["furnished"] = int(row["furnished"])
    row["pet_friendly"] = int(row["pet_friendly"])
    return [row[col] for col in RECORD_COLUMNS]


def _scam_values(analysis: Optional[ScamAnalysis]) -> Tuple[float, str]:
    if analysis is None:
        return 0.0, "[]"
    return analysis.score, json.dumps(analysis.flag_types)


def db_get_property(conn: sqlite3.Connection, source: str, external_id: str) -> Optional[Dict]:
    """Retrieve a stored listing by its source key."""
    cur = conn.cursor()
    cur.execute("SELECT * FROM properties WHERE source = ? AND external_id = ?", (source, external_id))
    r = cur.fetchone()
    if not r:
        return None
    return row_to_dict(cur, r)


def exists_by_key(conn: sqlite3.Connection, source: str, external_id: str) -> bool:
    cur = conn.execute(
        "SELECT 1 FROM properties WHERE source = ? AND external_id = ? LIMIT 1", (source, external_id)
    )
    return cur.fetchone() is not None


def db_insert_property(conn: sqlite3.Connection, record: ScrapedRecord, analysis: Optional[ScamAnalysis] = None):
    """Insert a new listing as active."""
    ts = now_iso()
    columns = RECORD_COLUMNS + ["scam_score", "scam_flags", "status", "first_seen_at", "last_seen_at"]
    values = _record_values(record) + list(_scam_values(analysis)) + ["active", ts, ts]
    placeholders = ",".join("?" for _ in columns)
    conn.execute(f"INSERT INTO properties ({','.join(columns)}) VALUES ({placeholders})", values)
    conn.commit()


def db_update_property(conn: sqlite3.Connection, record: ScrapedRecord, analysis: Optional[ScamAnalysis] = None):
    """Refresh an existing listing; first_seen_at is left alone."""
    columns = [c for c in RECORD_COLUMNS if c not in ("source", "external_id")]
    assignments = ", ".join(f"{c}=?" for c in columns)
    row = dict(zip(RECORD_COLUMNS, _record_values(record)))
    values = [row[c] for c in columns] + list(_scam_values(analysis)) + [now_iso(), record.source.value, record.external_id]
    conn.execute(f"""
    UPDATE properties SET {assignments}, scam_score=?, scam_flags=?, status='active', last_seen_at=?
    WHERE source=? AND external_id=?
    """, values)
    conn.commit()


def db_insert_price_event(conn: sqlite3.Connection, source: str, external_id: str,
                          price: Optional[float], price_frequency: Optional[str]):
    """Record a price observation for a listing."""
    if price is None:
        return
    conn.execute("""
    INSERT OR REPLACE INTO price_history (source, external_id, ts, price, price_frequency)
    VALUES (?, ?, ?, ?, ?)
    """, (source, external_id, now_iso(), price, price_frequency))
    conn.commit()


def upsert_property(conn: sqlite3.Connection, record: ScrapedRecord,
                    analysis: Optional[ScamAnalysis] = None) -> Tuple[bool, bool]:
    """
    Insert or update a listing and track price changes.

    Returns:
        Tuple of (is_new, price_changed)
    """
    source = record.source.value
    existing = db_get_property(conn, source, record.external_id)
    if existing is None:
        db_insert_property(conn, record, analysis)
        db_insert_price_event(conn, source, record.external_id, record.price, record.price_frequency.value)
        return True, False

    old_price = existing.get("price")
    price_changed = old_price is None or float(old_price) != float(record.price) \
        or (existing.get("price_frequency") or "") != record.price_frequency.value
    db_update_property(conn, record, analysis)
    if price_changed:
        db_insert_price_event(conn, source, record.external_id, record.price, record.price_frequency.value)
    return False, price_changed


def ingest_records(conn: sqlite3.Connection,
                   scored: Iterable[Tuple[ScrapedRecord, Optional[ScamAnalysis]]]) -> IngestSummary:
    """
    Upsert a batch of scored records.

    A failed write is logged and collected in the summary; the rest of the
    batch still goes through.
    """
    summary = IngestSummary()
    for record, analysis in scored:
        summary.found += 1
        try:
            is_new, price_changed = upsert_property(conn, record, analysis)
        except sqlite3.Error as e:
            conn.rollback()
            logger.warning("Failed to store %s/%s: %s", record.source.value, record.external_id, e)
            summary.errors.append(f"{record.source.value}/{record.external_id}: {e}")
            continue
        if is_new:
            summary.added += 1
        else:
            summary.updated += 1
        if price_changed:
            summary.price_changed += 1
    return summary


# ---------- Scraping jobs ----------

def create_job(conn: sqlite3.Connection, source: str) -> int:
    cur = conn.execute(
        "INSERT INTO scraping_jobs (source, status, started_at) VALUES (?, 'running', ?)",
        (source, now_iso()),
    )
    conn.commit()
    return cur.lastrowid


def finish_job(conn: sqlite3.Connection, job_id: int, summary: IngestSummary,
               errors: Optional[List[str]] = None, failed: bool = False):
    """Close a job with its counts; errors are joined into one message."""
    errors = errors if errors is not None else summary.errors
    conn.execute("""
    UPDATE scraping_jobs SET status=?, completed_at=?, properties_found=?, properties_added=?,
      properties_updated=?, error_message=?
    WHERE id=?
    """, (
        "failed" if failed else "completed", now_iso(), summary.found, summary.added,
        summary.updated, "; ".join(errors) if errors else None, job_id,
    ))
    conn.commit()


def get_job(conn: sqlite3.Connection, job_id: int) -> Optional[Dict]:
    cur = conn.cursor()
    cur.execute("SELECT * FROM scraping_jobs WHERE id = ?", (job_id,))
    r = cur.fetchone()
    return row_to_dict(cur, r) if r else None
