"""
Export utilities: scraped records and stored rows to CSV/XLSX via pandas.
"""
import json
import logging
import sqlite3
from typing import List, Optional

import pandas as pd

from .models import ScamAnalysis, ScrapedRecord

logger = logging.getLogger(__name__)


def export_new_since_run(conn: sqlite3.Connection, run_started_iso: str) -> pd.DataFrame:
    """Export listings that were first seen since the given timestamp."""
    q = """
    SELECT *
    FROM properties
    WHERE first_seen_at >= ?
    ORDER BY first_seen_at DESC
    """
    return pd.read_sql_query(q, conn, params=(run_started_iso,))


def export_price_history(conn: sqlite3.Connection, source: Optional[str] = None,
                         external_id: Optional[str] = None) -> pd.DataFrame:
    """Export price history for all listings or one (source, external_id)."""
    if source and external_id:
        q = "SELECT * FROM price_history WHERE source=? AND external_id=? ORDER BY ts ASC"
        return pd.read_sql_query(q, conn, params=(source, external_id))
    q = "SELECT * FROM price_history ORDER BY source, external_id, ts ASC"
    return pd.read_sql_query(q, conn)


def records_frame(records: List[ScrapedRecord],
                  analyses: Optional[List[ScamAnalysis]] = None) -> pd.DataFrame:
    """One row per record, images pipe-joined, scam fields when given."""
    rows = []
    for i, r in enumerate(records):
        row = r.to_row()
        row["images"] = "|".join(r.images)
        if analyses is not None:
            row["scam_score"] = analyses[i].score
            row["risk_level"] = analyses[i].risk_level.value
            row["scam_flags"] = json.dumps(analyses[i].flag_types)
        rows.append(row)
    return pd.DataFrame(rows)


def save_frame(df: pd.DataFrame, out_path: str) -> None:
    """Write to .xlsx when the path says so, CSV otherwise."""
    if out_path.lower().endswith(".xlsx"):
        df.to_excel(out_path, index=False)
    else:
        df.to_csv(out_path, index=False)
    logger.info(">>> Saved %d rows to %s", len(df), out_path)


def save_output_rows(records: List[ScrapedRecord], out_path: str,
                     analyses: Optional[List[ScamAnalysis]] = None) -> pd.DataFrame:
    """Save records to CSV or Excel file."""
    df = records_frame(records, analyses)
    save_frame(df, out_path)
    return df
