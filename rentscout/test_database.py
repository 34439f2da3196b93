"""
Tests for the SQLite sink.
"""
import pytest

from rentscout.database import (
    create_job, db_connect, db_get_property, db_init, decode_property_row,
    exists_by_key, finish_job, get_job, ingest_records, upsert_property,
)
from rentscout.models import IngestSummary, PriceFrequency, ScrapedRecord, Source
from rentscout.scam import scam_detector


@pytest.fixture
def conn(tmp_path):
    c = db_connect(str(tmp_path / "data" / "rentscout.db"))
    db_init(c)
    yield c
    c.close()


def record(external_id="114383737", price=12500.0, **kw):
    return ScrapedRecord(
        external_id=external_id,
        source=Source.PROPERTY24,
        source_url=f"https://www.property24.com/to-rent/sea-point/cape-town/western-cape/11021/{external_id}",
        title="2 Bedroom Apartment",
        suburb="Sea Point",
        city="Cape Town",
        price=price,
        images=["https://cdn.example.com/a.jpg"],
        furnished=True,
        **kw
    )


def history(conn, external_id):
    return [r[0] for r in conn.execute(
        "SELECT price FROM price_history WHERE external_id = ? ORDER BY rowid", (external_id,)
    )]


def test_db_connect_creates_parent_directory(tmp_path):
    path = tmp_path / "nested" / "dir" / "x.db"
    c = db_connect(str(path))
    c.close()
    assert path.exists()


def test_insert_then_refresh(conn):
    r = record()
    assert upsert_property(conn, r, scam_detector.analyze(r)) == (True, False)
    first = db_get_property(conn, "property24", r.external_id)

    assert upsert_property(conn, r) == (False, False)
    second = db_get_property(conn, "property24", r.external_id)

    assert second["id"] == first["id"]
    assert second["first_seen_at"] == first["first_seen_at"]
    assert second["last_seen_at"] >= first["last_seen_at"]
    assert history(conn, r.external_id) == [12500.0]
    assert conn.execute("SELECT COUNT(*) FROM properties").fetchone()[0] == 1


def test_price_change_adds_history(conn):
    upsert_property(conn, record(price=12500.0))
    assert upsert_property(conn, record(price=11900.0)) == (False, True)
    assert history(conn, "114383737")[-1] == 11900.0
    assert db_get_property(conn, "property24", "114383737")["price"] == 11900.0


def test_frequency_change_counts_as_price_change(conn):
    upsert_property(conn, record())
    _, changed = upsert_property(conn, record(price_frequency=PriceFrequency.WEEKLY))
    assert changed


def test_same_id_on_other_source_is_separate(conn):
    upsert_property(conn, record())
    other = record()
    other.source = Source.PRIVATE_PROPERTY
    assert upsert_property(conn, other) == (True, False)
    assert exists_by_key(conn, "private_property", "114383737")
    assert conn.execute("SELECT COUNT(*) FROM properties").fetchone()[0] == 2


def test_decode_property_row(conn):
    r = record()
    upsert_property(conn, r, scam_detector.analyze(r))
    row = decode_property_row(db_get_property(conn, "property24", r.external_id))
    assert row["images"] == ["https://cdn.example.com/a.jpg"]
    assert row["furnished"] is True
    assert row["pet_friendly"] is False
    # No description, no contact, one image
    assert row["scam_flags"] == ["vague_description", "missing_contact", "few_images"]


def test_ingest_counts_and_collects_errors(conn):
    upsert_property(conn, record("1"))
    bad = record("3")
    bad.title = ["not", "bindable"]

    summary = ingest_records(conn, [(record("1", price=9000.0), None), (record("2"), None), (bad, None)])
    assert summary.found == 3
    assert summary.added == 1
    assert summary.updated == 1
    assert summary.price_changed == 1
    assert len(summary.errors) == 1
    assert summary.errors[0].startswith("property24/3:")
    assert not summary.ok
    assert not exists_by_key(conn, "property24", "3")


def test_jobs(conn):
    job_id = create_job(conn, "property24")
    assert get_job(conn, job_id)["status"] == "running"

    finish_job(conn, job_id, IngestSummary(found=5, added=3, updated=2))
    job = get_job(conn, job_id)
    assert job["status"] == "completed"
    assert job["properties_added"] == 3
    assert job["error_message"] is None

    failed_id = create_job(conn, "facebook")
    finish_job(conn, failed_id, IngestSummary(), errors=["auth required", "timeout"], failed=True)
    job = get_job(conn, failed_id)
    assert job["status"] == "failed"
    assert job["error_message"] == "auth required; timeout"
    assert get_job(conn, 999) is None
