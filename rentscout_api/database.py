"""
Database operations and connection management.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from rentscout.database import db_connect, db_init, decode_property_row, row_to_dict

from .config import config

logger = logging.getLogger(__name__)


@contextmanager
def get_db_connection():
    """Get a database connection with proper error handling."""
    if not config.DB_PATH:
        raise ValueError("Database path not configured")
    conn = db_connect(config.DB_PATH)
    try:
        yield conn
    except Exception as e:
        logger.error(f"Database error: {e}")
        raise
    finally:
        conn.close()


def init_db() -> None:
    """Create tables if the database is new."""
    with get_db_connection() as conn:
        db_init(conn)


def _normalize(value: str) -> str:
    # Slugs and display names compare equal: "sea-point" == "Sea Point"
    return value.replace("-", " ").strip().lower()


def build_where_clause(filters: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """Build WHERE clause and parameters from filters. Only active listings are returned."""
    where_conditions = ["status = 'active'"]
    parameters: List[Any] = []

    # Text search
    q = filters.get('q')
    if q:
        where_conditions.append('(lower(title) LIKE ? OR lower(description) LIKE ?)')
        search_term = f'%{q.lower()}%'
        parameters.extend([search_term, search_term])

    city = filters.get('city')
    if city:
        where_conditions.append("replace(lower(city), '-', ' ') LIKE ?")
        parameters.append(f'%{_normalize(city)}%')

    for column, key in (('suburb', 'suburbs'), ('property_type', 'types'), ('source', 'sources')):
        values = filters.get(key)
        if values:
            placeholders = ','.join('?' for _ in values)
            if column == 'suburb':
                where_conditions.append(f"replace(lower(suburb), '-', ' ') IN ({placeholders})")
                parameters.extend(_normalize(v) for v in values)
            else:
                where_conditions.append(f'lower({column}) IN ({placeholders})')
                parameters.extend(v.lower() for v in values)

    # Ranges
    for column, key, op in (
        ('price', 'min_price', '>='),
        ('price', 'max_price', '<='),
        ('bedrooms', 'min_beds', '>='),
        ('bedrooms', 'max_beds', '<='),
        ('bathrooms', 'min_baths', '>='),
        ('scam_score', 'max_scam', '<='),
    ):
        value = filters.get(key)
        if value is not None:
            where_conditions.append(f'{column} {op} ?')
            parameters.append(value)

    # Amenities only narrow the result when requested
    if filters.get('pets'):
        where_conditions.append('pet_friendly = 1')
    if filters.get('furnished'):
        where_conditions.append('furnished = 1')

    where_clause = ' WHERE ' + ' AND '.join(where_conditions)
    return where_clause, parameters


def get_order_clause(sort: str) -> str:
    """Generate ORDER BY clause based on sort parameter."""
    sort_options = {
        "price_asc": "ORDER BY price ASC, id ASC",
        "price_desc": "ORDER BY price DESC, id ASC",
        "scam_score_asc": "ORDER BY scam_score ASC, id ASC",
        "date_desc": "ORDER BY first_seen_at DESC, id DESC",
    }
    return sort_options.get(sort, sort_options["date_desc"])


def get_listings_count(filters: Dict[str, Any]) -> int:
    """Get total count of listings matching filters."""
    with get_db_connection() as conn:
        where_clause, parameters = build_where_clause(filters)
        result = conn.execute(f'SELECT COUNT(*) FROM properties {where_clause}', parameters).fetchone()
        return result[0] if result else 0


def get_listings(filters: Dict[str, Any], sort: str = 'date_desc',
                 limit: int = 20, offset: int = 0) -> List[Dict]:
    """Get listings with filters, sorting, and pagination."""
    with get_db_connection() as conn:
        where_clause, parameters = build_where_clause(filters)
        order_clause = get_order_clause(sort)

        sql = f'SELECT * FROM properties {where_clause} {order_clause} LIMIT ? OFFSET ?'
        parameters.extend([limit, offset])

        cursor = conn.execute(sql, parameters)
        return [decode_property_row(row_to_dict(cursor, row)) for row in cursor.fetchall()]


def get_listing_by_id(property_id: int) -> Optional[Dict]:
    """Get a single listing by its storage id."""
    with get_db_connection() as conn:
        cursor = conn.execute('SELECT * FROM properties WHERE id = ?', (property_id,))
        row = cursor.fetchone()
        return decode_property_row(row_to_dict(cursor, row)) if row else None


def get_price_history(source: str, external_id: str) -> List[Dict]:
    """Get price history for a listing, oldest first."""
    with get_db_connection() as conn:
        cursor = conn.execute(
            'SELECT ts, price, price_frequency FROM price_history '
            'WHERE source = ? AND external_id = ? ORDER BY ts ASC',
            (source, external_id)
        )
        return [{'ts': row[0], 'price': row[1], 'price_frequency': row[2]}
                for row in cursor.fetchall()]


def get_statistics() -> Dict[str, Any]:
    """Get various statistics about the stored listings."""
    with get_db_connection() as conn:
        total = conn.execute("SELECT COUNT(*) FROM properties WHERE status = 'active'").fetchone()[0]
        active_7d = conn.execute(
            "SELECT COUNT(*) FROM properties WHERE datetime(last_seen_at) >= datetime('now','-7 day')"
        ).fetchone()[0]

        min_price, max_price, avg_price = conn.execute(
            "SELECT MIN(price), MAX(price), AVG(price) FROM properties WHERE status = 'active'"
        ).fetchone()

        high_risk = conn.execute(
            "SELECT COUNT(*) FROM properties WHERE status = 'active' AND scam_score >= 0.6"
        ).fetchone()[0]

        by_source = conn.execute(
            "SELECT source, COUNT(*) FROM properties WHERE status = 'active' GROUP BY source ORDER BY COUNT(*) DESC"
        ).fetchall()

        by_suburb = conn.execute(
            "SELECT suburb, COUNT(*) FROM properties WHERE status = 'active' "
            "GROUP BY suburb ORDER BY COUNT(*) DESC LIMIT 20"
        ).fetchall()

        by_type = conn.execute(
            "SELECT property_type, COUNT(*) FROM properties WHERE status = 'active' GROUP BY property_type"
        ).fetchall()

        return {
            'total_properties': total,
            'active_last_days': active_7d,
            'min_price': min_price,
            'max_price': max_price,
            'avg_price': avg_price,
            'high_risk': high_risk,
            'by_source': {source: count for source, count in by_source},
            'by_suburb': {suburb: count for suburb, count in by_suburb},
            'by_property_type': {ptype: count for ptype, count in by_type},
        }
