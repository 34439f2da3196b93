"""
API route handlers for listings endpoints.
"""
import json
import logging
import math
from typing import List, Optional
from fastapi import APIRouter, Query, HTTPException, Depends
from fastapi.responses import StreamingResponse
import pandas as pd

from rentscout.core import parse_sources, spawn_background_scrape
from rentscout.utils import slugify

from ..models import PropertyOut, ListingsResponse, PricePoint
from ..database import get_listings_count, get_listings, get_listing_by_id, get_price_history
from ..config import config

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["listings"])

EXPORT_COLUMNS = ['id', 'source', 'external_id', 'title', 'suburb', 'city', 'price', 'scam_score', 'source_url']


def split_param(value: Optional[str]) -> Optional[List[str]]:
    """'a, b,,c' -> ['a', 'b', 'c']; empty -> None"""
    if not value:
        return None
    parts = [v.strip() for v in value.split(",") if v.strip()]
    return parts or None


def get_listing_filters(
    q: Optional[str] = None,
    city: Optional[str] = config.DEFAULT_CITY,
    suburbs: Optional[str] = None,
    types: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    min_beds: Optional[int] = None,
    max_beds: Optional[int] = None,
    min_baths: Optional[int] = None,
    pets: bool = False,
    furnished: bool = False,
    sources: Optional[str] = None,
    max_scam: float = Query(config.DEFAULT_MAX_SCAM, ge=0, le=1),
) -> dict:
    """Dependency to extract and validate listing filters."""
    source_list = split_param(sources)
    if source_list and source_list != ["all"]:
        try:
            source_list = [s.value for s in parse_sources(source_list)]
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    else:
        source_list = None

    return {
        'q': q,
        'city': city,
        'suburbs': split_param(suburbs),
        'types': split_param(types),
        'min_price': min_price,
        'max_price': max_price,
        'min_beds': min_beds,
        'max_beds': max_beds,
        'min_baths': min_baths,
        'pets': pets,
        'furnished': furnished,
        'sources': source_list,
        'max_scam': max_scam,
    }


def trigger_scrape(filters: dict) -> None:
    """Start a detached scrape for a search that found nothing."""
    sources = filters['sources'] or config.DEFAULT_SOURCES
    city = slugify(filters['city'] or config.DEFAULT_CITY)
    suburbs = [slugify(s) for s in filters['suburbs'] or []]
    logger.info(f"No listings for {city} {suburbs or ''}, starting background scrape of {sources}")
    spawn_background_scrape(sources, city=city, suburbs=suburbs, db_path=config.DB_PATH)


@router.get("/listings", response_model=ListingsResponse)
async def get_api_listings(
    filters: dict = Depends(get_listing_filters),
    sort: str = 'date_desc',
    page: int = 1,
    limit: int = config.DEFAULT_PAGE_SIZE,
):
    """Get listings with filtering, sorting and pagination."""
    page = max(1, page)
    limit = min(config.MAX_PAGE_SIZE, max(1, limit))
    try:
        total = get_listings_count(filters)
        items_data = get_listings(filters, sort, limit, (page - 1) * limit)
        items = [PropertyOut(**item) for item in items_data]

        scrape_triggered = False
        if total == 0 and config.SCRAPE_ON_EMPTY:
            trigger_scrape(filters)
            scrape_triggered = True

        return ListingsResponse(
            properties=items,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
            scrape_triggered=scrape_triggered,
        )

    except Exception as e:
        logger.error(f"Error fetching listings: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/listings/{property_id}", response_model=PropertyOut)
async def get_api_listing(property_id: int):
    """Get a specific listing by ID."""
    try:
        listing_data = get_listing_by_id(property_id)
        if not listing_data:
            raise HTTPException(status_code=404, detail="Listing not found")

        return PropertyOut(**listing_data)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching listing {property_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/listings/{property_id}/price-history", response_model=List[PricePoint])
async def get_api_price_history(property_id: int):
    """Get price history for a specific listing."""
    try:
        listing = get_listing_by_id(property_id)
        if not listing:
            raise HTTPException(status_code=404, detail="Listing not found")

        history_data = get_price_history(listing['source'], listing['external_id'])
        return [PricePoint(**point) for point in history_data]

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching price history for {property_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/export/csv")
async def export_listings_csv(
    filters: dict = Depends(get_listing_filters),
    sort: str = 'date_desc'
):
    """Export filtered listings as CSV."""
    try:
        listings_data = get_listings(filters, sort, limit=config.EXPORT_LIMIT, offset=0)

        if not listings_data:
            # Return empty CSV with headers
            df = pd.DataFrame(columns=EXPORT_COLUMNS)
        else:
            df = pd.DataFrame(listings_data)
            df['images'] = df['images'].map('|'.join)
            df['scam_flags'] = df['scam_flags'].map(json.dumps)

        csv_content = df.to_csv(index=False).encode('utf-8')

        return StreamingResponse(
            iter([csv_content]),
            media_type='text/csv',
            headers={'Content-Disposition': 'attachment; filename="rentscout_listings.csv"'}
        )

    except Exception as e:
        logger.error(f"Error exporting CSV: {e}")
        raise HTTPException(status_code=500, detail="Error generating CSV export")
