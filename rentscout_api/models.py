"""
Pydantic models for API request/response serialization.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel


class PropertyOut(BaseModel):
    """Output model for a stored listing."""
    id: int
    external_id: str
    source: str
    source_url: Optional[str] = None
    title: str = ""
    description: Optional[str] = None
    property_type: str = "other"
    address: Optional[str] = None
    suburb: str = "Unknown"
    city: str = "Unknown"
    province: str = "Unknown"
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    price: float
    price_frequency: str = "monthly"
    deposit: Optional[float] = None
    bedrooms: int = 0
    bathrooms: int = 0
    parking: int = 0
    size_sqm: Optional[float] = None
    furnished: bool = False
    pet_friendly: bool = False
    images: List[str] = []
    agent_name: Optional[str] = None
    agent_phone: Optional[str] = None
    agent_email: Optional[str] = None
    agency_name: Optional[str] = None
    scam_score: float = 0.0
    scam_flags: List[str] = []
    status: str = "active"
    first_seen_at: Optional[str] = None
    last_seen_at: Optional[str] = None


class ListingsResponse(BaseModel):
    """Response model for paginated listings."""
    properties: List[PropertyOut]
    total: int
    page: int
    limit: int
    total_pages: int
    # True when an empty result started a background scrape
    scrape_triggered: bool = False


class PricePoint(BaseModel):
    """Model for price history data point."""
    ts: str
    price: Optional[float]
    price_frequency: Optional[str]


class StatsOut(BaseModel):
    """Model for statistics data."""
    total_properties: int
    active_last_days: int
    min_price: Optional[float]
    max_price: Optional[float]
    avg_price: Optional[float]
    high_risk: int
    by_source: Dict[str, int]
    by_suburb: Dict[str, int]
    by_property_type: Dict[str, int]


class ScrapeRequest(BaseModel):
    """Body of a scheduled scrape job."""
    source: str = "all"
    city: Optional[str] = None


class ScrapeResponse(BaseModel):
    success: bool
    job_id: int
    properties_found: int
    properties_added: int
    properties_updated: int
    errors: Optional[List[str]] = None


class JobOut(BaseModel):
    id: int
    source: str
    status: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    properties_found: int = 0
    properties_added: int = 0
    properties_updated: int = 0
    error_message: Optional[str] = None
