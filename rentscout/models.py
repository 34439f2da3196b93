"""
Data models for the rental listings scraper.
"""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Dict, Optional, Any


class Source(str, Enum):
    """Third-party listing sites we know how to scrape."""
    PRIVATE_PROPERTY = "private_property"
    PROPERTY24 = "property24"
    FACEBOOK = "facebook"


class PropertyType(str, Enum):
    APARTMENT = "apartment"
    HOUSE = "house"
    TOWNHOUSE = "townhouse"
    STUDIO = "studio"
    ROOM = "room"
    OTHER = "other"


class PriceFrequency(str, Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    DAILY = "daily"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskLevel(str, Enum):
    SAFE = "safe"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class ScrapedRecord:
    """A single rental listing as recovered from a source page."""

    # Identity
    external_id: str
    source: Source
    source_url: str

    # Basic listing info
    title: str
    price: float
    suburb: str = "Unknown"
    city: str = "Unknown"
    province: str = "Unknown"
    description: Optional[str] = None
    property_type: PropertyType = PropertyType.OTHER

    # Location
    address: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    # Commercial
    price_frequency: PriceFrequency = PriceFrequency.MONTHLY
    deposit: Optional[float] = None

    # Physical
    bedrooms: int = 0
    bathrooms: int = 0
    parking: int = 0
    size_sqm: Optional[float] = None
    furnished: bool = False
    pet_friendly: bool = False

    # Media and contact
    images: List[str] = field(default_factory=list)
    agent_name: Optional[str] = None
    agent_phone: Optional[str] = None
    agent_email: Optional[str] = None
    agency_name: Optional[str] = None

    @property
    def key(self):
        """Strict storage key."""
        return (self.source.value, self.external_id)

    def to_row(self) -> Dict[str, Any]:
        """Flatten to plain values (enums as strings) for storage and export."""
        row = asdict(self)
        row["source"] = self.source.value
        row["property_type"] = self.property_type.value
        row["price_frequency"] = self.price_frequency.value
        return row


@dataclass
class ScraperConfig:
    """Per-source fetch policy."""
    source: Source
    base_url: str
    search_url: str
    rate_limit: float  # requests per second
    max_pages: int
    user_agents: List[str]
    # Stricter anti-scraping posture: doubled delays, 401/403 end the run
    strict: bool = False


@dataclass
class ScraperResult:
    success: bool
    properties: List[ScrapedRecord] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    pages_scraped: int = 0
    duration: float = 0.0  # milliseconds

    @classmethod
    def failure(cls, message: str, duration: float = 0.0) -> "ScraperResult":
        return cls(success=False, errors=[message], duration=duration)


@dataclass
class ScamFlag:
    type: str
    severity: Severity
    description: str
    score: float


@dataclass
class ScamAnalysis:
    score: float
    flags: List[ScamFlag] = field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.SAFE

    @property
    def flag_types(self) -> List[str]:
        return [f.type for f in self.flags]


@dataclass
class SourceRun:
    source: Source
    result: ScraperResult


@dataclass
class OrchestratorResult:
    success: bool
    total_properties: int
    results: List[SourceRun] = field(default_factory=list)
    duration: float = 0.0  # milliseconds

    def all_properties(self) -> List[ScrapedRecord]:
        out: List[ScrapedRecord] = []
        for run in self.results:
            out.extend(run.result.properties)
        return out

    def all_errors(self) -> List[str]:
        return [f"{run.source.value}: {e}" for run in self.results for e in run.result.errors]


@dataclass
class IngestSummary:
    """Outcome of writing a batch of records to the sink."""
    found: int = 0
    added: int = 0
    updated: int = 0
    price_changed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass
class PipelineReport:
    """One full scrape -> dedup -> score -> store run."""
    orchestrator: OrchestratorResult
    properties: List[ScrapedRecord] = field(default_factory=list)
    analyses: List[ScamAnalysis] = field(default_factory=list)
    summary: IngestSummary = field(default_factory=IngestSummary)
    started_at: str = ""

    @property
    def success(self) -> bool:
        return self.orchestrator.success

    @property
    def errors(self) -> List[str]:
        return self.orchestrator.all_errors() + self.summary.errors
