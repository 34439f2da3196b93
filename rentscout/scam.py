"""
Heuristic scam scoring for rental listings.

Each check adds a fixed contribution when it fires; the total is clamped to
1.0 and bucketed into a risk level. Scores are a prompt to verify a listing,
not a verdict.
"""
from typing import Dict, List, Optional

from .models import RiskLevel, ScamAnalysis, ScamFlag, ScrapedRecord, Severity

# Approximate monthly rent ranges (ZAR) for Cape Town areas
AREA_AVERAGE_PRICES: Dict[str, Dict[str, float]] = {
    "cape town cbd": {"min": 8000, "max": 25000},
    "sea point": {"min": 10000, "max": 35000},
    "green point": {"min": 10000, "max": 30000},
    "camps bay": {"min": 15000, "max": 60000},
    "clifton": {"min": 20000, "max": 100000},
    "observatory": {"min": 6000, "max": 15000},
    "woodstock": {"min": 7000, "max": 18000},
    "salt river": {"min": 5000, "max": 12000},
    "rondebosch": {"min": 8000, "max": 20000},
    "claremont": {"min": 9000, "max": 22000},
    "kenilworth": {"min": 8000, "max": 18000},
    "newlands": {"min": 10000, "max": 25000},
    "constantia": {"min": 15000, "max": 45000},
    "hout bay": {"min": 10000, "max": 35000},
    "muizenberg": {"min": 6000, "max": 15000},
    "kalk bay": {"min": 8000, "max": 20000},
    "fish hoek": {"min": 6000, "max": 14000},
    "simons town": {"min": 7000, "max": 16000},
    "milnerton": {"min": 8000, "max": 18000},
    "table view": {"min": 7000, "max": 16000},
    "blouberg": {"min": 8000, "max": 20000},
    "bellville": {"min": 5000, "max": 12000},
    "durbanville": {"min": 8000, "max": 18000},
    "stellenbosch": {"min": 6000, "max": 20000},
}
DEFAULT_PRICE_RANGE = {"min": 5000, "max": 30000}

SCAM_KEYWORDS = [
    "send deposit",
    "western union",
    "moneygram",
    "wire transfer",
    "overseas",
    "abroad",
    "urgently",
    "first come first serve",
    "no viewing",
    "send money",
    "pay before viewing",
    "key collection",
    "landlord abroad",
    "urgent rental",
    "missionary",
    "inheritance",
]

KNOWN_AGENCIES = [
    "pam golding",
    "seeff",
    "rawson",
    "lew geffen",
    "remax",
    "re/max",
    "chas everitt",
    "just property",
    "jawitz",
    "harcourts",
    "engel & völkers",
]

FREE_EMAIL_DOMAINS = ("gmail.com", "yahoo.com", "hotmail.com", "outlook.com")

# Price thresholds for the "bills included" and short-description checks
CHEAP_ALL_INCLUSIVE = 5000
PRICEY_LISTING = 10000
MIN_DESCRIPTION_LENGTH = 50


def get_risk_level(score: float) -> RiskLevel:
    if score < 0.15:
        return RiskLevel.SAFE
    if score < 0.35:
        return RiskLevel.LOW
    if score < 0.6:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def price_range_for(suburb: Optional[str]) -> Dict[str, float]:
    return AREA_AVERAGE_PRICES.get((suburb or "").strip().lower(), DEFAULT_PRICE_RANGE)


class ScamDetector:
    """
    Score a listing against price, wording, contact, image and agency signals.

    Every distinct scam phrase found adds its own 0.25, so a listing that
    mentions both "wire transfer" and "landlord abroad" scores twice.
    """

    def analyze(self, record: ScrapedRecord) -> ScamAnalysis:
        flags: List[ScamFlag] = []

        price_flag = self.check_price(record)
        if price_flag:
            flags.append(price_flag)
        flags.extend(self.check_description(record))
        flags.extend(self.check_contact_info(record))
        image_flag = self.check_images(record)
        if image_flag:
            flags.append(image_flag)
        agency_flag = self.check_agency(record)
        if agency_flag:
            flags.append(agency_flag)

        score = min(1.0, round(sum(f.score for f in flags), 4))
        return ScamAnalysis(score=score, flags=flags, risk_level=get_risk_level(score))

    def check_price(self, record: ScrapedRecord) -> Optional[ScamFlag]:
        minimum = price_range_for(record.suburb)["min"]
        if record.price < minimum * 0.4:
            return ScamFlag(
                type="suspicious_price",
                severity=Severity.HIGH,
                description=f"Price is unusually low for {record.suburb}. Market average starts at R{minimum:,.0f}.",
                score=0.35,
            )
        if record.price < minimum * 0.6:
            return ScamFlag(
                type="low_price",
                severity=Severity.MEDIUM,
                description=f"Price is below average for {record.suburb}. Verify listing authenticity.",
                score=0.15,
            )
        return None

    def check_description(self, record: ScrapedRecord) -> List[ScamFlag]:
        flags: List[ScamFlag] = []
        description = (record.description or "").lower()
        text = f"{(record.title or '').lower()} {description}"

        for keyword in SCAM_KEYWORDS:
            if keyword in text:
                flags.append(ScamFlag(
                    type="suspicious_keyword",
                    severity=Severity.HIGH,
                    description=f'Contains suspicious phrase: "{keyword}"',
                    score=0.25,
                ))

        if "all bills included" in text and record.price < CHEAP_ALL_INCLUSIVE:
            flags.append(ScamFlag(
                type="unrealistic_offer",
                severity=Severity.MEDIUM,
                description="Claims all bills included at an unusually low price",
                score=0.15,
            ))

        if len(description) < MIN_DESCRIPTION_LENGTH and record.price > PRICEY_LISTING:
            flags.append(ScamFlag(
                type="vague_description",
                severity=Severity.LOW,
                description="Description is unusually short for this price range",
                score=0.1,
            ))
        return flags

    def check_contact_info(self, record: ScrapedRecord) -> List[ScamFlag]:
        flags: List[ScamFlag] = []

        if not (record.agent_phone or record.agent_email or record.agent_name):
            flags.append(ScamFlag(
                type="missing_contact",
                severity=Severity.MEDIUM,
                description="No contact information provided",
                score=0.2,
            ))

        if record.agent_phone:
            phone = "".join(record.agent_phone.split())
            if phone.startswith("+") and not phone.startswith("+27"):
                flags.append(ScamFlag(
                    type="international_phone",
                    severity=Severity.MEDIUM,
                    description="Contact number appears to be from outside South Africa",
                    score=0.2,
                ))

        if record.agent_email and record.agency_name:
            domain = record.agent_email.rsplit("@", 1)[-1].lower()
            if domain in FREE_EMAIL_DOMAINS:
                flags.append(ScamFlag(
                    type="personal_email",
                    severity=Severity.LOW,
                    description="Agent using personal email despite claiming agency affiliation",
                    score=0.1,
                ))
        return flags

    def check_images(self, record: ScrapedRecord) -> Optional[ScamFlag]:
        count = len(record.images or [])
        if count == 0:
            return ScamFlag(type="no_images", severity=Severity.MEDIUM, description="No photos provided", score=0.15)
        if count == 1:
            return ScamFlag(type="few_images", severity=Severity.LOW, description="Only one photo provided", score=0.05)
        return None

    def check_agency(self, record: ScrapedRecord) -> Optional[ScamFlag]:
        if not record.agency_name:
            return None
        agency = record.agency_name.lower()
        if any(known in agency for known in KNOWN_AGENCIES):
            return None
        return ScamFlag(
            type="unknown_agency",
            severity=Severity.LOW,
            description="Agency not in our verified list. Not necessarily a scam, but verify independently.",
            score=0.05,
        )


scam_detector = ScamDetector()
