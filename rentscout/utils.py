"""
Utility functions for text processing, slugs and logging.
"""
import html
import logging
import math
import re
from datetime import datetime, timezone
from typing import Optional


def init_logger(
    name: str = "rentscout",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    log_file: Optional[str] = "rentscout.log"
) -> logging.Logger:
    """Initialize logger with console and optional file handlers."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    if logger.handlers:
        return logger

    console_level_num = getattr(logging, console_level.upper(), logging.INFO)
    ch = logging.StreamHandler()
    ch.setLevel(console_level_num)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if log_file:  # Create file handler only if log_file is provided
        file_level_num = getattr(logging, file_level.upper(), logging.DEBUG)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level_num)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger


def now_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


TAG_RE = re.compile(r"<[^>]+>")


def clean_text(s: Optional[str]) -> str:
    """
    Strip tags, decode HTML entities and collapse whitespace.

    Markup fragments pulled out with regexes still carry nested tags and
    entities such as &nbsp; or &amp;.
    """
    if not s:
        return ""
    s = TAG_RE.sub(" ", s)
    s = html.unescape(s).replace("\xa0", " ")
    s = re.sub(r"\s+", " ", s)
    return s.strip()


def to_float(text) -> Optional[float]:
    """Safely convert text to a finite float."""
    if text is None or text == "":
        return None
    try:
        val = float(text)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(val):
        return None
    return val


def slugify(s: str) -> str:
    """'Cape Town' -> 'cape-town'"""
    s = (s or "").strip().lower()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    return s.strip("-")


def slug_to_title(slug: str) -> str:
    """'cape-town' -> 'Cape Town'"""
    return " ".join(w.capitalize() for w in (slug or "").split("-") if w)
