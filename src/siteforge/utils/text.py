"""Small helpers for job fingerprints and address parsing."""

import hashlib
import re
from typing import Any, Mapping, Optional

FINGERPRINT_LENGTH = 16

# "Springfield, IL 62701" -> "Springfield"
CITY_PATTERN = re.compile(r"([A-Za-z\s]+),\s*[A-Z]{2}\b")


def fingerprint(value: str, length: int = FINGERPRINT_LENGTH) -> str:
    """Stable short hash of a string, used for job ids and cache keys."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def extract_city(address: Optional[str]) -> Optional[str]:
    if not address:
        return None
    match = CITY_PATTERN.search(address)
    if not match:
        return None
    # Street lines come before the city: "12 Main St\nSpringfield, IL"
    city = match.group(1).strip().split("\n")[-1].strip()
    return city or None


def city_for(site_data: Mapping[str, Any]) -> Optional[str]:
    """City parsed from the site's address, falling back to an explicit ``city`` field."""
    return extract_city(site_data.get("address")) or site_data.get("city") or None
