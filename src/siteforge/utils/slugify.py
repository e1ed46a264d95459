"""
String slugification for preview URLs.

Converts business names into URL-safe slugs and appends a short random
suffix so two previews for the same business never collide.
"""

import re
import secrets
from typing import Optional

# Anything that's not alphanumeric or hyphen
UNSAFE_CHARS_PATTERN = re.compile(r"[^A-Za-z0-9\-]")

DEFAULT_SLUG_BASE = "site"


def slugify(text: str, replacement: str = "-", max_length: Optional[int] = 60, lowercase: bool = True) -> str:
    """
    Convert a string to a URL-safe slug.

    Examples:
        >>> slugify("Joe's Plumbing & Heating")
        'joe-s-plumbing-heating'

        >>> slugify("   ")
        ''
    """
    if not text or not text.strip():
        return ""

    result = UNSAFE_CHARS_PATTERN.sub(replacement, text.strip())

    if len(replacement) == 1:
        result = re.sub(f"{re.escape(replacement)}+", replacement, result)

    result = result.strip(replacement)

    if lowercase:
        result = result.lower()

    if max_length and len(result) > max_length:
        result = result[:max_length].rstrip(replacement)

    return result


def generate_preview_slug(business_name: Optional[str], suffix_length: int = 6) -> str:
    """
    Build a preview slug from a business name plus a random hex suffix.

    Examples:
        >>> len(generate_preview_slug("Acme Roofing").split("-")[-1])
        6
    """
    base = slugify(business_name or "", max_length=40) or DEFAULT_SLUG_BASE
    suffix = secrets.token_hex((suffix_length + 1) // 2)[:suffix_length]
    return f"{base}-{suffix}"
