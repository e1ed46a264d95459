"""Utility helpers shared across SiteForge modules."""

from .atomic import atomic_json_dump, remove_stale_temp_files
from .slugify import generate_preview_slug, slugify
from .text import city_for, extract_city, fingerprint

__all__ = [
    "atomic_json_dump",
    "remove_stale_temp_files",
    "generate_preview_slug",
    "slugify",
    "city_for",
    "extract_city",
    "fingerprint",
]
