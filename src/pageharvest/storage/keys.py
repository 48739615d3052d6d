"""Storage key layout shared by every writer."""

from __future__ import annotations

from pageharvest.utils.slugify import slugify

RAW_PREFIX = "raw"
PAGES_PREFIX = "pages"


def category_slug(category: str) -> str:
    slug = slugify(category)
    if not slug:
        raise ValueError(f"category {category!r} has no usable characters for a storage key")
    return slug


def checkpoint_key(category: str, query: str = "") -> str:
    query_slug = slugify(query or "")
    name = f"checkpoint_{query_slug}.json" if query_slug else "checkpoint.json"
    return f"{RAW_PREFIX}/{category_slug(category)}/{name}"


def job_prefix(category: str, query: str = "") -> str:
    """``raw/{category}`` for a category-wide job, ``raw/{category}/{query}`` otherwise."""
    query_slug = slugify(query or "")
    prefix = f"{RAW_PREFIX}/{category_slug(category)}"
    return f"{prefix}/{query_slug}" if query_slug else prefix


def batch_key(category: str, query: str, start_page: int, end_page: int) -> str:
    return f"{job_prefix(category, query)}/page_{start_page:03d}-{end_page:03d}.json"


def metadata_key(category: str, query: str = "") -> str:
    return f"{job_prefix(category, query)}/metadata.json"


def page_archive_key(category: str, query: str, page_number: int) -> str:
    query_slug = slugify(query or "") or "all"
    return f"{PAGES_PREFIX}/{category_slug(category)}/{query_slug}/page_{page_number:04d}.json"
