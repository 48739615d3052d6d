"""Utility helpers for PageHarvest."""

from .atomic import atomic_write_json, read_json_file, remove_stale_temp_files
from .slugify import slugify

__all__ = ["atomic_write_json", "read_json_file", "remove_stale_temp_files", "slugify"]
