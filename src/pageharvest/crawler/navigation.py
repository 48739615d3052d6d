"""
Navigation state extraction.

The upstream search provider moves its continuation fields around between
response variants, so every field is looked up through an ordered fallback
chain, first match wins:

1. top-level keys (the response itself, then ``results[0]``)
2. request-echo blocks (``searcherInfo``, ``request``, ``params``, ``search``)
3. metadata blocks (``pagination``, ``meta``, ``metadata``)
4. a depth-bounded recursive scan for a recognized key name

Cookies never come from the JSON body; the fetcher captures them from the
transport and they are merged in by the caller.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import structlog

from pageharvest.errors import NavigationLost
from pageharvest.protocols import NavigationUpdate

logger = structlog.get_logger(__name__)

FIELD_NAMES: Dict[str, Tuple[str, ...]] = {
    "ref_id": ("refId", "refID", "ref_id"),
    "search_context": ("searchContext", "search_context"),
    "searcher": ("searcher",),
    "user_token": ("userToken", "user_token"),
}

REQUEST_ECHO_BLOCKS: Tuple[str, ...] = ("searcherInfo", "request", "params", "search")
METADATA_BLOCKS: Tuple[str, ...] = ("pagination", "meta", "metadata")

DEFAULT_MAX_DEPTH = 6


def _first_result(raw: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    results = raw.get("results")
    if isinstance(results, list) and results and isinstance(results[0], Mapping):
        return results[0]
    return None


def _lookup(block: Any, names: Iterable[str]) -> Optional[Any]:
    if not isinstance(block, Mapping):
        return None
    for name in names:
        value = block.get(name)
        if value not in (None, ""):
            return value
    return None


class NavigationExtractor:
    """Pulls continuation tokens out of raw responses or initial page state."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH):
        self.max_depth = max_depth

    def extract(self, raw: Optional[Mapping[str, Any]]) -> NavigationUpdate:
        """Return whatever navigation fields can be found; missing fields stay ``None``."""
        if not isinstance(raw, Mapping):
            return NavigationUpdate()

        found: Dict[str, Any] = {}
        for field_name, names in FIELD_NAMES.items():
            value = self._find(raw, names)
            if value is not None:
                found[field_name] = str(value) if field_name in ("ref_id", "user_token") else value
        return NavigationUpdate(**found)

    def extract_token(self, raw: Optional[Mapping[str, Any]]) -> NavigationUpdate:
        """Like :meth:`extract`, but raise ``NavigationLost`` when no continuation token exists."""
        update = self.extract(raw)
        if not update.has_token:
            raise NavigationLost("no continuation token found in response", partial=update)
        return update

    # -- fallback chain -------------------------------------------------

    def _roots(self, raw: Mapping[str, Any]) -> List[Mapping[str, Any]]:
        roots: List[Mapping[str, Any]] = [raw]
        first = _first_result(raw)
        if first is not None:
            roots.append(first)
        return roots

    def _find(self, raw: Mapping[str, Any], names: Tuple[str, ...]) -> Optional[Any]:
        roots = self._roots(raw)

        for root in roots:
            value = _lookup(root, names)
            if value is not None:
                return value

        for blocks in (REQUEST_ECHO_BLOCKS, METADATA_BLOCKS):
            for root in roots:
                for block in blocks:
                    value = _lookup(root.get(block), names)
                    if value is not None:
                        return value

        return self._scan(raw, names, 0)

    def _scan(self, node: Any, names: Tuple[str, ...], depth: int) -> Optional[Any]:
        if depth > self.max_depth:
            return None
        for child in self._children(node):
            value = _lookup(child, names)
            if value is not None:
                return value
            value = self._scan(child, names, depth + 1)
            if value is not None:
                return value
        return None

    @staticmethod
    def _children(node: Any) -> Iterator[Any]:
        if isinstance(node, Mapping):
            values: Iterable[Any] = node.values()
        elif isinstance(node, list):
            values = node
        else:
            return
        for value in values:
            if isinstance(value, (Mapping, list)):
                yield value


# ---------------------------------------------------------------------------
# Cookies
# ---------------------------------------------------------------------------


def sanitize_cookies(cookies: Mapping[str, Any]) -> Dict[str, str]:
    """Drop cookies without a name or value and coerce values to strings."""
    clean: Dict[str, str] = {}
    for name, value in cookies.items():
        if not name or value is None or value == "":
            logger.debug("Dropping invalid cookie", name=name)
            continue
        clean[str(name).strip()] = str(value)
    return clean


def cookie_header(cookies: Mapping[str, str]) -> str:
    """Render cookies as a ``Cookie`` header value."""
    return "; ".join(f"{name}={value}" for name, value in sanitize_cookies(cookies).items())
