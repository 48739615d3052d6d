"""Page fetching, navigation state extraction and adaptive rate control."""

from .http_client import SearchApiFetcher, is_rate_limit_signal, parse_search_response
from .navigation import NavigationExtractor, cookie_header, sanitize_cookies
from .rate_limiter import RateController, RateControllerState

__all__ = [
    "NavigationExtractor",
    "RateController",
    "RateControllerState",
    "SearchApiFetcher",
    "cookie_header",
    "is_rate_limit_signal",
    "parse_search_response",
    "sanitize_cookies",
]
