"""Shared utility functions for service layer."""
from urllib.parse import quote, urlsplit

from pydantic import AnyUrl, TypeAdapter, ValidationError

DEFAULT_FAVICON_TEMPLATE = "https://www.google.com/s2/favicons?domain={domain}&sz=128"

_any_url = TypeAdapter(AnyUrl)


def is_valid_url(url: str) -> bool:
    """Return True if `url` parses as an absolute URL (scheme required)."""
    try:
        _any_url.validate_python(url)
    except ValidationError:
        return False
    return True


def extract_domain(url: str) -> str:
    """
    Return the URL's host without a leading 'www.', or '' if there is none.

    >>> extract_domain("https://www.example.com/page")
    'example.com'
    """
    try:
        hostname = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    return hostname.removeprefix("www.")


def favicon_url(url: str, template: str = DEFAULT_FAVICON_TEMPLATE) -> str | None:
    """Build the default favicon reference for a bookmark URL."""
    domain = extract_domain(url)
    if not domain:
        return None
    return template.format(domain=quote(domain, safe=""))
