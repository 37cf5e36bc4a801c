from typing import Tuple
from urllib.parse import urlparse, urlunparse


def normalize_url(url: str) -> Tuple[str, bool]:
    """
    Canonical form used for storage and uniqueness checks.

    Adds https:// when no scheme is given, lowercases scheme and host and
    drops the fragment. Returns the URL and whether anything changed.
    """
    original = url.strip()
    candidate = original if "://" in original else f"https://{original}"

    parsed = urlparse(candidate)
    normalized = urlunparse(
        (parsed.scheme.lower(), parsed.netloc.lower(), parsed.path, parsed.params, parsed.query, "")
    )
    return normalized, normalized != original


def validate_url(url: str) -> Tuple[bool, str, str]:
    """Returns (is_valid, normalized_url, error_message)."""
    if not url or not url.strip():
        return False, "", "URL cannot be empty"

    try:
        normalized_url, _ = normalize_url(url)
        parsed = urlparse(normalized_url)
    except ValueError as e:
        return False, url.strip(), f"URL parsing error: {str(e)}"

    if parsed.scheme not in ("http", "https"):
        return False, normalized_url, f"Invalid URL scheme: {parsed.scheme} (must be http or https)"

    if not parsed.hostname:
        return False, normalized_url, "Invalid URL format: missing domain"

    if any(ch.isspace() for ch in normalized_url):
        return False, normalized_url, "Invalid URL format: contains whitespace"

    return True, normalized_url, ""
