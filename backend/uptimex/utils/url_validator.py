"""URL helpers for monitor targets."""
import httpx


def normalize_url(url: str) -> str:
    """Trim whitespace and default to https:// when no scheme is given."""
    normalized = url.strip()
    if not normalized.startswith(("http://", "https://")):
        normalized = f"https://{normalized}"
    return normalized


def is_valid_url(url: str) -> bool:
    """True for http/https URLs with a host that the checker can request.

    Parsing goes through httpx so hosts it cannot IDNA-encode and URLs with
    control characters are rejected here rather than at probe time.
    """
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, ValueError, TypeError):
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)
