from urllib.parse import urlparse

from smartmark.errors import ValidationError

TITLE_AND_URL_REQUIRED = "Title and URL are required"
INVALID_URL_FORMAT = "Invalid URL format"
ALLOWED_SCHEMES = ("http", "https")


def is_absolute_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
        # Accessing .port validates it.
        parsed.port
    except ValueError:
        return False
    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        return False
    return bool(parsed.netloc and parsed.hostname)


def validate_bookmark_input(title: str | None, url: str | None) -> tuple[str, str]:
    clean_title = (title or "").strip()
    clean_url = (url or "").strip()
    if not clean_title or not clean_url:
        raise ValidationError(TITLE_AND_URL_REQUIRED)
    if not is_absolute_url(clean_url):
        raise ValidationError(INVALID_URL_FORMAT)
    return clean_title, clean_url
