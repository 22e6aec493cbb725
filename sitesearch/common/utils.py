"""
Utility functions for the site search engine.
"""
import re
from decimal import Decimal
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

IMAGE_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.svg', '.ico', '.tif', '.tiff',
)


def get_domain(url):
    """Extract the host from a URL."""
    return (urlparse(url).hostname or '').lower()


def normalize_url(url):
    """Normalize a URL by lowercasing scheme and host, removing fragments and trailing slashes."""
    if not url:
        return None

    # Add scheme if missing
    if not url.lower().startswith(('http://', 'https://')):
        url = f"https://{url}"

    parsed = urlparse(url)
    parsed = parsed._replace(scheme=parsed.scheme.lower(), netloc=parsed.netloc.lower())

    # Remove fragment
    parsed = parsed._replace(fragment='')

    # Normalize path (remove trailing slash)
    path = parsed.path
    if path.endswith('/') and len(path) > 1:
        path = path[:-1]
    parsed = parsed._replace(path=path)

    return urlunparse(parsed)


def is_same_origin(url, origin):
    return get_domain(url) == get_domain(origin)


def relative_path(url, origin):
    """
    Path of url relative to the site origin, always starting with '/'.

    Returns None when the URL belongs to another host.
    """
    if not is_same_origin(url, origin):
        return None
    parsed = urlparse(url)
    path = parsed.path or '/'
    if parsed.query:
        path = f"{path}?{parsed.query}"
    return path


def resolve_link(href, base):
    """Resolve a possibly relative link against a base URL."""
    href = href.strip()
    if not href or href.startswith(('mailto:', 'tel:', 'javascript:', '#')):
        return None
    absolute = urljoin(base.rstrip('/') + '/', href)
    if urlparse(absolute).scheme not in ('http', 'https'):
        return None
    return normalize_url(absolute)


def is_image_url(url):
    return urlparse(url).path.lower().endswith(IMAGE_EXTENSIONS)


def extract_text_from_html(html_content):
    """Extract plain text from HTML content, with entities decoded."""
    if not html_content:
        return ''
    soup = BeautifulSoup(html_content, 'html.parser')

    # Remove script and style elements
    for script in soup(["script", "style"]):
        script.decompose()

    text = soup.get_text(' ')
    # Remove extra whitespace
    text = re.sub(r'\s+', ' ', text).strip()
    return text


def to_decimal(val):
    try:
        return Decimal(str(val))
    except Exception:
        return Decimal('0')
