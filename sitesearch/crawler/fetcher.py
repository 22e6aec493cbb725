"""
HTTP fetching for the crawler.
"""
import logging
from urllib.parse import urljoin

import requests

from sitesearch.common.config import REFERRER, REQUEST_TIMEOUT, USER_AGENT
from sitesearch.common.errors import FetchFailureError

logger = logging.getLogger(__name__)

REDIRECT_CODES = (301, 302)


class PageFetcher:
    """GET/HEAD with the configured politeness headers."""

    def __init__(self, user_agent=None, referrer=None, timeout=REQUEST_TIMEOUT, session=None):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = {
            'User-Agent': user_agent or USER_AGENT,
            'Referer': referrer or REFERRER,
        }

    @classmethod
    def from_settings(cls, crawler_settings):
        return cls(
            user_agent=crawler_settings.user_agent,
            referrer=crawler_settings.referrer,
            timeout=crawler_settings.timeout,
        )

    def _get(self, url):
        try:
            return self.session.get(url, headers=self.headers, timeout=self.timeout, allow_redirects=False)
        except requests.RequestException as e:
            raise FetchFailureError(url, str(e)) from e

    def fetch(self, url):
        """Return the body of a page, following at most one 301/302."""
        response = self._get(url)
        if response.status_code in REDIRECT_CODES:
            location = response.headers.get('Location')
            if not location:
                raise FetchFailureError(url, f"HTTP {response.status_code} without Location header")
            target = urljoin(url, location)
            logger.info(f"Following redirect {url} -> {target}")
            response = self._get(target)

        if not 200 <= response.status_code < 300:
            raise FetchFailureError(url, f"HTTP {response.status_code}")
        return response.text

    def status_code(self, url):
        """Status code reported by a HEAD request, 0 when the request fails."""
        try:
            response = self.session.head(url, headers=self.headers, timeout=self.timeout, allow_redirects=True)
            return response.status_code
        except requests.RequestException as e:
            logger.warning(f"HEAD request failed for {url}: {e}")
            return 0
