"""
Exceptions raised by the crawler, indexer and search engine.
"""


class SiteSearchError(Exception):
    """Base class for all site search errors."""


class AlreadyRunningError(SiteSearchError):
    def __init__(self, message='Indexing is already running'):
        super().__init__(message)


class NotRunningError(SiteSearchError):
    def __init__(self, message='Indexing is not running'):
        super().__init__(message)


class OutOfScopeError(SiteSearchError):
    """The URL is not under any configured site."""

    def __init__(self, url):
        super().__init__(f"Page {url} is outside the sites listed in the configuration")
        self.url = url


class FetchFailureError(SiteSearchError):
    def __init__(self, url, reason):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class StorageConflictError(SiteSearchError):
    """A conditional write lost a race against a concurrent writer."""


class SearchError(SiteSearchError):
    """User-visible search failure; distinct from an empty result."""


class NoLemmasExtractedError(SearchError):
    def __init__(self, query):
        super().__init__(f"No lemmas could be extracted from query '{query}'")
        self.query = query


class SiteNotIndexedError(SearchError):
    def __init__(self, site_url):
        super().__init__(f"Site is not indexed: {site_url}")
        self.site_url = site_url


class NoSitesIndexedError(SearchError):
    def __init__(self, message='No sites have been indexed'):
        super().__init__(message)
