"""
Search engine over the per-site lemma index.
"""
import logging
from dataclasses import dataclass, field
from typing import List

from sitesearch.common.config import DEFAULT_SEARCH_LIMIT, FREQUENCY_RATIO_THRESHOLD
from sitesearch.common.errors import NoLemmasExtractedError, NoSitesIndexedError, SiteNotIndexedError

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    site_url: str
    site_name: str
    path: str
    title: str
    snippet: str
    relevance: float

    def to_dict(self):
        return {
            'site': self.site_url,
            'siteName': self.site_name,
            'uri': self.path,
            'title': self.title,
            'snippet': self.snippet,
            'relevance': self.relevance,
        }


@dataclass
class SearchResponse:
    total_count: int
    items: List[SearchResult] = field(default_factory=list)

    def to_dict(self):
        return {
            'result': True,
            'count': self.total_count,
            'data': [item.to_dict() for item in self.items],
        }


class SearchEngine:
    """
    Ranked keyword search.

    A page matches when it contains every discriminating query lemma of its
    site. Lemmas found on too large a share of a site's pages are dropped
    before matching. Relevance is the sum of the page's lemma ranks divided
    by the best score among all matches.
    """

    def __init__(self, storage, analyzer, frequency_ratio_threshold=FREQUENCY_RATIO_THRESHOLD):
        self.storage = storage
        self.analyzer = analyzer
        self.frequency_ratio_threshold = frequency_ratio_threshold
        logger.info("Initialized SearchEngine")

    @classmethod
    def from_settings(cls, storage, analyzer, search_settings):
        return cls(storage, analyzer, search_settings.frequency_ratio_threshold)

    def search(self, query, site_url=None, offset=0, limit=DEFAULT_SEARCH_LIMIT):
        """
        Search the index.

        Args:
            query: free text query
            site_url: restrict the search to one site
            offset: number of results to skip
            limit: maximum number of results to return

        Returns:
            SearchResponse with the total match count and the requested slice
        """
        if offset < 0:
            raise ValueError("offset must not be negative")
        if limit <= 0:
            raise ValueError("limit must be positive")

        logger.info(f"Searching for '{query}' (site={site_url}, offset={offset}, limit={limit})")
        query_lemmas = self.analyzer.extract_lemmas(query)
        if not query_lemmas:
            raise NoLemmasExtractedError(query)

        sites = self._resolve_sites(site_url)
        lemmas = self._discriminating_lemmas(query_lemmas, sites)
        if not lemmas:
            logger.info(f"No discriminating lemmas for '{query}'")
            return SearchResponse(total_count=0)

        # Rarest first keeps the intersections small
        lemmas.sort(key=lambda lemma: lemma.frequency)
        scores = self._match_pages(lemmas, sites)
        pages = self._committed_pages(scores)
        if not pages:
            return SearchResponse(total_count=0)

        best = max(scores[key] for key in pages)
        sites_by_id = {site.site_id: site for site in sites}
        ranked = sorted(
            pages,
            key=lambda key: (-scores[key], sites_by_id[key[0]].url, key[1]),
        )

        items = []
        for site_id, path in ranked[offset:offset + limit]:
            site = sites_by_id[site_id]
            page = self.storage.find_page(site_id, path)
            content = page.content if page else ''
            items.append(SearchResult(
                site_url=site.url,
                site_name=site.name,
                path=path,
                title=self.analyzer.extract_title(content),
                snippet=self.analyzer.build_snippet(content, query_lemmas),
                relevance=scores[(site_id, path)] / best,
            ))

        logger.info(f"Found {len(ranked)} results for '{query}'")
        return SearchResponse(total_count=len(ranked), items=items)

    def _resolve_sites(self, site_url):
        if site_url:
            site = self.storage.find_site(site_url.rstrip('/'))
            if site is None:
                raise SiteNotIndexedError(site_url)
            return [site]

        sites = self.storage.list_sites()
        if not sites:
            raise NoSitesIndexedError()
        return sites

    def _discriminating_lemmas(self, query_lemmas, sites):
        """Stored lemmas of the query whose page share is below the threshold."""
        kept = []
        for site in sites:
            total_pages = self.storage.count_pages(site.site_id)
            if total_pages == 0:
                continue
            for text in dict.fromkeys(query_lemmas):
                lemma = self.storage.find_lemma(site.site_id, text)
                if lemma is None:
                    continue
                ratio = lemma.frequency / total_pages
                if ratio < self.frequency_ratio_threshold:
                    kept.append(lemma)
                else:
                    logger.debug(f"Dropping common lemma '{text}' on {site.url} (ratio {ratio:.2f})")
        return kept

    def _match_pages(self, lemmas, sites):
        """
        Pages containing all kept lemmas of their site, with absolute scores.

        Returns a dict keyed by (site_id, path).
        """
        scores = {}
        for site in sites:
            site_lemmas = [lemma for lemma in lemmas if lemma.site_id == site.site_id]
            if not site_lemmas:
                continue

            candidates = None
            postings = []
            for lemma in site_lemmas:
                posting = {entry.path: entry.rank
                           for entry in self.storage.find_entries_by_lemma(site.site_id, lemma.lemma)}
                postings.append(posting)
                candidates = set(posting) if candidates is None else candidates & set(posting)
                if not candidates:
                    break

            for path in candidates or ():
                scores[(site.site_id, path)] = sum(posting.get(path, 0) for posting in postings)
        return scores

    def _committed_pages(self, scores):
        committed = []
        for site_id, path in scores:
            page = self.storage.find_page(site_id, path, with_content=False)
            if page is not None and page.committed:
                committed.append((site_id, path))
        return committed
