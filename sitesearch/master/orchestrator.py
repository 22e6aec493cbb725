"""
Crawl orchestration: one crawl lineage per configured site, start/stop
control and single-page re-indexing.
"""
import logging
import threading
import traceback
import uuid
from urllib.parse import urlparse

from sitesearch.common.errors import (
    AlreadyRunningError, NotRunningError, OutOfScopeError, StorageConflictError,
)
from sitesearch.common.models import Page, Site, SiteStatus, utc_now
from sitesearch.common.utils import normalize_url, relative_path
from sitesearch.crawler.crawl_task import CrawlContext, CrawlPool, CrawlTask, Frontier
from sitesearch.crawler.fetcher import PageFetcher
from sitesearch.indexer.page_indexer import PageIndexer
from sitesearch.indexer.text_analyzer import TextAnalyzer

logger = logging.getLogger(__name__)

STOPPED_REASON = 'Indexing stopped by operator'

IDLE = 'idle'
RUNNING = 'running'


class CrawlOrchestrator:
    """
    Runs crawls over the configured sites.

    At most one crawl runs at a time. The Idle/Running transition is a
    compare-and-swap under a lock; a crawl stays Running until every site
    lineage has finished, including after stop_crawl().
    """

    def __init__(self, settings, storage, analyzer=None, fetcher=None, indexer=None):
        self.settings = settings
        self.storage = storage
        self.analyzer = analyzer or TextAnalyzer()
        self.indexer = indexer or PageIndexer(storage, self.analyzer)
        self.fetcher = fetcher or PageFetcher.from_settings(settings.crawler)

        self._state = IDLE
        self._state_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._thread = None

    def is_running(self):
        with self._state_lock:
            return self._state == RUNNING

    def _begin(self):
        with self._state_lock:
            if self._state == RUNNING:
                raise AlreadyRunningError()
            self._state = RUNNING
            self._cancel_event = threading.Event()
            return self._cancel_event

    def _end(self):
        with self._state_lock:
            self._state = IDLE

    def start_crawl(self):
        """Crawl every configured site and block until all of them finish."""
        cancel_event = self._begin()
        return self._run(cancel_event)

    def start_crawl_async(self):
        """Start a crawl on a background thread; raises AlreadyRunningError synchronously."""
        cancel_event = self._begin()
        self._thread = threading.Thread(
            target=self._run, args=(cancel_event,), name='IndexingMaster', daemon=True)
        self._thread.start()
        return self._thread

    def wait(self, timeout=None):
        """Join the background crawl thread, if any."""
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self, cancel_event):
        logger.info(f"Starting indexing of {len(self.settings.sites)} sites")
        results = {}
        pool = CrawlPool(self.settings.crawler.workers)
        try:
            threads = []
            for site_config in self.settings.sites:
                thread = threading.Thread(
                    target=self._crawl_site,
                    args=(site_config, pool, cancel_event, results),
                    name=f"IndexingThread-{site_config.name}",
                )
                thread.start()
                threads.append(thread)

            for thread in threads:
                thread.join()
        finally:
            pool.shutdown()
            self._end()
        logger.info(f"Indexing finished: {results}")
        return results

    def _crawl_site(self, site_config, pool, cancel_event, results):
        """Run one site lineage and record its final status."""
        site = None
        try:
            self.storage.purge_site(site_config.url)
            site = Site(
                site_id=str(uuid.uuid4()),
                url=site_config.url,
                name=site_config.name,
                status=SiteStatus.INDEXING,
                status_time=utc_now(),
            )
            self.storage.put_site(site)
            logger.info(f"Indexing site {site.url} ({site.site_id})")

            crawler = self.settings.crawler
            context = CrawlContext(
                site=site,
                storage=self.storage,
                indexer=self.indexer,
                fetcher=self.fetcher,
                pool=pool,
                cancel_event=cancel_event,
                split_threshold=crawler.split_threshold,
                max_depth=crawler.max_depth,
                delay_min_ms=crawler.delay_min_ms,
                delay_max_ms=crawler.delay_max_ms,
            )
            CrawlTask(context, Frontier([normalize_url(site.url)])).compute()

            if cancel_event.is_set():
                results[site_config.url] = self._finish(site, SiteStatus.FAILED, STOPPED_REASON)
            else:
                results[site_config.url] = self._finish(site, SiteStatus.INDEXED)
        except Exception as e:
            logger.error(f"Indexing of {site_config.url} failed: {e}")
            logger.error(traceback.format_exc())
            if site is not None:
                results[site_config.url] = self._finish(site, SiteStatus.FAILED, str(e))
            else:
                results[site_config.url] = SiteStatus.FAILED.value

    def _finish(self, site, status, last_error=None):
        """Move a site out of INDEXING unless someone else already did."""
        try:
            self.storage.update_site_status(
                site, status, last_error=last_error, expected_status=SiteStatus.INDEXING)
            logger.info(f"Site {site.url} is now {status.value}")
            return status.value
        except StorageConflictError:
            logger.info(f"Status of {site.url} was already changed, keeping it")
            stored = self.storage.find_site(site.url)
            return stored.status.value if stored else status.value

    def stop_crawl(self):
        """
        Signal every lineage to stop and mark INDEXING sites FAILED.

        Returns without waiting for the lineages; in-flight page fetches
        complete but no new ones start.
        """
        with self._state_lock:
            if self._state != RUNNING:
                raise NotRunningError()
            self._cancel_event.set()
        logger.info("Stopping indexing")

        stopped = []
        for site in self.storage.find_sites_by_status(SiteStatus.INDEXING):
            try:
                self.storage.update_site_status(
                    site, SiteStatus.FAILED, last_error=STOPPED_REASON,
                    expected_status=SiteStatus.INDEXING)
                stopped.append(site.url)
            except StorageConflictError:
                logger.info(f"Site {site.url} finished before it could be stopped")
        return {'stopped_sites': stopped}

    def _site_config_for(self, url):
        """Configured site whose origin covers the URL; scheme and host compare case-insensitively."""
        target = urlparse(url)
        for site_config in self.settings.sites:
            origin = urlparse(site_config.url)
            if (target.scheme.lower(), target.netloc.lower()) != (origin.scheme.lower(), origin.netloc.lower()):
                continue
            origin_path = origin.path.rstrip('/')
            if not origin_path or target.path == origin_path or target.path.startswith(origin_path + '/'):
                return site_config
        return None

    def index_single_page(self, url):
        """
        Fetch and (re)index one page of a configured site.

        Runs synchronously and does not depend on a crawl being active.
        """
        # Same normal form as crawled links, so the existing page is found
        normalized = normalize_url(url.strip()) if url else None
        site_config = self._site_config_for(normalized) if normalized else None
        if site_config is None:
            raise OutOfScopeError(url)
        url = normalized

        site = self.storage.find_site(site_config.url)
        if site is None:
            site = Site(
                site_id=str(uuid.uuid4()),
                url=site_config.url,
                name=site_config.name,
                status=SiteStatus.INDEXING,
                status_time=utc_now(),
            )
            self.storage.put_site(site)

        path = relative_path(url, site.url)
        logger.info(f"Indexing single page {path} of {site.url}")

        existing = self.storage.find_page(site.site_id, path, with_content=False)
        if existing is not None:
            self.indexer.remove_for_page(existing)
            self.storage.delete_page(site.site_id, path)

        try:
            content = self.fetcher.fetch(url)
            code = self.fetcher.status_code(url)
            page = Page(site_id=site.site_id, path=path, code=code, content=content)
            self.indexer.add_page(page)
        except Exception as e:
            logger.error(f"Indexing page {url} failed: {e}")
            self.storage.record_site_error(site, f"{url}: {e}")
            raise

        self.storage.update_site_status(site, SiteStatus.INDEXED)
        return page
