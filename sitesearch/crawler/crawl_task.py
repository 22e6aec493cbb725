"""
Crawl tasks: divide-and-conquer traversal of one site's URL frontier.
"""
import logging
import random
import threading
import traceback
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from bs4 import BeautifulSoup

from sitesearch.common.config import DELAY_MAX_MS, DELAY_MIN_MS, MAX_DEPTH, SPLIT_THRESHOLD
from sitesearch.common.errors import StorageConflictError
from sitesearch.common.models import Page
from sitesearch.common.utils import is_image_url, is_same_origin, relative_path, resolve_link

logger = logging.getLogger(__name__)


class UrlRegistry:
    """URLs already queued or processed by one crawl lineage."""

    def __init__(self):
        self._urls = set()
        self._lock = threading.Lock()

    def add(self, url):
        """Register a URL; False if it was already known."""
        with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def __contains__(self, url):
        with self._lock:
            return url in self._urls


class Frontier:
    """Thread-safe queue of discovered URLs waiting to be processed."""

    def __init__(self, urls=(), registry=None):
        self.registry = registry if registry is not None else UrlRegistry()
        self._queue = deque()
        self._lock = threading.Lock()
        for url in urls:
            self.offer(url)

    def offer(self, url):
        if not self.registry.add(url):
            return False
        with self._lock:
            self._queue.append(url)
        return True

    def pop(self):
        with self._lock:
            return self._queue.popleft() if self._queue else None

    def split(self):
        """Move the first half of the queue into a new frontier."""
        with self._lock:
            half = deque(self._queue.popleft() for _ in range(len(self._queue) // 2))
        other = Frontier(registry=self.registry)
        other._queue = half
        return other

    def __len__(self):
        with self._lock:
            return len(self._queue)


class CrawlPool:
    """
    Worker pool for forked crawl tasks.

    A fork only takes a worker when one is free; otherwise the caller runs
    it inline. Joins therefore never wait on work queued behind themselves.
    """

    def __init__(self, workers):
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='crawl')
        self._slots = threading.BoundedSemaphore(workers)

    def try_submit(self, fn):
        if not self._slots.acquire(blocking=False):
            return None

        def run():
            try:
                return fn()
            finally:
                self._slots.release()

        return self.executor.submit(run)

    def shutdown(self):
        self.executor.shutdown(wait=True)


@dataclass
class CrawlContext:
    """Everything the tasks of one site lineage share."""
    site: object
    storage: object
    indexer: object
    fetcher: object
    pool: CrawlPool
    cancel_event: threading.Event
    split_threshold: int = SPLIT_THRESHOLD
    max_depth: int = MAX_DEPTH
    delay_min_ms: int = DELAY_MIN_MS
    delay_max_ms: int = DELAY_MAX_MS
    rng: random.Random = field(default_factory=random.Random)

    @property
    def cancelled(self):
        return self.cancel_event.is_set()


class CrawlTask:
    """One node of the split/join crawl over a frontier."""

    def __init__(self, context, frontier, depth=0):
        self.context = context
        self.frontier = frontier
        self.depth = depth

    def _can_split(self):
        return (len(self.frontier) > self.context.split_threshold
                and self.depth + 1 < self.context.max_depth)

    def compute(self):
        if self.context.cancelled:
            return
        if self._can_split():
            self._fork_join()
        else:
            self._process_sequentially()

    def _fork_join(self):
        forked = CrawlTask(self.context, self.frontier.split(), self.depth + 1)
        local = CrawlTask(self.context, self.frontier, self.depth + 1)
        logger.debug(f"Splitting frontier at depth {self.depth}: {len(forked.frontier)} + {len(local.frontier)}")

        future = self.context.pool.try_submit(forked.compute)
        if future is None:
            forked.compute()
            local.compute()
            return
        local.compute()
        future.result()

    def _process_sequentially(self):
        context = self.context
        while len(self.frontier) and self.depth < context.max_depth and not context.cancelled:
            url = self.frontier.pop()
            if url is None:
                break
            try:
                self.process_url(url)
            except Exception as e:
                logger.error(f"Error processing page {url}: {e}")
                logger.debug(traceback.format_exc())
                self._record_error(url, e)

            if self._can_split() and not context.cancelled:
                CrawlTask(context, self.frontier, self.depth + 1).compute()

    def process_url(self, url):
        """Fetch, store and index one URL, queueing the links it contains."""
        context = self.context
        site = context.site

        if is_image_url(url):
            return
        path = relative_path(url, site.url)
        if path is None:
            logger.debug(f"Skipping cross-origin URL {url}")
            return
        if context.storage.page_exists(site.site_id, path):
            return
        if not self._polite_wait():
            return

        content = context.fetcher.fetch(url)
        code = context.fetcher.status_code(url)
        page = Page(site_id=site.site_id, path=path, code=code, content=content)
        try:
            context.indexer.add_page(page)
        except StorageConflictError:
            logger.warning(f"Page {path} of {site.url} was stored concurrently, skipping")
            return
        context.storage.touch_site(site)
        logger.info(f"Indexed {site.url}{path} (HTTP {code})")

        added = sum(1 for link in self.extract_links(content) if self.frontier.offer(link))
        if added:
            logger.debug(f"Queued {added} new links from {path}")

    def _polite_wait(self):
        """Sleep for the politeness delay; False if the crawl was cancelled meanwhile."""
        context = self.context
        delay = context.rng.uniform(context.delay_min_ms, context.delay_max_ms) / 1000.0
        return not context.cancel_event.wait(delay)

    def extract_links(self, content):
        """Same-origin page links found in the content, resolved against the origin."""
        soup = BeautifulSoup(content, 'html.parser')
        links = []
        for anchor in soup.find_all('a', href=True):
            link = resolve_link(anchor['href'], self.context.site.url)
            if link and is_same_origin(link, self.context.site.url) and not is_image_url(link):
                links.append(link)
        return links

    def _record_error(self, url, error):
        try:
            self.context.storage.record_site_error(self.context.site, f"{url}: {error}")
        except StorageConflictError:
            logger.warning(f"Site {self.context.site.url} was replaced, dropping error for {url}")
