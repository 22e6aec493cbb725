import threading
import unittest

from boto3.dynamodb.conditions import Key

from sitesearch.common.errors import FetchFailureError
from sitesearch.crawler.crawl_task import CrawlContext, CrawlPool, CrawlTask, Frontier
from sitesearch.indexer.page_indexer import PageIndexer
from sitesearch.indexer.text_analyzer import TextAnalyzer
from sitesearch.tests.helpers import FakeFetcher, FakeMorphology, StorageTestCase

ORIGIN = 'http://example.test'


class TestFrontier(unittest.TestCase):
    def test_offer_ignores_known_urls(self):
        frontier = Frontier(['http://a.test/1'])
        self.assertFalse(frontier.offer('http://a.test/1'))
        self.assertTrue(frontier.offer('http://a.test/2'))
        self.assertEqual(len(frontier), 2)

    def test_split_shares_registry(self):
        frontier = Frontier([f'http://a.test/{i}' for i in range(5)])
        half = frontier.split()

        self.assertEqual(len(half), 2)
        self.assertEqual(len(frontier), 3)
        self.assertEqual(half.pop(), 'http://a.test/0')
        self.assertFalse(frontier.offer('http://a.test/0'))
        self.assertFalse(half.offer('http://a.test/4'))

    def test_pop_empty(self):
        self.assertIsNone(Frontier().pop())


class TestCrawlPool(unittest.TestCase):
    def test_runs_inline_when_no_worker_is_free(self):
        pool = CrawlPool(1)
        self.addCleanup(pool.shutdown)
        release = threading.Event()

        future = pool.try_submit(lambda: release.wait(5))
        self.assertIsNotNone(future)
        self.assertIsNone(pool.try_submit(lambda: None))

        release.set()
        future.result()
        self.assertIsNotNone(pool.try_submit(lambda: None))


class TestCrawlTask(StorageTestCase):
    def setUp(self):
        super().setUp()
        self.site = self.make_site(ORIGIN)
        self.indexer = PageIndexer(self.storage, TextAnalyzer(FakeMorphology()))
        self.cancel_event = threading.Event()
        self.pool = CrawlPool(2)
        self.addCleanup(self.pool.shutdown)

    def crawl(self, fetcher, split_threshold=100, max_depth=5):
        context = CrawlContext(
            site=self.site,
            storage=self.storage,
            indexer=self.indexer,
            fetcher=fetcher,
            pool=self.pool,
            cancel_event=self.cancel_event,
            split_threshold=split_threshold,
            max_depth=max_depth,
            delay_min_ms=0,
            delay_max_ms=0,
        )
        CrawlTask(context, Frontier([ORIGIN])).compute()

    def paths(self):
        response = self.storage.pages.query(KeyConditionExpression=Key('site_id').eq(self.site.site_id))
        return sorted(item['path'] for item in response['Items'])

    def test_crawls_same_origin_links(self):
        fetcher = FakeFetcher({
            ORIGIN: '<a href="/a/b">b</a> <a href="http://other.test/x">x</a>'
                    '<a href="/logo.png">logo</a> <a href="mailto:me@example.test">mail</a>',
            f'{ORIGIN}/a/b': '<p>cats</p><a href="/">home</a><a href="/c?page=2#top">c</a>',
            f'{ORIGIN}/c?page=2': '<p>dogs</p>',
        })
        self.crawl(fetcher)

        self.assertEqual(self.paths(), ['/', '/a/b', '/c?page=2'])
        self.assertNotIn('http://other.test/x', fetcher.fetched)
        self.assertFalse(any(url.endswith('.png') for url in fetcher.fetched))
        self.assertEqual(fetcher.fetched.count(ORIGIN), 1)
        self.assertEqual(self.storage.find_lemma(self.site.site_id, 'cat').frequency, 1)

    def test_page_failure_is_recorded_and_crawl_continues(self):
        fetcher = FakeFetcher(
            {
                ORIGIN: '<a href="/broken">x</a><a href="/fine">y</a>',
                f'{ORIGIN}/fine': 'dogs',
            },
            failures={f'{ORIGIN}/broken': FetchFailureError(f'{ORIGIN}/broken', 'HTTP 500')},
        )
        self.crawl(fetcher)

        self.assertEqual(self.paths(), ['/', '/fine'])
        self.assertIn('/broken', self.storage.find_site(ORIGIN).last_error)

    def test_existing_pages_are_not_fetched_again(self):
        fetcher = FakeFetcher({ORIGIN: '<a href="/a">a</a>', f'{ORIGIN}/a': 'cats'})
        self.crawl(fetcher)
        fetcher.fetched.clear()

        self.crawl(fetcher)
        self.assertEqual(fetcher.fetched, [])

    def test_cancelled_crawl_does_nothing(self):
        self.cancel_event.set()
        fetcher = FakeFetcher({ORIGIN: 'cats'})
        self.crawl(fetcher)
        self.assertEqual(fetcher.fetched, [])
        self.assertEqual(self.paths(), [])

    def test_large_frontier_is_split(self):
        links = ''.join(f'<a href="/p{i}">{i}</a>' for i in range(8))
        pages = {ORIGIN: links}
        pages.update({f'{ORIGIN}/p{i}': f'page {i} cats' for i in range(8)})
        fetcher = FakeFetcher(pages)

        self.crawl(fetcher, split_threshold=2)

        self.assertEqual(len(self.paths()), 9)
        self.assertEqual(self.storage.find_lemma(self.site.site_id, 'cat').frequency, 8)

    def test_depth_ceiling_stops_processing(self):
        fetcher = FakeFetcher({ORIGIN: 'cats'})
        context = CrawlContext(
            site=self.site, storage=self.storage, indexer=self.indexer, fetcher=fetcher,
            pool=self.pool, cancel_event=self.cancel_event, max_depth=2,
            delay_min_ms=0, delay_max_ms=0,
        )
        CrawlTask(context, Frontier([ORIGIN]), depth=2).compute()
        self.assertEqual(fetcher.fetched, [])


if __name__ == '__main__':
    unittest.main()
