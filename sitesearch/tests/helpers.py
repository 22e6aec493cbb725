"""
Shared fixtures for the test suites.
"""
import os
import threading
import unittest
import uuid
from unittest import mock

from moto import mock_aws

from sitesearch.common.errors import FetchFailureError
from sitesearch.common.models import Site, SiteStatus, utc_now
from sitesearch.common.storage import DynamoStorage

TEST_REGION = 'us-east-1'


class FakeMorphology:
    """Dictionary-backed morphology for English test words."""

    TAGS = {
        'the': 'DT', 'a': 'DT', 'and': 'CC', 'or': 'CC',
        'of': 'IN', 'in': 'IN', 'on': 'IN', 'to': 'TO', 'oh': 'UH',
    }
    FORMS = {
        'cats': 'cat', 'dogs': 'dog', 'birds': 'bird', 'mice': 'mouse',
        'running': 'run', 'runs': 'run', 'ran': 'run',
    }

    def __init__(self):
        self.calls = 0

    def morph_info(self, word):
        self.calls += 1
        return [self.TAGS.get(word, 'NN')]

    def normal_forms(self, word):
        return [self.FORMS.get(word, word)]


class FakeFetcher:
    """Serves pages from a dict of url -> html; unknown URLs return 404."""

    def __init__(self, pages=None, failures=None):
        self.pages = dict(pages or {})
        self.failures = dict(failures or {})
        self.fetched = []
        self._lock = threading.Lock()

    def fetch(self, url):
        with self._lock:
            self.fetched.append(url)
        if url in self.failures:
            raise self.failures[url]
        if url not in self.pages:
            raise FetchFailureError(url, "HTTP 404")
        return self.pages[url]

    def status_code(self, url):
        return 200 if url in self.pages else 404


class BlockingFetcher:
    """Fetcher whose GET blocks until released."""

    def __init__(self, content='<html><body>cats</body></html>'):
        self.content = content
        self.started = threading.Semaphore(0)
        self.release = threading.Event()

    def fetch(self, url):
        self.started.release()
        self.release.wait(10)
        return self.content

    def status_code(self, url):
        return 200


class StorageTestCase(unittest.TestCase):
    """Base class running against a moto-backed DynamoDB."""

    def setUp(self):
        env = mock.patch.dict(os.environ, {
            'AWS_ACCESS_KEY_ID': 'testing',
            'AWS_SECRET_ACCESS_KEY': 'testing',
            'AWS_DEFAULT_REGION': TEST_REGION,
        })
        env.start()
        self.addCleanup(env.stop)

        aws = mock_aws()
        aws.start()
        self.addCleanup(aws.stop)

        self.storage = DynamoStorage(region_name=TEST_REGION, table_prefix='test')
        self.storage.ensure_tables()

    def make_site(self, url='http://example.test', name='Example', status=SiteStatus.INDEXING):
        site = Site(
            site_id=str(uuid.uuid4()),
            url=url,
            name=name,
            status=status,
            status_time=utc_now(),
        )
        self.storage.put_site(site)
        return site
