import unittest
from unittest.mock import Mock

from sitesearch.common.config import Settings, SiteConfig
from sitesearch.common.models import Page, SiteStatus
from sitesearch.monitoring.statistics import NOT_INDEXED, StatisticsService
from sitesearch.tests.helpers import StorageTestCase


class TestStatisticsService(StorageTestCase):
    def test_statistics(self):
        settings = Settings(sites=[
            SiteConfig('http://one.test', 'One'),
            SiteConfig('http://two.test', 'Two'),
        ])
        site = self.make_site('http://one.test', 'One', status=SiteStatus.INDEXED)
        self.storage.create_page(Page(site.site_id, '/', 200, 'x'))
        self.storage.create_page(Page(site.site_id, '/a', 200, 'y'))
        self.storage.increment_lemma(site.site_id, 'cat')
        orchestrator = Mock()
        orchestrator.is_running.return_value = True

        stats = StatisticsService(settings, self.storage, orchestrator).get_statistics()

        self.assertEqual(stats['total'], {'sites': 2, 'pages': 2, 'lemmas': 1, 'indexing': True})
        one, two = stats['detailed']
        self.assertEqual(one['status'], 'INDEXED')
        self.assertEqual(one['pages'], 2)
        self.assertIsInstance(one['statusTime'], int)
        self.assertEqual(two['status'], NOT_INDEXED)
        self.assertEqual(two['pages'], 0)
        self.assertIsNone(two['statusTime'])


if __name__ == '__main__':
    unittest.main()
