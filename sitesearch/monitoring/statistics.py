"""
Index statistics for the configured sites.
"""
import logging
from datetime import datetime

logger = logging.getLogger(__name__)

NOT_INDEXED = 'NOT_INDEXED'


def _epoch_seconds(timestamp):
    try:
        return int(datetime.fromisoformat(timestamp).timestamp())
    except (TypeError, ValueError):
        return None


class StatisticsService:
    """Totals and per-site details of the index."""

    def __init__(self, settings, storage, orchestrator=None):
        self.settings = settings
        self.storage = storage
        self.orchestrator = orchestrator

    def get_statistics(self):
        detailed = []
        total_pages = 0
        total_lemmas = 0

        for site_config in self.settings.sites:
            site = self.storage.find_site(site_config.url)
            item = {
                'url': site_config.url,
                'name': site_config.name,
                'status': NOT_INDEXED,
                'statusTime': None,
                'error': None,
                'pages': 0,
                'lemmas': 0,
            }
            if site is not None:
                pages = self.storage.count_pages(site.site_id)
                lemmas = self.storage.count_lemmas(site.site_id)
                item.update({
                    'status': site.status.value,
                    'statusTime': _epoch_seconds(site.status_time),
                    'error': site.last_error,
                    'pages': pages,
                    'lemmas': lemmas,
                })
                total_pages += pages
                total_lemmas += lemmas
            detailed.append(item)

        indexing = self.orchestrator.is_running() if self.orchestrator else False
        logger.debug(f"Statistics: {len(detailed)} sites, {total_pages} pages, {total_lemmas} lemmas")
        return {
            'total': {
                'sites': len(self.settings.sites),
                'pages': total_pages,
                'lemmas': total_lemmas,
                'indexing': indexing,
            },
            'detailed': detailed,
        }
