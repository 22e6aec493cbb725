"""
Indexing pipeline: turns stored pages into lemma and index entry records.
"""
import logging
import traceback

from sitesearch.common.errors import StorageConflictError
from sitesearch.common.models import IndexEntry

logger = logging.getLogger(__name__)


class PageIndexer:
    """Maintains lemma frequencies and index entries as pages come and go."""

    def __init__(self, storage, analyzer):
        self.storage = storage
        self.analyzer = analyzer

    def add_page(self, page):
        """
        Store a new page and index it as one unit.

        The page is inserted uncommitted, indexed, then committed, so search
        never sees it with a partial posting list. If indexing fails the
        page and its entries are rolled back and the error is re-raised.
        Raises StorageConflictError if the page already exists.
        """
        page.committed = False
        self.storage.create_page(page)
        created = []
        try:
            self.process_page(page, created)
            self.storage.commit_page(page)
        except Exception:
            logger.error(f"Indexing failed for {page.path}, rolling back")
            logger.debug(traceback.format_exc())
            # The page GSI may lag behind fresh writes, so undo what was written here
            self._remove_entries(created, page)
            self.storage.delete_page(page.site_id, page.path)
            raise

    def process_page(self, page, created=None):
        """
        Create index entries for a page and count it once per lemma.

        Each entry whose lemma was counted is appended to ``created`` (a new
        list when omitted), which is returned.
        """
        if created is None:
            created = []
        text = self.analyzer.strip_markup(page.content)
        frequencies = self.analyzer.lemma_frequencies(text)

        for lemma, count in frequencies.items():
            entry = IndexEntry(site_id=page.site_id, path=page.path, lemma=lemma, rank=count)
            try:
                self.storage.create_index_entry(entry)
            except StorageConflictError:
                # Already counted for this page
                logger.warning(f"Index entry for '{lemma}' on {page.path} already exists, skipping")
                continue
            try:
                self.storage.increment_lemma(page.site_id, lemma)
            except Exception:
                self.storage.delete_index_entry(entry)
                raise
            created.append(entry)

        logger.debug(f"Indexed {page.path}: {len(created)} lemmas")
        return created

    def remove_for_page(self, page):
        """Undo the contribution of a page to lemma frequencies and the index."""
        entries = self.storage.find_entries_by_page(page.site_id, page.path)
        return self._remove_entries(entries, page)

    def _remove_entries(self, entries, page):
        removed = 0
        for entry in entries:
            if not self.storage.delete_index_entry(entry):
                continue
            removed += 1
            try:
                frequency = self.storage.decrement_lemma(entry.site_id, entry.lemma)
            except StorageConflictError:
                logger.warning(f"Lemma '{entry.lemma}' vanished while removing {page.path}")
                continue
            if frequency <= 0:
                try:
                    self.storage.delete_lemma_if_unused(entry.site_id, entry.lemma)
                except StorageConflictError:
                    logger.info(f"Lemma '{entry.lemma}' was reused concurrently, keeping it")

        logger.debug(f"Removed {removed} index entries for {page.path}")
        return len(entries)
