"""
HTTP interface for indexing control, statistics and search.
"""
import logging
import traceback

from flask import Flask, jsonify, request

from sitesearch.common.config import load_settings
from sitesearch.common.errors import AlreadyRunningError, SearchError, SiteSearchError
from sitesearch.common.storage import DynamoStorage
from sitesearch.indexer.text_analyzer import TextAnalyzer
from sitesearch.master.orchestrator import CrawlOrchestrator
from sitesearch.monitoring.statistics import StatisticsService
from sitesearch.search.search_engine import SearchEngine

logger = logging.getLogger(__name__)


def error_response(message, status):
    return jsonify({'result': False, 'error': message}), status


def create_app(settings=None, storage=None, orchestrator=None, search_engine=None, statistics=None):
    """Build the Flask app; missing collaborators are created from settings."""
    settings = settings or load_settings()
    if storage is None:
        storage = DynamoStorage.from_settings(settings)
        storage.ensure_tables()
    analyzer = None
    if orchestrator is None or search_engine is None:
        analyzer = TextAnalyzer()
    orchestrator = orchestrator or CrawlOrchestrator(settings, storage, analyzer=analyzer)
    search_engine = search_engine or SearchEngine.from_settings(storage, analyzer, settings.search)
    statistics = statistics or StatisticsService(settings, storage, orchestrator)

    app = Flask(__name__)

    @app.errorhandler(AlreadyRunningError)
    def already_running(e):
        return error_response(str(e), 409)

    @app.errorhandler(SiteSearchError)
    def site_search_error(e):
        return error_response(str(e), 400)

    @app.route('/api/statistics')
    def get_statistics():
        """Return index statistics."""
        return jsonify({'result': True, 'statistics': statistics.get_statistics()})

    @app.route('/api/startIndexing')
    def start_indexing():
        orchestrator.start_crawl_async()
        return jsonify({'result': True})

    @app.route('/api/stopIndexing')
    def stop_indexing():
        summary = orchestrator.stop_crawl()
        return jsonify({'result': True, **summary})

    @app.route('/api/indexPage', methods=['POST'])
    def index_page():
        """Re-index a single page of a configured site."""
        url = (request.args.get('url') or request.form.get('url') or '').strip()
        if not url:
            return error_response('Page url is empty', 400)
        try:
            orchestrator.index_single_page(url)
        except SiteSearchError:
            raise
        except Exception as e:
            logger.error(f"Error indexing page {url}: {e}")
            logger.error(traceback.format_exc())
            return error_response(f"Error indexing page: {e}", 500)
        return jsonify({'result': True})

    @app.route('/api/search')
    def search():
        """Handle search requests."""
        query = request.args.get('query', '').strip()
        if not query:
            return error_response('Search query is empty', 400)
        try:
            offset = int(request.args.get('offset', 0))
            limit = int(request.args.get('limit', settings.search.default_limit))
        except ValueError:
            return error_response('offset and limit must be integers', 400)
        if offset < 0:
            return error_response('offset must not be negative', 400)
        if limit <= 0:
            return error_response('limit must be positive', 400)

        site_url = request.args.get('site') or None
        try:
            response = search_engine.search(query, site_url=site_url, offset=offset, limit=limit)
        except SearchError as e:
            logger.info(f"Search for '{query}' failed: {e}")
            return error_response(str(e), 400)
        return jsonify(response.to_dict())

    return app
