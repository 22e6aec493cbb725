"""
Command line entry point for the site search engine.
"""
import argparse
import logging
import sys

from sitesearch.common.config import configure_logging, load_settings
from sitesearch.common.errors import SiteSearchError
from sitesearch.common.storage import DynamoStorage

logger = logging.getLogger(__name__)


def format_results_for_cli(response, query):
    """Format search results for command-line display."""
    if not response.items:
        return f"No results found for '{query}'"

    output = [f"Search results for '{query}' ({response.total_count} total):"]
    output.append("-" * 80)

    for i, result in enumerate(response.items, 1):
        title = result.title or 'No Title'
        snippet = result.snippet

        # Truncate snippet if it's too long
        if len(snippet) > 200:
            snippet = snippet[:197] + "..."

        output.append(f"{i}. {title} (Relevance: {result.relevance:.2f})")
        output.append(f"   URL: {result.site_url}{result.path}")
        if snippet:
            output.append(f"   Snippet: {snippet}")
        output.append("-" * 80)

    return "\n".join(output)


def build_parser():
    parser = argparse.ArgumentParser(description='Self-hosted site search engine')
    parser.add_argument('--config', help='Path to the JSON settings file')
    parser.add_argument('--log-file', help='Also write logs to this file')
    subparsers = parser.add_subparsers(dest='command', required=True)

    serve = subparsers.add_parser('serve', help='Run the HTTP interface')
    serve.add_argument('--host', default='0.0.0.0')
    serve.add_argument('--port', type=int, default=5000, help='Port for web interface')

    subparsers.add_parser('crawl', help='Crawl and index every configured site')

    index_page = subparsers.add_parser('index-page', help='Re-index a single page')
    index_page.add_argument('url')

    search = subparsers.add_parser('search', help='Search the index')
    search.add_argument('query', help='Search query')
    search.add_argument('--site', help='Only search this site')
    search.add_argument('--offset', type=int, default=0)
    search.add_argument('--limit', type=int, default=None, help='Maximum number of results to return')

    subparsers.add_parser('init-tables', help='Create the DynamoDB tables')
    return parser


def run_crawl(settings, storage):
    from sitesearch.master.orchestrator import CrawlOrchestrator

    orchestrator = CrawlOrchestrator(settings, storage)
    thread = orchestrator.start_crawl_async()
    try:
        while thread.is_alive():
            thread.join(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping indexing")
        orchestrator.stop_crawl()
        thread.join()


def main(argv=None):
    """Main function to run the command line interface."""
    args = build_parser().parse_args(argv)
    configure_logging(args.command.replace('-', ' ').title().replace(' ', ''), log_file=args.log_file)
    settings = load_settings(args.config)
    storage = DynamoStorage.from_settings(settings)

    try:
        if args.command == 'init-tables':
            storage.ensure_tables()
        elif args.command == 'serve':
            from sitesearch.client.search_interface import create_app

            storage.ensure_tables()
            app = create_app(settings=settings, storage=storage)
            app.run(host=args.host, port=args.port)
        elif args.command == 'crawl':
            storage.ensure_tables()
            run_crawl(settings, storage)
        elif args.command == 'index-page':
            from sitesearch.master.orchestrator import CrawlOrchestrator

            storage.ensure_tables()
            CrawlOrchestrator(settings, storage).index_single_page(args.url)
            print(f"Indexed {args.url}")
        elif args.command == 'search':
            from sitesearch.indexer.text_analyzer import TextAnalyzer
            from sitesearch.search.search_engine import SearchEngine

            engine = SearchEngine.from_settings(storage, TextAnalyzer(), settings.search)
            limit = args.limit or settings.search.default_limit
            response = engine.search(args.query, site_url=args.site, offset=args.offset, limit=limit)
            print(format_results_for_cli(response, args.query))
    except SiteSearchError as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
