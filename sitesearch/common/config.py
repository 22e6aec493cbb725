"""
Configuration settings for the site search engine.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

# AWS region
AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

# Local DynamoDB endpoint (e.g. http://localhost:8000), None for AWS
DYNAMODB_ENDPOINT_URL = os.environ.get('DYNAMODB_ENDPOINT_URL')

# DynamoDB table names
TABLE_PREFIX = os.environ.get('SITESEARCH_TABLE_PREFIX', 'sitesearch')
SITES_TABLE = 'sites'
PAGES_TABLE = 'pages'
LEMMAS_TABLE = 'lemmas'
INDEX_TABLE = 'index'
PAGE_INDEX_GSI = 'page-index'

# Crawler settings
USER_AGENT = 'SiteSearchBot/1.0'
REFERRER = 'https://www.google.com'
DELAY_MIN_MS = 500   # politeness delay bounds
DELAY_MAX_MS = 5000
SPLIT_THRESHOLD = 100  # frontier size above which a task splits
MAX_DEPTH = 5          # task recursion ceiling
CRAWLER_WORKERS = 8
REQUEST_TIMEOUT = 30  # seconds

# Search settings
FREQUENCY_RATIO_THRESHOLD = 0.7
DEFAULT_SEARCH_LIMIT = 20

CONFIG_PATH = os.environ.get('SITESEARCH_CONFIG', 'sitesearch.json')

LOG_FORMAT = '%(asctime)s [%(levelname)s] [{component}] %(message)s'


@dataclass
class SiteConfig:
    """One configured origin."""
    url: str
    name: str

    def __post_init__(self):
        self.url = self.url.rstrip('/')


@dataclass
class CrawlerSettings:
    user_agent: str = USER_AGENT
    referrer: str = REFERRER
    delay_min_ms: int = DELAY_MIN_MS
    delay_max_ms: int = DELAY_MAX_MS
    split_threshold: int = SPLIT_THRESHOLD
    max_depth: int = MAX_DEPTH
    workers: int = CRAWLER_WORKERS
    timeout: float = REQUEST_TIMEOUT


@dataclass
class SearchSettings:
    frequency_ratio_threshold: float = FREQUENCY_RATIO_THRESHOLD
    default_limit: int = DEFAULT_SEARCH_LIMIT


@dataclass
class Settings:
    sites: List[SiteConfig] = field(default_factory=list)
    crawler: CrawlerSettings = field(default_factory=CrawlerSettings)
    search: SearchSettings = field(default_factory=SearchSettings)
    aws_region: str = AWS_REGION
    table_prefix: str = TABLE_PREFIX
    dynamodb_endpoint_url: Optional[str] = DYNAMODB_ENDPOINT_URL

    @classmethod
    def from_dict(cls, data):
        crawler = dict(data.get('crawler') or {})
        search = dict(data.get('search') or {})
        # Unset or empty politeness headers fall back to the defaults
        if not crawler.get('user_agent'):
            crawler.pop('user_agent', None)
        if not crawler.get('referrer'):
            crawler.pop('referrer', None)
        return cls(
            sites=[SiteConfig(url=s['url'], name=s.get('name') or s['url'])
                   for s in data.get('sites', [])],
            crawler=CrawlerSettings(**crawler),
            search=SearchSettings(**search),
            aws_region=data.get('aws_region', AWS_REGION),
            table_prefix=data.get('table_prefix', TABLE_PREFIX),
            dynamodb_endpoint_url=data.get('dynamodb_endpoint_url', DYNAMODB_ENDPOINT_URL),
        )


def load_settings(path=None):
    """Load settings from a JSON file, or defaults when the file is missing."""
    path = path or CONFIG_PATH
    if not os.path.exists(path):
        logging.getLogger(__name__).warning(f"Config file {path} not found, using defaults with no sites")
        return Settings()
    with open(path) as f:
        return Settings.from_dict(json.load(f))


def configure_logging(component, log_file=None, level=logging.INFO):
    """Configure root logging for an entry point."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT.format(component=component),
        handlers=handlers,
    )
