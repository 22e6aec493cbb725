"""
DynamoDB storage for sites, pages, lemmas and index entries.
"""
import logging
import zlib

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from sitesearch.common.config import (
    AWS_REGION, TABLE_PREFIX, SITES_TABLE, PAGES_TABLE, LEMMAS_TABLE,
    INDEX_TABLE, PAGE_INDEX_GSI,
)
from sitesearch.common.errors import StorageConflictError
from sitesearch.common.models import IndexEntry, Lemma, Page, Site, SiteStatus, utc_now
from sitesearch.common.utils import to_decimal

logger = logging.getLogger(__name__)

THROUGHPUT = {'ReadCapacityUnits': 5, 'WriteCapacityUnits': 5}

TABLE_SCHEMAS = {
    SITES_TABLE: {
        'KeySchema': [
            {'AttributeName': 'url', 'KeyType': 'HASH'},
        ],
        'AttributeDefinitions': [
            {'AttributeName': 'url', 'AttributeType': 'S'},
        ],
    },
    PAGES_TABLE: {
        'KeySchema': [
            {'AttributeName': 'site_id', 'KeyType': 'HASH'},
            {'AttributeName': 'path', 'KeyType': 'RANGE'},
        ],
        'AttributeDefinitions': [
            {'AttributeName': 'site_id', 'AttributeType': 'S'},
            {'AttributeName': 'path', 'AttributeType': 'S'},
        ],
    },
    LEMMAS_TABLE: {
        'KeySchema': [
            {'AttributeName': 'site_id', 'KeyType': 'HASH'},
            {'AttributeName': 'lemma', 'KeyType': 'RANGE'},
        ],
        'AttributeDefinitions': [
            {'AttributeName': 'site_id', 'AttributeType': 'S'},
            {'AttributeName': 'lemma', 'AttributeType': 'S'},
        ],
    },
    INDEX_TABLE: {
        'KeySchema': [
            {'AttributeName': 'lemma_key', 'KeyType': 'HASH'},
            {'AttributeName': 'page_key', 'KeyType': 'RANGE'},
        ],
        'AttributeDefinitions': [
            {'AttributeName': 'lemma_key', 'AttributeType': 'S'},
            {'AttributeName': 'page_key', 'AttributeType': 'S'},
        ],
        'GlobalSecondaryIndexes': [
            {
                'IndexName': PAGE_INDEX_GSI,
                'KeySchema': [
                    {'AttributeName': 'page_key', 'KeyType': 'HASH'},
                    {'AttributeName': 'lemma_key', 'KeyType': 'RANGE'},
                ],
                'Projection': {'ProjectionType': 'ALL'},
                'ProvisionedThroughput': THROUGHPUT,
            },
        ],
    },
}


def _is_conditional_failure(error):
    return error.response['Error']['Code'] == 'ConditionalCheckFailedException'


class DynamoStorage:
    """
    Persistence for the crawl and the inverted index.

    Pages are keyed by (site_id, path) and lemmas by (site_id, lemma), which
    makes both uniqueness invariants hold at the key level. Index entries are
    keyed by lemma and carry a secondary index by page, so posting lists and
    per-page entry sets are single queries.
    """

    def __init__(self, region_name=AWS_REGION, table_prefix=TABLE_PREFIX, endpoint_url=None):
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name, endpoint_url=endpoint_url)
        self.table_names = {name: f"{table_prefix}-{name}" for name in TABLE_SCHEMAS}
        self.sites = self.dynamodb.Table(self.table_names[SITES_TABLE])
        self.pages = self.dynamodb.Table(self.table_names[PAGES_TABLE])
        self.lemmas = self.dynamodb.Table(self.table_names[LEMMAS_TABLE])
        self.index = self.dynamodb.Table(self.table_names[INDEX_TABLE])
        logger.info(f"DynamoDB storage initialized with region {region_name}, prefix {table_prefix}")

    @classmethod
    def from_settings(cls, settings):
        return cls(
            region_name=settings.aws_region,
            table_prefix=settings.table_prefix,
            endpoint_url=settings.dynamodb_endpoint_url,
        )

    def ensure_tables(self):
        """Create any missing table and wait until it is active."""
        existing_tables = self.dynamodb.meta.client.list_tables()['TableNames']
        for key, schema in TABLE_SCHEMAS.items():
            table_name = self.table_names[key]
            if table_name in existing_tables:
                continue
            logger.info(f"Creating DynamoDB table {table_name}")
            self.dynamodb.create_table(
                TableName=table_name,
                ProvisionedThroughput=THROUGHPUT,
                **schema
            )
            self.dynamodb.meta.client.get_waiter('table_exists').wait(TableName=table_name)
            logger.info(f"Table {table_name} created successfully")

    # Pagination helpers

    @staticmethod
    def _query_all(table, **kwargs):
        while True:
            response = table.query(**kwargs)
            yield from response.get('Items', [])
            if 'LastEvaluatedKey' not in response:
                return
            kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']

    @staticmethod
    def _scan_all(table, **kwargs):
        while True:
            response = table.scan(**kwargs)
            yield from response.get('Items', [])
            if 'LastEvaluatedKey' not in response:
                return
            kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']

    @staticmethod
    def _count(table, **kwargs):
        total = 0
        while True:
            response = table.query(Select='COUNT', **kwargs)
            total += response['Count']
            if 'LastEvaluatedKey' not in response:
                return total
            kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']

    # Sites

    def put_site(self, site):
        self.sites.put_item(Item=site.to_item())

    def find_site(self, url):
        response = self.sites.get_item(Key={'url': url})
        item = response.get('Item')
        return Site.from_item(item) if item else None

    def list_sites(self):
        return [Site.from_item(item) for item in self._scan_all(self.sites)]

    def find_sites_by_status(self, status):
        items = self._scan_all(self.sites, FilterExpression=Attr('status').eq(status.value))
        return [Site.from_item(item) for item in items]

    def delete_site(self, url):
        self.sites.delete_item(Key={'url': url})

    def update_site_status(self, site, status, last_error=None, expected_status=None):
        """
        Set the status of a site record.

        The write only applies to the same site_id (a re-crawl replaces the
        record) and, when expected_status is given, only while the stored
        status still equals it.
        """
        now = utc_now()
        update_expression = "SET #status = :status, status_time = :time"
        values = {':status': status.value, ':time': now}
        if last_error is not None:
            update_expression += ", last_error = :error"
            values[':error'] = str(last_error)[:1024]
        condition = Attr('site_id').eq(site.site_id)
        if expected_status is not None:
            condition = condition & Attr('status').eq(expected_status.value)
        try:
            self.sites.update_item(
                Key={'url': site.url},
                UpdateExpression=update_expression,
                ConditionExpression=condition,
                ExpressionAttributeNames={'#status': 'status'},
                ExpressionAttributeValues=values,
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                raise StorageConflictError(f"Site {site.url} changed concurrently") from e
            raise
        site.status = status
        site.status_time = now
        if last_error is not None:
            site.last_error = values[':error']

    def record_site_error(self, site, message):
        """Store the last error of a site and refresh its status time."""
        now = utc_now()
        try:
            self.sites.update_item(
                Key={'url': site.url},
                UpdateExpression="SET last_error = :error, status_time = :time",
                ConditionExpression=Attr('site_id').eq(site.site_id),
                ExpressionAttributeValues={':error': str(message)[:1024], ':time': now},
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                raise StorageConflictError(f"Site {site.url} changed concurrently") from e
            raise
        site.last_error = str(message)[:1024]
        site.status_time = now

    def touch_site(self, site):
        now = utc_now()
        try:
            self.sites.update_item(
                Key={'url': site.url},
                UpdateExpression="SET status_time = :time",
                ConditionExpression=Attr('site_id').eq(site.site_id),
                ExpressionAttributeValues={':time': now},
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                raise StorageConflictError(f"Site {site.url} changed concurrently") from e
            raise
        site.status_time = now

    def purge_site(self, url):
        """Remove a site record with all its pages, lemmas and index entries."""
        site = self.find_site(url)
        if site is None:
            return
        logger.info(f"Purging stored data for site {url} ({site.site_id})")
        for lemma in self.list_lemmas(site.site_id):
            with self.index.batch_writer() as batch:
                for entry in self.find_entries_by_lemma(site.site_id, lemma.lemma):
                    batch.delete_item(Key={'lemma_key': entry.lemma_key, 'page_key': entry.page_key})
        self.delete_lemmas_by_site(site.site_id)
        self.delete_pages_by_site(site.site_id)
        self.delete_site(url)

    # Pages

    @staticmethod
    def _page_from_item(item):
        raw = item.get('content')
        if raw is not None:
            raw = getattr(raw, 'value', raw)
            item = dict(item, content=zlib.decompress(bytes(raw)).decode('utf-8'))
        return Page.from_item(item)

    def create_page(self, page):
        """Insert a page, failing with StorageConflictError if the path exists."""
        try:
            self.pages.put_item(
                Item={
                    'site_id': page.site_id,
                    'path': page.path,
                    'code': page.code,
                    'content': zlib.compress(page.content.encode('utf-8')),
                    'committed': page.committed,
                },
                ConditionExpression='attribute_not_exists(#path)',
                ExpressionAttributeNames={'#path': 'path'},
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                raise StorageConflictError(f"Page {page.path} already exists") from e
            raise

    def commit_page(self, page):
        """Make a page visible to search once its index entries are written."""
        self.pages.update_item(
            Key={'site_id': page.site_id, 'path': page.path},
            UpdateExpression="SET committed = :true",
            ExpressionAttributeValues={':true': True},
        )
        page.committed = True

    def find_page(self, site_id, path, with_content=True):
        kwargs = {'Key': {'site_id': site_id, 'path': path}}
        if not with_content:
            kwargs['ProjectionExpression'] = 'site_id, #path, code, committed'
            kwargs['ExpressionAttributeNames'] = {'#path': 'path'}
        item = self.pages.get_item(**kwargs).get('Item')
        return self._page_from_item(item) if item else None

    def page_exists(self, site_id, path):
        return self.find_page(site_id, path, with_content=False) is not None

    def delete_page(self, site_id, path):
        self.pages.delete_item(Key={'site_id': site_id, 'path': path})

    def count_pages(self, site_id):
        return self._count(self.pages, KeyConditionExpression=Key('site_id').eq(site_id))

    def delete_pages_by_site(self, site_id):
        keys = self._query_all(
            self.pages,
            KeyConditionExpression=Key('site_id').eq(site_id),
            ProjectionExpression='site_id, #path',
            ExpressionAttributeNames={'#path': 'path'},
        )
        with self.pages.batch_writer() as batch:
            for key in keys:
                batch.delete_item(Key={'site_id': key['site_id'], 'path': key['path']})

    # Lemmas

    def increment_lemma(self, site_id, lemma):
        """Atomically add one to a lemma's frequency, creating it at 1."""
        response = self.lemmas.update_item(
            Key={'site_id': site_id, 'lemma': lemma},
            UpdateExpression="ADD #frequency :one",
            ExpressionAttributeNames={'#frequency': 'frequency'},
            ExpressionAttributeValues={':one': 1},
            ReturnValues='UPDATED_NEW',
        )
        return int(response['Attributes']['frequency'])

    def decrement_lemma(self, site_id, lemma):
        """Atomically subtract one from an existing lemma's frequency."""
        try:
            response = self.lemmas.update_item(
                Key={'site_id': site_id, 'lemma': lemma},
                UpdateExpression="ADD #frequency :minus_one",
                ConditionExpression=Attr('lemma').exists(),
                ExpressionAttributeNames={'#frequency': 'frequency'},
                ExpressionAttributeValues={':minus_one': -1},
                ReturnValues='UPDATED_NEW',
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                raise StorageConflictError(f"Lemma {lemma} does not exist") from e
            raise
        return int(response['Attributes']['frequency'])

    def delete_lemma_if_unused(self, site_id, lemma):
        """Delete a lemma whose frequency dropped to zero or below."""
        try:
            self.lemmas.delete_item(
                Key={'site_id': site_id, 'lemma': lemma},
                ConditionExpression=Attr('frequency').lte(0),
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                raise StorageConflictError(f"Lemma {lemma} is referenced again") from e
            raise

    def find_lemma(self, site_id, lemma):
        item = self.lemmas.get_item(Key={'site_id': site_id, 'lemma': lemma}).get('Item')
        return Lemma.from_item(item) if item else None

    def list_lemmas(self, site_id):
        items = self._query_all(self.lemmas, KeyConditionExpression=Key('site_id').eq(site_id))
        return [Lemma.from_item(item) for item in items]

    def count_lemmas(self, site_id):
        return self._count(self.lemmas, KeyConditionExpression=Key('site_id').eq(site_id))

    def delete_lemmas_by_site(self, site_id):
        with self.lemmas.batch_writer() as batch:
            for lemma in self.list_lemmas(site_id):
                batch.delete_item(Key={'site_id': site_id, 'lemma': lemma.lemma})

    # Index entries

    def create_index_entry(self, entry):
        """Insert a (page, lemma) entry, failing with StorageConflictError if present."""
        try:
            self.index.put_item(
                Item={
                    'lemma_key': entry.lemma_key,
                    'page_key': entry.page_key,
                    'site_id': entry.site_id,
                    'path': entry.path,
                    'lemma': entry.lemma,
                    'rank': to_decimal(entry.rank),
                },
                ConditionExpression='attribute_not_exists(lemma_key)',
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                raise StorageConflictError(
                    f"Index entry for {entry.lemma} on {entry.path} already exists") from e
            raise

    def find_index_entry(self, page, lemma):
        key = {'lemma_key': f"{page.site_id}#{lemma}", 'page_key': page.page_key}
        item = self.index.get_item(Key=key).get('Item')
        return IndexEntry.from_item(item) if item else None

    def find_entries_by_page(self, site_id, path):
        items = self._query_all(
            self.index,
            IndexName=PAGE_INDEX_GSI,
            KeyConditionExpression=Key('page_key').eq(f"{site_id}#{path}"),
        )
        return [IndexEntry.from_item(item) for item in items]

    def find_entries_by_lemma(self, site_id, lemma):
        items = self._query_all(self.index, KeyConditionExpression=Key('lemma_key').eq(f"{site_id}#{lemma}"))
        return [IndexEntry.from_item(item) for item in items]

    def delete_index_entry(self, entry):
        """Delete one entry; returns False when it was already gone."""
        response = self.index.delete_item(
            Key={'lemma_key': entry.lemma_key, 'page_key': entry.page_key},
            ReturnValues='ALL_OLD',
        )
        return 'Attributes' in response

    def delete_entries_by_page(self, site_id, path):
        with self.index.batch_writer() as batch:
            for entry in self.find_entries_by_page(site_id, path):
                batch.delete_item(Key={'lemma_key': entry.lemma_key, 'page_key': entry.page_key})
