"""
Records persisted by the storage layer.
"""
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class SiteStatus(str, Enum):
    INDEXING = 'INDEXING'
    INDEXED = 'INDEXED'
    FAILED = 'FAILED'


def utc_now():
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Site:
    site_id: str
    url: str
    name: str
    status: SiteStatus
    status_time: str
    last_error: Optional[str] = None

    def to_item(self):
        item = asdict(self)
        item['status'] = self.status.value
        if self.last_error is None:
            del item['last_error']
        return item

    @classmethod
    def from_item(cls, item):
        return cls(
            site_id=item['site_id'],
            url=item['url'],
            name=item['name'],
            status=SiteStatus(item['status']),
            status_time=item['status_time'],
            last_error=item.get('last_error'),
        )


@dataclass
class Page:
    site_id: str
    path: str
    code: int
    content: str
    committed: bool = False

    @property
    def page_key(self):
        return f"{self.site_id}#{self.path}"

    @classmethod
    def from_item(cls, item):
        return cls(
            site_id=item['site_id'],
            path=item['path'],
            code=int(item['code']),
            content=item.get('content', ''),
            committed=bool(item.get('committed', False)),
        )


@dataclass
class Lemma:
    site_id: str
    lemma: str
    frequency: int

    @property
    def lemma_key(self):
        return f"{self.site_id}#{self.lemma}"

    @classmethod
    def from_item(cls, item):
        return cls(site_id=item['site_id'], lemma=item['lemma'], frequency=int(item['frequency']))


@dataclass
class IndexEntry:
    site_id: str
    path: str
    lemma: str
    rank: float

    @property
    def page_key(self):
        return f"{self.site_id}#{self.path}"

    @property
    def lemma_key(self):
        return f"{self.site_id}#{self.lemma}"

    @classmethod
    def from_item(cls, item):
        return cls(
            site_id=item['site_id'],
            path=item['path'],
            lemma=item['lemma'],
            rank=float(item['rank']),
        )
