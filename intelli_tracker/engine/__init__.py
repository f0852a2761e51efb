"""Engine components: fetch, parse, batch, diff, snapshot and record store."""

from .batch import BatchFetchScheduler, BatchOutcome
from .diff import DiffContext, diff_snapshots
from .fetcher import FetchRequest, FetchResponse, Fetcher
from .importer import AnnotationImport, import_annotations
from .parser import PageParser
from .record_store import KeyedRecordStore
from .snapshots import SnapshotRepository
from .sources import HttpLister, HttpPageExtractor, Lister, PageExtractor
from .thread_pool import ThreadPoolManager

__all__ = [
    "AnnotationImport",
    "BatchFetchScheduler",
    "BatchOutcome",
    "DiffContext",
    "FetchRequest",
    "FetchResponse",
    "Fetcher",
    "HttpLister",
    "HttpPageExtractor",
    "KeyedRecordStore",
    "Lister",
    "PageExtractor",
    "PageParser",
    "SnapshotRepository",
    "ThreadPoolManager",
    "diff_snapshots",
    "import_annotations",
]
