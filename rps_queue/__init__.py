"""RPS Queue - durable order → RPS state.

Usage:
    from rps_queue import RpsQueueStore, RpsRecord, RpsStatus

    store = RpsQueueStore(settings.db_path)
    page = store.list(status=RpsStatus.PENDING, page=1, page_size=20)
"""

from rps_queue.models import QueuePage, QueueStats, RpsRecord, RpsStatus
from rps_queue.db import RpsQueueStore

__all__ = [
    "RpsRecord",
    "RpsStatus",
    "QueuePage",
    "QueueStats",
    "RpsQueueStore",
]
