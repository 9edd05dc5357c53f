from .queue_model import CrawlQueueItem
from .document_model import IngestedDocument

__all__ = [
    "CrawlQueueItem",
    "IngestedDocument",
]
