"""
Curation Service Module

The human side of the dashboard: approving and rejecting scraped items,
editing and rewriting their text, and maintaining the order of the publish
queue. Published items are terminal and cannot be changed.
"""

from typing import Any, Dict, List, Optional, Sequence

from config import settings
from config.app_config import AppConfig
from data.models import ItemStatus, QueueItem, ScrapedItem, can_transition
from data.protocols import ItemStore
from services.protocols import Classifier
from utils.exceptions import (
    ContentTooLongError,
    CurationError,
    InvalidTransitionError,
    ItemNotFoundError,
)
from utils.helpers import truncate_text
from utils.logger import get_logger

logger = get_logger(__name__)

CLEARED_REASON = "Cleared manually"

OPEN_STATUSES = (ItemStatus.PENDING, ItemStatus.APPROVED, ItemStatus.REJECTED)


def check_length(text: str) -> str:
    """
    Raises:
        ContentTooLongError: If the text does not fit in one post.
    """
    if text is None or len(text) > settings.TWITTER_CHARACTER_LIMIT:
        length = 0 if text is None else len(text)
        raise ContentTooLongError(
            f"Text is {length} characters, the limit is {settings.TWITTER_CHARACTER_LIMIT}")
    return text


def compact_queue(store: ItemStore) -> List[QueueItem]:
    """Renumber the queue as 0..n-1 in its current order; returns the new queue."""
    queue = store.get_queue()
    changes = [(q.id, index) for index, q in enumerate(queue) if q.position != index]
    if changes and not store.update_queue_positions(changes):
        logger.error("Failed to compact queue positions")
    for index, q in enumerate(queue):
        q.position = index
    return queue


class CurationService:
    """Approve, reject, edit and order curated content."""

    def __init__(self, store: ItemStore, classifier: Optional[Classifier] = None):
        self.store = store
        self.classifier = classifier

    # ----- lookups --------------------------------------------------------

    def get_item(self, item_id: int) -> ScrapedItem:
        item = self.store.get_item(item_id)
        if item is None:
            raise ItemNotFoundError(f"Scraped item {item_id} not found")
        return item

    def get_queue_item(self, queue_id: int) -> QueueItem:
        queue_item = self.store.get_queue_item(queue_id)
        if queue_item is None:
            raise ItemNotFoundError(f"Queue item {queue_id} not found")
        return queue_item

    def list_inbox(self, status: Optional[ItemStatus] = None) -> List[ScrapedItem]:
        """Curation view: every non-published item, or only those in ``status``."""
        if status is not None:
            if ItemStatus(status) == ItemStatus.PUBLISHED:
                return []
            return self.store.list_items([status])
        return self.store.list_items(OPEN_STATUSES)

    def list_published(self) -> List[ScrapedItem]:
        return self.store.list_items([ItemStatus.PUBLISHED])

    def get_queue(self) -> List[QueueItem]:
        return self.store.get_queue()

    def _queue_entry_for(self, item_id: int) -> Optional[QueueItem]:
        return next((q for q in self.store.get_queue() if q.scraped_item_id == item_id), None)

    def _require_transition(self, item: ScrapedItem, new: ItemStatus) -> None:
        if not can_transition(item.status, new):
            raise InvalidTransitionError(
                f"Item {item.id} cannot go from {ItemStatus(item.status).value} to {new.value}")

    # ----- status changes -------------------------------------------------

    def approve(self, item_id: int, reason: Optional[str] = None) -> QueueItem:
        """
        Approve an item and append it to the publish queue.

        Args:
            item_id: The scraped item.
            reason: Why it deserves publishing; required when re-approving a rejected item.

        Returns:
            QueueItem: The new queue entry.

        Raises:
            InvalidTransitionError: If the item cannot be approved from its status.
            CurationError: If a rejected item is re-approved without a reason.
        """
        item = self.get_item(item_id)
        self._require_transition(item, ItemStatus.APPROVED)
        if item.status == ItemStatus.REJECTED and not (reason and reason.strip()):
            raise CurationError("Re-approving a rejected item requires a reason")

        self.store.update_item_status(item.id, ItemStatus.APPROVED, reason.strip() if reason else None)
        queue_item = self.store.insert_queue_item(QueueItem(
            scraped_item_id=item.id,
            custom_text=item.processed_content,
            position=self.store.count_queue(),
        ))
        logger.info(f"Approved item {item.id} at queue position {queue_item.position}")
        return queue_item

    def reject(self, item_id: int, reason: Optional[str] = None) -> None:
        """Reject an item and take it out of the queue."""
        item = self.get_item(item_id)
        self._require_transition(item, ItemStatus.REJECTED)
        self.store.update_item_status(item.id, ItemStatus.REJECTED, reason)
        if self.store.delete_queue_items_for([item.id]):
            compact_queue(self.store)
        logger.info(f"Rejected item {item.id}" + (f": {reason}" if reason else ""))

    def clear_all(self) -> int:
        """
        Soft-clear the inbox: every non-published item becomes rejected.

        Rows are kept so previously seen posts are still recognised as duplicates.

        Returns:
            int: Number of items cleared.
        """
        items = [i for i in self.store.list_items(OPEN_STATUSES) if i.status != ItemStatus.REJECTED]
        ids = [i.id for i in items]
        for item_id in ids:
            self.store.update_item_status(item_id, ItemStatus.REJECTED, CLEARED_REASON)
        if ids:
            self.store.delete_queue_items_for(ids)
            compact_queue(self.store)
        logger.info(f"Cleared {len(ids)} items")
        return len(ids)

    def delete_items(self, item_ids: Sequence[int]) -> int:
        """Hard-delete items (and their queue entries)."""
        deleted = self.store.delete_items(list(item_ids))
        compact_queue(self.store)
        logger.info(f"Deleted {deleted} items")
        return deleted

    # ----- content --------------------------------------------------------

    def edit_content(self, item_id: int, text: str) -> ScrapedItem:
        """
        Replace an item's processed text.

        Raises:
            ContentTooLongError: If the text exceeds the post limit.
            InvalidTransitionError: If the item is already published.
        """
        item = self.get_item(item_id)
        if item.status == ItemStatus.PUBLISHED:
            raise InvalidTransitionError(f"Item {item.id} is published and cannot be edited")
        check_length(text)
        self.store.update_item_content(item.id, text)
        item.processed_content = text
        queue_item = self._queue_entry_for(item.id)
        if queue_item is not None:
            self.store.update_queue_item(queue_item.id, custom_text=text)
        return item

    def reprocess(self, item_id: int, instruction: Optional[str] = None,
                  config: Optional[AppConfig] = None) -> str:
        """
        Rewrite an item's text with the AI following a human instruction.

        Returns:
            str: The new processed text.
        """
        if self.classifier is None:
            raise CurationError("No classifier configured for reprocessing")
        item = self.get_item(item_id)
        if item.status == ItemStatus.PUBLISHED:
            raise InvalidTransitionError(f"Item {item.id} is published and cannot be reprocessed")
        config = config or self.get_config()
        new_content = self.classifier.reprocess(item.original_content, instruction, config.target_language)
        self.store.update_item_content(item.id, new_content)
        logger.info(f"Reprocessed item {item.id}: {truncate_text(new_content, 60)}")
        return new_content

    # ----- queue ----------------------------------------------------------

    def remove_from_queue(self, queue_id: int) -> List[QueueItem]:
        """Remove a queue entry and close the gap; returns the new queue."""
        self.get_queue_item(queue_id)
        self.store.delete_queue_item(queue_id)
        return compact_queue(self.store)

    def reorder_queue(self, ordered_ids: Sequence[int]) -> List[QueueItem]:
        """
        Set the queue order.

        Args:
            ordered_ids: Every queue id, in the desired order.

        Raises:
            CurationError: If the ids are not exactly the current queue.
        """
        queue = self.store.get_queue()
        current = {q.id for q in queue}
        if len(ordered_ids) != len(current) or set(ordered_ids) != current:
            raise CurationError("Reorder must list every queue item exactly once")
        self.store.update_queue_positions([(qid, index) for index, qid in enumerate(ordered_ids)])
        return self.store.get_queue()

    def update_queue_item(self, queue_id: int, custom_text: Optional[str] = None,
                          scheduled_at: Any = None, clear_schedule: bool = False) -> QueueItem:
        queue_item = self.get_queue_item(queue_id)
        if custom_text is not None:
            check_length(custom_text)
        self.store.update_queue_item(queue_id, custom_text=custom_text,
                                     scheduled_at=scheduled_at, clear_schedule=clear_schedule)
        return self.store.get_queue_item(queue_id) or queue_item

    # ----- configuration --------------------------------------------------

    def get_config(self) -> AppConfig:
        stored = self.store.load_config()
        if stored is None:
            config = AppConfig()
            self.store.save_config(config.to_dict())
            return config
        return AppConfig.from_dict(stored)

    def update_config(self, changes: Dict[str, Any]) -> AppConfig:
        """Merge changes (camelCase or snake_case keys) into the stored config."""
        config = AppConfig.from_dict({**self.get_config().to_dict(), **changes}).validate()
        self.store.save_config(config.to_dict())
        return config
