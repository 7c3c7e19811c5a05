"""
Data Layer Protocol Definitions

This module defines typing.Protocol interfaces for data layer operations.
These protocols enable dependency injection for database operations,
making the pipeline and services testable without real database connections.

Protocols defined:
- ItemStore: Interface for scraped items, the publish queue and the runtime config
"""

from typing import Protocol, Optional, List, Dict, Any, Iterable, Tuple, Sequence

from data.models import ItemStatus, QueueItem, ScrapedItem


class ItemStore(Protocol):
    """Protocol defining the interface for curation storage operations.

    Implementations should provide methods for:
    - Finding, inserting and updating scraped items
    - Maintaining the ordered publish queue
    - Retention cleanup and similarity corpus queries
    - Loading and saving the runtime configuration document

    This protocol abstracts database operations, allowing services to work
    with any compatible storage backend (real database, in-memory fake, etc.).
    """

    # ----- scraped items -------------------------------------------------

    def find_item_by_post_id(self, post_id: str) -> Optional[ScrapedItem]:
        """Return the item created from a source post, or None if never seen."""
        ...

    def get_item(self, item_id: int) -> Optional[ScrapedItem]:
        """Return a scraped item by its primary key."""
        ...

    def list_items(self, statuses: Optional[Iterable[ItemStatus]] = None) -> List[ScrapedItem]:
        """Return items, newest first, optionally filtered by status."""
        ...

    def insert_item(self, item: ScrapedItem) -> ScrapedItem:
        """Insert a scraped item and return it with its id and timestamp set.

        Raises:
            QueryError: If the insert failed.
        """
        ...

    def update_item_status(self, item_id: int, status: ItemStatus, reason: Optional[str] = None) -> bool:
        """Change an item's status; ``reason`` is stored as rejection or approval reason."""
        ...

    def update_item_content(self, item_id: int, content: str) -> bool:
        """Replace an item's processed content."""
        ...

    def delete_items(self, item_ids: Sequence[int]) -> int:
        """Hard-delete items and return how many were removed."""
        ...

    def delete_older_than(self, statuses: Iterable[ItemStatus], days: float) -> int:
        """Delete items in the given statuses scraped more than ``days`` ago."""
        ...

    def get_content_by_status(self, statuses: Iterable[ItemStatus],
                              since_days: Optional[float] = None) -> List[str]:
        """Distinct processed (or original) content of items in the given statuses."""
        ...

    # ----- publish queue -------------------------------------------------

    def get_queue(self) -> List[QueueItem]:
        """Queue items ordered by position, each with its scraped item attached."""
        ...

    def get_queue_item(self, queue_id: int) -> Optional[QueueItem]:
        ...

    def count_queue(self) -> int:
        ...

    def shift_queue_positions(self, offset: int = 1) -> bool:
        """Add ``offset`` to every queue position in one operation."""
        ...

    def insert_queue_item(self, queue_item: QueueItem) -> QueueItem:
        ...

    def update_queue_positions(self, positions: Iterable[Tuple[int, int]]) -> bool:
        """Apply ``(queue_id, position)`` pairs."""
        ...

    def update_queue_item(self, queue_id: int, custom_text: Optional[str] = None,
                          scheduled_at: Any = None, clear_schedule: bool = False) -> bool:
        ...

    def delete_queue_item(self, queue_id: int) -> bool:
        ...

    def delete_queue_items_for(self, item_ids: Sequence[int]) -> int:
        """Remove queue entries wrapping the given scraped items."""
        ...

    # ----- runtime configuration ----------------------------------------

    def load_config(self) -> Optional[Dict[str, Any]]:
        """Return the stored runtime configuration document, or None."""
        ...

    def save_config(self, config: Dict[str, Any]) -> bool:
        ...
