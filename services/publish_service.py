"""
Publish Service Module

Publishes queue entries to X (and optionally BlueSky) and drives the
auto-publish schedule: the head of the queue is posted every
``publishIntervalMinutes`` until the queue is empty or the schedule is stopped.
The next publish time is kept in the runtime config so a restarted process
picks the schedule up where it was.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

from config.app_config import AppConfig
from data.models import ItemStatus, PublishResult
from data.protocols import ItemStore
from services.curation_service import check_length, compact_queue
from services.protocols import Publisher
from services.run_control import RunControl
from utils.exceptions import ItemNotFoundError
from utils.helpers import ensure_aware, utc_now
from utils.logger import get_logger

logger = get_logger(__name__)


class PublishService:
    """Posts queue entries and retires them from the queue."""

    def __init__(self, store: ItemStore, publisher: Publisher,
                 cross_poster: Optional[Publisher] = None):
        """
        Args:
            store: Items and queue.
            publisher: The primary platform (X).
            cross_poster: Optional mirror platform (BlueSky); its failures never fail a publish.
        """
        self.store = store
        self.publisher = publisher
        self.cross_poster = cross_poster

    def publish_queue_item(self, queue_id: int, text: Optional[str] = None) -> PublishResult:
        """
        Publish one queue entry.

        Args:
            queue_id: The queue entry.
            text: Text to post; defaults to the entry's custom text.

        Returns:
            PublishResult: The platform id on success. On failure the queue and
            the item are left untouched.

        Raises:
            ItemNotFoundError: If the queue entry does not exist.
            ContentTooLongError: If the text exceeds the post limit.
        """
        queue_item = self.store.get_queue_item(queue_id)
        if queue_item is None:
            raise ItemNotFoundError(f"Queue item {queue_id} not found")

        text = check_length(text if text is not None else queue_item.custom_text)
        item = queue_item.item or self.store.get_item(queue_item.scraped_item_id)
        media_urls = item.media_urls if item else []

        result = self.publisher.publish(text, media_urls or None)
        if not result.success:
            logger.error(f"Publishing queue item {queue_id} failed: {result.error}")
            return result

        if not self.store.delete_queue_item(queue_id):
            logger.error(f"Published queue item {queue_id} but could not remove it from the queue")
        compact_queue(self.store)
        if item is not None:
            self.store.update_item_status(item.id, ItemStatus.PUBLISHED)
        logger.info(f"Published queue item {queue_id} as {result.id}")

        if self.cross_poster is not None:
            try:
                mirror = self.cross_poster.publish(text, media_urls or None)
                if not mirror.success:
                    logger.warning(f"Cross-post failed: {mirror.error}")
            except Exception as e:
                logger.warning(f"Cross-post failed: {e}")

        return result


class PublishScheduler:
    """Publishes the head of the queue at the configured cadence."""

    def __init__(self, publish_service: PublishService, store: ItemStore,
                 run_control: Optional[RunControl] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.publish_service = publish_service
        self.store = store
        self.run_control = run_control or RunControl()
        self.clock = clock

    # ----- persisted schedule --------------------------------------------

    def _config(self) -> AppConfig:
        return AppConfig.from_dict(self.store.load_config())

    @property
    def next_publish_time(self) -> Optional[datetime]:
        value = self._config().next_publish_at
        return ensure_aware(value) if value else None

    @property
    def running(self) -> bool:
        return self.next_publish_time is not None

    def _set_next_publish_time(self, when: Optional[datetime]) -> None:
        config = self._config()
        config.next_publish_time = when.isoformat() if when else None
        self.store.save_config(config.to_dict())

    def _interval(self) -> timedelta:
        return timedelta(minutes=self._config().publish_interval_minutes)

    # ----- control --------------------------------------------------------

    def _publish_head(self) -> Optional[PublishResult]:
        queue = self.store.get_queue()
        if not queue:
            return None
        head = queue[0]
        try:
            return self.publish_service.publish_queue_item(head.id)
        except Exception as e:
            logger.error(f"Publishing queue head {head.id} failed: {e}")
            return PublishResult(success=False, error=str(e))

    def start(self) -> bool:
        """
        Publish the head of the queue now and schedule the next one.

        Returns:
            bool: False if the queue was empty or the publish failed.
        """
        result = self._publish_head()
        if result is None:
            logger.info("Queue is empty, auto-publish not started")
            return False
        if not result.success:
            self.stop()
            return False
        next_time = self.clock() + self._interval()
        self._set_next_publish_time(next_time)
        logger.info(f"Auto-publish started, next publish at {next_time.isoformat()}")
        return True

    def stop(self) -> None:
        self._set_next_publish_time(None)
        logger.info("Auto-publish stopped")

    def tick(self, now: Optional[datetime] = None) -> Optional[PublishResult]:
        """
        Publish the head of the queue if it is due.

        Returns:
            Optional[PublishResult]: The publish outcome, or None when nothing was due.
        """
        next_time = self.next_publish_time
        if next_time is None:
            return None
        now = now or self.clock()
        if now < next_time:
            return None

        result = self._publish_head()
        if result is None:
            logger.info("Queue is empty, stopping auto-publish")
            self.stop()
            return None
        if not result.success:
            self.stop()
            return result
        self._set_next_publish_time(now + self._interval())
        return result

    def publish_now(self, queue_id: int, text: Optional[str] = None) -> PublishResult:
        """Manual override; the schedule is left as it is."""
        return self.publish_service.publish_queue_item(queue_id, text)

    def estimated_publish_time(self, position: int, now: Optional[datetime] = None) -> datetime:
        """When the entry at ``position`` should go out if the schedule holds."""
        base = self.next_publish_time or now or self.clock()
        return base + position * self._interval()

    def run_forever(self, poll_seconds: float, max_ticks: Optional[int] = None) -> None:
        """Drive ``tick`` until the schedule stops or an abort is requested."""
        ticks = 0
        while self.running:
            self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                return
            if self.run_control.interruptible_sleep(poll_seconds):
                logger.info("Auto-publish loop interrupted")
                return
