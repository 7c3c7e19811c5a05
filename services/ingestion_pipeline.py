"""
Ingestion Pipeline Module

The scrape-and-triage run: fetch posts from the timeline, drop the ones that
are too old or already known, classify and rewrite the rest, suppress
near-duplicates, persist the results and auto-queue the best ones.

A run is a generator of event dictionaries so the caller can stream progress
as it happens. Every run ends with exactly one ``complete`` or ``error`` event.
"""

import json
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from config import settings
from config.app_config import AppConfig
from data.models import CandidatePost, ItemStatus, QueueItem, ScrapedItem
from data.protocols import ItemStore
from services.ai_service import ContentClassifier
from services.protocols import Fetcher
from services.run_control import DisconnectCheck, RunControl
from services.similarity import SimilarityFilter
from utils.exceptions import CuratorError, RunInProgressError
from utils.helpers import days_ago, ensure_aware, ensure_urls_included, smart_truncate, utc_now
from utils.logger import get_logger

logger = get_logger(__name__)

Event = Dict[str, Any]

# Statuses that the retention cleanup may delete
CLEANUP_STATUSES = (ItemStatus.REJECTED, ItemStatus.PUBLISHED)

CANCELLED_MESSAGE = "Scraping cancelled by user"
COMPLETED_MESSAGE = "Scraping completed"


def format_event(event: Event) -> str:
    """Frame one event for the progress stream: a JSON object on its own line."""
    return json.dumps(event, default=str, ensure_ascii=False) + "\n"


def new_counters() -> Dict[str, int]:
    return {
        "processed": 0,
        "approved": 0,
        "rejected": 0,
        "duplicates": 0,
        "skipped": 0,
        "similar": 0,
        "autoQueued": 0,
        "breakingNews": 0,
        "errors": 0,
    }


def resolve_count(requested: Any, default: int) -> int:
    """A positive integer request count, or the default."""
    try:
        count = int(requested)
    except (TypeError, ValueError):
        return default
    return count if count > 0 else default


class IngestionPipeline:
    """Runs scrape-and-triage passes over the source timeline."""

    def __init__(self, store: ItemStore, fetcher: Fetcher,
                 classifier: Optional[ContentClassifier] = None,
                 similarity: Optional[SimilarityFilter] = None,
                 run_control: Optional[RunControl] = None,
                 clock: Callable[[], Any] = utc_now):
        """
        Args:
            store: Persistence for items, queue and runtime config.
            fetcher: Source of candidate posts.
            classifier: Scores and rewrites posts.
            similarity: Near-duplicate detector.
            run_control: Abort flag, waits and the single run slot.
            clock: Returns the current aware datetime.
        """
        self.store = store
        self.fetcher = fetcher
        self.classifier = classifier or ContentClassifier()
        self.similarity = similarity or SimilarityFilter()
        self.run_control = run_control or RunControl()
        self.clock = clock

    # =========================================================================
    # Run
    # =========================================================================

    def run(self, requested_count: Any = None,
            config: Union[AppConfig, Dict[str, Any], None] = None,
            is_disconnected: DisconnectCheck = None,
            reset_abort: bool = True) -> Iterator[Event]:
        """
        Execute one scrape run.

        Args:
            requested_count: Posts to request; non-positive or missing uses the configured count.
            config: Runtime configuration; loaded from the store when None.
            is_disconnected: Returns True once the consumer has gone away.
            reset_abort: Clear a stale abort flag before starting.

        Yields:
            Event: ``status``, ``start``, ``processing``, ``progress`` and finally
            one ``complete`` or ``error`` event.
        """
        try:
            with self.run_control.run_slot():
                if reset_abort:
                    self.run_control.clear_abort()
                yield from self._run(requested_count, config, is_disconnected)
        except RunInProgressError as e:
            logger.warning(str(e))
            yield {"type": "error", "success": False, "message": str(e)}

    def _run(self, requested_count: Any, config: Union[AppConfig, Dict[str, Any], None],
             is_disconnected: DisconnectCheck) -> Iterator[Event]:
        try:
            yield {"type": "status", "message": "Loading configuration..."}
            config = self.load_config(config)
            count = resolve_count(requested_count, config.tweets_per_scrape or settings.DEFAULT_SCRAPE_COUNT)

            yield {"type": "status", "message": "Cleaning up old items..."}
            self.cleanup(config.auto_delete_after_days)

            yield {"type": "status", "message": f"Fetching {count} posts..."}
            fetched = self.fetcher.fetch_recent_posts(count)
            fetched_count = len(fetched)
            if fetched_count < count:
                yield {"type": "status", "message": f"Timeline returned {fetched_count} of {count} requested"}

            candidates = self.filter_by_age(fetched, config.max_tweet_age_days)
            filtered_out = fetched_count - len(candidates)
            total = len(candidates)

            details = []
            if fetched_count < count:
                details.append(f"fetched {fetched_count}/{count}")
            if filtered_out:
                details.append(f"-{filtered_out} too old")
            message = f"Processing {total} posts" + (f" ({', '.join(details)})" if details else "")
            yield {
                "type": "start",
                "total": total,
                "requested": count,
                "fetched": fetched_count,
                "filteredByAge": filtered_out,
                "message": message,
            }

            corpus: List[str] = []
            if config.check_similar_content:
                yield {"type": "status", "message": "Loading existing content for duplicate checks..."}
                corpus = self.load_corpus()

            yield from self._process_all(candidates, config, corpus, is_disconnected)

        except CuratorError as e:
            logger.error(f"Scrape run failed: {e}")
            yield {"type": "error", "success": False, "message": str(e)}
        except Exception as e:
            logger.exception(f"Unexpected error during scrape run: {e}")
            yield {"type": "error", "success": False, "message": str(e) or e.__class__.__name__}

    def _process_all(self, candidates: List[CandidatePost], config: AppConfig,
                     corpus: List[str], is_disconnected: DisconnectCheck) -> Iterator[Event]:
        results = new_counters()
        total = len(candidates)
        current = 0

        for index, post in enumerate(candidates):
            if index > 0 and self.run_control.random_delay(is_disconnected):
                logger.info(f"Run cancelled after {current} of {total} posts")
                yield self._complete(results, current, total, cancelled=True)
                return
            if self.run_control.should_stop(is_disconnected):
                logger.info(f"Run cancelled after {current} of {total} posts")
                yield self._complete(results, current, total, cancelled=True)
                return

            current = index + 1
            yield from self._process_one(post, current, total, config, corpus, results)

        logger.info(f"Run complete: {results}")
        yield self._complete(results, current, total, cancelled=False)

    def _complete(self, results: Dict[str, int], current: int, total: int, cancelled: bool) -> Event:
        return {
            "type": "complete",
            "success": True,
            "cancelled": cancelled,
            "current": current,
            "total": total,
            "message": CANCELLED_MESSAGE if cancelled else COMPLETED_MESSAGE,
            "results": dict(results),
        }

    def _progress(self, post: CandidatePost, current: int, total: int,
                  results: Dict[str, int], status: str, **extra) -> Event:
        event = {
            "type": "progress",
            "current": current,
            "total": total,
            "percent": round(current * 100 / total) if total else 100,
            "status": status,
            "author": post.author_handle,
            "results": dict(results),
            "originalContent": post.text[:settings.PREVIEW_LENGTH],
        }
        event.update({k: v for k, v in extra.items() if v is not None})
        return event

    # =========================================================================
    # Per item
    # =========================================================================

    def _process_one(self, post: CandidatePost, current: int, total: int, config: AppConfig,
                     corpus: List[str], results: Dict[str, int]) -> Iterator[Event]:
        try:
            if self.store.find_item_by_post_id(post.post_id):
                results["duplicates"] += 1
                logger.debug(f"Duplicate post {post.post_id} from {post.author_handle}")
                yield self._progress(post, current, total, results, "duplicate")
                return

            yield {
                "type": "processing",
                "current": current,
                "total": total,
                "percent": round(current * 100 / total) if total else 100,
                "message": f"Analyzing with AI: {post.author_handle}",
                "author": post.author_handle,
                "results": dict(results),
            }

            analysis = self.classifier.classify(post.full_text(), config)
            processed = self.finalize_text(analysis.paraphrase or post.text, post.source_text())

            if config.check_similar_content and not analysis.should_reject and corpus:
                if self.similarity.is_similar(processed, corpus):
                    results["similar"] += 1
                    logger.info(f"Similar content already exists, skipping {post.author_handle}")
                    yield self._progress(
                        post, current, total, results, "similar",
                        message="Similar content already exists",
                        processedContent=processed[:settings.PREVIEW_LENGTH],
                        relevance=analysis.relevance,
                    )
                    return

            if not analysis.should_reject:
                corpus.append(processed)

            auto_queue = not analysis.should_reject and (
                (config.auto_publish_enabled and analysis.relevance >= config.auto_publish_min_score)
                or (config.auto_approve_enabled and analysis.relevance >= config.min_relevance_score)
            )
            if analysis.should_reject:
                status = ItemStatus.REJECTED
            elif auto_queue:
                status = ItemStatus.APPROVED
            else:
                status = ItemStatus.PENDING

            item = self.store.insert_item(ScrapedItem(
                post_id=post.post_id,
                author_username=post.author_username,
                author_name=post.author_name or post.author_username,
                author_avatar=post.author_avatar_url,
                original_content=post.text,
                processed_content=processed,
                original_url=post.url,
                relevance_score=analysis.relevance,
                ai_summary=analysis.summary,
                ai_model=analysis.model_used,
                rejection_reason=analysis.rejection_reason,
                status=status,
                media=list(post.media),
                is_breaking_news=analysis.is_breaking_news,
            ))

            queued = False
            if auto_queue:
                queued = self.enqueue(item, processed, analysis.is_breaking_news)
                if queued:
                    results["autoQueued"] += 1
                    if analysis.is_breaking_news:
                        results["breakingNews"] += 1

            results["processed"] += 1
            if analysis.should_reject:
                results["rejected"] += 1
                display_status = "rejected"
                logger.info(f"Rejected {post.author_handle}: {analysis.rejection_reason}")
            else:
                results["approved"] += 1
                if queued and analysis.is_breaking_news:
                    display_status = "breaking-news"
                elif queued:
                    display_status = "auto-queued"
                else:
                    display_status = "approved"

            yield self._progress(
                post, current, total, results, display_status,
                relevance=analysis.relevance,
                isBreakingNews=analysis.is_breaking_news,
                processedContent=processed[:settings.PREVIEW_LENGTH],
                rejectionReason=analysis.rejection_reason,
                modelUsed=analysis.model_used,
            )

        except Exception as e:
            results["errors"] += 1
            logger.error(f"Error processing post {post.post_id} from {post.author_handle}: {e}")
            yield self._progress(post, current, total, results, "error", errorMessage=str(e))

    # =========================================================================
    # Steps
    # =========================================================================

    def load_config(self, config: Union[AppConfig, Dict[str, Any], None] = None) -> AppConfig:
        """
        Resolve the runtime configuration for a run.

        Raises:
            ConfigurationError: If the configuration is unusable.
        """
        if isinstance(config, AppConfig):
            return config.validate()
        if config is None:
            stored = self.store.load_config()
            if stored is None:
                logger.info("No stored configuration, saving defaults")
                config_obj = AppConfig()
                self.store.save_config(config_obj.to_dict())
                return config_obj.validate()
            config = stored
        return AppConfig.from_dict(config).validate()

    def cleanup(self, retention_days: float) -> int:
        """Delete rejected and published items older than the retention window (best effort)."""
        try:
            deleted = self.store.delete_older_than(CLEANUP_STATUSES, retention_days)
            if deleted:
                logger.info(f"Cleanup deleted {deleted} items older than {retention_days} days")
            return deleted
        except Exception as e:
            logger.error(f"Cleanup failed, continuing: {e}")
            return 0

    def filter_by_age(self, posts: List[CandidatePost], max_age_days: float) -> List[CandidatePost]:
        """Keep posts created at or after ``now - max_age_days``, in fetch order."""
        cutoff = days_ago(max_age_days, self.clock())
        return [p for p in posts if ensure_aware(p.created_at) >= cutoff]

    def load_corpus(self) -> List[str]:
        """Recently published content plus everything pending or approved."""
        try:
            published = self.store.get_content_by_status([ItemStatus.PUBLISHED],
                                                         since_days=settings.PUBLISHED_LOOKBACK_DAYS)
            open_items = self.store.get_content_by_status([ItemStatus.PENDING, ItemStatus.APPROVED])
            return list(published) + list(open_items)
        except Exception as e:
            logger.error(f"Could not load similarity corpus, checking within this run only: {e}")
            return []

    @staticmethod
    def finalize_text(text: str, source_text: str) -> str:
        """Restore dropped URLs, then fit the text in one post."""
        limit = settings.TWITTER_CHARACTER_LIMIT
        with_urls = ensure_urls_included(text, source_text)
        return smart_truncate(with_urls, limit, settings.MIN_PROSE_LENGTH)

    def enqueue(self, item: ScrapedItem, text: str, breaking_news: bool) -> bool:
        """
        Add an auto-approved item to the publish queue.

        Breaking news goes to position 0 after every other entry moved down by
        one; anything else is appended.

        Returns:
            bool: True if the queue entry was created.
        """
        try:
            if breaking_news:
                if not self.store.shift_queue_positions(1):
                    logger.error(f"Could not shift queue for breaking news item {item.id}")
                    return False
                position = 0
            else:
                position = self.store.count_queue()
            self.store.insert_queue_item(QueueItem(scraped_item_id=item.id, custom_text=text, position=position))
            if breaking_news:
                logger.info(f"Breaking news added to front of queue: {text[:50]}...")
            return True
        except Exception as e:
            logger.error(f"Could not queue item {item.id}: {e}")
            return False
