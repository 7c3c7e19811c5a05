"""
Tweet Curator Application

This is the main entry point for the Tweet Curator application.
It scrapes the home timeline, scores and rewrites posts with AI, keeps the
publish queue and publishes it on a schedule.

Commands:
    scrape [--count N]      Run the scrape-and-triage pipeline, printing one JSON event per line
    abort / reset-abort     Set or clear the abort flag of a running scrape
    publish [--loop]        Publish the head of the queue once, or run the auto-publish loop
    cleanup [--days N]      Delete old rejected and published items
    report [--limit N]      Show recently rejected items
"""

import sys
import signal
import argparse
import logging
from typing import Optional, List

from config import settings
from config.app_config import AppConfig
from config.validators import validate_settings, get_config_summary
from utils.logger import get_logger, setup_file_logging
from utils.exceptions import CuratorError, ConfigurationError
from data.database import db
from services.ai_service import ContentClassifier
from services.ingestion_pipeline import IngestionPipeline, CLEANUP_STATUSES, format_event
from services.publish_service import PublishService, PublishScheduler
from services.run_control import RunControl
from services.similarity import SimilarityFilter

# Set up logging
logger = get_logger(__name__)


class TweetCurator:
    """
    Main application class for the Tweet Curator.

    Wires the store, the AI classifier, the X/BlueSky clients and the run
    control together for the CLI commands.
    """

    def __init__(self, store=None, run_control: Optional[RunControl] = None):
        self.store = store or db
        self.run_control = run_control or RunControl(flag_file=settings.ABORT_FLAG_FILE)
        self._twitter = None

    @property
    def twitter(self):
        if self._twitter is None:
            from services.twitter_service import TwitterService
            self._twitter = TwitterService()
        return self._twitter

    def build_pipeline(self) -> IngestionPipeline:
        return IngestionPipeline(
            store=self.store,
            fetcher=self.twitter,
            classifier=ContentClassifier(),
            similarity=SimilarityFilter(),
            run_control=self.run_control,
        )

    def build_scheduler(self) -> PublishScheduler:
        cross_poster = None
        if settings.ENABLE_BLUESKY:
            from services.social_service import SocialService
            cross_poster = SocialService()
        service = PublishService(self.store, self.twitter, cross_poster=cross_poster)
        return PublishScheduler(service, self.store, run_control=self.run_control)

    # ----- commands -------------------------------------------------------

    def scrape(self, count: Optional[int] = None, out=None) -> bool:
        """
        Run the pipeline and stream its events to ``out``.

        Returns:
            bool: True if the run completed without item errors.
        """
        out = out or sys.stdout
        pipeline = self.build_pipeline()

        def on_interrupt(signum, frame):
            self.run_control.request_abort()

        previous = signal.signal(signal.SIGINT, on_interrupt)
        success = False
        try:
            for event in pipeline.run(count):
                out.write(format_event(event))
                out.flush()
                if event["type"] == "complete":
                    success = event["results"]["errors"] == 0
                elif event["type"] == "error":
                    success = False
        finally:
            signal.signal(signal.SIGINT, previous)
        return success

    def abort(self) -> bool:
        self.run_control.request_abort()
        return True

    def reset_abort(self) -> bool:
        self.run_control.clear_abort()
        return True

    def publish(self, loop: bool = False) -> bool:
        scheduler = self.build_scheduler()
        if not loop:
            queue = self.store.get_queue()
            if not queue:
                logger.info("Queue is empty, nothing to publish")
                return True
            result = scheduler.publish_now(queue[0].id)
            print(format_event({"type": "publish", **result.to_dict()}), end="")
            return result.success

        self.run_control.clear_abort()
        if scheduler.running:
            logger.info(f"Resuming auto-publish, next publish at {scheduler.next_publish_time.isoformat()}")
        elif not scheduler.start():
            return False
        scheduler.run_forever(settings.PUBLISH_POLL_SECONDS)
        return True

    def cleanup(self, days: Optional[float] = None) -> bool:
        if days is None:
            days = AppConfig.from_dict(self.store.load_config()).auto_delete_after_days
        deleted = self.store.delete_older_than(CLEANUP_STATUSES, days)
        logger.info(f"Cleanup deleted {deleted} items older than {days} days")
        return True

    def report(self, limit: int = settings.DEFAULT_REPORT_LIMIT) -> bool:
        df = self.store.get_rejection_report(limit)
        if df is None:
            logger.error("Could not build the rejection report")
            return False
        if df.empty:
            print("No rejected items")
            return True
        print(df.to_string(index=False))
        print()
        print(df.groupby('Rejection_Reason').size().sort_values(ascending=False).to_string())
        return True


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Tweet Curator Application')
    parser.add_argument('--log-file', type=str, default='tweet_curator.log', help='Log file path')
    parser.add_argument('--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default='INFO', help='Logging level')

    subparsers = parser.add_subparsers(dest='command', required=True)

    scrape = subparsers.add_parser('scrape', help='Run the scrape-and-triage pipeline')
    scrape.add_argument('--count', type=int, default=None, help='Number of posts to fetch')

    subparsers.add_parser('abort', help='Ask the running scrape to stop')
    subparsers.add_parser('reset-abort', help='Clear the abort flag')

    publish = subparsers.add_parser('publish', help='Publish the head of the queue')
    publish.add_argument('--loop', action='store_true', help='Keep publishing on the configured interval')

    cleanup = subparsers.add_parser('cleanup', help='Delete old rejected and published items')
    cleanup.add_argument('--days', type=float, default=None, help='Retention window in days')

    report = subparsers.add_parser('report', help='Show recently rejected items')
    report.add_argument('--limit', type=int, default=settings.DEFAULT_REPORT_LIMIT, help='Maximum rows')

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    # Parse command line arguments
    args = parse_arguments(argv)

    # Set up logging
    log_level = getattr(logging, args.log_level)
    setup_file_logging(args.log_file, log_level)

    logger.info(f"Starting Tweet Curator: {args.command}")

    try:
        curator = TweetCurator()

        if args.command == 'abort':
            success = curator.abort()
        elif args.command == 'reset-abort':
            success = curator.reset_abort()
        else:
            validate_settings()
            logger.debug(f"Configuration: {get_config_summary()}")
            if args.command == 'scrape':
                success = curator.scrape(args.count)
            elif args.command == 'publish':
                success = curator.publish(loop=args.loop)
            elif args.command == 'cleanup':
                success = curator.cleanup(args.days)
            else:
                success = curator.report(args.limit)

        # Report status
        if success:
            logger.info("Tweet Curator completed successfully")
            exit_code = 0
        else:
            logger.warning("Tweet Curator completed with warnings or errors")
            exit_code = 1

    except ConfigurationError as e:
        logger.error(str(e))
        exit_code = 1
    except CuratorError as e:
        logger.error(f"Tweet Curator error: {e}", exc_info=True)
        exit_code = 1
    except Exception as e:
        logger.error(f"Unhandled exception in Tweet Curator: {e}", exc_info=True)
        exit_code = 2
    finally:
        db.close()

    # Log application end
    logger.info(f"Tweet Curator application finished with exit code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
