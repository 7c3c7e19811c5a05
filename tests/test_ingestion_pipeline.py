"""
Tests for services/ingestion_pipeline.py

Tests cover:
- Event stream shape and terminal events
- Duplicate detection without classification
- Age filtering, similarity suppression and auto-queueing
- Breaking news queue preemption
- Cancellation and per-item error recovery
- Fatal fetch and configuration errors
"""

import json
import pytest
from datetime import timedelta

from conftest import NOW, FakeClassifier, FakeFetcher, InMemoryStore
from config.app_config import AppConfig
from data.models import ItemStatus, QueueItem
from services.ai_service import ClassificationResult
from services.ingestion_pipeline import IngestionPipeline, format_event, resolve_count
from utils.exceptions import ClassificationError


def make_pipeline(store, fetcher, classifier, run_control):
    return IngestionPipeline(store=store, fetcher=fetcher, classifier=classifier,
                             run_control=run_control, clock=lambda: NOW)


def of_type(events, event_type):
    return [e for e in events if e["type"] == event_type]


# =============================================================================
# Helper Function Tests
# =============================================================================

class TestHelpers:
    """Tests for module-level helpers."""

    def test_resolve_count_uses_positive_integer(self):
        assert resolve_count(5, 30) == 5
        assert resolve_count("12", 30) == 12

    def test_resolve_count_defaults(self):
        assert resolve_count(None, 30) == 30
        assert resolve_count(0, 30) == 30
        assert resolve_count(-4, 30) == 30
        assert resolve_count("many", 30) == 30

    def test_format_event_is_one_json_line(self):
        line = format_event({"type": "status", "message": "Cargando configuración"})
        assert line.endswith("\n")
        assert line.count("\n") == 1
        assert json.loads(line) == {"type": "status", "message": "Cargando configuración"}


# =============================================================================
# Run Tests
# =============================================================================

class TestRun:
    """Tests for a complete pipeline run."""

    def test_run_ends_with_single_complete_event(self, memory_store, fake_classifier,
                                                 run_control, candidate_post_factory):
        fetcher = FakeFetcher([candidate_post_factory() for _ in range(3)])
        pipeline = make_pipeline(memory_store, fetcher, fake_classifier, run_control)

        events = list(pipeline.run(3, AppConfig()))

        assert events[-1]["type"] == "complete"
        assert len(of_type(events, "complete")) == 1
        assert not of_type(events, "error")
        assert events[-1]["results"]["processed"] == 3
        assert events[-1]["results"]["approved"] == 3
        assert len(memory_store.items) == 3

    def test_start_event_reports_totals(self, memory_store, fake_classifier,
                                        run_control, candidate_post_factory):
        posts = [candidate_post_factory(), candidate_post_factory(created_at=NOW - timedelta(days=5))]
        pipeline = make_pipeline(memory_store, FakeFetcher(posts), fake_classifier, run_control)

        events = list(pipeline.run(4, AppConfig(max_tweet_age_days=2)))
        start = of_type(events, "start")[0]

        assert start["requested"] == 4
        assert start["fetched"] == 2
        assert start["filteredByAge"] == 1
        assert start["total"] == 1
        assert any("2 of 4" in e["message"] for e in of_type(events, "status"))

    def test_old_posts_are_not_processed(self, memory_store, fake_classifier,
                                         run_control, candidate_post_factory):
        old = candidate_post_factory(text="ancient history post", created_at=NOW - timedelta(days=3))
        pipeline = make_pipeline(memory_store, FakeFetcher([old]), fake_classifier, run_control)

        list(pipeline.run(1, AppConfig(max_tweet_age_days=2)))

        assert fake_classifier.calls == []
        assert memory_store.items == {}

    def test_defaults_to_configured_count(self, memory_store, fake_classifier, run_control):
        fetcher = FakeFetcher([])
        pipeline = make_pipeline(memory_store, fetcher, fake_classifier, run_control)

        list(pipeline.run(None, AppConfig(tweets_per_scrape=12)))

        assert fetcher.calls == [12]

    def test_progress_events_in_fetch_order(self, memory_store, fake_classifier,
                                            run_control, candidate_post_factory):
        posts = [candidate_post_factory(author_username=f"user{i}") for i in range(4)]
        pipeline = make_pipeline(memory_store, FakeFetcher(posts), fake_classifier, run_control)

        events = list(pipeline.run(4, AppConfig()))
        progress = of_type(events, "progress")

        assert [e["current"] for e in progress] == [1, 2, 3, 4]
        assert [e["author"] for e in progress] == ["@user0", "@user1", "@user2", "@user3"]
        assert progress[-1]["percent"] == 100

    def test_waits_between_items_but_not_before_first(self, memory_store, fake_classifier,
                                                      fake_clock, run_control, candidate_post_factory):
        pipeline = make_pipeline(memory_store, FakeFetcher([candidate_post_factory()]),
                                 fake_classifier, run_control)

        list(pipeline.run(1, AppConfig()))

        assert fake_clock.sleeps == []

    def test_delay_polls_at_sub_second_granularity(self, memory_store, fake_classifier,
                                                   fake_clock, run_control, candidate_post_factory):
        posts = [candidate_post_factory(), candidate_post_factory()]
        pipeline = make_pipeline(memory_store, FakeFetcher(posts), fake_classifier, run_control)

        list(pipeline.run(2, AppConfig()))

        assert 1.5 - 1e-9 <= sum(fake_clock.sleeps) <= 3.0 + 1e-9
        assert max(fake_clock.sleeps) <= 0.2 + 1e-9


# =============================================================================
# Duplicate Tests
# =============================================================================

class TestDuplicates:
    """Tests for dedupe by stable post id."""

    def test_known_post_is_never_classified(self, memory_store, fake_classifier,
                                            run_control, candidate_post_factory, scraped_item_factory):
        memory_store.add_item(scraped_item_factory(post_id="777"))
        known = candidate_post_factory(post_id="777", text="already seen text")
        fresh = candidate_post_factory(post_id="778", text="brand new text")
        pipeline = make_pipeline(memory_store, FakeFetcher([known, fresh]), fake_classifier, run_control)

        events = list(pipeline.run(2, AppConfig()))

        assert fake_classifier.calls == ["brand new text"]
        assert events[-1]["results"]["duplicates"] == 1
        assert of_type(events, "progress")[0]["status"] == "duplicate"

    def test_second_run_is_all_duplicates(self, memory_store, fake_classifier,
                                          run_control, candidate_post_factory):
        posts = [candidate_post_factory() for _ in range(3)]
        pipeline = make_pipeline(memory_store, FakeFetcher(posts), fake_classifier, run_control)

        list(pipeline.run(3, AppConfig()))
        inserted = len(memory_store.insert_calls)
        second = list(pipeline.run(3, AppConfig()))

        assert second[-1]["results"]["duplicates"] == 3
        assert len(memory_store.insert_calls) == inserted
        assert len(fake_classifier.calls) == 3


# =============================================================================
# Classification Outcome Tests
# =============================================================================

class TestOutcomes:
    """Tests for status assignment, similarity and text post-processing."""

    def test_rejected_item_is_persisted_as_rejected(self, memory_store, run_control, candidate_post_factory):
        classifier = FakeClassifier(ClassificationResult(
            relevance=3, should_reject=True, rejection_reason="Insufficient relevance: 3/7",
            paraphrase="meh", model_used="m"))
        pipeline = make_pipeline(memory_store, FakeFetcher([candidate_post_factory()]), classifier, run_control)

        events = list(pipeline.run(1, AppConfig()))
        item = list(memory_store.items.values())[0]

        assert item.status == ItemStatus.REJECTED
        assert item.rejection_reason == "Insufficient relevance: 3/7"
        assert of_type(events, "progress")[0]["status"] == "rejected"
        assert events[-1]["results"]["rejected"] == 1

    def test_pending_when_auto_queue_disabled(self, memory_store, fake_classifier,
                                              run_control, candidate_post_factory):
        pipeline = make_pipeline(memory_store, FakeFetcher([candidate_post_factory()]),
                                 fake_classifier, run_control)

        list(pipeline.run(1, AppConfig()))

        assert list(memory_store.items.values())[0].status == ItemStatus.PENDING
        assert memory_store.queue == {}

    def test_auto_approve_appends_to_queue(self, memory_store, fake_classifier,
                                           run_control, candidate_post_factory, scraped_item_factory):
        existing = memory_store.add_item(scraped_item_factory(status=ItemStatus.APPROVED))
        memory_store.insert_queue_item(QueueItem(scraped_item_id=existing.id, custom_text="x", position=0))
        pipeline = make_pipeline(memory_store, FakeFetcher([candidate_post_factory()]),
                                 fake_classifier, run_control)

        events = list(pipeline.run(1, AppConfig(auto_approve_enabled=True)))
        new_item = [i for i in memory_store.items.values() if i.id != existing.id][0]

        assert new_item.status == ItemStatus.APPROVED
        assert memory_store.positions() == {existing.id: 0, new_item.id: 1}
        assert of_type(events, "progress")[0]["status"] == "auto-queued"
        assert events[-1]["results"]["autoQueued"] == 1

    def test_auto_publish_needs_its_own_threshold(self, memory_store, run_control, candidate_post_factory):
        classifier = FakeClassifier(ClassificationResult(relevance=8, paraphrase="good", model_used="m"))
        pipeline = make_pipeline(memory_store, FakeFetcher([candidate_post_factory()]), classifier, run_control)

        list(pipeline.run(1, AppConfig(auto_publish_enabled=True, auto_publish_min_score=9)))

        assert list(memory_store.items.values())[0].status == ItemStatus.PENDING

    def test_breaking_news_preempts_queue(self, memory_store, run_control,
                                          candidate_post_factory, scraped_item_factory):
        before = []
        for position in range(3):
            item = memory_store.add_item(scraped_item_factory(status=ItemStatus.APPROVED))
            memory_store.insert_queue_item(QueueItem(scraped_item_id=item.id, custom_text="q", position=position))
            before.append(item.id)
        classifier = FakeClassifier(ClassificationResult(
            relevance=10, is_breaking_news=True, paraphrase="GPT-9 just launched", model_used="m"))
        pipeline = make_pipeline(memory_store, FakeFetcher([candidate_post_factory()]), classifier, run_control)

        events = list(pipeline.run(1, AppConfig(auto_publish_enabled=True)))
        new_id = max(memory_store.items)
        positions = memory_store.positions()

        assert positions[new_id] == 0
        assert [positions[i] for i in before] == [1, 2, 3]
        assert memory_store.shift_calls == [1]
        assert of_type(events, "progress")[0]["status"] == "breaking-news"
        assert events[-1]["results"]["breakingNews"] == 1

    def test_similar_content_in_same_batch_is_skipped(self, memory_store, fake_classifier,
                                                      run_control, candidate_post_factory):
        text = "OpenAI releases a new reasoning model with stronger benchmark results today"
        posts = [candidate_post_factory(text=text), candidate_post_factory(text=text)]
        pipeline = make_pipeline(memory_store, FakeFetcher(posts), fake_classifier, run_control)

        events = list(pipeline.run(2, AppConfig()))

        assert events[-1]["results"]["similar"] == 1
        assert len(memory_store.items) == 1
        assert of_type(events, "progress")[1]["status"] == "similar"

    def test_similar_to_existing_pending_content(self, memory_store, fake_classifier,
                                                 run_control, candidate_post_factory, scraped_item_factory):
        text = "Anthropic publishes interpretability research about sparse autoencoders features"
        memory_store.add_item(scraped_item_factory(processed_content=text))
        pipeline = make_pipeline(memory_store, FakeFetcher([candidate_post_factory(text=text)]),
                                 fake_classifier, run_control)

        events = list(pipeline.run(1, AppConfig()))

        assert events[-1]["results"]["similar"] == 1

    def test_similarity_check_can_be_disabled(self, memory_store, fake_classifier,
                                              run_control, candidate_post_factory):
        text = "Meta open sources a large multilingual speech recognition model"
        posts = [candidate_post_factory(text=text), candidate_post_factory(text=text)]
        pipeline = make_pipeline(memory_store, FakeFetcher(posts), fake_classifier, run_control)

        events = list(pipeline.run(2, AppConfig(check_similar_content=False)))

        assert events[-1]["results"]["similar"] == 0
        assert len(memory_store.items) == 2

    def test_processed_content_fits_and_keeps_url(self, memory_store, run_control, candidate_post_factory):
        classifier = FakeClassifier(ClassificationResult(
            relevance=8, paraphrase="A" * 300 + " https://example.com/x", model_used="m"))
        post = candidate_post_factory(text="Read this https://example.com/x")
        pipeline = make_pipeline(memory_store, FakeFetcher([post]), classifier, run_control)

        list(pipeline.run(1, AppConfig()))
        processed = list(memory_store.items.values())[0].processed_content

        assert len(processed) <= 280
        assert processed.endswith("https://example.com/x")

    def test_quoted_post_is_sent_to_classifier(self, memory_store, fake_classifier,
                                               run_control, candidate_post_factory):
        from data.models import QuotedPost
        quoted = QuotedPost(post_id="9", text="the original claim", author_username="lab",
                            url="https://x.com/lab/status/9")
        post = candidate_post_factory(text="Big if true", quoted=quoted)
        pipeline = make_pipeline(memory_store, FakeFetcher([post]), fake_classifier, run_control)

        list(pipeline.run(1, AppConfig()))

        assert '[QUOTED POST from @lab]: "the original claim"' in fake_classifier.calls[0]
        assert "https://x.com/lab/status/9" in fake_classifier.calls[0]

    def test_quoted_annotation_never_reaches_stored_text(self, memory_store, run_control,
                                                         candidate_post_factory):
        from unittest.mock import MagicMock
        from data.models import QuotedPost
        from services.ai_service import ContentClassifier
        from services.provider_registry import ProviderRegistry
        client = MagicMock()
        client.complete.return_value = json.dumps({"RELEVANCE": 8, "PARAPHRASE": None})
        classifier = ContentClassifier(registry=ProviderRegistry(clock=lambda: 1000.0),
                                       client=client, fallback_models=[])
        quoted = QuotedPost(post_id="9", text="Original quoted story", author_username="other",
                            url="https://x.com/other/status/9")
        post = candidate_post_factory(text="Look at this", quoted=quoted)
        pipeline = make_pipeline(memory_store, FakeFetcher([post]), classifier, run_control)

        list(pipeline.run(1, AppConfig(auto_approve_enabled=True)))

        item = list(memory_store.items.values())[0]
        assert item.status == ItemStatus.APPROVED
        assert item.processed_content == "Look at this https://x.com/other/status/9"
        assert "[QUOTED POST" not in list(memory_store.queue.values())[0].custom_text

    def test_pattern_rejected_quote_keeps_post_text(self, memory_store, run_control, candidate_post_factory):
        from unittest.mock import MagicMock
        from data.models import QuotedPost
        from services.ai_service import ContentClassifier
        client = MagicMock()
        classifier = ContentClassifier(client=client, fallback_models=[])
        quoted = QuotedPost(post_id="9", text="Retweet this giveaway", author_username="other")
        post = candidate_post_factory(text="Look at this", quoted=quoted)
        pipeline = make_pipeline(memory_store, FakeFetcher([post]), classifier, run_control)

        list(pipeline.run(1, AppConfig(rejected_patterns=["giveaway"])))

        item = list(memory_store.items.values())[0]
        assert item.status == ItemStatus.REJECTED
        assert item.processed_content == "Look at this"
        client.complete.assert_not_called()

    def test_quoted_urls_are_restored(self, memory_store, run_control, candidate_post_factory):
        from data.models import QuotedPost
        paraphrase = ("Resumen del estudio " * 10).strip()
        classifier = FakeClassifier(ClassificationResult(relevance=8, paraphrase=paraphrase, model_used="m"))
        quoted = QuotedPost(post_id="9", text="Paper out: https://arxiv.org/abs/2610.00001",
                            author_username="lab", url="https://x.com/lab/status/9")
        post = candidate_post_factory(text="Big if true", quoted=quoted)
        pipeline = make_pipeline(memory_store, FakeFetcher([post]), classifier, run_control)

        list(pipeline.run(1, AppConfig()))
        processed = list(memory_store.items.values())[0].processed_content

        assert len(processed) <= 280
        assert "https://arxiv.org/abs/2610.00001" in processed
        assert processed.endswith("https://x.com/lab/status/9")

    def test_long_paraphrase_is_shortened_to_fit_source_url(self, memory_store, run_control,
                                                            candidate_post_factory):
        paraphrase = ("palabra " * 34).strip()
        classifier = FakeClassifier(ClassificationResult(relevance=8, paraphrase=paraphrase, model_used="m"))
        post = candidate_post_factory(text="Details at https://example.com/report")
        pipeline = make_pipeline(memory_store, FakeFetcher([post]), classifier, run_control)

        list(pipeline.run(1, AppConfig()))
        processed = list(memory_store.items.values())[0].processed_content

        assert len(processed) <= 280
        assert processed.endswith("https://example.com/report")


# =============================================================================
# Cancellation Tests
# =============================================================================

class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_abort_after_second_progress(self, memory_store, fake_classifier,
                                         run_control, candidate_post_factory):
        posts = [candidate_post_factory() for _ in range(6)]
        pipeline = make_pipeline(memory_store, FakeFetcher(posts), fake_classifier, run_control)

        events = []
        progress_seen = 0
        for event in pipeline.run(6, AppConfig()):
            events.append(event)
            if event["type"] == "progress":
                progress_seen += 1
                if progress_seen == 2:
                    run_control.request_abort()

        complete = events[-1]
        assert complete["type"] == "complete"
        assert complete["cancelled"] is True
        assert "cancelled" in complete["message"]
        assert complete["current"] <= 3
        assert len(of_type(events, "progress")) == 2
        assert len(memory_store.items) == 2

    def test_disconnect_stops_run(self, memory_store, fake_classifier,
                                  run_control, candidate_post_factory):
        posts = [candidate_post_factory() for _ in range(5)]
        pipeline = make_pipeline(memory_store, FakeFetcher(posts), fake_classifier, run_control)
        state = {"gone": False}

        events = []
        for event in pipeline.run(5, AppConfig(), is_disconnected=lambda: state["gone"]):
            events.append(event)
            if event["type"] == "progress":
                state["gone"] = True

        assert events[-1]["cancelled"] is True
        assert len(of_type(events, "progress")) == 1

    def test_stale_abort_flag_is_cleared_at_start(self, memory_store, fake_classifier,
                                                  run_control, candidate_post_factory):
        run_control.request_abort()
        pipeline = make_pipeline(memory_store, FakeFetcher([candidate_post_factory()]),
                                 fake_classifier, run_control)

        events = list(pipeline.run(1, AppConfig()))

        assert events[-1]["cancelled"] is False
        assert events[-1]["results"]["processed"] == 1


# =============================================================================
# Error Handling Tests
# =============================================================================

class TestErrors:
    """Tests for per-item and run-fatal errors."""

    def test_item_error_does_not_abort_run(self, memory_store, fake_classifier,
                                           run_control, candidate_post_factory):
        fake_classifier.script("explodes", ClassificationError("All AI models failed or are rate limited"))
        posts = [candidate_post_factory(text="first fine post"),
                 candidate_post_factory(text="this one explodes"),
                 candidate_post_factory(text="third fine post")]
        pipeline = make_pipeline(memory_store, FakeFetcher(posts), fake_classifier, run_control)

        events = list(pipeline.run(3, AppConfig()))
        progress = of_type(events, "progress")

        assert events[-1]["type"] == "complete"
        assert events[-1]["results"]["errors"] == 1
        assert events[-1]["results"]["processed"] == 2
        assert progress[1]["status"] == "error"
        assert "All AI models failed" in progress[1]["errorMessage"]

    def test_insert_failure_counts_as_error(self, memory_store, fake_classifier,
                                            run_control, candidate_post_factory):
        memory_store.fail_inserts = True
        pipeline = make_pipeline(memory_store, FakeFetcher([candidate_post_factory()]),
                                 fake_classifier, run_control)

        events = list(pipeline.run(1, AppConfig()))

        assert events[-1]["results"]["errors"] == 1
        assert events[-1]["type"] == "complete"

    def test_fetch_error_is_fatal(self, memory_store, fake_classifier, run_control, fetch_error_fetcher):
        pipeline = make_pipeline(memory_store, fetch_error_fetcher, fake_classifier, run_control)

        events = list(pipeline.run(5, AppConfig()))

        assert events[-1]["type"] == "error"
        assert events[-1]["message"] == "timeline unavailable"
        assert not of_type(events, "complete")

    def test_invalid_config_is_fatal(self, memory_store, fake_classifier, run_control):
        memory_store.config = {"aiSystemPrompt": "prompt without a placeholder"}
        fetcher = FakeFetcher([])
        pipeline = make_pipeline(memory_store, fetcher, fake_classifier, run_control)

        events = list(pipeline.run(5))

        assert events[-1]["type"] == "error"
        assert "tweet_content" in events[-1]["message"]
        assert fetcher.calls == []

    def test_missing_config_is_created_with_defaults(self, memory_store, fake_classifier, run_control):
        pipeline = make_pipeline(memory_store, FakeFetcher([]), fake_classifier, run_control)

        events = list(pipeline.run(5))

        assert events[-1]["type"] == "complete"
        assert memory_store.config["minRelevanceScore"] == 7

    def test_cleanup_failure_is_not_fatal(self, memory_store, fake_classifier, run_control,
                                          candidate_post_factory):
        def broken(*args, **kwargs):
            raise RuntimeError("disk full")
        memory_store.delete_older_than = broken
        pipeline = make_pipeline(memory_store, FakeFetcher([candidate_post_factory()]),
                                 fake_classifier, run_control)

        events = list(pipeline.run(1, AppConfig()))

        assert events[-1]["type"] == "complete"

    def test_cleanup_removes_old_finished_items(self, memory_store, fake_classifier, run_control,
                                                scraped_item_factory):
        old = NOW - timedelta(days=10)
        memory_store.add_item(scraped_item_factory(status=ItemStatus.REJECTED, scraped_at=old))
        memory_store.add_item(scraped_item_factory(status=ItemStatus.PUBLISHED, scraped_at=old))
        kept = memory_store.add_item(scraped_item_factory(status=ItemStatus.PENDING, scraped_at=old))
        pipeline = make_pipeline(memory_store, FakeFetcher([]), fake_classifier, run_control)

        list(pipeline.run(1, AppConfig(auto_delete_after_days=7)))

        assert list(memory_store.items) == [kept.id]

    def test_second_concurrent_run_is_refused(self, memory_store, fake_classifier, run_control):
        pipeline = make_pipeline(memory_store, FakeFetcher([]), fake_classifier, run_control)

        with run_control.run_slot():
            events = list(pipeline.run(1, AppConfig()))

        assert len(events) == 1
        assert events[0]["type"] == "error"
        assert "already in progress" in events[0]["message"]
