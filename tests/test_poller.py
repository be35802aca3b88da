"""Tests for the polling pipeline."""

import threading
from datetime import datetime

from conftest import NOW, FakeExtractor, FakeMailbox

from red_alert.breaker import CircuitBreaker
from red_alert.dedup import SeenSet
from red_alert.models import Category, RawMessage
from red_alert.poller import AlertPoller, fallback_alert, make_snippet, parse_email_date
from red_alert.store import AlertStore


def make_poller(store, mailbox, calendar, extractor, broadcaster, settings, **kwargs):
    return AlertPoller(
        mailbox=mailbox,
        calendar=calendar,
        extractor=extractor,
        notifier=broadcaster,
        store=store,
        settings=settings,
        clock=lambda: NOW,
        **kwargs,
    )


def _plain_messages(count):
    return [
        RawMessage(
            message_id=f"msg_{i:03d}",
            sender="news@school.edu",
            subject=f"Newsletter {i}",
            date="Mon, 15 Dec 2025 10:00:00 +0000",
            body=f"Plain newsletter number {i}",
        )
        for i in range(count)
    ]


# --- helpers ---


def test_parse_email_date():
    assert parse_email_date("Mon, 15 Dec 2025 19:01:33 -0300") == datetime(2025, 12, 15, 19, 1, 33)
    assert parse_email_date("yesterday-ish", clock=lambda: NOW) == NOW
    assert parse_email_date("  ", clock=lambda: NOW) == NOW
    assert parse_email_date(None, clock=lambda: NOW) == NOW


def test_make_snippet():
    assert make_snippet("short\r\nbody") == "short  body"
    long_body = "a" * 250
    assert make_snippet(long_body) == "a" * 200 + "..."


def test_fallback_alert_uses_placeholder_title():
    message = RawMessage(message_id="m", sender="x@y.z", subject="  ", date="", body="hi")
    alert = fallback_alert(message, "hi", NOW)
    assert alert.title == "(no subject)"
    assert alert.date == NOW
    assert alert.description == "Email from: x@y.z\n\nhi"


# --- cycle behavior ---


def test_no_active_categories_is_a_noop(store, calendar, broadcaster, settings, live_message):
    mailbox = FakeMailbox([live_message])
    poller = make_poller(store, mailbox, calendar, FakeExtractor(), broadcaster, settings)

    result = poller.poll_emails()

    assert mailbox.queries == []
    assert result.categories_polled == 0
    assert result.errors == []


def test_matched_message_full_flow(
    store, calendar, calendar_service, broadcaster, settings, school_category, live_message, live_alert
):
    mailbox = FakeMailbox([live_message])
    extractor = FakeExtractor(live_alert)
    poller = make_poller(store, mailbox, calendar, extractor, broadcaster, settings)

    result = poller.poll_emails()

    assert mailbox.queries == ["from:school.edu subject:(LIVE OR CALL) is:unread"]
    assert result.analyzed == 1
    assert result.matched == 1
    assert result.errors == []

    text, reference_time = extractor.calls[0]
    assert text == live_message.body
    assert reference_time == datetime(2025, 12, 15, 19, 1, 33)

    record = store.get_processed("msg_live_001")
    assert record is not None
    assert record.category_id == school_category.id
    assert record.snippet == live_message.body

    assert len(calendar_service.events().items) == 1
    event = calendar_service.events().items[0]
    assert event["summary"] == "LIVE class"
    assert event["location"] == "https://meet.example/abc"

    assert len(broadcaster.published) == 1
    published = broadcaster.published[0]
    assert published.is_urgent is True
    assert published.calendar_link == "https://calendar.example/evt1"
    assert published.url == "https://meet.example/abc"

    history = store.recent_alerts()
    assert [a.title for a in history] == ["LIVE class"]
    assert history[0].is_urgent is True

    assert mailbox.marked_read == ["msg_live_001"]
    assert "msg_live_001" in poller.seen


def test_urgency_kept_when_not_forced(
    store, calendar, broadcaster, settings, school_category, live_message, live_alert
):
    mailbox = FakeMailbox([live_message])
    settings = settings.override(force_urgent=False)
    poller = make_poller(store, mailbox, calendar, FakeExtractor(live_alert), broadcaster, settings)

    poller.poll_emails()

    assert broadcaster.published[0].is_urgent is False


def test_no_event_publishes_informational_alert(
    store, calendar, calendar_service, broadcaster, settings, school_category, sync_message, live_alert
):
    mailbox = FakeMailbox([sync_message])
    poller = make_poller(store, mailbox, calendar, FakeExtractor(live_alert), broadcaster, settings)

    result = poller.poll_emails()

    assert result.analyzed == 1
    assert result.matched == 0
    alert = broadcaster.published[0]
    assert alert.title == "Team Sync"
    assert alert.is_urgent is False
    assert alert.url is None
    assert alert.calendar_link is None
    assert alert.date == datetime(2025, 12, 15, 10, 0, 0)
    assert alert.description.startswith("Email from: Team Lead <lead@school.edu>\n\n")
    assert alert.description.endswith("...")

    assert store.count_processed() == 0
    assert store.count_alerts() == 0
    assert calendar_service.events().items == []
    assert mailbox.marked_read == ["msg_sync_001"]


def test_seen_message_is_not_fetched_again(
    store, calendar, broadcaster, settings, school_category, live_message, live_alert
):
    mailbox = FakeMailbox([live_message])
    extractor = FakeExtractor(live_alert)
    seen = SeenSet()
    seen.add("msg_live_001")
    poller = make_poller(store, mailbox, calendar, extractor, broadcaster, settings, seen=seen)

    result = poller.poll_emails()

    assert result.skipped == 1
    assert mailbox.fetched == []
    assert extractor.calls == []
    assert broadcaster.published == []


def test_ledger_hit_marks_read_without_fetch(
    store, calendar, broadcaster, settings, school_category, live_message, live_alert
):
    mailbox = FakeMailbox([live_message])
    mailbox.fail_mark_read = True
    extractor = FakeExtractor(live_alert)
    first = make_poller(store, mailbox, calendar, extractor, broadcaster, settings)
    first.poll_emails()

    # A restarted process has an empty seen-set but the same ledger.
    second = make_poller(store, mailbox, calendar, extractor, broadcaster, settings)
    result = second.poll_emails()

    assert result.skipped == 1
    assert result.analyzed == 0
    assert mailbox.fetched == ["msg_live_001"]
    assert len(extractor.calls) == 1
    assert mailbox.marked_read == ["msg_live_001", "msg_live_001"]
    assert "msg_live_001" in second.seen


def test_reprocessing_creates_one_record_and_one_event(
    tmp_path, store, calendar, calendar_service, broadcaster, settings, school_category, live_message, live_alert
):
    mailbox = FakeMailbox([live_message])
    mailbox.fail_mark_read = True
    extractor = FakeExtractor(live_alert)

    make_poller(store, mailbox, calendar, extractor, broadcaster, settings).poll_emails()
    make_poller(store, mailbox, calendar, extractor, broadcaster, settings).poll_emails()
    assert store.count_processed() == 1

    # Same calendar, fresh ledger: the existing event is reused.
    with AlertStore(tmp_path / "other.db") as other:
        other.create_category(Category(name="School", from_filter="school.edu"))
        make_poller(other, mailbox, calendar, extractor, broadcaster, settings).poll_emails()

    assert len(calendar_service.events().items) == 1
    links = [a.calendar_link for a in broadcaster.published]
    assert links == ["https://calendar.example/evt1", "https://calendar.example/evt1"]


def test_calendar_failure_still_publishes(
    store, calendar, calendar_service, broadcaster, settings, school_category, live_message, live_alert
):
    calendar_service.events().fail_insert = True
    mailbox = FakeMailbox([live_message])
    poller = make_poller(store, mailbox, calendar, FakeExtractor(live_alert), broadcaster, settings)

    result = poller.poll_emails()

    assert result.matched == 1
    assert broadcaster.published[0].calendar_link is None
    assert broadcaster.published[0].is_urgent is True
    assert store.exists_by_message_id("msg_live_001")
    assert mailbox.marked_read == ["msg_live_001"]


def test_empty_body_is_marked_read_without_analysis(store, calendar, broadcaster, settings, school_category):
    empty = RawMessage(message_id="msg_empty", sender="a@school.edu", subject="LIVE", date="", body="   ")
    mailbox = FakeMailbox([empty])
    extractor = FakeExtractor()
    poller = make_poller(store, mailbox, calendar, extractor, broadcaster, settings)

    result = poller.poll_emails()

    assert result.analyzed == 1
    assert extractor.calls == []
    assert broadcaster.published == []
    assert mailbox.marked_read == ["msg_empty"]
    assert "msg_empty" in poller.seen


def test_cycle_cap_defers_the_rest(store, calendar, broadcaster, settings, school_category):
    mailbox = FakeMailbox(_plain_messages(7))
    extractor = FakeExtractor()
    poller = make_poller(store, mailbox, calendar, extractor, broadcaster, settings)

    result = poller.poll_emails()
    assert result.messages_found == 7
    assert result.analyzed == 5
    assert result.deferred == 2
    assert len(extractor.calls) == 5
    assert mailbox.unread == ["msg_005", "msg_006"]

    result = poller.poll_emails()
    assert result.analyzed == 2
    assert result.deferred == 0
    assert mailbox.unread == []


def test_ai_delay_between_calls(store, calendar, broadcaster, settings, school_category):
    pauses = []
    settings = settings.override(ai_delay_seconds=2.0)
    mailbox = FakeMailbox(_plain_messages(2))
    poller = make_poller(store, mailbox, calendar, FakeExtractor(), broadcaster, settings, sleep=pauses.append)

    poller.poll_emails()

    assert pauses == [2.0, 2.0]


def test_fetch_failure_is_retried_next_cycle(
    store, calendar, broadcaster, settings, school_category, live_message, live_alert
):
    mailbox = FakeMailbox([live_message])
    mailbox.fail_fetch = {"msg_live_001"}
    poller = make_poller(store, mailbox, calendar, FakeExtractor(live_alert), broadcaster, settings)

    result = poller.poll_emails()
    assert len(result.errors) == 1
    assert "msg_live_001" not in poller.seen
    assert broadcaster.published == []

    mailbox.fail_fetch = set()
    result = poller.poll_emails()
    assert result.matched == 1
    assert len(broadcaster.published) == 1


def test_mark_read_failure_is_contained(
    store, calendar, broadcaster, settings, school_category, live_message, live_alert
):
    mailbox = FakeMailbox([live_message])
    mailbox.fail_mark_read = True
    poller = make_poller(store, mailbox, calendar, FakeExtractor(live_alert), broadcaster, settings)

    result = poller.poll_emails()

    assert result.errors == []
    assert result.matched == 1
    assert len(broadcaster.published) == 1
    assert "msg_live_001" in poller.seen


def test_failing_category_does_not_stop_the_cycle(
    store, calendar, broadcaster, settings, school_category, live_message, live_alert
):
    class PartlyBrokenMailbox(FakeMailbox):
        def search(self, query, max_results):
            if "broken.example" in query:
                self.queries.append(query)
                raise ConnectionError("search failed")
            return super().search(query, max_results)

    store.create_category(Category(name="Broken", from_filter="broken.example"))
    mailbox = PartlyBrokenMailbox([live_message])
    poller = make_poller(store, mailbox, calendar, FakeExtractor(live_alert), broadcaster, settings)

    result = poller.poll_emails()

    assert result.categories_polled == 2
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Broken:")
    assert result.matched == 1


def test_open_breaker_skips_the_cycle(store, calendar, broadcaster, settings, school_category, live_message):
    mailbox = FakeMailbox([live_message])
    mailbox.fail_search = True
    breaker = CircuitBreaker("gmail", failure_threshold=1, reset_timeout=60, clock=lambda: 0.0)
    poller = make_poller(store, mailbox, calendar, FakeExtractor(), broadcaster, settings, mailbox_breaker=breaker)

    first = poller.poll_emails()
    assert first.skipped_cycle is False
    assert len(first.errors) == 1
    assert breaker.is_open

    second = poller.poll_emails()
    assert second.skipped_cycle is True
    assert second.categories_polled == 0
    assert len(mailbox.queries) == 1


def test_extractor_crash_is_contained(store, calendar, broadcaster, settings, school_category, live_message):
    class CrashingExtractor:
        def analyze(self, text, reference_time):
            raise RuntimeError("model exploded")

    mailbox = FakeMailbox([live_message])
    poller = make_poller(store, mailbox, calendar, CrashingExtractor(), broadcaster, settings)

    result = poller.poll_emails()

    assert result.analyzed == 1
    assert len(result.errors) == 1
    assert result.finished_at == NOW


# --- triggers ---


def test_trigger_poll_success(store, calendar, broadcaster, settings, school_category, live_message, live_alert):
    mailbox = FakeMailbox([live_message])
    poller = make_poller(store, mailbox, calendar, FakeExtractor(live_alert), broadcaster, settings)

    outcome = poller.trigger_poll()

    assert outcome["success"] is True
    assert outcome["message"] == "Polling cycle executed"
    assert outcome["timestamp"] == NOW.isoformat()
    assert outcome["result"]["matched"] == 1


def test_trigger_poll_reports_skipped_cycle(store, calendar, broadcaster, settings, school_category):
    breaker = CircuitBreaker("gmail", failure_threshold=1, reset_timeout=60, clock=lambda: 0.0)
    mailbox = FakeMailbox()
    mailbox.fail_search = True
    poller = make_poller(store, mailbox, calendar, FakeExtractor(), broadcaster, settings, mailbox_breaker=breaker)
    poller.poll_emails()

    outcome = poller.trigger_poll()

    assert outcome["success"] is False
    assert "skipped" in outcome["error"]


def test_run_forever_stops_on_event(store, calendar, broadcaster, settings, school_category):
    class StopAfterFirstWait(threading.Event):
        def wait(self, timeout=None):
            self.set()
            return True

    mailbox = FakeMailbox()
    poller = make_poller(store, mailbox, calendar, FakeExtractor(), broadcaster, settings)

    poller.run_forever(interval=0.01, stop_event=StopAfterFirstWait())

    assert len(mailbox.queries) == 1


def test_overlapping_cycles_process_a_message_once(
    store, calendar, calendar_service, broadcaster, settings, school_category, live_message, live_alert
):
    barrier = threading.Barrier(2, timeout=5)

    class SynchronizedMailbox(FakeMailbox):
        def search(self, query, max_results):
            ids = super().search(query, max_results)
            barrier.wait()
            return ids

    mailbox = SynchronizedMailbox([live_message])
    extractor = FakeExtractor(live_alert)
    seen = SeenSet()
    scheduled = make_poller(store, mailbox, calendar, extractor, broadcaster, settings, seen=seen)
    manual = make_poller(store, mailbox, calendar, extractor, broadcaster, settings, seen=seen)

    results = []
    threads = [threading.Thread(target=lambda p=p: results.append(p.poll_emails())) for p in (scheduled, manual)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(r.analyzed for r in results) == [0, 1]
    assert sum(r.skipped for r in results) == 1
    assert len(extractor.calls) == 1
    assert len(broadcaster.published) == 1
    assert len(calendar_service.events().items) == 1
    assert store.count_processed() == 1


def test_deferred_message_is_not_claimed(store, calendar, broadcaster, settings, school_category):
    settings = settings.override(max_messages_per_cycle=1)
    mailbox = FakeMailbox(_plain_messages(2))
    poller = make_poller(store, mailbox, calendar, FakeExtractor(), broadcaster, settings)

    result = poller.poll_emails()

    assert result.deferred == 1
    assert "msg_000" in poller.seen
    assert "msg_001" not in poller.seen
