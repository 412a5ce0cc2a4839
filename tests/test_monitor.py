import json
import threading
import time

from conftest import NOW, FlakyStore, entry
from main import ListingMonitor
from store import JsonStateStore


def _start(monitor, scheduler):
    monitor.start()
    scheduler.armed.clear()


def test_first_cycle_sets_baseline_without_notifying(monitor, feed, notifier, store):
    monitor.add_subscriber("https://hook.example/a")
    feed.snapshots.append([entry(9, "Binance Will List AAA"), entry(8, "Binance Will List BBB")])

    assert monitor.run_cycle() == 0

    assert notifier.dispatched == []
    assert monitor.state.last_seen_id == 9
    assert store.get(["last_seen_id"]) == {"last_seen_id": 9}


def test_walk_stops_at_last_seen_id(monitor, feed, notifier, scheduler):
    _start(monitor, scheduler)
    monitor.add_subscriber("https://hook.example/a", "s3cret")
    monitor._save_last_seen(3)
    feed.snapshots.append([
        entry(5, "Binance Will List ABC"),
        entry(4, "Market Update"),
        entry(3, "Binance Will List XYZ"),
    ])

    assert monitor.run_cycle() == 1

    assert notifier.ids == [5]
    entry_sent, subscribers = notifier.dispatched[0]
    assert subscribers[0].url == "https://hook.example/a"
    assert subscribers[0].secret == "s3cret"
    assert monitor.state.last_seen_id == 5
    assert scheduler.armed == [NOW + 3.0]


def test_only_listing_titles_newer_than_marker_are_notified(monitor, feed, notifier):
    monitor._save_last_seen(10)
    feed.snapshots.append([
        entry(14, "Binance Will List DDD (DDD)"),
        entry(13, "Binance Will Delist EEE"),
        entry(12, "binance will list lowercase"),
        entry(11, "Binance Will List CCC (CCC)"),
        entry(10, "Binance Will List OLD"),
        entry(9, "Binance Will List OLDER"),
    ])

    monitor.run_cycle()

    assert notifier.ids == [14, 11]
    assert monitor.state.last_seen_id == 14


def test_marker_scrolled_off_page_notifies_whole_page(monitor, feed, notifier):
    monitor._save_last_seen(1)
    feed.snapshots.append([
        entry(30, "Binance Will List NEW"),
        entry(29, "Notice"),
        entry(28, "Binance Will List MID"),
    ])

    monitor.run_cycle()

    assert notifier.ids == [30, 28]
    assert monitor.state.last_seen_id == 30


def test_unchanged_snapshot_notifies_nothing(monitor, feed, notifier, store):
    monitor._save_last_seen(7)
    feed.snapshots.append([entry(7, "Binance Will List AAA")])

    assert monitor.run_cycle() == 0
    assert notifier.dispatched == []
    assert monitor.state.last_seen_id == 7


def test_empty_snapshot_keeps_state_and_reschedules(monitor, feed, scheduler, notifier, state_path):
    _start(monitor, scheduler)
    monitor._save_last_seen(4)
    before = json.loads(state_path.read_text(encoding="utf-8"))

    assert monitor.run_cycle() == 0

    assert json.loads(state_path.read_text(encoding="utf-8")) == before
    assert monitor.state.last_seen_id == 4
    assert notifier.dispatched == []
    assert scheduler.armed == [NOW + 3.0]


def test_cycle_does_not_reschedule_when_not_monitoring(monitor, feed, scheduler):
    feed.snapshots.append([entry(1)])

    monitor.run_cycle()

    assert scheduler.armed == []


def test_feed_exception_is_contained_and_reschedules(monitor, feed, scheduler):
    _start(monitor, scheduler)
    monitor._save_last_seen(2)
    feed.error = RuntimeError("boom")

    assert monitor.run_cycle() == 0

    assert monitor.state.last_seen_id == 2
    assert scheduler.armed == [NOW + 3.0]


def test_dispatch_exception_is_contained_and_reschedules(monitor, feed, notifier, scheduler):
    _start(monitor, scheduler)
    monitor._save_last_seen(2)
    notifier.error = RuntimeError("notifier exploded")
    feed.snapshots.append([entry(3, "Binance Will List AAA"), entry(2)])

    monitor.run_cycle()

    assert notifier.ids == [3]
    assert scheduler.armed == [NOW + 3.0]


def test_persist_failure_keeps_marker_and_reschedules(make_monitor, state_path, feed, notifier, scheduler):
    monitor = make_monitor(FlakyStore(str(state_path), failing_keys={"last_seen_id"}))
    monitor.restore()
    monitor.start()
    scheduler.armed.clear()
    feed.snapshots.append([entry(5, "Binance Will List AAA")])

    monitor.run_cycle()

    assert monitor.state.last_seen_id is None
    assert scheduler.armed == [NOW + 3.0]


def test_marker_advances_even_when_all_deliveries_fail(monitor, feed, notifier):
    monitor._save_last_seen(1)
    notifier.dispatch = lambda entry, subscribers: 0
    feed.snapshots.append([entry(2, "Binance Will List AAA"), entry(1)])

    monitor.run_cycle()

    assert monitor.state.last_seen_id == 2


def test_start_is_idempotent(monitor, scheduler, store):
    assert monitor.start() is True
    assert monitor.start() is False

    assert scheduler.armed == [NOW + 3.0]
    assert store.get(["is_monitoring"]) == {"is_monitoring": True}


def test_stop_cancels_wake_and_persists(monitor, scheduler, store):
    monitor.start()
    monitor.stop()

    assert scheduler.cancelled == 1
    assert scheduler.next_wake_at is None
    assert monitor.state.is_monitoring is False
    assert store.get(["is_monitoring"]) == {"is_monitoring": False}


def test_stale_wake_after_stop_is_ignored(monitor, feed, scheduler):
    monitor.start()
    monitor.stop()
    scheduler.armed.clear()
    feed.snapshots.append([entry(1)])

    monitor.on_wake()

    assert feed.calls == 0
    assert scheduler.armed == []


def test_stop_waits_for_inflight_cycle(monitor, feed, notifier, scheduler, store):
    monitor.start()
    monitor._save_last_seen(1)
    entered = threading.Event()
    release = threading.Event()

    def slow_dispatch(entry, subscribers):
        entered.set()
        release.wait(timeout=5)
        return 0

    notifier.dispatch = slow_dispatch
    feed.snapshots.append([entry(2, "Binance Will List AAA"), entry(1)])

    cycle = threading.Thread(target=monitor.on_wake)
    cycle.start()
    assert entered.wait(timeout=5)

    stopper = threading.Thread(target=monitor.stop)
    stopper.start()
    time.sleep(0.05)
    assert monitor.state.is_monitoring is True

    release.set()
    cycle.join(timeout=5)
    stopper.join(timeout=5)

    assert store.get(["last_seen_id"]) == {"last_seen_id": 2}
    assert monitor.state.is_monitoring is False
    assert scheduler.next_wake_at is None


def test_restore_rearms_when_monitoring(make_monitor, state_path, scheduler):
    first = make_monitor(JsonStateStore(str(state_path)))
    first.restore()
    first.start()
    first.add_subscriber("https://hook.example/a", "k")
    first.set_watch_list(["BTC", "ETH"])
    first._save_last_seen(42)
    scheduler.armed.clear()

    second = make_monitor(JsonStateStore(str(state_path)))
    state = second.restore()

    assert state.is_monitoring is True
    assert state.last_seen_id == 42
    assert [s.url for s in state.subscribers] == ["https://hook.example/a"]
    assert state.subscribers[0].secret == "k"
    assert state.watch_list == ("BTC", "ETH")
    assert scheduler.armed == [NOW + 3.0]


def test_restore_without_monitoring_does_not_arm(monitor, scheduler):
    assert monitor.state.is_monitoring is False
    assert scheduler.armed == []


def test_add_subscriber_replaces_same_url(monitor):
    monitor.add_subscriber("https://hook.example/a", "old")
    monitor.add_subscriber("https://hook.example/b")
    monitor.add_subscriber("https://hook.example/a", "new")

    subscribers = monitor.list_subscribers()
    assert [s.url for s in subscribers] == ["https://hook.example/b", "https://hook.example/a"]
    assert subscribers[1].secret == "new"


def test_remove_subscriber(monitor):
    monitor.add_subscriber("https://hook.example/a")
    assert monitor.remove_subscriber("https://hook.example/a") is True
    assert monitor.remove_subscriber("https://hook.example/a") is False
    assert monitor.list_subscribers() == []


def test_watch_list_is_deduplicated_and_not_used_for_dispatch(monitor, feed, notifier):
    assert monitor.set_watch_list(["BTC", "BTC", "ETH"]) == ["BTC", "ETH"]
    monitor._save_last_seen(1)
    feed.snapshots.append([entry(2, "Binance Will List DOGE"), entry(1)])

    monitor.run_cycle()

    assert notifier.ids == [2]
    assert monitor.clear_watch_list() == []
    assert monitor.get_watch_list() == []


def test_status(monitor, scheduler):
    monitor.start()
    monitor.add_subscriber("https://hook.example/a")

    status = monitor.status()

    assert status["isMonitoring"] is True
    assert status["lastSeenId"] is None
    assert status["webhooks"] == 1
    assert status["nextWakeAt"] is not None


def test_listing_monitor_uses_default_tagger(store, feed, notifier, scheduler):
    monitor = ListingMonitor(store, feed, notifier, scheduler, clock=lambda: NOW)
    assert monitor.tagger.is_listing("Binance Will List FOO (FOO)")


def test_status_next_wake_is_utc(monitor):
    monitor.start()

    assert monitor.status()["nextWakeAt"] == "2023-11-14T22:13:23+00:00"
