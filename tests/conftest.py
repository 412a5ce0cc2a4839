import pytest

from core.interface import AnnouncementSource, Notifier, WakeScheduler
from core.model import AnnouncementEntry
from main import ListingMonitor
from store import JsonStateStore, StateStoreError
from tagger import ListingTitleTagger

NOW = 1_700_000_000.0


def entry(id, title="Market Update", code=None, publish_date="2024-01-01"):
    return AnnouncementEntry(id=id, title=title, code=code or f"code{id}", publish_date=publish_date)


class FakeFeed(AnnouncementSource):
    exchange = "Fake"

    def __init__(self):
        self.snapshots = []
        self.error = None
        self.calls = 0

    def fetch_snapshot(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.snapshots:
            return self.snapshots.pop(0)
        return []


class RecordingNotifier(Notifier):
    def __init__(self):
        self.dispatched = []
        self.error = None

    def dispatch(self, entry, subscribers):
        self.dispatched.append((entry, list(subscribers)))
        if self.error is not None:
            raise self.error
        return len(subscribers)

    @property
    def ids(self):
        return [e.id for e, _ in self.dispatched]


class FakeScheduler(WakeScheduler):
    def __init__(self):
        self.armed = []
        self.cancelled = 0
        self._wake_at = None

    def arm(self, at):
        self.armed.append(at)
        self._wake_at = at

    def cancel(self):
        self.cancelled += 1
        self._wake_at = None

    @property
    def next_wake_at(self):
        return self._wake_at


class FlakyStore(JsonStateStore):
    """put 对指定 key 失败"""

    def __init__(self, path, failing_keys=()):
        super().__init__(path)
        self.failing_keys = set(failing_keys)

    def put(self, key, value):
        if key in self.failing_keys:
            raise StateStoreError(f"disk full: {key}")
        super().put(key, value)


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state.json"


@pytest.fixture
def store(state_path):
    return JsonStateStore(str(state_path))


@pytest.fixture
def feed():
    return FakeFeed()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def make_monitor(feed, notifier, scheduler):
    def _make(store):
        return ListingMonitor(
            store=store,
            feed=feed,
            notifier=notifier,
            scheduler=scheduler,
            tagger=ListingTitleTagger(["Binance Will List"]),
            polling_interval=3.0,
            clock=lambda: NOW,
        )
    return _make


@pytest.fixture
def monitor(make_monitor, store):
    m = make_monitor(store)
    m.restore()
    return m
