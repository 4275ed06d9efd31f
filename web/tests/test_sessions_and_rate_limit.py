from services.housekeeping import run_sweeps
from services.rate_limit import SlidingWindowLimiter
from services.session_store import SessionStore


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_session_lifecycle():
    clock = FakeClock()
    store = SessionStore(lifetime_seconds=3600, clock=clock)

    rec = store.create("admin")
    assert rec.authenticated is True
    assert store.get(rec.session_id) == rec
    assert store.destroy(rec.session_id) is True
    assert store.get(rec.session_id) is None
    assert store.destroy(rec.session_id) is False


def test_session_expires_after_fixed_lifetime():
    clock = FakeClock()
    store = SessionStore(lifetime_seconds=3600, clock=clock)
    rec = store.create("admin")

    clock.now += 3599
    assert store.get(rec.session_id) is not None
    # Lookups do not extend the lifetime.
    clock.now += 1
    assert store.get(rec.session_id) is None
    assert len(store) == 0


def test_session_ids_are_unique_and_opaque():
    store = SessionStore()
    ids = {store.create("admin").session_id for _ in range(50)}
    assert len(ids) == 50
    assert all("admin" not in sid and len(sid) >= 32 for sid in ids)


def test_get_ignores_missing_or_bad_ids():
    store = SessionStore()
    assert store.get(None) is None
    assert store.get("") is None
    assert store.get(123) is None  # type: ignore[arg-type]


def test_sweep_evicts_only_expired_sessions():
    clock = FakeClock()
    store = SessionStore(lifetime_seconds=60, clock=clock)
    old = store.create("admin")
    clock.now += 30
    fresh = store.create("admin")
    clock.now += 31

    assert store.sweep() == 1
    assert store.get(old.session_id) is None
    assert store.get(fresh.session_id) is not None


def test_limiter_allows_five_then_blocks():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(max_attempts=5, window_seconds=900, clock=clock)

    assert [limiter.hit("1.2.3.4") for _ in range(6)] == [True] * 5 + [False]
    assert limiter.retry_after("1.2.3.4") == 900
    assert limiter.retry_after("5.6.7.8") == 0
    assert limiter.hit("5.6.7.8") is True


def test_limiter_window_slides():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(max_attempts=5, window_seconds=900, clock=clock)

    limiter.hit("ip")
    clock.now += 600
    for _ in range(4):
        limiter.hit("ip")
    assert limiter.hit("ip") is False
    # Blocked until the oldest attempt leaves the window.
    assert limiter.retry_after("ip") == 300

    # The first attempt leaves the window; one slot frees up.
    clock.now += 300
    assert limiter.hit("ip") is True
    assert limiter.hit("ip") is False


def test_limiter_sweep_drops_idle_keys():
    clock = FakeClock()
    limiter = SlidingWindowLimiter(max_attempts=5, window_seconds=10, clock=clock)
    limiter.hit("a")
    clock.now += 5
    limiter.hit("b")
    clock.now += 6

    assert limiter.sweep() == 1
    assert limiter.retry_after("a") == 0
    clock.now += 5
    assert limiter.sweep() == 1


def test_run_sweeps_totals_evictions():
    clock = FakeClock()
    sessions = SessionStore(lifetime_seconds=1, clock=clock)
    limiter = SlidingWindowLimiter(max_attempts=5, window_seconds=1, clock=clock)
    sessions.create("admin")
    limiter.hit("ip")
    clock.now += 2

    assert run_sweeps([sessions.sweep, limiter.sweep]) == 2
