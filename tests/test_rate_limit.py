import threading

from flask import Request
from werkzeug.test import EnvironBuilder

from app.portal.models import IP_MAX_LENGTH
from app.portal.rate_limit import RATE_LIMITS, RateLimiter, client_ip, rate_limit_key


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _limiter(clock=None) -> RateLimiter:
    # cleanup_interval=0 keeps the sweeper thread out of unit tests.
    return RateLimiter(cleanup_interval=0, clock=clock or FakeClock())


def test_first_ten_allowed_then_rejected():
    clock = FakeClock()
    rl = _limiter(clock)

    remaining = []
    for _ in range(10):
        r = rl.check("login:1.2.3.4", 10, 60)
        assert r.allowed is True
        assert r.retry_after_seconds == 0
        remaining.append(r.remaining)
        clock.advance(1)
    assert remaining == list(range(9, -1, -1))

    r = rl.check("login:1.2.3.4", 10, 60)
    assert r.allowed is False
    assert r.remaining == 0
    assert r.retry_after_seconds > 0
    assert r.retry_after_seconds == 50


def test_window_resets_after_reset_at():
    clock = FakeClock()
    rl = _limiter(clock)
    for _ in range(11):
        rl.check("k", 10, 60)
    assert rl.check("k", 10, 60).allowed is False

    # Still inside the window at exactly reset_at.
    clock.advance(60)
    assert rl.check("k", 10, 60).allowed is False

    clock.advance(0.001)
    r = rl.check("k", 10, 60)
    assert r.allowed is True
    assert r.remaining == 9
    assert r.reset_at == clock.now + 60


def test_keys_are_independent():
    rl = _limiter()
    for _ in range(3):
        rl.check("login:a", 2, 60)
    assert rl.check("login:a", 2, 60).allowed is False
    assert rl.check("login:b", 2, 60).allowed is True
    assert rl.check("register:a", 2, 60).allowed is True


def test_evict_expired_only_drops_elapsed_windows():
    clock = FakeClock()
    rl = _limiter(clock)
    rl.check("old", 5, 10)
    clock.advance(5)
    rl.check("fresh", 5, 10)
    clock.advance(6)

    assert rl.evict_expired() == 1
    assert len(rl) == 1
    assert rl.check("fresh", 5, 10).remaining == 3


def test_concurrent_checks_do_not_undercount():
    rl = RateLimiter(cleanup_interval=0)
    allowed = []
    lock = threading.Lock()

    def worker():
        for _ in range(50):
            r = rl.check("hot", 100, 60)
            if r.allowed:
                with lock:
                    allowed.append(r.remaining)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(allowed) == 100
    assert sorted(allowed) == list(range(0, 100))


def test_cleanup_thread_is_daemon_and_stoppable():
    rl = RateLimiter(cleanup_interval=0.01)
    rl.check("k", 1, 60)
    t = rl._cleanup_thread
    assert t is not None and t.daemon
    rl.stop()
    rl.stop()
    assert not t.is_alive()


def test_named_rules():
    assert RATE_LIMITS["auth"].max_requests == 10
    assert RATE_LIMITS["auth"].window_seconds == 60
    assert RATE_LIMITS["api"].max_requests == 60


def _request(headers: dict) -> Request:
    return Request(EnvironBuilder(path="/", headers=headers).get_environ())


def test_client_ip_prefers_first_forwarded_for():
    req = _request({"X-Forwarded-For": " 10.0.0.1 , 10.0.0.2", "X-Real-IP": "10.9.9.9"})
    assert client_ip(req) == "10.0.0.1"


def test_client_ip_falls_back_to_real_ip_then_unknown():
    assert client_ip(_request({"X-Real-IP": "10.9.9.9"})) == "10.9.9.9"
    assert client_ip(_request({})) == "unknown"


def test_client_ip_is_cut_to_column_width():
    long_ip = "1" * 200
    assert client_ip(_request({"X-Forwarded-For": long_ip + ", 10.0.0.2"})) == long_ip[:IP_MAX_LENGTH]
    assert client_ip(_request({"X-Real-IP": long_ip})) == long_ip[:IP_MAX_LENGTH]


def test_rate_limit_key_format():
    assert rate_limit_key("login", "1.2.3.4") == "login:1.2.3.4"
