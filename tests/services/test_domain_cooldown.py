from src.services.domain_cooldown import DomainCooldownTracker


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_shorter_cooldown_does_not_shrink_existing_expiry() -> None:
    clock = FakeClock()
    tracker = DomainCooldownTracker(clock=clock)

    tracker.set_cooldown("https://www.reuters.com/world/a", 60_000, 403)
    tracker.set_cooldown("https://reuters.com/markets/b", 5_000, 429)

    cooldown = tracker.is_in_cooldown("https://reuters.com/c")
    assert cooldown is not None
    assert cooldown.host == "reuters.com"
    assert cooldown.remaining_ms == 60_000


def test_longer_cooldown_extends_expiry() -> None:
    clock = FakeClock()
    tracker = DomainCooldownTracker(clock=clock)

    tracker.set_cooldown("https://example.com/a", 1_000)
    tracker.set_cooldown("https://example.com/a", 10_000)

    assert tracker.is_in_cooldown("https://example.com/x").remaining_ms == 10_000


def test_expired_entries_are_evicted_on_lookup() -> None:
    clock = FakeClock()
    tracker = DomainCooldownTracker(clock=clock)
    tracker.set_cooldown("https://example.com/a", 2_000)

    clock.now += 2.5

    assert tracker.is_in_cooldown("https://example.com/a") is None
    assert tracker._cooldowns == {}


def test_ignores_urls_without_host_and_non_positive_durations() -> None:
    tracker = DomainCooldownTracker(clock=FakeClock())

    assert tracker.set_cooldown("not a url", 5_000) is None
    assert tracker.set_cooldown("https://example.com", 0) is None
    assert tracker.is_in_cooldown("https://example.com") is None
    assert tracker.is_in_cooldown(None) is None
