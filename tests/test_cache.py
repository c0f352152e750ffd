from topicquota.core.models import DecodedMessage
from topicquota.storage.cache import TTLMessageCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _messages() -> list[DecodedMessage]:
    return [DecodedMessage(type="chat-qa", timestamp="1.000000001", content={"usageQuota": 1})]


def test_cache_hit_before_ttl() -> None:
    clock = FakeClock()
    cache = TTLMessageCache(ttl_s=300, clock=clock)
    cache.put("0.0.1", _messages())

    clock.now = 299.0

    assert cache.get("0.0.1") == _messages()


def test_cache_expires_after_ttl() -> None:
    clock = FakeClock()
    cache = TTLMessageCache(ttl_s=300, clock=clock)
    cache.put("0.0.1", _messages())

    clock.now = 300.0

    assert cache.get("0.0.1") is None
    assert len(cache) == 0


def test_cache_returns_copies() -> None:
    cache = TTLMessageCache()
    cache.put("0.0.1", _messages())

    cache.get("0.0.1").clear()

    assert len(cache.get("0.0.1")) == 1


def test_invalidate_one_or_all() -> None:
    cache = TTLMessageCache()
    cache.put("0.0.1", _messages())
    cache.put("0.0.2", _messages())

    cache.invalidate("0.0.1")
    assert cache.get("0.0.1") is None
    assert cache.get("0.0.2") is not None

    cache.invalidate()
    assert len(cache) == 0
