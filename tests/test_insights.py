import pytest

from insights import InsightCache, InsightGenerator, RateLimiter, build_prompt_inputs, cache_key
from models import AdaptationAction, AdaptationActionType, AdaptationResult, PassOutcome


class FakeChain:
    def __init__(self, response=None, error=None):
        self.response = response or {
            "summary": "One missed task was moved to Wednesday morning.",
            "suggestions": [{"title": "Catch up", "detail": "Finish the anatomy reading.", "priority": "HIGH"}],
            "confidence": 0.8,
        }
        self.error = error
        self.calls = []

    async def ainvoke(self, inputs):
        self.calls.append(inputs)
        if self.error:
            raise self.error
        return self.response


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _result(actions=()):
    return AdaptationResult(
        learner_id="learner-1",
        plan_id="plan-1",
        actions=list(actions),
        pass_outcomes=[PassOutcome("missed_tasks", True, len(actions)), PassOutcome("workload", False, error="boom")],
    )


def _action():
    return AdaptationAction(
        AdaptationActionType.ADD_REVIEW_SESSION,
        "Added review of Anatomy",
        ["t1"],
        {"topic_id": "anatomy"},
    )


def test_rate_limiter_sliding_window():
    clock = FakeClock()
    limiter = RateLimiter(max_calls=2, period=60, clock=clock)
    assert limiter.try_acquire()
    assert limiter.try_acquire()
    assert not limiter.try_acquire()
    clock.now = 61
    assert limiter.try_acquire()


def test_cache_evicts_least_recently_used():
    cache = InsightCache(max_entries=2)
    cache.put("a", {"n": 1})
    cache.put("b", {"n": 2})
    assert cache.get("a") == {"n": 1}
    cache.put("c", {"n": 3})
    assert cache.get("b") is None
    assert cache.get("a") == {"n": 1}
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_prompt_inputs_name_topics_and_failed_passes(load_snapshot):
    inputs = build_prompt_inputs(_result([_action()]), await load_snapshot())
    assert "Anatomy" in inputs["actions"]
    assert "ADD_REVIEW_SESSION" in inputs["actions"]
    assert inputs["failed_passes"] == "workload"
    assert "2025-04-15" in inputs["learner_summary"]


@pytest.mark.asyncio
async def test_no_actions_still_produces_inputs(load_snapshot):
    inputs = build_prompt_inputs(_result(), await load_snapshot())
    assert inputs["actions"] == "- No changes were needed."


@pytest.mark.asyncio
async def test_generate_validates_and_caches(load_snapshot):
    chain = FakeChain()
    generator = InsightGenerator(chain=chain)
    snapshot = await load_snapshot()

    first = await generator.generate(_result([_action()]), snapshot)
    second = await generator.generate(_result([_action()]), snapshot)

    assert first["summary"].startswith("One missed task")
    assert first["suggestions"][0]["priority"] == "HIGH"
    assert second == first
    assert len(chain.calls) == 1


@pytest.mark.asyncio
async def test_rate_limited_call_returns_none(load_snapshot):
    chain = FakeChain()
    generator = InsightGenerator(chain=chain, rate_limiter=RateLimiter(max_calls=0))
    assert await generator.generate(_result(), await load_snapshot()) is None
    assert chain.calls == []


@pytest.mark.asyncio
async def test_model_failure_returns_none(load_snapshot):
    generator = InsightGenerator(chain=FakeChain(error=RuntimeError("quota")))
    assert await generator.generate(_result(), await load_snapshot()) is None


@pytest.mark.asyncio
async def test_invalid_model_output_returns_none(load_snapshot):
    cache = InsightCache()
    generator = InsightGenerator(chain=FakeChain(response={"confidence": 3}), cache=cache)
    assert await generator.generate(_result(), await load_snapshot()) is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_missing_api_key_returns_none(monkeypatch, load_snapshot):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    generator = InsightGenerator()
    assert await generator.generate(_result(), await load_snapshot()) is None


def test_cache_key_is_stable():
    inputs = {"learner_summary": "x", "actions": "y", "failed_passes": "none"}
    assert cache_key(inputs) == cache_key(dict(reversed(list(inputs.items()))))
