"""
test_model_manager.py
~~~~~~~~~~~~~~~~~~~~~
Model discovery: candidate order, probe spacing, rate-limit handling
and the unforced attempt budget.
"""
from __future__ import annotations

import asyncio

from agentdesk.services.classification.cache import RequestBudget
from agentdesk.services.classification.errors import (
    ClassifierRateLimitError,
    UpstreamCallError,
)
from agentdesk.services.classification.model_manager import (
    MAX_DISCOVERY_ATTEMPTS,
    PROBE_SPACING_SECONDS,
    REVALIDATE_INTERVAL_SECONDS,
    ModelManager,
    ModelState,
)
from conftest import FakeGenerator


class TestDiscovery:

    def test_first_working_candidate_wins(self, models, generator, sleep):
        generator.script = [UpstreamCallError("boom")]
        model = asyncio.run(models.discover())
        assert model == "model-b"
        assert models.state == ModelState.KNOWN_GOOD
        assert [m for m, _, _ in generator.calls] == ["model-a", "model-b"]
        assert sleep.calls == [PROBE_SPACING_SECONDS]

    def test_fresh_model_is_reused(self, models, generator):
        asyncio.run(models.discover())
        asyncio.run(models.discover())
        assert generator.count("probe") == 1

    def test_revalidates_after_interval(self, models, generator, clock):
        asyncio.run(models.discover())
        clock.advance(REVALIDATE_INTERVAL_SECONDS + 1)
        asyncio.run(models.discover())
        assert generator.count("probe") == 2

    def test_all_candidates_failing(self, models, generator, health, sleep):
        generator.script = [UpstreamCallError("down")] * 3
        assert asyncio.run(models.discover()) is None
        assert models.state == ModelState.KNOWN_BAD
        assert not health.is_healthy
        assert health.consecutive_failures == 1
        # No spacing after the last candidate
        assert sleep.calls == [PROBE_SPACING_SECONDS, PROBE_SPACING_SECONDS]

    def test_rate_limit_stops_discovery(self, models, generator, budget):
        generator.script = [ClassifierRateLimitError("429")]
        assert asyncio.run(models.discover()) is None
        assert len(generator.calls) == 1
        assert budget.remaining == 0

    def test_untyped_quota_error_also_stops_discovery(self, models, generator, budget):
        generator.script = [RuntimeError("RESOURCE_EXHAUSTED: quota exceeded")]
        assert asyncio.run(models.discover()) is None
        assert len(generator.calls) == 1
        assert budget.remaining == 0

    def test_unforced_attempt_budget(self, models, generator):
        generator.script = [UpstreamCallError("down")] * (3 * MAX_DISCOVERY_ATTEMPTS)
        for _ in range(MAX_DISCOVERY_ATTEMPTS):
            asyncio.run(models.discover())
        probes = len(generator.calls)

        assert asyncio.run(models.discover()) is None
        assert len(generator.calls) == probes

        # An explicit request still probes, and success resets the counter
        assert asyncio.run(models.discover(force_refresh=True)) == "model-a"
        assert models.discovery_attempts == 0

    def test_spent_budget_skips_probing(self, generator, health, clock, sleep):
        budget = RequestBudget(max_requests=1, clock=clock)
        budget.consume()
        manager = ModelManager(generator, budget, health, ["model-a"], clock=clock, sleep=sleep)
        assert asyncio.run(manager.get_working_model()) is None
        assert generator.calls == []

    def test_concurrent_callers_share_one_pass(self, models, generator):
        async def both():
            return await asyncio.gather(models.discover(), models.discover())

        assert asyncio.run(both()) == ["model-a", "model-a"]
        assert generator.count("probe") == 1

    def test_invalidate(self, models):
        asyncio.run(models.discover())
        models.invalidate()
        assert models.working_model is None
        assert models.state == ModelState.UNKNOWN

    def test_probe_budget_shared_with_classification(self, health, clock, sleep):
        budget = RequestBudget(max_requests=2, clock=clock)
        generator = FakeGenerator(script=[UpstreamCallError("a"), UpstreamCallError("b")])
        manager = ModelManager(
            generator, budget, health, ["m1", "m2", "m3"], clock=clock, sleep=sleep
        )
        assert asyncio.run(manager.discover(force_refresh=True)) is None
        assert len(generator.calls) == 2
        assert budget.remaining == 0
