"""Tests for batch partitioning, pacing, checkpointing and resume."""

from __future__ import annotations

import pytest

from conftest import FakeClock, FakeJudge, FakeRenderer, make_rules
from wrc.errors import NavigationError, ScanError
from wrc.scan.checkpoint import MemoryCheckpointStore, load_checkpoint
from wrc.scan.scheduler import (
    BatchScheduler,
    RequestThrottle,
    make_batches,
    partition_rules,
)
from wrc.schemas.scan import ScanResult

URL = "https://example.com"


def _scheduler(store, *, judge=None, renderer=None, clock=None, **kwargs) -> BatchScheduler:
    clock = clock or FakeClock()
    kwargs.setdefault("min_request_interval", 0)
    return BatchScheduler(
        renderer or FakeRenderer(),
        judge or FakeJudge(),
        store,
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )


class TestPartition:
    @pytest.mark.parametrize("n", range(1, 23))
    @pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 10])
    def test_coverage(self, n: int, size: int) -> None:
        rules = make_rules(n)
        groups = partition_rules(rules, size)

        assert len(groups) == -(-n // size)
        assert [r for g in groups for r in g] == rules
        sizes = [len(g) for g in groups]
        assert all(1 <= s <= size for s in sizes)
        assert sizes == sorted(sizes, reverse=True)
        assert max(sizes) - min(sizes) <= 1

    def test_seven_rules_batch_five(self) -> None:
        sizes = [len(g) for g in partition_rules(make_rules(7), 5)]
        assert sizes == [4, 3]

    def test_eleven_rules_batch_five(self) -> None:
        assert [len(g) for g in partition_rules(make_rules(11), 5)] == [4, 4, 3]

    def test_empty(self) -> None:
        assert partition_rules([], 5) == []

    def test_bad_size(self) -> None:
        with pytest.raises(ValueError):
            partition_rules(make_rules(3), 0)

    def test_make_batches(self) -> None:
        batches = make_batches(URL, make_rules(7), 5, timestamp=1700000000000)
        assert [b.batch_id for b in batches] == ["batch-1700000000000-0", "batch-1700000000000-1"]
        assert [b.batch_index for b in batches] == [0, 1]
        assert all(b.total_batches == 2 and b.url == URL for b in batches)


class TestThrottle:
    @pytest.mark.asyncio
    async def test_first_call_free_then_spaced(self) -> None:
        clock = FakeClock()
        throttle = RequestThrottle(10.0, clock=clock, sleep=clock.sleep)

        assert await throttle.wait() == 0.0
        throttle.mark()
        clock.advance(3.0)
        assert await throttle.wait() == pytest.approx(7.0)
        throttle.mark()
        clock.advance(12.0)
        assert await throttle.wait() == 0.0
        assert clock.sleeps == [pytest.approx(7.0)]

    @pytest.mark.asyncio
    async def test_spacing_across_batches(self) -> None:
        """Consecutive judging calls start at least the interval apart, even across batches."""
        clock = FakeClock()
        judge = FakeJudge(clock=clock)
        store = MemoryCheckpointStore()
        scheduler = _scheduler(store, judge=judge, clock=clock, batch_size=2, min_request_interval=10.0)

        batches = scheduler.schedule_scan(URL, make_rules(5))
        await scheduler.run_batches(batches)

        starts = [t for _, t in judge.calls]
        assert len(starts) == 5
        gaps = [b - a for a, b in zip(starts, starts[1:])]
        assert all(g >= 10.0 for g in gaps)


class TestRunBatches:
    @pytest.mark.asyncio
    async def test_every_rule_gets_a_result(self, store: MemoryCheckpointStore) -> None:
        judge = FakeJudge(failing={"r2"})
        scheduler = _scheduler(store, judge=judge)
        rules = make_rules(7)

        batches = scheduler.schedule_scan(URL, rules)
        results = await scheduler.run_batches(batches)

        assert [r.rule_id for r in results] == [r.id for r in rules]
        assert [r.rule_id for r in results if not r.passed] == ["r2"]
        assert store.read() == {}

    @pytest.mark.asyncio
    async def test_checkpoint_after_each_batch(self) -> None:
        snapshots = []

        class SnoopingStore(MemoryCheckpointStore):
            def write(self, values):
                super().write(values)
                snapshots.append(load_checkpoint(self))

        store = SnoopingStore()
        scheduler = _scheduler(store, batch_size=3)
        batches = scheduler.schedule_scan(URL, make_rules(7))
        await scheduler.run_batches(batches)

        # initial queue + one write per batch
        assert len(snapshots) == 1 + len(batches)
        assert [len(s.batches) for s in snapshots] == [3, 2, 1, 0]
        assert [len(s.results) for s in snapshots] == [0, 3, 5, 7]
        assert all(s.url == URL for s in snapshots)

    @pytest.mark.asyncio
    async def test_render_failure_fails_batch_only(self, store: MemoryCheckpointStore) -> None:
        renderer = FakeRenderer(fail=NavigationError("All navigation strategies failed. Last error: timeout"))
        judge = FakeJudge()
        scheduler = _scheduler(store, judge=judge, renderer=renderer, batch_size=5)

        batches = scheduler.schedule_scan(URL, make_rules(7))
        results = await scheduler.run_batches(batches)

        assert len(results) == 7
        assert not any(r.passed for r in results)
        assert results[0].reason.startswith("Error processing batch 1/2")
        assert "All navigation strategies failed" in results[0].reason
        assert judge.calls == []

    @pytest.mark.asyncio
    async def test_renders_once_per_batch(self, store: MemoryCheckpointStore) -> None:
        renderer = FakeRenderer()
        scheduler = _scheduler(store, renderer=renderer, batch_size=2)
        await scheduler.run_batches(scheduler.schedule_scan(URL, make_rules(6)))
        assert renderer.calls == [URL] * 3

    @pytest.mark.asyncio
    async def test_reuse_page_context(self, store: MemoryCheckpointStore) -> None:
        renderer = FakeRenderer()
        scheduler = _scheduler(store, renderer=renderer, batch_size=2, reuse_page_context=True)
        await scheduler.run_batches(scheduler.schedule_scan(URL, make_rules(6)))
        assert renderer.calls == [URL]

    @pytest.mark.asyncio
    async def test_duplicate_rule_ids_dropped(self, store: MemoryCheckpointStore) -> None:
        rules = make_rules(3) + make_rules(2)
        scheduler = _scheduler(store, batch_size=2)
        results = await scheduler.run_batches(scheduler.schedule_scan(URL, rules))
        assert [r.rule_id for r in results] == ["r1", "r2", "r3"]

    @pytest.mark.asyncio
    async def test_out_of_order_rejected(self, store: MemoryCheckpointStore) -> None:
        scheduler = _scheduler(store, batch_size=2)
        batches = scheduler.schedule_scan(URL, make_rules(4))
        with pytest.raises(ValueError, match="batch_index"):
            await scheduler.run_batches(list(reversed(batches)))


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_matches_fresh_run(self) -> None:
        """Resuming [B2, B3] with B1's results yields the same list as an uninterrupted run."""
        rules = make_rules(7)

        fresh_store = MemoryCheckpointStore()
        fresh = _scheduler(fresh_store, judge=FakeJudge(failing={"r4"}), batch_size=3)
        expected = await fresh.run_batches(fresh.schedule_scan(URL, rules))

        store = MemoryCheckpointStore()
        first = _scheduler(store, judge=FakeJudge(failing={"r4"}), batch_size=3)
        batches = first.schedule_scan(URL, rules)

        class Interrupt(Exception):
            pass

        class StopAfterFirstBatch(FakeJudge):
            async def judge(self, context, rule, url):
                if rule.id == "r4":
                    raise Interrupt()
                return await super().judge(context, rule, url)

        first.judge = StopAfterFirstBatch(failing={"r4"})
        with pytest.raises(Interrupt):
            await first.run_batches(batches)

        second = _scheduler(store, judge=FakeJudge(failing={"r4"}), batch_size=3)
        assert second.has_pending()
        pending = second.pending()
        assert [b.batch_index for b in pending.batches] == [1, 2]
        assert [r.rule_id for r in pending.results] == ["r1", "r2", "r3"]

        resumed = await second.resume()
        assert resumed == expected
        assert not second.has_pending()

    @pytest.mark.asyncio
    async def test_resume_from_stored_snapshot(self) -> None:
        batches = make_batches(URL, make_rules(6), 2, timestamp=1)
        done = [ScanResult(rule_id="r1", rule_title="Rule 1", passed=True, reason="ok"),
                ScanResult(rule_id="r2", rule_title="Rule 2", passed=True, reason="ok")]
        store = MemoryCheckpointStore({
            "scanUrl": URL,
            "scanBatches": [b.model_dump(mode="json", by_alias=True) for b in batches[1:]],
            "scanResults": [r.model_dump(mode="json", by_alias=True) for r in done],
        })
        judge = FakeJudge()
        scheduler = _scheduler(store, judge=judge, batch_size=2)

        results = await scheduler.resume()
        assert [r.rule_id for r in results] == ["r1", "r2", "r3", "r4", "r5", "r6"]
        assert [rule_id for rule_id, _ in judge.calls] == ["r3", "r4", "r5", "r6"]

    @pytest.mark.asyncio
    async def test_nothing_to_resume(self, store: MemoryCheckpointStore) -> None:
        with pytest.raises(ScanError, match="No pending scan"):
            await _scheduler(store).resume()
