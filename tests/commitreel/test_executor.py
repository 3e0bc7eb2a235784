"""Tests for the bounded-concurrency executor."""

from __future__ import annotations

import asyncio
import random

import pytest

from commitreel.engines.history.executor import TaskResult, run_all


class TestRunAll:
    @pytest.mark.anyio
    @pytest.mark.parametrize("concurrency", [1, 3, 7, 20])
    async def test_results_follow_input_order(self, concurrency):
        rng = random.Random(concurrency)
        items = list(range(20))

        async def task(item, index):
            await asyncio.sleep(rng.random() / 200)
            return item * 10 + index

        results = await run_all(items, concurrency, task)
        assert len(results) == len(items)
        assert [r.value for r in results] == [i * 11 for i in items]
        assert all(r.ok for r in results)

    @pytest.mark.anyio
    async def test_never_exceeds_concurrency(self):
        in_flight = 0
        peak = 0

        async def task(item, index):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001)
            in_flight -= 1
            return item

        await run_all(list(range(30)), 4, task)
        assert peak == 4

    @pytest.mark.anyio
    async def test_each_index_claimed_once(self):
        seen = []

        async def task(item, index):
            seen.append(index)
            await asyncio.sleep(0)
            return item

        await run_all(list("abcdefgh"), 3, task)
        assert sorted(seen) == list(range(8))

    @pytest.mark.anyio
    async def test_failure_isolated_to_its_slot(self):
        async def task(item, index):
            await asyncio.sleep(0.001 * (5 - index))
            if item == "bad":
                raise RuntimeError("nope")
            return item.upper()

        results = await run_all(["a", "bad", "c", "d"], 2, task)
        assert [r.ok for r in results] == [True, False, True, True]
        assert isinstance(results[1].error, RuntimeError)
        assert [r.value for r in results if r.ok] == ["A", "C", "D"]

    @pytest.mark.anyio
    async def test_empty_input(self):
        async def task(item, index):
            raise AssertionError("not called")

        assert await run_all([], 5, task) == []

    @pytest.mark.anyio
    @pytest.mark.parametrize("concurrency", [0, -1])
    async def test_invalid_concurrency(self, concurrency):
        async def task(item, index):
            return item

        with pytest.raises(ValueError):
            await run_all([1], concurrency, task)


class TestTaskResult:
    def test_unwrap_value(self):
        assert TaskResult(value=3).unwrap() == 3

    def test_unwrap_error(self):
        with pytest.raises(KeyError):
            TaskResult(error=KeyError("k")).unwrap()
