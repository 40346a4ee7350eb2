"""
Chunk Scheduler - runs an arbitrary number of items through the analyzer.

Items are split into batches; batches run in waves of at most
`concurrency` concurrent calls, with a cooldown between waves to stay under
the deployment's per-minute budget. A batch that fails with a shrinkable
error is retried at a reduced size, down to single items.

Progress is reported from a completion counter shared by every in-flight
batch, never from a batch's position, so it cannot move backwards when
batches finish out of order.
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Union

from config.constants import MISSING_FROM_RESPONSE
from config.logging_config import get_logger
from config.settings import Settings, get_settings
from core.exceptions import ConfigurationError, ShrinkableError
from core.models import AnalysisResult, AnalyzableItem, ProgressEvent

logger = get_logger(__name__)

ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class CompletionCounter:
    """
    Completed batches/items of one run.

    Incremented and reported under a single lock, so two batches finishing
    together never observe the same count.
    """

    def __init__(self):
        self.lock = asyncio.Lock()
        self.batches = 0
        self.items = 0

    def increment(self, items: int) -> tuple[int, int]:
        """Caller must hold `lock`."""
        self.batches += 1
        self.items += items
        return self.batches, self.items


def partition(items: List[AnalyzableItem], batch_size: int) -> List[List[AnalyzableItem]]:
    """Ordered batches of batch_size; the last one may be smaller."""
    size = max(1, batch_size)
    return [items[i:i + size] for i in range(0, len(items), size)]


def _error_message(error: Exception) -> str:
    return getattr(error, "message", None) or str(error) or error.__class__.__name__


class ChunkScheduler:
    """
    Batches, waves and shrink-on-failure around a BatchAnalyzer.

    Usage:
        scheduler = ChunkScheduler(analyzer, settings)
        results = await scheduler.run(items, batch_size=8, concurrency=4,
                                      system_prompt=prompt, on_progress=callback)
        assert set(results) == {item.id for item in items}
    """

    def __init__(self, analyzer, settings: Optional[Settings] = None):
        self.analyzer = analyzer
        self.settings = settings or get_settings()

    async def run(
        self,
        items: List[AnalyzableItem],
        batch_size: int,
        concurrency: int,
        system_prompt: str,
        on_progress: Optional[ProgressCallback] = None,
        counter: Optional[CompletionCounter] = None,
    ) -> Dict[str, AnalysisResult]:
        """
        Analyze every item.

        Args:
            items: Items with unique ids
            batch_size: Items per LLM request
            concurrency: Batches per wave
            system_prompt: Prompt for this item class
            on_progress: Called (sync or async) after each batch completes
            counter: Completion counter shared by this run's batches

        Returns:
            Mapping id -> AnalysisResult with exactly one entry per item

        Raises:
            ConfigurationError: the provider rejected the configuration
            ValueError: duplicated item ids
        """
        ids = [item.id for item in items]
        if len(set(ids)) != len(ids):
            raise ValueError("Item ids must be unique within a run")
        if not items:
            return {}

        counter = counter or CompletionCounter()
        batches = partition(items, batch_size)
        concurrency = max(1, concurrency)
        total_waves = (len(batches) + concurrency - 1) // concurrency
        logger.info(
            f"Scheduling {len(items)} items in {len(batches)} batches of {batch_size} "
            f"({total_waves} waves of {concurrency})"
        )

        results: Dict[str, AnalysisResult] = {}
        for wave_index, start in enumerate(range(0, len(batches), concurrency)):
            wave = batches[start:start + concurrency]
            outcomes = await asyncio.gather(
                *(self._run_batch(batch, system_prompt, counter, len(batches), len(items), on_progress)
                  for batch in wave),
                return_exceptions=True,
            )

            for batch, outcome in zip(wave, outcomes):
                if isinstance(outcome, ConfigurationError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.error(f"Batch of {len(batch)} failed unexpectedly: {outcome}")
                    for item in batch:
                        results[item.id] = AnalysisResult.failure(item.id, _error_message(outcome))
                else:
                    results.update(outcome)

            if wave_index < total_waves - 1 and self.settings.wave_cooldown_seconds > 0:
                await asyncio.sleep(self.settings.wave_cooldown_seconds)

        return {item_id: results[item_id] for item_id in ids}

    async def _run_batch(
        self,
        batch: List[AnalyzableItem],
        system_prompt: str,
        counter: CompletionCounter,
        total_batches: int,
        total_items: int,
        on_progress: Optional[ProgressCallback],
    ) -> Dict[str, AnalysisResult]:
        """One logical batch, shrinking on payload/empty-content failures."""
        results: Dict[str, AnalysisResult] = {}
        pending = list(batch)
        size = len(pending)
        shrinks = 0

        while pending:
            chunk = pending[:size]
            try:
                analyzed = await self.analyzer.analyze(chunk, system_prompt)
            except ConfigurationError:
                raise
            except ShrinkableError as e:
                if size > 1 and shrinks < self.settings.max_shrink_attempts:
                    shrinks += 1
                    new_size = max(1, int(size * self.settings.shrink_factor))
                    logger.warning(f"{e.__class__.__name__} on batch of {size}, shrinking to {new_size}")
                    size = new_size
                    continue
                logger.error(f"Giving up on {len(chunk)} items after {shrinks} shrinks: {e}")
                analyzed = [AnalysisResult.failure(item.id, _error_message(e)) for item in chunk]
            except Exception as e:
                logger.error(f"Batch of {len(chunk)} failed: {e}")
                analyzed = [AnalysisResult.failure(item.id, _error_message(e)) for item in chunk]

            chunk_ids = {item.id for item in chunk}
            for result in analyzed:
                if result.id in chunk_ids and result.id not in results:
                    results[result.id] = result
            pending = pending[len(chunk):]

        for item in batch:
            if item.id not in results:
                results[item.id] = AnalysisResult.failure(item.id, MISSING_FROM_RESPONSE)

        async with counter.lock:
            completed_batches, completed_items = counter.increment(len(batch))
            await self._report(on_progress, ProgressEvent(
                completed_batches=completed_batches,
                total_batches=total_batches,
                completed_items=completed_items,
                total_items=total_items,
            ))

        return results

    @staticmethod
    async def _report(callback: Optional[ProgressCallback], event: ProgressEvent) -> None:
        """Safely call a progress callback, handling both sync and async."""
        if callback is None:
            return
        try:
            result = callback(event)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            # Progress reporting never breaks a run
            logger.warning(f"Progress callback error: {e}")
