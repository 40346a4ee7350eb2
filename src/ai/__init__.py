"""
LLM side of the validation pipeline.

- AzureTransportClient: one chat completion with retries
- BatchAnalyzer: one batch of questions, with per-item salvage
- ChunkScheduler: batches, waves and shrink-on-failure

Usage:
    from ai import AzureTransportClient, BatchAnalyzer, ChunkScheduler

    transport = AzureTransportClient()
    scheduler = ChunkScheduler(BatchAnalyzer(transport))
    results = await scheduler.run(items, batch_size=8, concurrency=4, system_prompt=prompt)
"""

# Lazy imports keep `openai` out of offline code paths
__all__ = [
    "AzureTransportClient",
    "BatchAnalyzer",
    "ChunkScheduler",
    "CompletionCounter",
]


def AzureTransportClient(*args, **kwargs):
    """Create an Azure transport client (lazy import)."""
    from .transport import AzureTransportClient as _AzureTransportClient
    return _AzureTransportClient(*args, **kwargs)


def BatchAnalyzer(*args, **kwargs):
    """Create a batch analyzer (lazy import)."""
    from .batch_analyzer import BatchAnalyzer as _BatchAnalyzer
    return _BatchAnalyzer(*args, **kwargs)


def ChunkScheduler(*args, **kwargs):
    """Create a chunk scheduler (lazy import)."""
    from .chunk_scheduler import ChunkScheduler as _ChunkScheduler
    return _ChunkScheduler(*args, **kwargs)


def CompletionCounter(*args, **kwargs):
    """Create a completion counter (lazy import)."""
    from .chunk_scheduler import CompletionCounter as _CompletionCounter
    return _CompletionCounter(*args, **kwargs)
