"""
Workflows for Repo Discovery

This package contains high-level workflow orchestration:
- pipeline.py: Main pipeline orchestrator
- merger.py: Cross-strategy candidate deduplication
- signal_collector.py: Per-candidate metric gathering
- enrichment.py: Enrichment contract and re-score policy
- snapshot.py: Daily counter snapshots
- tool_scan.py: Daily tool attribution counts

Usage:
    from workflows import DiscoveryPipeline, PipelineConfig

    async with DiscoveryPipeline(PipelineConfig.from_env()) as pipeline:
        stats = await pipeline.run_full()
"""

# Lazy imports to avoid circular dependencies
__all__ = [
    "DiscoveryPipeline",
    "PipelineConfig",
    "PipelineStats",
    "ConfigurationError",
]


def __getattr__(name):
    """Lazy import to avoid circular dependencies."""
    if name == "DiscoveryPipeline":
        from workflows.pipeline import DiscoveryPipeline
        return DiscoveryPipeline
    elif name == "PipelineStats":
        from workflows.pipeline import PipelineStats
        return PipelineStats
    elif name == "PipelineConfig":
        from workflows.config import PipelineConfig
        return PipelineConfig
    elif name == "ConfigurationError":
        from workflows.config import ConfigurationError
        return ConfigurationError
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
