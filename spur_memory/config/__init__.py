"""Configuration models for the memory graph."""

from .settings import (
    DecayCfg,
    GraphConfig,
    PruningCfg,
    QueryCfg,
    RelevanceCfg,
    SemanticCfg,
    StorageCfg,
    TemporalCfg,
    load_config,
)

__all__ = [
    "DecayCfg",
    "GraphConfig",
    "PruningCfg",
    "QueryCfg",
    "RelevanceCfg",
    "SemanticCfg",
    "StorageCfg",
    "TemporalCfg",
    "load_config",
]
