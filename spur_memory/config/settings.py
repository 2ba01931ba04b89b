"""Memory graph settings and configuration schema."""

import json
import math
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from spur_memory.errors import InvalidConfiguration


def _check_unit(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise InvalidConfiguration(f"{name} must be within [0, 1], got {value}")


def _check_positive(name: str, value: float) -> None:
    if value <= 0:
        raise InvalidConfiguration(f"{name} must be positive, got {value}")


class TemporalCfg(BaseModel):
    """Session clustering."""
    gap_threshold_s: float = Field(30 * 60, description="Max gap between a node and its cluster end")

    @model_validator(mode="after")
    def _validate(self) -> "TemporalCfg":
        if self.gap_threshold_s < 0:
            raise InvalidConfiguration(
                f"temporal.gap_threshold_s must be >= 0, got {self.gap_threshold_s}"
            )
        return self


class SemanticCfg(BaseModel):
    """Semantic edge creation."""
    threshold: float = Field(0.75, description="Similarity strictly above this creates an edge")
    top_k: int = Field(10, description="Nearest neighbours considered per ingested node")
    provider_timeout_s: Optional[float] = Field(
        None, description="Timeout for an injected similarity provider call"
    )
    embedding_dim: Optional[int] = Field(
        None, description="Fixed embedding dimension; inferred from first node when unset"
    )

    @model_validator(mode="after")
    def _validate(self) -> "SemanticCfg":
        _check_unit("semantic.threshold", self.threshold)
        if self.top_k < 0:
            raise InvalidConfiguration(f"semantic.top_k must be >= 0, got {self.top_k}")
        if self.provider_timeout_s is not None:
            _check_positive("semantic.provider_timeout_s", self.provider_timeout_s)
        if self.embedding_dim is not None:
            _check_positive("semantic.embedding_dim", self.embedding_dim)
        return self


class RelevanceCfg(BaseModel):
    """Weights of the persisted relevance score."""
    recency_weight: float = 0.5
    centrality_weight: float = 0.3
    frequency_weight: float = 0.2
    decay_lambda: float = Field(math.log(2) / 72, description="Per-hour recency decay rate")
    access_saturation: int = Field(20, description="Access count at which frequency saturates")

    @model_validator(mode="after")
    def _validate(self) -> "RelevanceCfg":
        weights = (self.recency_weight, self.centrality_weight, self.frequency_weight)
        for name, w in zip(("recency_weight", "centrality_weight", "frequency_weight"), weights):
            if w < 0:
                raise InvalidConfiguration(f"relevance.{name} must be >= 0, got {w}")
        if sum(weights) <= 0:
            raise InvalidConfiguration("relevance weights must not all be zero")
        if self.decay_lambda < 0:
            raise InvalidConfiguration(
                f"relevance.decay_lambda must be >= 0, got {self.decay_lambda}"
            )
        _check_positive("relevance.access_saturation", self.access_saturation)
        return self

    @property
    def half_life_hours(self) -> float:
        if self.decay_lambda == 0:
            return math.inf
        return math.log(2) / self.decay_lambda


class DecayCfg(BaseModel):
    """Maintenance decay pass."""
    batch_size: int = 500

    @model_validator(mode="after")
    def _validate(self) -> "DecayCfg":
        _check_positive("decay.batch_size", self.batch_size)
        return self


class PruningCfg(BaseModel):
    """Graph size bounds."""
    ceiling: int = Field(10_000, description="Max live (non-archived) nodes")
    load_factor: float = Field(0.9, description="Fraction of ceiling kept after a prune")
    protected_window_s: float = Field(24 * 3600, description="Recently accessed nodes are never archived")
    retention_horizon_s: float = Field(90 * 24 * 3600, description="Archived nodes are deleted after this")
    batch_size: int = 500
    prune_on_ingest: bool = True

    @model_validator(mode="after")
    def _validate(self) -> "PruningCfg":
        _check_positive("pruning.ceiling", self.ceiling)
        if not 0.0 < self.load_factor <= 1.0:
            raise InvalidConfiguration(
                f"pruning.load_factor must be within (0, 1], got {self.load_factor}"
            )
        if self.protected_window_s < 0:
            raise InvalidConfiguration("pruning.protected_window_s must be >= 0")
        if self.retention_horizon_s < 0:
            raise InvalidConfiguration("pruning.retention_horizon_s must be >= 0")
        _check_positive("pruning.batch_size", self.batch_size)
        return self

    @property
    def target_live(self) -> int:
        """Live count a prune pass brings the graph down to."""
        return int(math.floor(self.ceiling * self.load_factor + 1e-9))


class QueryCfg(BaseModel):
    """Blended query ranking."""
    relevance_weight: float = Field(0.4, description="alpha")
    similarity_weight: float = Field(0.6, description="beta")
    default_limit: int = 10

    @model_validator(mode="after")
    def _validate(self) -> "QueryCfg":
        _check_unit("query.relevance_weight", self.relevance_weight)
        _check_unit("query.similarity_weight", self.similarity_weight)
        if self.relevance_weight + self.similarity_weight <= 0:
            raise InvalidConfiguration("query weights must not both be zero")
        _check_positive("query.default_limit", self.default_limit)
        return self


class StorageCfg(BaseModel):
    """Persistence backend."""
    db_path: Optional[str] = Field(None, description="SQLite file; in-memory backend when unset")
    history_size: int = Field(50, description="Maintenance reports kept in memory")


class GraphConfig(BaseModel):
    """Main memory graph settings."""
    temporal: TemporalCfg = TemporalCfg()
    semantic: SemanticCfg = SemanticCfg()
    relevance: RelevanceCfg = RelevanceCfg()
    decay: DecayCfg = DecayCfg()
    pruning: PruningCfg = PruningCfg()
    query: QueryCfg = QueryCfg()
    storage: StorageCfg = StorageCfg()


def load_config(path: Path | str) -> GraphConfig:
    """
    Load a GraphConfig from a JSON file.

    Missing sections fall back to defaults.

    Raises:
        InvalidConfiguration: file is not a JSON object or a value is out of range
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidConfiguration(f"Config file {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise InvalidConfiguration(f"Config file {path} must contain a JSON object")

    try:
        return GraphConfig(**data)
    except ValidationError as e:
        raise InvalidConfiguration(f"Config file {path} is invalid: {e}") from e
