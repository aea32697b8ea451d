"""High-level public API for motif discovery."""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np

from motifseek.discovery import DiscoveryResult, MotifDiscovery
from motifseek.errors import ConfigurationError
from motifseek.io import read_annotated_fasta
from motifseek.sequences import SequenceSet
from motifseek.weights import is_sd_factor, parse_weighting_factor
from motifseek.weights import registry as interpolation_registry

SequenceRef = Union[SequenceSet, str, Path]

_GRADIENT_METHODS = {"CG", "BFGS", "L-BFGS-B"}


@dataclass
class DiscoveryConfig:
    """Options of a discovery run, validated on construction."""

    width: int = 15
    restarts: int = 20
    motif_order: int = 0
    background_order: int = -1
    ess: float = 4.0
    sd: float = 75.0
    weighting_factor: Union[str, float] = "0.2"
    interpolation: str = "rank_log"
    filter_threshold: float = 0.3
    final_filter_threshold: float = 0.3
    alpha: float = 1e-3
    delete: bool = True
    adjust_width: bool = True
    prune_threshold: float = 0.5
    threads: int = 1
    max_iterations: int = 100
    pre_iterations: int = 25
    epsilon: float = 1e-4
    time_budget: Optional[float] = None
    kmer_length: int = 7
    subsample_fraction: float = 0.3
    subsample_max: int = 1000
    optimizer: str = "CG"
    seed: int = 127

    def __post_init__(self):
        for name in ("width", "restarts", "threads", "max_iterations", "pre_iterations", "kmer_length", "subsample_max"):
            _require(isinstance(getattr(self, name), (int, np.integer)) and getattr(self, name) > 0, name, "a positive integer")
        _require(isinstance(self.motif_order, (int, np.integer)), "motif_order", "an integer")
        _require(self.background_order >= -1, "background_order", ">= -1")
        _require(np.isfinite(self.ess) and self.ess >= 0, "ess", ">= 0")
        _require(np.isfinite(self.sd) and self.sd > 0, "sd", "> 0")
        _require(0.0 < self.filter_threshold <= 1.0, "filter_threshold", "in (0, 1]")
        _require(0.0 < self.final_filter_threshold <= 1.0, "final_filter_threshold", "in (0, 1]")
        _require(0.0 < self.alpha < 1.0, "alpha", "in (0, 1)")
        _require(0.0 < self.prune_threshold <= 1.0, "prune_threshold", "in (0, 1]")
        _require(self.epsilon > 0, "epsilon", "> 0")
        _require(self.time_budget is None or self.time_budget > 0, "time_budget", "> 0")
        _require(0.0 < self.subsample_fraction <= 1.0, "subsample_fraction", "in (0, 1]")
        _require(self.optimizer in _GRADIENT_METHODS, "optimizer", f"one of {sorted(_GRADIENT_METHODS)}")
        if self.interpolation not in interpolation_registry.keys():
            raise ConfigurationError(
                f"interpolation must be one of {interpolation_registry.keys()}, got {self.interpolation!r}"
            )
        if not is_sd_factor(self.weighting_factor):
            parse_weighting_factor(self.weighting_factor, np.empty(0))

    def to_dict(self) -> dict:
        return asdict(self)


def _require(condition: bool, name: str, constraint: str) -> None:
    if not condition:
        raise ConfigurationError(f"{name} must be {constraint}")


def create_config(**kwargs) -> DiscoveryConfig:
    """Build a discovery config, rejecting unknown options."""
    known = DiscoveryConfig.__dataclass_fields__.keys()
    unknown = sorted(set(kwargs) - set(known))
    if unknown:
        raise ConfigurationError(f"Unknown options: {unknown}")
    return DiscoveryConfig(**kwargs)


def discover_motifs(
    sequences: SequenceRef,
    fg_weights: Optional[Sequence[float]] = None,
    position_key: str = "peak",
    value_key: str = "signal",
    config: Optional[DiscoveryConfig] = None,
    **options,
) -> DiscoveryResult:
    """Single-call entry point for motif discovery.

    ``sequences`` is a :class:`SequenceSet` or the path of an annotated FASTA
    file. Options are the fields of :class:`DiscoveryConfig`.
    """
    if config is not None and options:
        raise ValueError("Use either 'config' or option kwargs, not both.")
    config = config or create_config(**options)
    sequence_set = _resolve_sequences(sequences, position_key, value_key)
    weights = None if fg_weights is None else np.asarray(fg_weights, dtype=np.float64)
    return MotifDiscovery(config).run(sequence_set, weights)


def _resolve_sequences(source: SequenceRef, position_key: str, value_key: str) -> SequenceSet:
    if isinstance(source, SequenceSet):
        return source
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Sequence file not found: {path}")
        return read_annotated_fasta(path, position_key=position_key, value_key=value_key)
    raise TypeError(f"Unsupported sequence source type: {type(source)!r}")
