"""
Tests for complete discovery runs (motifseek/discovery.py) on data sets with
unusual members and with the sparse local mixture motif model.
"""

import numpy as np
import pytest

from motifseek.api import discover_motifs
from motifseek.sequences import SequenceSet
from motifseek.submodels import SparseLocalMixtureModel


@pytest.fixture
def planted_with_short(planted_set):
    """Planted data plus a foreground and a background sequence shorter than the motif."""
    sequence_set, fg_weights = planted_set
    strings = [sequence_set.sequence(i) for i in range(len(sequence_set))] + ["AAA", "AAAAA"]
    anchors = np.concatenate([sequence_set.anchors, [np.nan, np.nan]])
    values = np.concatenate([sequence_set.values, [1.0, 0.0]])
    extended = SequenceSet.from_strings(strings, anchors=anchors, values=values)
    return extended, np.concatenate([fg_weights, [1.0, 0.0]])


def test_short_sequences_never_hold_occurrences(planted_with_short):
    """Sequences shorter than the motif do not break the run and get no occurrences"""
    sequence_set, fg_weights = planted_with_short

    result = discover_motifs(sequence_set, fg_weights=fg_weights, width=6, restarts=1, sd=2.0, seed=1)

    assert len(result.motifs) >= 1
    for motif in result.motifs:
        assert motif.width == 6
        assert not set(motif.occurrences["seq_index"]) & {100, 101}
    at_start = result.motifs[0].occurrences
    at_start = at_start[(at_start["position"] == 0) & (at_start["strand"] == "+")]
    assert set(at_start["seq_index"]) == set(range(50))


def test_discovery_with_sparse_local_mixture(planted_set):
    """A negative motif order runs discovery with the sparse local mixture model"""
    sequence_set, fg_weights = planted_set

    result = discover_motifs(sequence_set, fg_weights=fg_weights, width=6, restarts=1, sd=2.0, seed=1, motif_order=-2)

    assert len(result.motifs) >= 1
    motif = result.motifs[0]
    assert motif.width == 6
    assert isinstance(motif.model.motif, SparseLocalMixtureModel)
    assert np.isfinite(motif.score)
    at_start = motif.occurrences[motif.occurrences["position"] == 0]
    assert set(range(50)) <= set(at_start["seq_index"])
