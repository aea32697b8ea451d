"""
Pytest configuration and common fixtures for motifseek tests.
"""
import sys
import tempfile
from pathlib import Path

import numpy as np
import pytest

# Force testing the installed package, not the local source
project_root = str(Path(__file__).parent.parent.absolute())
if project_root in sys.path:
    sys.path.remove(project_root)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(7)


def random_sequence(rng, length, forbidden=("AAA", "TTT")):
    """Random ACGT string avoiding the given substrings."""
    while True:
        seq = "".join(rng.choice(list("ACGT"), size=length))
        if not any(f in seq for f in forbidden):
            return seq


@pytest.fixture
def sequence_factory(rng):
    """Callable drawing random sequences from the seeded generator."""
    return lambda length, forbidden=("AAA", "TTT"): random_sequence(rng, length, forbidden)


@pytest.fixture
def planted_set(rng):
    """50 foreground sequences with AAAAAA at position 0 and 50 motif-free background sequences."""
    from motifseek.sequences import SequenceSet

    fg = ["AAAAAACCCC"] * 50
    bg = [random_sequence(rng, 10) for _ in range(50)]
    anchors = [0.0] * 50 + [np.nan] * 50
    values = [1.0] * 50 + [0.0] * 50
    sequence_set = SequenceSet.from_strings(fg + bg, anchors=anchors, values=values)
    fg_weights = np.array([1.0] * 50 + [0.0] * 50)
    return sequence_set, fg_weights
