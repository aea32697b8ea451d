"""
Integration tests for motifseek: a complete discovery run on planted data,
through the Python API and through the command line interface.
"""

import json
import subprocess
import sys

import numpy as np
import pytest

from motifseek.api import create_config, discover_motifs
from motifseek.io import load_motif, read_meme, read_occurrences


def run_cli(args: list) -> subprocess.CompletedProcess:
    """Run CLI through current Python env to avoid global PATH contamination."""
    return subprocess.run([sys.executable, "-m", "motifseek.cli", *args], capture_output=True, text=True)


@pytest.fixture
def planted_fasta(planted_set, temp_dir):
    """Planted data written as annotated FASTA; background sequences have no anchor."""
    sequence_set, fg_weights = planted_set
    path = temp_dir / "planted.fa"
    with open(path, "w") as out:
        for i in range(len(sequence_set)):
            if fg_weights[i] > 0:
                out.write(f">fg_{i} peak: 0; signal: 1\n")
            else:
                out.write(f">bg_{i} signal: 0\n")
            out.write(sequence_set.sequence(i) + "\n")
    return path


def test_discovery_finds_planted_motif(planted_set):
    """The planted AAAAAA motif is found at position 0 of every foreground sequence"""
    sequence_set, fg_weights = planted_set
    config = create_config(width=6, restarts=1, sd=2.0, seed=1)

    result = discover_motifs(sequence_set, fg_weights=fg_weights, config=config)

    assert len(result.motifs) == 1
    motif = result.motifs[0]
    assert motif.name == "motif_1"
    assert motif.consensus == "AAAAAA"
    assert motif.width == 6
    assert np.isfinite(motif.score)

    occurrences = motif.occurrences
    assert np.all(occurrences["p_value"] < config.alpha)
    at_start = occurrences[(occurrences["position"] == 0) & (occurrences["strand"] == "+")]
    assert set(at_start["seq_index"]) == set(range(50))

    summary = result.summary()
    assert summary["candidates"] == 1
    assert summary["motifs"][0]["consensus"] == "AAAAAA"


def test_discovery_is_reproducible(planted_set):
    """The same seed gives the same motif parameters"""
    sequence_set, fg_weights = planted_set
    first = discover_motifs(sequence_set, fg_weights=fg_weights, width=6, restarts=1, sd=2.0, seed=5)
    second = discover_motifs(sequence_set, fg_weights=fg_weights, width=6, restarts=1, sd=2.0, seed=5)
    np.testing.assert_allclose(first.motifs[0].parameters, second.motifs[0].parameters)


def test_cli_discover(planted_fasta, temp_dir):
    """The discover command writes motif files and prints a JSON summary"""
    out_dir = temp_dir / "results"
    result = run_cli(
        [
            "discover",
            str(planted_fasta),
            "--width",
            "6",
            "--restarts",
            "1",
            "--sd",
            "2",
            "--output-dir",
            str(out_dir),
        ]
    )
    assert result.returncode == 0, f"Command failed with stderr: {result.stderr}"

    summary = json.loads(result.stdout)
    assert summary["motifs"][0]["consensus"] == "AAAAAA"
    for key in ("candidates", "accepted", "motifs", "files"):
        assert key in summary, f"Missing key '{key}' in output"

    motifs = read_meme(out_dir / "motifs.meme")
    assert [name for name, _ in motifs] == ["motif_1"]
    assert motifs[0][1].shape == (6, 4)
    occurrences = read_occurrences(out_dir / "motif_1.tsv")
    assert (occurrences["position"] == 0).sum() >= 50
    assert load_motif(out_dir / "motif_1.pkl").consensus == "AAAAAA"


def test_cli_missing_input(temp_dir):
    """A missing input file exits with status 1"""
    result = run_cli(["discover", str(temp_dir / "missing.fa")])
    assert result.returncode == 1


def test_cli_invalid_option(planted_fasta):
    """Invalid options are reported and exit with status 1"""
    result = run_cli(["discover", str(planted_fasta), "--alpha", "2"])
    assert result.returncode == 1
    assert "alpha" in result.stderr


def test_cli_without_arguments():
    """Running without arguments prints help and exits with status 1"""
    result = run_cli([])
    assert result.returncode == 1
    assert "discover" in result.stderr
