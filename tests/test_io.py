"""
Unit tests for file formats (motifseek/io.py) and configuration handling
(motifseek/api.py).
"""

import numpy as np
import pandas as pd
import pytest

from motifseek.api import DiscoveryConfig, create_config, discover_motifs
from motifseek.discovery import MotifDiscovery
from motifseek.errors import ConfigurationError, InputError
from motifseek.io import (
    load_motif,
    parse_header,
    read_annotated_fasta,
    read_fasta,
    read_meme,
    read_occurrences,
    read_pfm,
    save_motif,
    write_fasta,
    write_meme,
    write_occurrences,
    write_pfm,
)
from motifseek.models import StrandScoreModel
from motifseek.ragged import ragged_from_list
from motifseek.sequences import SequenceSet, decode, encode
from motifseek.submodels import MarkovMotifModel


def test_encode_decode():
    """Unknown and lowercase symbols are handled on encoding"""
    codes = encode("acgtNX")
    np.testing.assert_array_equal(codes, [0, 1, 2, 3, 4, 4])
    assert decode(codes) == "ACGTNN"


def test_parse_header():
    """Name and annotations are split on ';' and ':'"""
    assert parse_header("peak_1 peak: 120; signal: 35.2") == ("peak_1", {"peak": "120", "signal": "35.2"})
    assert parse_header("seq7") == ("seq7", {})
    assert parse_header("chr1:100-200; peak: 5; signal: 1")[1] == {"chr1": "100-200", "peak": "5", "signal": "1"}
    with pytest.raises(InputError):
        parse_header("seq; peak: 3; dangling")


def test_read_annotated_fasta(temp_dir):
    """Anchors, values and remaining annotations are read from the headers"""
    path = temp_dir / "peaks.fa"
    path.write_text(
        ">s1 peak: 3; signal: 10.5; source: chip\n"
        "ACGT\n"
        "acgt\n"
        ">s2 signal: 2\n"
        "GGNN\n"
    )
    sequence_set = read_annotated_fasta(path)

    assert len(sequence_set) == 2
    assert sequence_set.names == ["s1", "s2"]
    assert sequence_set.sequence(0) == "ACGTACGT"
    np.testing.assert_allclose(sequence_set.values, [10.5, 2.0])
    assert sequence_set.anchors[0] == 3.0
    assert np.isnan(sequence_set.anchors[1])
    assert sequence_set.annotations[0] == {"source": "chip"}


def test_read_annotated_fasta_custom_keys(temp_dir):
    path = temp_dir / "peaks.fa"
    path.write_text(">s1 summit: 2; score: 0.5\nACGTAC\n")
    sequence_set = read_annotated_fasta(path, position_key="summit", value_key="score")
    assert sequence_set.anchors[0] == 2.0
    assert sequence_set.values[0] == 0.5


@pytest.mark.parametrize(
    "content",
    [
        ">s1 peak: 3\nACGT\n",
        ">s1 peak: 3; signal: high\nACGT\n",
        "ACGT\n>s1 signal: 1\nACGT\n",
        "",
    ],
)
def test_read_annotated_fasta_errors(temp_dir, content):
    """Missing or non-numeric values and malformed files are input errors"""
    path = temp_dir / "bad.fa"
    path.write_text(content)
    with pytest.raises(InputError):
        read_annotated_fasta(path)


def test_fasta_write_and_read(temp_dir):
    path = temp_dir / "seqs.fa"
    sequences = ragged_from_list([encode("ACGTN"), encode("TTGCA")], dtype=np.int8)
    write_fasta(sequences, path, headers=["a", "b"])

    loaded = read_fasta(path)
    np.testing.assert_array_equal(loaded.data, sequences.data)
    np.testing.assert_array_equal(loaded.offsets, sequences.offsets)
    assert path.read_text().startswith(">a\nACGTN\n")


def test_meme_write_and_read(temp_dir):
    """MEME files keep motif names and matrices"""
    path = temp_dir / "motifs.meme"
    first = np.array([[0.7, 0.1, 0.1, 0.1], [0.25, 0.25, 0.25, 0.25]])
    second = np.array([[0.1, 0.2, 0.3, 0.4]] * 3)
    write_meme([first, second], ["motif_1", "motif_2"], path)

    motifs = read_meme(path)
    assert [name for name, _ in motifs] == ["motif_1", "motif_2"]
    np.testing.assert_allclose(motifs[0][1], first, atol=1e-6)
    np.testing.assert_allclose(motifs[1][1], second, atol=1e-6)


def test_pfm_write_and_read(temp_dir):
    path = temp_dir / "motif.pfm"
    pfm = np.array([[0.7, 0.1, 0.1, 0.1], [0.1, 0.1, 0.1, 0.7]])
    write_pfm(pfm, "motif_1", path)
    np.testing.assert_allclose(read_pfm(path), pfm, atol=1e-6)


def test_occurrences_write_and_read(temp_dir):
    path = temp_dir / "motif_1.tsv"
    table = pd.DataFrame(
        {
            "seq_index": [0, 3],
            "position": [5, 0],
            "strand": ["+", "-"],
            "p_value": [1e-5, 2e-4],
            "score": [3.2, 2.1],
            "site": ["ACGTAC", "GTACGT"],
            "adjusted_site": ["ACGTAC", "ACGTAC"],
        }
    )
    write_occurrences(table, path)
    pd.testing.assert_frame_equal(read_occurrences(path), table)


def test_motif_persistence(temp_dir):
    """Saved models load with their parameters and fresh caches"""
    model = StrandScoreModel(MarkovMotifModel(4, order=1))
    model.set_parameters(np.random.default_rng(3).normal(size=model.num_parameters))
    path = temp_dir / "motif.pkl"
    save_motif(model, path)

    loaded = load_motif(path)
    np.testing.assert_array_equal(loaded.get_parameters(), model.get_parameters())
    assert loaded.positions is not None

    with pytest.raises(FileNotFoundError):
        load_motif(temp_dir / "missing.pkl")


def test_create_config_defaults():
    config = create_config()
    assert config.width == 15
    assert config.motif_order == 0
    assert config.background_order == -1
    assert config.to_dict()["alpha"] == pytest.approx(1e-3)


def test_create_config_rejects_unknown_options():
    with pytest.raises(ConfigurationError):
        create_config(widht=10)


@pytest.mark.parametrize(
    "options",
    [
        {"width": 0},
        {"restarts": 0},
        {"threads": 0},
        {"motif_order": 1.5},
        {"background_order": -2},
        {"ess": -1.0},
        {"sd": 0.0},
        {"alpha": 1.5},
        {"filter_threshold": 0.0},
        {"prune_threshold": 1.5},
        {"weighting_factor": "2"},
        {"weighting_factor": "many"},
        {"interpolation": "nonexistent"},
        {"optimizer": "Nelder-Mead"},
    ],
)
def test_config_errors(options):
    """Invalid options fail before any optimization starts"""
    with pytest.raises(ConfigurationError):
        DiscoveryConfig(**options)


def test_config_accepts_sd_weighting_factor():
    assert DiscoveryConfig(weighting_factor="+4sd").weighting_factor == "+4sd"


def test_discover_motifs_argument_errors(temp_dir):
    with pytest.raises(FileNotFoundError):
        discover_motifs(temp_dir / "missing.fa")
    with pytest.raises(ValueError):
        discover_motifs(SequenceSet.from_strings(["ACGT"]), config=create_config(), width=4)
    with pytest.raises(TypeError):
        discover_motifs(42)


def test_discovery_input_errors():
    """Empty inputs and malformed foreground weights are input errors"""
    discovery = MotifDiscovery(create_config(width=4))
    with pytest.raises(InputError):
        discovery.run(SequenceSet.from_strings([]))
    with pytest.raises(InputError):
        discovery.run(SequenceSet.from_strings(["ACGTACGT", "ACGTAA"]), np.array([0.5]))
    with pytest.raises(InputError):
        discovery.run(SequenceSet.from_strings(["ACGTACGT", "ACGTAA"]), np.array([0.5, 1.5]))
