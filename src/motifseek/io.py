from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import joblib
import numpy as np
import pandas as pd

from motifseek.errors import InputError
from motifseek.ragged import RaggedData, ragged_from_list
from motifseek.sequences import ALPHABET, SequenceSet, decode, encode

logger = logging.getLogger(__name__)


def _records(path: str | Path) -> Iterable[Tuple[str, str]]:
    header = None
    chunks: List[str] = []
    with open(path, "r") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            if line.startswith(">"):
                if header is not None:
                    yield header, "".join(chunks)
                header = line[1:]
                chunks = []
            else:
                if header is None:
                    raise InputError(f"{path}: sequence data before the first header")
                chunks.append(line)
    if header is not None:
        yield header, "".join(chunks)


def read_fasta(path: str | Path) -> RaggedData:
    """Read a FASTA file and return integer-encoded sequences."""
    return ragged_from_list([encode(seq) for _, seq in _records(path)], dtype=np.int8)


def parse_header(header: str) -> Tuple[str, Dict[str, str]]:
    """Split a header of the form ``name key: value; key: value`` into the name and the annotations."""
    name = ""
    annotations: Dict[str, str] = {}
    for part in header.split(";"):
        part = part.strip()
        if not part:
            continue
        if ":" not in part:
            if not name and not annotations:
                name = part
                continue
            raise InputError(f"Malformed annotation {part!r} in header {header!r}")
        key, value = part.split(":", 1)
        key = key.strip()
        if not name and not annotations and len(key.split()) > 1:
            name, key = key.split(None, 1)
        annotations[key.strip()] = value.strip()
    return name, annotations


def read_annotated_fasta(
    path: str | Path, position_key: str = "peak", value_key: str = "signal"
) -> SequenceSet:
    """Read sequences whose headers carry an anchor position and a confidence value.

    A missing ``value_key`` annotation is an error; a missing ``position_key``
    gives an unknown (NaN) anchor.
    """
    names, sequences, anchors, values, annotations = [], [], [], [], []
    for k, (header, seq) in enumerate(_records(path)):
        name, annotation = parse_header(header)
        if value_key not in annotation:
            raise InputError(f"{path}: sequence {k} has no '{value_key}' annotation")
        try:
            values.append(float(annotation.pop(value_key)))
            anchors.append(float(annotation.pop(position_key)) if position_key in annotation else np.nan)
        except ValueError as exc:
            raise InputError(f"{path}: sequence {k} has a non-numeric annotation: {exc}") from exc
        names.append(name or str(k))
        sequences.append(encode(seq))
        annotations.append(annotation)

    if not sequences:
        raise InputError(f"No sequences found in {path}")
    logger.info(f"Read {len(sequences)} sequences from {path}")
    return SequenceSet(
        sequences=ragged_from_list(sequences, dtype=np.int8),
        anchors=np.asarray(anchors, dtype=np.float64),
        values=np.asarray(values, dtype=np.float64),
        names=names,
        annotations=annotations,
    )


def write_fasta(
    sequences: Union[RaggedData, Iterable[np.ndarray]], path: str | Path, headers: Optional[Sequence[str]] = None
) -> None:
    """Write integer-encoded sequences to a FASTA file."""
    if isinstance(sequences, RaggedData):
        sequences = [sequences.get_slice(i) for i in range(sequences.num_sequences)]
    with open(path, "w") as out:
        for idx, seq in enumerate(sequences):
            header = headers[idx] if headers is not None else str(idx)
            out.write(f">{header}\n")
            out.write(f"{decode(seq)}\n")


def write_meme(pfms: Sequence[np.ndarray], names: Sequence[str], path: str | Path) -> None:
    """Write position frequency matrices (``width x 4``) to a MEME formatted file."""
    with open(path, "w") as out:
        out.write("MEME version 4\n\n")
        out.write(f"ALPHABET= {ALPHABET}\n\n")
        out.write("strands: + -\n\n")
        out.write("Background letter frequencies\n")
        out.write("A 0.25 C 0.25 G 0.25 T 0.25\n\n")
        for pfm, name in zip(pfms, names):
            pfm = np.asarray(pfm)
            out.write(f"MOTIF {name}\n")
            out.write(f"letter-probability matrix: alength= 4 w= {pfm.shape[0]}\n")
            for row in pfm:
                out.write(" " + " ".join(f"{val:.6f}" for val in row) + "\n")
            out.write("\n")


def read_meme(path: str | Path) -> List[Tuple[str, np.ndarray]]:
    """Read all motifs of a MEME formatted file as ``(name, width x 4 matrix)`` pairs."""
    motifs = []
    with open(path) as handle:
        lines = iter(handle)
        for line in lines:
            if not line.startswith("MOTIF"):
                continue
            name = line.split()[1]
            header = next(lines).split()
            try:
                length = int(header[header.index("w=") + 1])
            except (ValueError, IndexError) as exc:
                raise InputError(f"{path}: motif {name} has no width") from exc
            rows = [list(map(float, next(lines).split())) for _ in range(length)]
            motifs.append((name, np.array(rows, dtype=np.float64)))
    return motifs


def write_pfm(pfm: np.ndarray, name: str, path: str | Path) -> None:
    """Write a Position Frequency Matrix (one row per position) to a file."""
    with open(path, "w") as f:
        f.write(f">{name}\n")
        np.savetxt(f, np.asarray(pfm), fmt="%.6f", delimiter="\t")


def read_pfm(path: str | Path) -> np.ndarray:
    """Read a Position Frequency Matrix written by :func:`write_pfm`."""
    return np.atleast_2d(np.loadtxt(path, comments=">"))


def write_occurrences(occurrences: pd.DataFrame, path: str | Path) -> None:
    """Write an occurrence table as TSV (0-based positions)."""
    occurrences.to_csv(path, sep="\t", index=False)


def read_occurrences(path: str | Path) -> pd.DataFrame:
    return pd.read_csv(path, sep="\t")


def save_motif(motif, path: str | Path) -> None:
    """Persist a discovered motif (model, parameters and occurrences)."""
    joblib.dump(motif, path)


def load_motif(path: str | Path):
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Motif file not found: {path}")
    return joblib.load(path)
