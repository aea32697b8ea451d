"""
motifseek
=========

De-novo motif discovery in sequences that carry an approximate motif position
(e.g. a ChIP-seq peak summit) and a confidence value. Confidence values are
turned into soft foreground/background weights, a Gaussian positional prior is
placed around every anchor and a strand-aware motif model is trained with a
hybrid generative-discriminative objective from many seeded restarts.

The top level modules expose the following key components:

``io``
    Annotated FASTA input, MEME/PFM motif files, occurrence tables and model
    persistence.

``weights`` and ``prior``
    Confidence values to class weights and positional reference profiles.

``submodels`` and ``models``
    Motif and background sub-models and the two-branch strand score model.

``objective`` and ``optimize``
    The weighted hybrid objective, termination conditions and the gradient
    optimizer wrapper.

``seeding``, ``redundancy`` and ``significance``
    Start points, redundancy filtering of candidates, occurrence calling and
    width refinement.

``discovery`` and ``api``
    The discovery loop and its configuration.

``cli``
    The command line interface.
"""

from motifseek.api import DiscoveryConfig, create_config, discover_motifs
from motifseek.discovery import DiscoveredMotif, DiscoveryResult, MotifDiscovery

__all__ = [
    "DiscoveryConfig",
    "DiscoveredMotif",
    "DiscoveryResult",
    "MotifDiscovery",
    "create_config",
    "discover_motifs",
]
