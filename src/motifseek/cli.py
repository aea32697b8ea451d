import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict

from motifseek.api import create_config, discover_motifs
from motifseek.io import save_motif, write_meme, write_occurrences


def setup_logging(verbose: bool):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    logging.getLogger("numba").setLevel(logging.WARNING)


def create_arg_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        description="motifseek: discover motifs in weighted sequences with approximate motif positions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
 Examples:
   # Headers look like '>peak_1 peak: 120; signal: 35.2'
   motifseek discover peaks.fa --width 15 --restarts 20 --output-dir results

   # Estimate the weighting factor from the signal distribution
   motifseek discover peaks.fa --weighting-factor +4sd --sd 50 --threads 4
         """,
    )

    subparsers = parser.add_subparsers(dest="mode", help="Operation mode", required=True)

    discover_parser = subparsers.add_parser(
        "discover",
        help="Discover motifs in an annotated FASTA file",
        description="Discover motifs in sequences annotated with an anchor position and a confidence value.",
    )

    io_group = discover_parser.add_argument_group("Input/Output Options")
    io_group.add_argument("input", help="Annotated FASTA file ('>name key: value; key: value' headers).")
    io_group.add_argument(
        "--position-key",
        default="peak",
        help="Header annotation holding the anchor position. (default: %(default)s)",
    )
    io_group.add_argument(
        "--value-key",
        default="signal",
        help="Header annotation holding the confidence value. (default: %(default)s)",
    )
    io_group.add_argument(
        "--output-dir",
        default=".",
        help="Directory for motifs.meme, occurrence tables and model files. (default: %(default)s)",
    )

    motif_group = discover_parser.add_argument_group("Discovery Options")
    motif_group.add_argument("--width", type=int, default=15, help="Initial motif width. (default: %(default)s)")
    motif_group.add_argument("--restarts", type=int, default=20, help="Number of pre-optimized starts. (default: %(default)s)")
    motif_group.add_argument(
        "--motif-order",
        type=int,
        default=0,
        help="Markov order of the motif model; -d selects a sparse local mixture with context distance d. (default: %(default)s)",
    )
    motif_group.add_argument(
        "--bg-order",
        type=int,
        default=-1,
        help="Markov order of the background model, -1 for uniform. (default: %(default)s)",
    )
    motif_group.add_argument("--ess", type=float, default=4.0, help="Equivalent sample size of the priors. (default: %(default)s)")
    motif_group.add_argument("--sd", type=float, default=75.0, help="Spread of the positional prior. (default: %(default)s)")
    motif_group.add_argument(
        "--weighting-factor",
        default="0.2",
        help="Expected fraction of sequences with the motif, or '+Nsd'. (default: %(default)s)",
    )
    motif_group.add_argument("--alpha", type=float, default=1e-3, help="Significance level of occurrences. (default: %(default)s)")
    motif_group.add_argument(
        "--no-delete",
        action="store_true",
        help="Do not mask occurrences of a motif before refining the next one.",
    )
    motif_group.add_argument("--no-width-adjustment", action="store_true", help="Keep the initial motif width.")

    technical_group = discover_parser.add_argument_group("Technical Options")
    technical_group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging to standard output for detailed execution tracking.",
    )
    technical_group.add_argument("--seed", type=int, default=127, help="Random seed. (default: %(default)s)")
    technical_group.add_argument(
        "--threads",
        type=int,
        default=1,
        help="Number of worker threads for objective evaluation. (default: %(default)s)",
    )
    return parser


def validate_inputs(args) -> None:
    """Validate input files and parameters."""
    logger = logging.getLogger(__name__)
    if not os.path.exists(args.input):
        logger.error(f"FASTA file not found: {args.input}")
        sys.exit(1)


def map_args_to_config_kwargs(args) -> Dict[str, Any]:
    """Map CLI arguments to discovery options."""
    return {
        "width": args.width,
        "restarts": args.restarts,
        "motif_order": args.motif_order,
        "background_order": args.bg_order,
        "ess": args.ess,
        "sd": args.sd,
        "weighting_factor": args.weighting_factor,
        "alpha": args.alpha,
        "delete": not args.no_delete,
        "adjust_width": not args.no_width_adjustment,
        "threads": args.threads,
        "seed": args.seed,
    }


def write_results(result, output_dir: Path) -> Dict[str, Any]:
    """Write motifs.meme plus one occurrence table and one model file per motif."""
    output_dir.mkdir(parents=True, exist_ok=True)
    meme_path = output_dir / "motifs.meme"
    write_meme([motif.pfm for motif in result.motifs], [motif.name for motif in result.motifs], meme_path)
    files = {"meme": str(meme_path), "occurrences": [], "models": []}
    for n, motif in enumerate(result.motifs, start=1):
        table = output_dir / f"motif_{n}.tsv"
        model = output_dir / f"motif_{n}.pkl"
        write_occurrences(motif.occurrences, table)
        save_motif(motif, model)
        files["occurrences"].append(str(table))
        files["models"].append(str(model))
    return files


def main_cli():
    """Main CLI entry point."""
    parser = create_arg_parser()

    if len(sys.argv) == 1:
        parser.print_help(sys.stderr)
        sys.exit(1)

    args = parser.parse_args()
    setup_logging(args.verbose)
    validate_inputs(args)
    logger = logging.getLogger(__name__)

    try:
        config = create_config(**map_args_to_config_kwargs(args))
        logger.info(f"Discovering motifs in {args.input}")
        result = discover_motifs(
            args.input, position_key=args.position_key, value_key=args.value_key, config=config
        )
        summary = result.summary()
        summary["files"] = write_results(result, Path(args.output_dir))
        print(json.dumps(summary))

    except Exception as e:
        logger.error(f"Discovery failed: {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main_cli()
