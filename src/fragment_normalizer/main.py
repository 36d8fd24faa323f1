"""
Main entry point for the fragment_normalizer command-line tool.
This module validates the run configuration, runs the two-phase yield
normalization (count, QC and target depth, then per-sample downsampling and
50 bp track generation) and writes the final summary and report.
"""

import argparse
import logging
import os
import sys
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import List, Optional

from src.fragment_normalizer.core.errors import InputError
from src.fragment_normalizer.core.models import RunContext, SourceKind
from src.fragment_normalizer.core.pipeline import BatchResult, build_samples, exit_status, run_batch
from src.fragment_normalizer.utils.logging import setup_logging
from src.fragment_normalizer.visualization.report_generator import generate_report, log_summary

__version__ = "6.3"

logger = logging.getLogger(__name__)


@dataclass
class RunConfig:
    """
    Validated command-line options.
    """
    files: List[Path]
    source_kind: SourceKind
    output_dir: Path
    chrom_sizes: Optional[Path] = None
    blacklist: Optional[Path] = None
    exclude_sd: float = 1.5
    threads: int = 1
    keep_bedgraph: bool = False
    keep_tmp_bam: bool = False
    seed: Optional[int] = None
    verbose: bool = False

    def to_context(self) -> RunContext:
        return RunContext(
            source_kind=self.source_kind,
            output_dir=self.output_dir,
            threshold=self.exclude_sd,
            chrom_sizes=self.chrom_sizes,
            blacklist=self.blacklist,
            keep_bedgraph=self.keep_bedgraph,
            keep_tmp_bam=self.keep_tmp_bam,
            seed=self.seed
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fragment-normalizer",
        description="Downsample fragment BED or paired BAM files to a common depth and build 50 bp signal tracks.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument("files", nargs="*", help="Fragment BED or BAM files to process")

    # Input
    parser.add_argument("--input-type", choices=[k.value for k in SourceKind], default=SourceKind.COORDINATE.value,
                        help="Input mode: 'bed' fragment files or paired-end 'bam' files")
    parser.add_argument("--chrom-sizes", help="Chromosome sizes file (required if --input-type bed)")
    parser.add_argument("--blacklist", help="Optional blacklist BED file (only used if --input-type bam)")
    parser.add_argument("-o", "--output", default="./output", help="Output directory for tracks and reports")

    # Configurable
    parser.add_argument("-e", "--exclude-sd", type=float, default=1.5,
                        help="Z-score threshold for excluding low-yield libraries")
    parser.add_argument("-t", "--threads", type=int, default=0, help="Number of worker processes (0 = all available cores)")
    parser.add_argument("--keep-bedgraph", action="store_true",
                        help="Keep downsampled BED and intermediate bedGraph files (bed mode)")
    parser.add_argument("--keep-tmp-bam", action="store_true", help="Keep temporary downsampled BAM files (bam mode)")
    parser.add_argument("--seed", type=int, help="Random seed for reproducible downsampling")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug messages on the console")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def validate_args(args: argparse.Namespace) -> RunConfig:
    """
    Turn parsed arguments into a RunConfig.

    :raises InputError: On missing or inconsistent options.
    """
    if not args.files:
        raise InputError("No fragment files provided.")

    source_kind = SourceKind(args.input_type)
    chrom_sizes = Path(args.chrom_sizes) if args.chrom_sizes else None
    blacklist = Path(args.blacklist) if args.blacklist else None

    if source_kind == SourceKind.COORDINATE:
        if chrom_sizes is None:
            raise InputError("--chrom-sizes is required when --input-type is bed")
        if not chrom_sizes.is_file():
            raise InputError(f"Chromosome sizes file not found: {chrom_sizes}")
        if blacklist is not None:
            logger.warning("--blacklist is only used with --input-type bam; ignoring it")
            blacklist = None
    elif blacklist is not None and not blacklist.is_file():
        raise InputError(f"Blacklist file not found: {blacklist}")

    if args.threads < 0:
        raise InputError("--threads must be 0 or a positive number")
    threads = args.threads if args.threads > 0 else (os.cpu_count() or 1)

    return RunConfig(
        files=[Path(f) for f in args.files],
        source_kind=source_kind,
        output_dir=Path(args.output),
        chrom_sizes=chrom_sizes,
        blacklist=blacklist,
        exclude_sd=args.exclude_sd,
        threads=threads,
        keep_bedgraph=args.keep_bedgraph,
        keep_tmp_bam=args.keep_tmp_bam,
        seed=args.seed,
        verbose=args.verbose
    )


def main(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    output_dir = Path(args.output)
    log_session = setup_logging(output_dir, args.verbose)

    logger = logging.getLogger(__name__)
    status = 1
    try:
        config = validate_args(args)
        logger.info(f"Starting fragment_normalizer {__version__} on {len(config.files)} "
                    f"{config.source_kind.value.upper()} files with {config.threads} workers...")

        samples = build_samples(config.files, config.source_kind)
        result: BatchResult = run_batch(samples, config.to_context(), config.threads, log_session.queue)

        logger.info("Writing summary and report...")
        run_parameters = {k: str(getattr(v, 'value', v)) for k, v in asdict(config).items() if k != 'files'}
        generate_report(result.samples, result.statistics, result.target_depth, output_dir, run_parameters)
        log_summary(result.samples)

        status = exit_status(result)
        if result.interrupted:
            logger.warning("Run interrupted before all samples finished")
        elif status == 0:
            logger.info(f"Pipeline complete. Results saved in {output_dir}")
        else:
            logger.error("No sample produced a track")
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        status = 130
    except Exception as e:
        logger.error(f"Critical failure: {e}")
        status = 1
    finally:
        log_session.stop()
    sys.exit(status)


if __name__ == "__main__":
    main()
