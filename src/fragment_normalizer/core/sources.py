"""
Fragment sources for fragment_normalizer.
A FragmentSource knows how to count, downsample and turn into a 50 bp track one
sample in its native representation: fragment BED (coordinate set) or paired
BAM (alignment pair set).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
from pysam.utils import SamtoolsError

from src.fragment_normalizer.core.errors import DownsampleError, InputError
from src.fragment_normalizer.core.models import RunContext, Sample, SourceKind
from src.fragment_normalizer.core.sampling import Selector, selector_for_sample
from src.fragment_normalizer.parsers.bed_parser import (
    parse_chrom_sizes,
    parse_fragment_bed,
    parse_regions,
    write_fragment_bed
)
from src.fragment_normalizer.parsers.bam_parser import PairUniverse, collect_read_pairs, write_read_pairs
from src.fragment_normalizer.utils.commands import ExternalCommand, SubprocessCommand, run_checked

logger = logging.getLogger(__name__)

BINS_FILENAME = 'genome_{bin_size}bp_bins.bed'


@dataclass
class DownsampleResult:
    path: Path
    count: int


def _remove(*paths: Path):
    for p in paths:
        try:
            p.unlink()
        except FileNotFoundError:
            pass


class FragmentSource(ABC):
    """
    Capability set the orchestrator is written against.
    """

    def __init__(self, sample: Sample, context: RunContext,
                 command: Optional[ExternalCommand] = None,
                 selector: Optional[Selector] = None):
        self.sample = sample
        self.context = context
        self.command = command if command is not None else SubprocessCommand()
        self.selector = selector if selector is not None else selector_for_sample(sample.identity, context.seed)

    def output_path(self, suffix: str) -> Path:
        return self.context.output_dir / f"{self.sample.identity}{suffix}"

    @property
    def track_path(self) -> Path:
        return self.output_path(f"_{self.context.bin_size}bp.bw")

    @abstractmethod
    def count(self) -> int:
        """Number of fragments in the selectable universe."""

    @abstractmethod
    def downsample_to(self, target: int) -> DownsampleResult:
        """Write a uniformly random subset of exactly target fragments."""

    @abstractmethod
    def to_track(self, downsampled: Path) -> Path:
        """Produce the fixed-width signal track from a downsampled fragment set."""


class CoordinateSource(FragmentSource):
    """
    Fragment BED input. One record is one fragment.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._chrom_sizes: Optional[Dict[str, int]] = None

    @property
    def chrom_sizes(self) -> Dict[str, int]:
        if self._chrom_sizes is None:
            if self.context.chrom_sizes is None:
                raise InputError("A chromosome size table is required for BED input")
            self._chrom_sizes = parse_chrom_sizes(self.context.chrom_sizes)
        return self._chrom_sizes

    def load(self) -> Tuple[Optional[str], pd.DataFrame]:
        """
        Read the fragment records that lie on chromosomes of the size table.
        """
        header, df = parse_fragment_bed(self.sample.path)
        known = df['chrom'].isin(self.chrom_sizes.keys())
        n_unknown = int((~known).sum())
        if n_unknown:
            logger.warning(f"{self.sample.identity}: ignoring {n_unknown} fragments on chromosomes "
                           f"absent from {self.context.chrom_sizes}")
            df = df[known].reset_index(drop=True)
        return header, df

    def count(self) -> int:
        _, df = self.load()
        return len(df)

    def downsample_to(self, target: int) -> DownsampleResult:
        header, df = self.load()
        if len(df) < target:
            raise DownsampleError(f"{self.sample.identity}: only {len(df)} fragments available, "
                                  f"target depth is {target}")

        picks = self.selector.choose_k(list(range(len(df))), target)
        subset = df.iloc[picks]

        # Chromosome table order, then start coordinate
        rank = {chrom: i for i, chrom in enumerate(self.chrom_sizes)}
        subset = subset.assign(
            _rank=subset['chrom'].map(rank),
            _start=subset['start'].str.strip().astype(np.int64)
        ).sort_values(['_rank', '_start'], kind='mergesort').drop(columns=['_rank', '_start'])

        if header is not None and not header.startswith(('#', 'track', 'browser')):
            header = '#' + header

        out_bed = self.output_path('_downsampled.bed')
        try:
            write_fragment_bed(subset, header, out_bed)
        except OSError as e:
            raise DownsampleError(f"{self.sample.identity}: failed to write {out_bed}: {e}") from e
        return DownsampleResult(out_bed, len(subset))

    def to_track(self, downsampled: Path) -> Path:
        if self.context.bins_path is None:
            raise InputError("Genome bins were not prepared for BED input")

        counts_bed = self.output_path(f"_{self.context.bin_size}bp_counts.bed")
        run_checked(self.command, ['bedtools', 'coverage', '-a', self.context.bins_path,
                                   '-b', downsampled, '-counts'], stdout=counts_bed)

        bedgraph = self.output_path(f"_{self.context.bin_size}bp.bedGraph")
        write_bedgraph(counts_bed, bedgraph)

        bigwig = self.track_path
        run_checked(self.command, ['bedGraphToBigWig', bedgraph, self.context.chrom_sizes, bigwig])

        if not self.context.keep_bedgraph:
            _remove(counts_bed, bedgraph, downsampled)
        return bigwig


class AlignmentPairSource(FragmentSource):
    """
    Paired-end BAM input. One properly paired read pair is one fragment.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._regions = None

    @property
    def regions(self):
        if self._regions is None:
            self._regions = parse_regions(self.context.blacklist) if self.context.blacklist else {}
        return self._regions

    def universe(self) -> PairUniverse:
        if not Path(self.sample.path).is_file():
            raise InputError(f"Alignment file not found: {self.sample.path}")
        return collect_read_pairs(self.sample.path, self.regions, source=self.sample.identity)

    def count(self) -> int:
        return len(self.universe())

    def downsample_to(self, target: int) -> DownsampleResult:
        universe = self.universe()
        if len(universe) < target:
            raise DownsampleError(f"{self.sample.identity}: only {len(universe)} read pairs available "
                                  f"after filtering, target depth is {target}")

        names = self.selector.choose_k(universe.names, target)
        tmp_bam = self.output_path('_downsampled.bam')
        try:
            n_reads = write_read_pairs(self.sample.path, names, tmp_bam, source=self.sample.identity)
        except (OSError, SamtoolsError) as e:
            raise DownsampleError(f"{self.sample.identity}: failed to write {tmp_bam}: {e}") from e

        if n_reads != 2 * target:
            raise DownsampleError(f"{self.sample.identity}: wrote {n_reads} reads, expected {2 * target} "
                                  f"({target} pairs)")
        return DownsampleResult(tmp_bam, n_reads // 2)

    def to_track(self, downsampled: Path) -> Path:
        bigwig = self.track_path
        args = ['bamCoverage', '-p', '1', '-b', downsampled,
                '--binSize', str(self.context.bin_size), '--normalizeUsing', 'None', '-o', bigwig]
        if self.context.blacklist:
            args += ['--blackListFileName', self.context.blacklist]
        run_checked(self.command, args)

        if not self.context.keep_tmp_bam:
            _remove(downsampled, Path(f"{downsampled}.bai"), downsampled.with_suffix('.bai'))
        return bigwig


def make_source(sample: Sample, context: RunContext,
                command: Optional[ExternalCommand] = None,
                selector: Optional[Selector] = None) -> FragmentSource:
    if sample.source_kind == SourceKind.COORDINATE:
        return CoordinateSource(sample, context, command, selector)
    return AlignmentPairSource(sample, context, command, selector)


def write_bedgraph(counts_bed: Path, bedgraph: Path):
    """
    Reduce per-bin coverage counts to a 4-column bedGraph sorted for bedGraphToBigWig.
    """
    try:
        df = pd.read_csv(counts_bed, sep='\t', header=None, dtype={0: str}, encoding='utf-8')
    except pd.errors.EmptyDataError:
        bedgraph.write_text('', encoding='utf-8')
        return
    df = df.iloc[:, [0, 1, 2, df.shape[1] - 1]]
    df.columns = ['chrom', 'start', 'end', 'count']
    df = df.sort_values(['chrom', 'start'], kind='mergesort')
    df.to_csv(bedgraph, sep='\t', header=False, index=False, lineterminator='\n')


def build_genome_bins(chrom_sizes: Path, output_dir: Path,
                      command: Optional[ExternalCommand] = None, bin_size: int = 50) -> Path:
    """
    Create the genome-wide window file once per run, reusing a non-empty one.
    """
    command = command if command is not None else SubprocessCommand()
    bins_path = output_dir / BINS_FILENAME.format(bin_size=bin_size)
    if bins_path.exists() and bins_path.stat().st_size > 0:
        logger.debug(f"Reusing genome bins {bins_path}")
        return bins_path

    run_checked(command, ['bedtools', 'makewindows', '-g', chrom_sizes, '-w', str(bin_size)], stdout=bins_path)
    if bins_path.stat().st_size == 0:
        raise InputError(f"bedtools makewindows produced an empty bins file from {chrom_sizes}")
    return bins_path
