"""
Paired alignment reader for fragment_normalizer.
Streams BAM records with pysam and groups properly paired reads into read pairs,
the fragment unit of the alignment representation.
"""

import numpy as np
import pysam
from dataclasses import dataclass, field
from pathlib import Path
from typing import Collection, Dict, List, Optional, Tuple
import logging

from src.fragment_normalizer.core.errors import CountError
from src.fragment_normalizer.parsers.bed_parser import overlaps_region

logger = logging.getLogger(__name__)

Regions = Dict[str, Tuple[np.ndarray, np.ndarray]]


@dataclass
class PairUniverse:
    """
    The selectable read pairs of one alignment file.
    """
    names: List[str] = field(default_factory=list)
    singletons: int = 0
    excluded_by_regions: int = 0

    def __len__(self) -> int:
        return len(self.names)


def is_fragment_read(read: pysam.AlignedSegment) -> bool:
    """
    Properly paired, mapped, primary and not supplementary (samtools -f 2 -F 2308).
    """
    return (read.is_proper_pair and not read.is_unmapped
            and not read.is_secondary and not read.is_supplementary)


def _open_alignments(path: Path, source: str) -> pysam.AlignmentFile:
    try:
        return pysam.AlignmentFile(str(path), 'rb')
    except (OSError, ValueError) as e:
        raise CountError(f"{source}: cannot read alignment file {path}: {e}") from e


def _in_regions(read: pysam.AlignedSegment, regions: Regions) -> bool:
    start = read.reference_start
    end = read.reference_end if read.reference_end is not None else start + 1
    return overlaps_region(regions, read.reference_name, start, end)


def collect_read_pairs(path: Path, regions: Optional[Regions] = None, source: str = "<bam>") -> PairUniverse:
    """
    Build the pair universe of an alignment file.
    A read name with exactly one READ1 and one READ2 record is one pair. Names with a
    single mate are dropped as singletons. With exclusion regions, a pair is dropped
    when either mate overlaps a region.

    Only the name table is held in memory; records are streamed.

    :param path: Path to the BAM file.
    :param regions: Optional merged exclusion regions from parse_regions.
    :param source: Name used in messages.
    :return: PairUniverse in first-seen order.
    :raises CountError: If the file is unreadable or a name carries duplicate mates.
    """
    # name -> [has READ1, has READ2, touches a region]
    mates: Dict[str, List[bool]] = {}

    with _open_alignments(path, source) as bam:
        try:
            for read in bam.fetch(until_eof=True):
                if not is_fragment_read(read):
                    continue
                if read.is_read1 == read.is_read2:
                    raise CountError(f"{source}: record {read.query_name} is not marked as exactly "
                                     f"one of READ1/READ2 (flag {read.flag})")
                slot = 0 if read.is_read1 else 1
                state = mates.setdefault(read.query_name, [False, False, False])
                if state[slot]:
                    raise CountError(f"{source}: read {read.query_name} has more than one "
                                     f"READ{slot + 1} record; pairing is ambiguous")
                state[slot] = True
                if regions and not state[2] and _in_regions(read, regions):
                    state[2] = True
        except OSError as e:
            raise CountError(f"{source}: failed while reading {path}: {e}") from e

    universe = PairUniverse()
    for name, (has_read1, has_read2, excluded) in mates.items():
        if not (has_read1 and has_read2):
            universe.singletons += 1
        elif excluded:
            universe.excluded_by_regions += 1
        else:
            universe.names.append(name)

    if universe.singletons:
        logger.debug(f"{source}: dropped {universe.singletons} unpaired reads")
    if universe.excluded_by_regions:
        logger.debug(f"{source}: removed {universe.excluded_by_regions} pairs overlapping exclusion regions")

    return universe


def write_read_pairs(path: Path, names: Collection[str], out_path: Path, source: str = "<bam>") -> int:
    """
    Copy both mates of every selected read pair to a new BAM and index it.
    Records keep the order of the input file.

    :param path: Source BAM file.
    :param names: Selected read names.
    :param out_path: Destination BAM file.
    :param source: Name used in messages.
    :return: Number of records written.
    """
    selected = set(names)
    written = 0
    with _open_alignments(path, source) as bam:
        with pysam.AlignmentFile(str(out_path), 'wb', template=bam) as out:
            for read in bam.fetch(until_eof=True):
                if read.query_name in selected and is_fragment_read(read):
                    out.write(read)
                    written += 1
    pysam.index(str(out_path))
    return written
