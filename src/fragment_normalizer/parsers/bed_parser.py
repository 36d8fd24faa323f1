"""
BED-style table parsers for fragment_normalizer.
Handles fragment coordinate files, chromosome size tables and exclusion region lists.
"""

import gzip
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, Optional, Tuple
import logging

from src.fragment_normalizer.core.errors import InputError

logger = logging.getLogger(__name__)

FRAGMENT_COLUMNS = ['chrom', 'start', 'end']


def _open_text(path: Path):
    if str(path).endswith('.gz'):
        return gzip.open(path, 'rt', encoding='utf-8')
    return open(path, 'r', encoding='utf-8')


def _is_int(value: str) -> bool:
    value = value.strip()
    return value.isdigit()


def find_header(path: Path) -> Tuple[Optional[str], int]:
    """
    Locate an optional header line at the top of a fragment file.
    The first non-comment line is a header if its start/end columns are not integers.

    :param path: Path to the fragment file.
    :return: Tuple (header line or None, number of leading lines to skip).
    """
    with _open_text(path) as f:
        for i, line in enumerate(f):
            text = line.rstrip('\r\n')
            if not text.strip() or text.startswith('#'):
                continue
            fields = text.split('\t')
            if len(fields) < 3:
                raise InputError(f"{path}: line {i + 1} has {len(fields)} columns, expected at least 3")
            if _is_int(fields[1]) and _is_int(fields[2]):
                return None, 0
            return text, i + 1
    return None, 0


def parse_fragment_bed(path: Path) -> Tuple[Optional[str], pd.DataFrame]:
    """
    Parse a fragment BED file. Every data record is one fragment.

    :param path: Path to the fragment file (plain or gzipped).
    :return: Tuple (header line or None, DataFrame of records as strings with
             'chrom', 'start', 'end' and any extra columns).
    :raises InputError: If the file is unreadable or a record is malformed.
    """
    path = Path(path)
    if not path.is_file():
        raise InputError(f"Fragment file not found: {path}")

    try:
        header, skip = find_header(path)
        df = pd.read_csv(path, sep='\t', header=None, skiprows=skip, comment='#',
                         dtype=str, keep_default_na=False, skip_blank_lines=True, encoding='utf-8')
    except pd.errors.EmptyDataError:
        return header, pd.DataFrame(columns=FRAGMENT_COLUMNS)
    except (OSError, UnicodeDecodeError, pd.errors.ParserError) as e:
        raise InputError(f"Failed to read fragment file {path}: {e}") from e

    if df.shape[1] < 3:
        raise InputError(f"{path}: fragment records need at least 3 columns, found {df.shape[1]}")

    df.columns = FRAGMENT_COLUMNS + [f'col{i}' for i in range(3, df.shape[1])]

    # Short rows are padded with missing values by pandas
    if df.isna().any().any():
        raise InputError(f"{path}: records with fewer columns than the first record")

    bad = ~(df['start'].str.fullmatch(r'\s*\d+\s*') & df['end'].str.fullmatch(r'\s*\d+\s*'))
    if bad.any():
        first_bad = int(np.flatnonzero(bad.to_numpy())[0])
        raise InputError(f"{path}: non-integer coordinates in record {first_bad + 1}")

    return header, df


def write_fragment_bed(df: pd.DataFrame, header: Optional[str], out_path: Path):
    """
    Write fragment records (and the header line, if any) to a BED file.
    """
    with open(out_path, 'w', encoding='utf-8') as f:
        if header is not None:
            f.write(header + '\n')
        df.to_csv(f, sep='\t', header=False, index=False, lineterminator='\n')


def parse_chrom_sizes(path: Path) -> Dict[str, int]:
    """
    Parse a chromosome size table (name <tab> length). Order of the file is kept.

    :param path: Path to the chrom.sizes file.
    :return: Ordered dictionary mapping chromosome name to length.
    :raises InputError: If the table is unreadable or malformed.
    """
    try:
        df = pd.read_csv(path, sep=r'\s+', header=None, comment='#', dtype=str, encoding='utf-8')
    except pd.errors.EmptyDataError:
        raise InputError(f"Chromosome size table {path} is empty")
    except (OSError, UnicodeDecodeError, pd.errors.ParserError) as e:
        raise InputError(f"Failed to read chromosome size table {path}: {e}") from e

    if df.shape[1] < 2:
        raise InputError(f"{path}: expected 'name length' per line")

    lengths = pd.to_numeric(df[1], errors='coerce')
    if lengths.isna().any() or (lengths <= 0).any():
        raise InputError(f"{path}: chromosome lengths must be positive integers")
    if df[0].duplicated().any():
        dup = df[0][df[0].duplicated()].iloc[0]
        raise InputError(f"{path}: chromosome {dup} listed more than once")

    return dict(zip(df[0], lengths.astype(int)))


def parse_regions(path: Path) -> Dict[str, Tuple[np.ndarray, np.ndarray]]:
    """
    Parse an exclusion region BED file into merged, sorted intervals per chromosome.

    :param path: Path to the region BED file.
    :return: Dictionary chrom -> (starts, ends), 0-based half-open, non-overlapping.
    :raises InputError: If the file is unreadable or malformed.
    """
    try:
        df = pd.read_csv(path, sep='\t', header=None, comment='#', usecols=[0, 1, 2],
                         names=FRAGMENT_COLUMNS, dtype={'chrom': str}, encoding='utf-8')
    except pd.errors.EmptyDataError:
        logger.warning(f"Region file {path} is empty.")
        return {}
    except (OSError, UnicodeDecodeError, ValueError, pd.errors.ParserError) as e:
        raise InputError(f"Failed to read region file {path}: {e}") from e

    df = df[~df['chrom'].str.startswith(('track', 'browser'), na=False)]
    coords = df[['start', 'end']].apply(pd.to_numeric, errors='coerce')
    if coords.isna().any().any():
        raise InputError(f"{path}: non-integer region coordinates")
    df = df.assign(start=coords['start'].astype(np.int64), end=coords['end'].astype(np.int64))

    regions = {}
    for chrom, group in df.sort_values(['chrom', 'start']).groupby('chrom', sort=False):
        merged_starts, merged_ends = [], []
        for start, end in zip(group['start'], group['end']):
            if merged_ends and start <= merged_ends[-1]:
                merged_ends[-1] = max(merged_ends[-1], end)
            else:
                merged_starts.append(start)
                merged_ends.append(end)
        regions[chrom] = (np.array(merged_starts, dtype=np.int64), np.array(merged_ends, dtype=np.int64))

    logger.debug(f"Loaded {len(df)} exclusion regions on {len(regions)} chromosomes from {path}")
    return regions


def overlaps_region(regions: Dict[str, Tuple[np.ndarray, np.ndarray]], chrom: str, start: int, end: int) -> bool:
    """
    Whether the half-open interval [start, end) touches any merged region on chrom.
    """
    if chrom not in regions:
        return False
    starts, ends = regions[chrom]
    idx = np.searchsorted(ends, start, side='right')
    return bool(idx < len(starts) and starts[idx] < end)
