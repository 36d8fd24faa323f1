"""
Test doubles and small file builders shared by the test modules.
"""

from pathlib import Path

import pysam

from src.fragment_normalizer.utils.commands import CommandResult, SubprocessCommand

BAM_HEADER = {
    "HD": {"VN": "1.6", "SO": "coordinate"},
    "SQ": [{"SN": "chr1", "LN": 1000000}, {"SN": "chr2", "LN": 500000}]
}
READ_LENGTH = 50


class FakeCommand:
    """
    Stands in for bedtools, bedGraphToBigWig and bamCoverage.
    """

    def __init__(self, fail=None):
        self.fail = fail or []
        self.calls = []

    def called_with(self, needle):
        return [c for c in self.calls if any(needle in a for a in c)]

    def run(self, args, stdout=None):
        args = [str(a) for a in args]
        self.calls.append(args)
        for tool, needle in self.fail:
            if args[0] == tool and any(needle in a for a in args):
                return CommandResult(1, f"{tool}: simulated failure")

        tool = args[0]
        if tool == 'bedtools' and args[1] == 'makewindows':
            Path(stdout).write_text("chr1\t0\t50\nchr1\t50\t100\nchr2\t0\t50\n")
        elif tool == 'bedtools' and args[1] == 'coverage':
            Path(stdout).write_text("chr2\t0\t50\t1\nchr1\t50\t100\t0\nchr1\t0\t50\t2\n")
        elif tool == 'bedGraphToBigWig':
            Path(args[3]).write_bytes(b'bigwig')
        elif tool == 'bamCoverage':
            Path(args[args.index('-o') + 1]).write_bytes(b'bigwig')
        return CommandResult(0, "")


class StallingCommand(FakeCommand):
    """
    FakeCommand whose track step for one sample runs a real, long-lived process.
    The process id is written to pid_file once it is running.
    """

    def __init__(self, stall, pid_file):
        super().__init__()
        self.stall = stall
        self.pid_file = pid_file

    def run(self, args, stdout=None):
        args = [str(a) for a in args]
        if args[0] == 'bedGraphToBigWig' and any(f"{self.stall}_50bp" in a for a in args):
            return SubprocessCommand().run(['sh', '-c', f'echo $$ > {self.pid_file}; exec sleep 60'])
        return super().run(args, stdout)


class FirstKSelector:
    """
    Deterministic selector: the first k items of the universe.
    """

    def choose_k(self, universe, k):
        return list(universe)[:k]


def write_bed(path, n, chrom='chr1', header=True):
    with open(path, 'w') as f:
        if header:
            f.write("chrom\tstart\tend\tname\n")
        for i in range(n):
            f.write(f"{chrom}\t{i * 10}\t{i * 10 + 5}\tfrag{i}\n")
    return path


def read_pair(name, chrom, start1, start2):
    """READ1 + READ2 records (0-based starts) of one properly paired fragment."""
    span = start2 + READ_LENGTH - start1
    return [(name, 99, chrom, start1, start2, span),
            (name, 147, chrom, start2, start1, -span)]


def single_read(name, chrom, start, flag=99):
    return [(name, flag, chrom, start, start + 200, 250)]


def write_bam(path, records):
    """
    Write records from read_pair / single_read to a coordinate-sorted BAM.
    """
    ref_ids = {sq["SN"]: i for i, sq in enumerate(BAM_HEADER["SQ"])}
    with pysam.AlignmentFile(str(path), "wb", header=BAM_HEADER) as bam:
        for name, flag, chrom, start, mate_start, tlen in sorted(records, key=lambda r: (ref_ids[r[2]], r[3])):
            a = pysam.AlignedSegment(bam.header)
            a.query_name = name
            a.query_sequence = "A" * READ_LENGTH
            a.flag = flag
            a.reference_id = ref_ids[chrom]
            a.reference_start = start
            a.mapping_quality = 60
            a.cigarstring = f"{READ_LENGTH}M"
            a.next_reference_id = ref_ids[chrom]
            a.next_reference_start = mate_start
            a.template_length = tlen
            a.query_qualities = pysam.qualitystring_to_array("I" * READ_LENGTH)
            bam.write(a)
    return path


def bam_names(path):
    with pysam.AlignmentFile(str(path), "rb") as bam:
        return [r.query_name for r in bam.fetch(until_eof=True)]


def process_running(pid):
    """False once the process is gone or only a zombie is left."""
    try:
        with open(f"/proc/{pid}/stat") as f:
            return f.read().rsplit(')', 1)[1].split()[0] != 'Z'
    except FileNotFoundError:
        return False
