import pytest

from src.fragment_normalizer.core.models import RunContext, SourceKind
from helpers import FakeCommand


@pytest.fixture
def fake_command():
    return FakeCommand()


@pytest.fixture
def chrom_sizes(tmp_path):
    path = tmp_path / "genome.chrom.sizes"
    path.write_text("chr1\t1000000\nchr2\t500000\n")
    return path


@pytest.fixture
def bed_context(tmp_path, chrom_sizes):
    out = tmp_path / "out"
    out.mkdir(exist_ok=True)
    bins = out / "genome_50bp_bins.bed"
    bins.write_text("chr1\t0\t50\n")
    return RunContext(source_kind=SourceKind.COORDINATE, output_dir=out,
                      chrom_sizes=chrom_sizes, bins_path=bins)


@pytest.fixture
def bam_context(tmp_path):
    out = tmp_path / "out"
    out.mkdir(exist_ok=True)
    return RunContext(source_kind=SourceKind.ALIGNMENT_PAIR, output_dir=out)
