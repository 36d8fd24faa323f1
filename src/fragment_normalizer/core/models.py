"""
Data models for fragment_normalizer.
Defines the Sample record, its status enums, batch statistics and the
read-only run context handed to every per-sample task.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


class SourceKind(Enum):
    """
    The two supported fragment representations.
    """
    COORDINATE = "bed"
    ALIGNMENT_PAIR = "bam"


class QCStatus(Enum):
    """
    Outcome of the yield filter. Set once, never reverts.
    """
    PENDING = "PENDING"
    RETAINED = "RETAINED"
    EXCLUDED = "EXCLUDED"


class RunStatus(Enum):
    """
    Per-sample pipeline state.
    """
    PENDING = "PENDING"
    COUNTED = "COUNTED"
    FILTERED = "FILTERED"
    DOWNSAMPLING = "DOWNSAMPLING"
    DOWNSAMPLED = "DOWNSAMPLED"
    TRACK_GENERATING = "TRACK_GENERATING"
    DONE = "DONE"
    FAILED = "FAILED"


_RUN_ORDER = [
    RunStatus.PENDING,
    RunStatus.COUNTED,
    RunStatus.FILTERED,
    RunStatus.DOWNSAMPLING,
    RunStatus.DOWNSAMPLED,
    RunStatus.TRACK_GENERATING,
    RunStatus.DONE,
]


class StateTransitionError(RuntimeError):
    """Raised when a sample would move backwards or leave a terminal state."""


@dataclass
class Sample:
    """
    One input fragment source and everything the pipeline learns about it.
    """
    identity: str
    path: Path
    source_kind: SourceKind
    raw_count: Optional[int] = None
    z_score: Optional[float] = None
    qc_status: QCStatus = QCStatus.PENDING
    target_depth: Optional[int] = None
    downsampled_count: Optional[int] = None
    downsampled_path: Optional[Path] = None
    track_path: Optional[Path] = None
    run_status: RunStatus = RunStatus.PENDING
    exclusion_reason: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return (self.qc_status == QCStatus.EXCLUDED
                or self.run_status in (RunStatus.DONE, RunStatus.FAILED))

    def advance(self, status: RunStatus):
        """
        Move to a later run state. FAILED is reachable from any non-terminal state.
        """
        if self.is_terminal:
            raise StateTransitionError(
                f"{self.identity}: cannot leave terminal state {self.run_status.value} "
                f"(qc={self.qc_status.value})")
        if status == RunStatus.FAILED:
            self.run_status = status
            return
        if _RUN_ORDER.index(status) <= _RUN_ORDER.index(self.run_status):
            raise StateTransitionError(
                f"{self.identity}: {self.run_status.value} -> {status.value} is not a forward transition")
        self.run_status = status

    def set_count(self, count: int):
        if self.raw_count is not None:
            raise StateTransitionError(f"{self.identity}: raw count already set")
        self.raw_count = count
        self.advance(RunStatus.COUNTED)

    def set_qc(self, status: QCStatus, reason: Optional[str] = None):
        if self.qc_status != QCStatus.PENDING:
            raise StateTransitionError(f"{self.identity}: QC status already {self.qc_status.value}")
        self.qc_status = status
        self.exclusion_reason = reason

    def fail(self, reason: str):
        self.failure_reason = reason
        self.advance(RunStatus.FAILED)


@dataclass(frozen=True)
class BatchStatistics:
    """
    Yield distribution of the whole counted batch, computed once before exclusion.
    """
    mean: float
    std: float
    threshold: float
    cutoff: float
    n_samples: int
    z_scores: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class RunContext:
    """
    Read-only values shared by every per-sample task.
    """
    source_kind: SourceKind
    output_dir: Path
    threshold: float = 1.5
    target_depth: Optional[int] = None
    chrom_sizes: Optional[Path] = None
    bins_path: Optional[Path] = None
    blacklist: Optional[Path] = None
    keep_bedgraph: bool = False
    keep_tmp_bam: bool = False
    seed: Optional[int] = None
    bin_size: int = 50
