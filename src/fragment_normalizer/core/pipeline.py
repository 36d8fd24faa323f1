"""
Batch orchestration for fragment_normalizer.
Phase 1 counts every sample, applies the yield filter and fixes the target depth.
Phase 2 downsamples and builds a track for every retained sample in a bounded
worker pool, each worker owning one sample end to end.
"""

import dataclasses
import logging
import multiprocessing
import os
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from src.fragment_normalizer.core.errors import InputError, NormalizerError
from src.fragment_normalizer.core.models import (
    BatchStatistics,
    QCStatus,
    RunContext,
    RunStatus,
    Sample,
    SourceKind,
    StateTransitionError
)
from src.fragment_normalizer.core.qc import apply_qc_filter, select_target_depth
from src.fragment_normalizer.core.sampling import Selector
from src.fragment_normalizer.core.sources import build_genome_bins, make_source
from src.fragment_normalizer.parsers.bed_parser import parse_chrom_sizes
from src.fragment_normalizer.utils.commands import ExternalCommand, terminate_active_commands
from src.fragment_normalizer.utils.logging import worker_configurer

logger = logging.getLogger(__name__)

_KNOWN_SUFFIXES = ('.gz', '.bed', '.bam', '.txt', '.tsv')


@dataclass
class BatchResult:
    samples: List[Sample]
    statistics: Optional[BatchStatistics] = None
    target_depth: Optional[int] = None
    interrupted: bool = False
    done: List[Sample] = field(default_factory=list)
    failed: List[Sample] = field(default_factory=list)
    excluded: List[Sample] = field(default_factory=list)

    def tally(self):
        self.done = [s for s in self.samples if s.run_status == RunStatus.DONE]
        self.failed = [s for s in self.samples if s.run_status == RunStatus.FAILED]
        self.excluded = [s for s in self.samples if s.qc_status == QCStatus.EXCLUDED]
        return self


def sample_identity(path: Path) -> str:
    """
    Stable sample name: the file name without its fragment/alignment extensions.
    """
    name = Path(path).name
    while True:
        stem, ext = os.path.splitext(name)
        if ext.lower() not in _KNOWN_SUFFIXES or not stem:
            return name
        name = stem


def build_samples(paths: Sequence[Path], source_kind: SourceKind) -> List[Sample]:
    """
    Create one PENDING sample per input file.

    :raises InputError: If no files are given or two files map to the same identity.
    """
    if not paths:
        raise InputError("No fragment files provided.")
    samples = []
    seen = {}
    for p in paths:
        p = Path(p)
        identity = sample_identity(p)
        if identity in seen:
            raise InputError(f"Samples {seen[identity]} and {p} share the name '{identity}'; "
                             f"output tracks would collide")
        seen[identity] = p
        samples.append(Sample(identity=identity, path=p, source_kind=source_kind))
    return samples


def _merge(samples: List[Sample], updated: List[Sample]):
    by_id = {s.identity: s for s in samples}
    for u in updated:
        original = by_id[u.identity]
        if original is not u:
            original.__dict__.update(u.__dict__)


def _on_terminate(signum, frame):
    # Pool.terminate() stops workers with SIGTERM; take the running tool down too
    terminate_active_commands()
    os._exit(128 + signum)


def _worker_init(log_queue):
    # The parent decides what happens on interrupt
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    signal.signal(signal.SIGTERM, _on_terminate)
    if log_queue is not None:
        worker_configurer(log_queue)


def count_sample(sample: Sample, context: RunContext, command: Optional[ExternalCommand] = None) -> Sample:
    """
    Count one sample's fragments. Unreadable sources fail the sample, not the batch.
    """
    source = make_source(sample, context, command=command)
    try:
        count = source.count()
    except (NormalizerError, OSError) as e:
        logger.error(f"{sample.identity}: counting failed: {e}")
        sample.fail(f"Counting: {e}")
        return sample
    sample.set_count(count)
    logger.debug(f"{sample.identity}: {count} fragments")
    return sample


def count_samples(samples: List[Sample], context: RunContext, workers: int = 1,
                  log_queue=None, command: Optional[ExternalCommand] = None) -> List[Sample]:
    """
    Count every sample. Counting has no cross-sample dependency and runs in parallel.
    """
    if workers <= 1 or len(samples) <= 1:
        counted = [count_sample(s, context, command) for s in samples]
    else:
        with multiprocessing.Pool(min(workers, len(samples)), initializer=_worker_init, initargs=(log_queue,)) as pool:
            counted = pool.starmap(count_sample, [(s, context, command) for s in samples])
    _merge(samples, counted)
    return samples


def run_phase_one(samples: List[Sample], context: RunContext, workers: int = 1,
                  log_queue=None, command: Optional[ExternalCommand] = None):
    """
    Count, filter and select the target depth for the whole batch.
    Nothing of phase 2 may start before this returns.

    :return: Tuple (BatchStatistics, RunContext carrying the target depth).
    :raises QCError: If no sample is retained.
    """
    logger.info(f"Phase 1: Counting fragments in {len(samples)} samples...")
    count_samples(samples, context, workers, log_queue, command)

    logger.info("Phase 1: Applying yield QC...")
    stats = apply_qc_filter(samples, context.threshold)
    target = select_target_depth(samples)
    return stats, dataclasses.replace(context, target_depth=target)


def process_sample(sample: Sample, context: RunContext,
                   command: Optional[ExternalCommand] = None,
                   selector: Optional[Selector] = None) -> Sample:
    """
    Downsample one retained sample to the target depth and build its track.
    Any error fails this sample only.

    :param sample: A FILTERED, RETAINED sample.
    :param context: Run context with the target depth fixed.
    :return: The updated sample (DONE or FAILED).
    """
    if sample.qc_status != QCStatus.RETAINED or sample.run_status != RunStatus.FILTERED:
        raise StateTransitionError(f"{sample.identity} is not ready for downsampling "
                                   f"(qc={sample.qc_status.value}, run={sample.run_status.value})")

    target = context.target_depth
    source = make_source(sample, context, command=command, selector=selector)
    step = "Downsampling"
    try:
        sample.advance(RunStatus.DOWNSAMPLING)
        result = source.downsample_to(target)
        if result.count != target:
            raise NormalizerError(f"downsampled to {result.count} fragments instead of {target}")
        sample.downsampled_count = result.count
        sample.downsampled_path = result.path
        sample.advance(RunStatus.DOWNSAMPLED)
        logger.debug(f"{sample.identity}: downsampled {sample.raw_count} -> {result.count}")

        step = "Track generation"
        sample.advance(RunStatus.TRACK_GENERATING)
        sample.track_path = source.to_track(result.path)
        sample.advance(RunStatus.DONE)
        logger.info(f"Wrote {sample.track_path}")
    except (NormalizerError, OSError, ValueError) as e:
        logger.error(f"{sample.identity}: {step} failed: {e}")
        sample.fail(f"{step}: {type(e).__name__}: {e}")
    return sample


def _process_task(task) -> Sample:
    return process_sample(*task)


def _mark_interrupted(pending: List[Sample]):
    for s in pending:
        if not s.is_terminal:
            s.fail("Interrupted")


def run_phase_two(samples: List[Sample], context: RunContext, workers: int = 1,
                  log_queue=None, command: Optional[ExternalCommand] = None) -> List[Sample]:
    """
    Run process_sample for every retained sample, at most `workers` at a time.
    Results are merged back by identity as each sample finishes, so an interrupt
    only fails the samples still in flight.
    """
    pending = [s for s in samples if s.qc_status == QCStatus.RETAINED and s.run_status == RunStatus.FILTERED]
    logger.info(f"Phase 2: Downsampling {len(pending)} samples to {context.target_depth} fragments...")
    if not pending:
        return samples

    if workers <= 1 or len(pending) == 1:
        try:
            for s in pending:
                process_sample(s, context, command)
        except KeyboardInterrupt:
            logger.warning("Interrupted: no new samples will be scheduled")
            _mark_interrupted(pending)
            raise
        return samples

    pool = multiprocessing.Pool(min(workers, len(pending)), initializer=_worker_init, initargs=(log_queue,))
    try:
        for updated in pool.imap_unordered(_process_task, [(s, context, command) for s in pending]):
            _merge(samples, [updated])
    except KeyboardInterrupt:
        logger.warning("Interrupted: no new samples will be scheduled, stopping workers")
        pool.terminate()
        _mark_interrupted(pending)
        raise
    except Exception:
        pool.terminate()
        raise
    else:
        pool.close()
    finally:
        pool.join()

    return samples


def check_batch_inputs(context: RunContext):
    """
    Batch-wide input checks made before any sample is touched.

    :raises InputError: If the chromosome size table or the blacklist is missing or malformed.
    """
    context.output_dir.mkdir(parents=True, exist_ok=True)
    if context.source_kind == SourceKind.COORDINATE:
        if context.chrom_sizes is None:
            raise InputError("--chrom-sizes is required for BED input")
        chrom_sizes = parse_chrom_sizes(context.chrom_sizes)
        logger.debug(f"Chromosome table {context.chrom_sizes}: {len(chrom_sizes)} chromosomes")
    elif context.blacklist is not None and not Path(context.blacklist).is_file():
        raise InputError(f"Blacklist file not found: {context.blacklist}")


def run_batch(samples: List[Sample], context: RunContext, workers: int = 1,
              log_queue=None, command: Optional[ExternalCommand] = None) -> BatchResult:
    """
    Run both phases over a batch.

    :raises QCError: If no sample survives the yield filter.
    :raises InputError: On batch-level input problems.
    """
    check_batch_inputs(context)
    stats, context = run_phase_one(samples, context, workers, log_queue, command)
    if context.source_kind == SourceKind.COORDINATE:
        bins = build_genome_bins(context.chrom_sizes, context.output_dir, command, context.bin_size)
        context = dataclasses.replace(context, bins_path=bins)

    result = BatchResult(samples=samples, statistics=stats, target_depth=context.target_depth)
    try:
        run_phase_two(samples, context, workers, log_queue, command)
    except KeyboardInterrupt:
        result.interrupted = True
    return result.tally()


def exit_status(result: BatchResult) -> int:
    """
    0 when at least one sample produced a track and the run was not interrupted.
    """
    if result.interrupted:
        return 130
    return 0 if result.done else 1
