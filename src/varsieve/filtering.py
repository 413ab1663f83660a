"""Batch-parallel genotype filtering of a GVCF stream.

The input is split into batches that are filtered by a process pool; an
:class:`~varsieve.sequencer.OrderedSequencer` thread writes the results in
input order. At most ``jobs`` batches are held in memory or in flight at
any time.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import shutil
import threading
from concurrent.futures import CancelledError, Future, ProcessPoolExecutor
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, TextIO, Tuple

from .batching import excluded_columns, filter_header, run_batch, split_batches
from .config import BATCH_SIZE, JOBS, LOG_FORMAT, POLL_INTERVAL
from .errors import ConfigurationError, WorkerFailedError
from .models import BatchSummary, FilterParams
from .sequencer import OrderedSequencer, write_last_batch
from .vcf import read_header
from .validation import check_scratch_dir_absent

logger = logging.getLogger(__name__)


def _init_worker(level: int) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def filter_vcf(
    infh: Iterable[str],
    out: TextIO,
    *,
    tmpdir: str | Path,
    params: Optional[FilterParams] = None,
    jobs: int = JOBS,
    batch_size: int = BATCH_SIZE,
    keep_hr: bool = False,
    keep_samples: Optional[Sequence[str]] = None,
    command_line: str = "",
    poll_interval: float = POLL_INTERVAL,
    progress: bool = False,
) -> BatchSummary:
    """Filter a GVCF from ``infh`` into ``out``.

    Parameters
    ----------
    infh:
        Line iterator over the input, headers included.
    tmpdir:
        Scratch directory; must not exist. Removed on success, kept on failure.
    jobs:
        Worker processes, also the maximum number of batches in flight.
    keep_samples:
        Sample IDs to keep; other sample columns are dropped. None keeps all.
    command_line:
        Recorded in the ``##varsieve_filter`` header line.

    Returns
    -------
    BatchSummary
        Counters summed over all batches.

    Raises
    ------
    WorkerFailedError
        If any batch failed; chained to the worker's exception.
    """
    params = params or FilterParams()
    if jobs < 1:
        raise ConfigurationError("jobs must be >= 1")
    if batch_size < 1:
        raise ConfigurationError("batch size must be >= 1")
    scratch = Path(tmpdir)
    check_scratch_dir_absent(scratch)

    infh = iter(infh)
    header = read_header(infh)
    skipped = excluded_columns(header, keep_samples)
    scratch.mkdir(parents=True)
    logger.info("Filtering with %d jobs, batch size %d, scratch %s", jobs, batch_size, scratch)

    out.write(filter_header(header, skipped, command_line))
    out.flush()

    sequencer = OrderedSequencer(scratch, out, poll_interval=poll_interval, progress=progress)
    sequencer.start()

    slots = threading.BoundedSemaphore(jobs)
    lock = threading.Lock()
    failures: List[Tuple[int, BaseException]] = []
    summaries: List[BatchSummary] = []

    def on_done(number: int):
        def callback(fut: Future) -> None:
            try:
                exc = fut.exception()
            except CancelledError as e:
                exc = e
            with lock:
                if exc is not None:
                    if not failures:
                        logger.error("Batch %d failed: %s", number, exc)
                        sequencer.abort.set()
                    failures.append((number, exc))
                else:
                    summaries.append(fut.result())
            slots.release()

        return callback

    last = 0
    try:
        with ProcessPoolExecutor(
            max_workers=jobs,
            mp_context=mp.get_context("spawn"),
            initializer=_init_worker,
            initargs=(logging.getLogger().getEffectiveLevel(),),
        ) as pool:
            for batch in split_batches(infh, batch_size):
                slots.acquire()
                if failures:
                    slots.release()
                    break
                fut = pool.submit(run_batch, batch, str(scratch), params, skipped, keep_hr)
                fut.add_done_callback(on_done(batch.number))
                last = batch.number
    except BaseException:
        sequencer.abort.set()
        sequencer.join()
        raise

    if failures:
        sequencer.abort.set()
        sequencer.join()
        number, exc = failures[0]
        raise WorkerFailedError(
            f"batch {number} failed, run aborted (scratch directory left at {scratch}): {exc}"
        ) from exc

    write_last_batch(scratch, last)
    sequencer.join()
    if sequencer.error is not None:
        raise sequencer.error

    shutil.rmtree(scratch)

    total = BatchSummary()
    for s in sorted(summaries, key=lambda s: s.batch):
        total = total + s
    logger.info(
        "Filtered %d batches: %d lines in, %d lines out, %d/%d calls nulled, %d fixed to HV, %d fixed to HET",
        last,
        total.lines_in,
        total.lines_out,
        total.calls_nocalled,
        total.calls_seen,
        total.fixed_to_hv,
        total.fixed_to_het,
    )
    return total
