"""Ordered output of batches that complete out of order.

Workers write ``batch-N.vcf`` and then ``batch-N.done`` into a scratch
directory. :class:`OrderedSequencer` polls for the marker of the next batch
number, streams that batch to the output and removes both files. The
dispatcher writes ``last-batch`` (holding the final batch number) once every
batch has been submitted.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Optional, TextIO

from tqdm import tqdm

from .config import LOG_EVERY, POLL_INTERVAL

logger = logging.getLogger(__name__)

LAST_BATCH = "last-batch"


def batch_path(scratch: str | Path, n: int) -> str:
    return os.path.join(str(scratch), f"batch-{n}.vcf")


def done_path(scratch: str | Path, n: int) -> str:
    return os.path.join(str(scratch), f"batch-{n}.done")


def last_batch_path(scratch: str | Path) -> str:
    return os.path.join(str(scratch), LAST_BATCH)


def write_last_batch(scratch: str | Path, n: int) -> None:
    """Publish the final batch number (0 for empty input).

    Written through a temporary name so the sequencer never sees a partial file.
    """
    tmp = last_batch_path(scratch) + ".tmp"
    Path(tmp).write_text(f"{n}\n", encoding="utf-8")
    os.replace(tmp, last_batch_path(scratch))


class OrderedSequencer(threading.Thread):
    """Background thread emitting batch outputs in batch-number order.

    Parameters
    ----------
    scratch:
        Scratch directory shared with the workers.
    out:
        Text stream receiving the concatenated batch outputs.
    poll_interval:
        Seconds to wait before re-checking for the next batch.
    progress:
        Show a tqdm bar counting emitted batches.
    """

    def __init__(
        self,
        scratch: str | Path,
        out: TextIO,
        *,
        poll_interval: float = POLL_INTERVAL,
        progress: bool = False,
    ) -> None:
        super().__init__(name="varsieve-sequencer", daemon=True)
        self.scratch = str(scratch)
        self.out = out
        self.poll_interval = poll_interval
        self.progress = progress
        self.abort = threading.Event()
        self.emitted = 0
        self.last: Optional[int] = None
        self.error: Optional[BaseException] = None

    def _read_last(self) -> None:
        path = last_batch_path(self.scratch)
        if not os.path.exists(path):
            return
        text = Path(path).read_text(encoding="utf-8").strip()
        if not text:
            return
        self.last = int(text)
        os.remove(path)
        logger.debug("Last batch is %d", self.last)

    def _emit(self, n: int) -> None:
        with open(batch_path(self.scratch, n), "rt", encoding="utf-8") as fh:
            shutil.copyfileobj(fh, self.out)
        os.remove(batch_path(self.scratch, n))
        os.remove(done_path(self.scratch, n))
        self.emitted = n

    def sequence(self) -> int:
        """Emit batches 1, 2, ... until the last one; return the number emitted.

        Returns early, leaving remaining files in place, if ``abort`` is set.
        """
        bar = tqdm(desc="batches", unit="batch", disable=not self.progress)
        try:
            k = 1
            while True:
                if self.last is None:
                    self._read_last()
                if self.last is not None and k > self.last:
                    break
                if os.path.exists(done_path(self.scratch, k)):
                    self._emit(k)
                    bar.update(1)
                    if k % LOG_EVERY == 0:
                        logger.info("Sequenced %d batches", k)
                    k += 1
                    continue
                if self.abort.wait(self.poll_interval):
                    logger.debug("Sequencer aborted while waiting for batch %d", k)
                    break
        finally:
            bar.close()
        self.out.flush()
        return self.emitted

    def run(self) -> None:
        try:
            self.sequence()
        except BaseException as e:  # re-raised by the dispatcher after join()
            self.error = e
