"""
Logging utilities for fragment_normalizer.
The main process owns the console and log.txt handlers; counting workers
(Phase 1) and downsampling/track workers (Phase 2) ship their records through a
managed queue.
"""

import logging
import sys
import multiprocessing
from dataclasses import dataclass
from logging.handlers import QueueHandler, QueueListener
from multiprocessing.managers import SyncManager
from pathlib import Path
from typing import Any

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class LogSession:
    """
    A running log setup: the queue handed to pool workers and what drains it.
    """
    queue: Any
    listener: QueueListener
    manager: SyncManager
    log_file: Path

    def stop(self):
        """
        Flush pending worker records to the handlers, then shut the queue down.
        """
        self.listener.stop()
        for h in self.listener.handlers:
            h.close()
        self.manager.shutdown()


def _route_to_queue(queue):
    root = logging.getLogger()
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.addHandler(QueueHandler(queue))
    root.setLevel(logging.DEBUG)


def setup_logging(output_dir: Path, verbose: bool = False) -> LogSession:
    """
    Log to stdout (INFO, or DEBUG when verbose) and to log.txt (DEBUG) in the output directory.
    The run's own records and those of every sample worker pass through one queue,
    so log.txt keeps a single ordered stream for the batch.

    :param output_dir: Directory to save log.txt.
    :param verbose: Also show per-sample DEBUG records on the console.
    :return: The LogSession; pass its queue to the worker pools and stop it at exit.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    log_file = output_dir / "log.txt"

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    manager = multiprocessing.Manager()
    queue = manager.Queue(-1)

    listener = QueueListener(queue, console_handler, file_handler, respect_handler_level=True)
    listener.start()

    _route_to_queue(queue)
    logging.getLogger(__name__).info(f"Logging initialized. Log file: {log_file}")

    return LogSession(queue=queue, listener=listener, manager=manager, log_file=log_file)


def worker_configurer(queue):
    """
    Pool initializer hook: send a worker's records to the central queue.
    Handlers inherited from the parent by fork are dropped so nothing is written twice.
    """
    _route_to_queue(queue)
