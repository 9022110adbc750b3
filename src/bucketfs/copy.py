"""Recursive copy of a file or directory tree, possibly between buckets.

    The root entry is copied first. For directories, the source bucket is
    then walked and every item found is handed to a fixed pool of workers
    through a bounded queue. The first failure (from the walk or from any
    copy) cancels the walk and trips the halt flag passed to in-flight
    copies; all workers are joined before that first failure is raised.
    Copies that completed before the failure are kept.
"""
from __future__ import annotations
import queue
import threading
import typing as t
from concurrent.futures import ThreadPoolExecutor

import zrlog

from . import paths
from .base import Capability, CopyOptions, DEFAULT_COPY_WORKERS
from .exceptions import NotSupportedError
from .item import Item
from .util import HaltFlag, EventHaltFlag, CombinedHaltFlag
from .walk import WalkSignal

_DONE = object()


def _dir_prefix(bucket, name: str) -> str:
    prefix = paths.sanitize_dir_path(bucket, paths.directorize(bucket, name))
    return "" if prefix == bucket.path_separator() else prefix


def destination_name(source: Item, destination: Item, item: Item) -> str:
    """Map an item below the source directory to its name below the destination."""
    src_bucket = source.bucket()
    dest_bucket = destination.bucket()
    src_prefix = source.name()
    if not item.name().startswith(src_prefix) or src_prefix.strip() in ("", ".", src_bucket.path_separator()):
        src_prefix = _dir_prefix(src_bucket, src_prefix)
    relative = item.name()[len(src_prefix):].lstrip(src_bucket.path_separator())
    if src_bucket.path_separator() != dest_bucket.path_separator():
        relative = relative.replace(src_bucket.path_separator(), dest_bucket.path_separator())
    return _dir_prefix(dest_bucket, destination.name()) + relative


class _CopyRun:

    def __init__(self, source: Item, destination: Item, options: t.Optional[CopyOptions], halt_flag: t.Optional[HaltFlag], max_workers: int):
        self.source = source
        self.destination = destination
        self.options = options
        self.max_workers = max(1, max_workers)
        self.cancel = EventHaltFlag()
        self.halt_flag = halt_flag
        self.worker_halt_flag = CombinedHaltFlag(halt_flag, self.cancel)
        self.work = queue.Queue(maxsize=self.max_workers * 2)
        self.errors: list[BaseException] = []
        self.copied = 0
        self._lock = threading.Lock()
        self._log = zrlog.get_logger("bucketfs.copy")

    def fail(self, ex: BaseException):
        with self._lock:
            self.errors.append(ex)
        self.cancel.halt()

    def visitor(self, item: Item, error: t.Optional[Exception]) -> WalkSignal:
        if error is not None:
            raise error
        if not self.cancel.check_continue(False):
            return WalkSignal.STOP
        self.work.put((item, destination_name(self.source, self.destination, item)))
        return WalkSignal.CONTINUE

    def worker(self):
        dest_bucket = self.destination.bucket()
        while True:
            entry = self.work.get()
            if entry is _DONE:
                return
            if not self.cancel.check_continue(False):
                continue
            item, dest_name = entry
            try:
                dest_bucket.copy(item, dest_name, self.options, halt_flag=self.worker_halt_flag)
                with self._lock:
                    self.copied += 1
            except BaseException as ex:
                if self.cancel.check_continue(False):
                    self._log.exception(f"Copy of [{item.name()}] to [{dest_name}] failed")
                self.fail(ex)

    def run(self):
        src_bucket = self.source.bucket()
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="bucketfs-copy") as pool:
            futures = [pool.submit(self.worker) for _ in range(self.max_workers)]
            try:
                src_bucket.walk(self.source.name(), self.visitor, halt_flag=self.halt_flag)
            except BaseException as ex:
                self.fail(ex)
            finally:
                for _ in futures:
                    self.work.put(_DONE)
            for future in futures:
                future.result()
        if self.errors:
            raise self.errors[0]
        self._log.info(f"Copied [{self.source.name()}] and {self.copied} item(s) below it to [{self.destination.name()}]")


def copy_all(source: Item,
             destination: Item,
             options: t.Optional[CopyOptions] = None,
             halt_flag: t.Optional[HaltFlag] = None,
             max_workers: int = DEFAULT_COPY_WORKERS):
    """Copy the source item, and everything below it, to the destination item's name and bucket."""
    src_bucket = source.bucket()
    dest_bucket = destination.bucket()
    if source.is_dir() and not src_bucket.has_capability(Capability.WALK):
        raise NotSupportedError(f"Cannot copy directory [{source.name()}], [{src_bucket.__class__.__name__}] cannot be walked")
    dest_bucket.copy(source, destination.name(), options, halt_flag=halt_flag)
    if source.is_dir():
        _CopyRun(source, destination, options, halt_flag, max_workers).run()
