import io
import threading
import time
import typing as t


class HaltInterrupt(KeyboardInterrupt):
    pass


class HaltFlag(t.Protocol):

    def breakpoint(self):
        self.check_continue(True)

    def check_continue(self, raise_ex: bool = True) -> bool:
        if not self._should_continue():
            if raise_ex:
                raise HaltInterrupt()
            return False
        return True

    def _should_continue(self) -> bool:
        raise NotImplementedError()

    @staticmethod
    def iterate(iterable: t.Iterable, halt_flag=None, raise_ex: bool = True):
        if halt_flag is None:
            yield from iterable
        else:
            for x in iterable:
                if not halt_flag.check_continue(raise_ex):
                    break
                yield x


class EventHaltFlag(HaltFlag):
    """Halts once the given threading event is set."""

    def __init__(self, event: t.Optional[threading.Event] = None):
        self.event = event or threading.Event()

    def halt(self):
        self.event.set()

    def _should_continue(self) -> bool:
        return not self.event.is_set()


class DeadlineHaltFlag(HaltFlag):
    """Halts once the deadline (in seconds from construction) has passed."""

    def __init__(self, seconds: float):
        self._deadline = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self._deadline - time.monotonic())

    def _should_continue(self) -> bool:
        return time.monotonic() < self._deadline


class CombinedHaltFlag(HaltFlag):
    """Halts as soon as any of the wrapped flags would halt."""

    def __init__(self, *flags: t.Optional[HaltFlag]):
        self._flags = [f for f in flags if f is not None]

    def _should_continue(self) -> bool:
        return all(f.check_continue(False) for f in self._flags)


def responsive_sleep(seconds: float, halt_flag: t.Optional[HaltFlag] = None, max_delay: float = 0.25):
    """Sleep for the given time, checking the halt flag regularly."""
    end = time.monotonic() + seconds
    while True:
        if halt_flag is not None:
            halt_flag.check_continue(True)
        remaining = end - time.monotonic()
        if remaining <= 0:
            break
        time.sleep(min(remaining, max_delay))


class ChunkReader(io.RawIOBase):
    """Readable file-like object over an iterable of bytes chunks.

        The optional on_close callback runs exactly once, when the reader is
        closed, and is used to release the session the chunks came from.
    """

    def __init__(self, chunks: t.Iterable[bytes], on_close: t.Optional[t.Callable] = None, halt_flag: t.Optional[HaltFlag] = None):
        super().__init__()
        self._chunks = iter(chunks)
        self._buffer = b''
        self._on_close = on_close
        self._halt_flag = halt_flag

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._buffer:
            if self._halt_flag is not None:
                self._halt_flag.check_continue(True)
            try:
                self._buffer = next(self._chunks)
            except StopIteration:
                return 0
        size = min(len(b), len(self._buffer))
        b[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size

    def close(self):
        if not self.closed:
            try:
                if self._on_close is not None:
                    self._on_close()
            finally:
                self._on_close = None
                super().close()


def copy_stream(source, dest, halt_flag: t.Optional[HaltFlag] = None, chunk_size: int = 2621440) -> int:
    """Copy a readable into a writable in chunks, checking the halt flag between chunks."""
    total = 0
    if halt_flag is not None:
        halt_flag.check_continue(True)
    chunk = source.read(chunk_size)
    while chunk:
        dest.write(chunk)
        total += len(chunk)
        if halt_flag is not None:
            halt_flag.check_continue(True)
        chunk = source.read(chunk_size)
    return total
