"""Depth-first, pre-order traversal of a bucket.

    The visitor is called as visitor(item, error) and steers the walk by
    returning a WalkSignal (or None, which means CONTINUE). The signals are
    navigation instructions only; they are never raised or returned to the
    caller of walk().
"""
from __future__ import annotations
import enum
import typing as t

from .item import Item
from .util import HaltFlag

if t.TYPE_CHECKING:
    from .base import BaseBucket


class WalkSignal(enum.Enum):

    CONTINUE = "continue"
    SKIP_SUBTREE = "skip_subtree"
    STOP = "stop"


WalkVisitor = t.Callable[[Item, t.Optional[Exception]], t.Optional[WalkSignal]]


def visit(visitor: WalkVisitor, item: Item, error: t.Optional[Exception] = None) -> WalkSignal:
    """Call the visitor and normalize its result."""
    signal = visitor(item, error)
    if signal is None:
        return WalkSignal.CONTINUE
    if not isinstance(signal, WalkSignal):
        raise TypeError(f"Walk visitor must return a WalkSignal or None, not [{signal.__class__.__name__}]")
    return signal


def walk_listing(bucket: BaseBucket, name: str, visitor: WalkVisitor, halt_flag: t.Optional[HaltFlag] = None):
    """Walk a bucket that can only list one directory level at a time.

        Each level is listed with bucket.items() and every directory child is
        walked recursively right after it is visited. Names the visitor skipped
        are remembered as prefixes and anything found below them later is
        neither visited nor descended into.
    """
    _walk_level(bucket, name, visitor, halt_flag, [])


def _is_skipped(name: str, skipped: list[str]) -> bool:
    return any(name.startswith(prefix) for prefix in skipped)


def _walk_level(bucket: BaseBucket, name: str, visitor: WalkVisitor, halt_flag: t.Optional[HaltFlag], skipped: list[str]) -> bool:
    """Walk one level, returning True if the visitor asked to stop."""
    with bucket.items(name, halt_flag=halt_flag) as iterator:
        for item in iterator:
            item_name = item.name()
            if _is_skipped(item_name, skipped):
                continue
            signal = visit(visitor, item)
            if signal is WalkSignal.STOP:
                return True
            if signal is WalkSignal.SKIP_SUBTREE:
                if item.is_dir():
                    skipped.append(item_name)
                continue
            if item.is_dir() and _walk_level(bucket, item_name, visitor, halt_flag, skipped):
                return True
    return False
