"""
Control-Flow Signals
====================

A block of statements moved into a thunk can no longer ``return`` from the
method or ``break`` out of a loop that lives outside the thunk. Rewritten
blocks instead *return* one of the signals below, and the dispatch code
generated after the replacement call turns the signal back into the real
statement.

    Return(value)   the block executed ``return value``
    BREAK           the block executed ``break``
    CONTINUE        the block executed ``continue``

Falling off the end of a block returns ``None``.

Replacement behaviors must hand back whatever the block thunk they ran
returned, otherwise the signal is lost.
"""

from typing import Any, Callable, Optional


class _Signal:
    """Named singleton signal."""

    __slots__ = ('name',)

    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return self.name

    def __reduce__(self):
        return self.name


BREAK = _Signal('BREAK')
CONTINUE = _Signal('CONTINUE')


class Return:
    """A ``return`` executed inside a thunked block."""

    __slots__ = ('value',)

    def __init__(self, value: Any = None):
        self.value = value

    def __repr__(self):
        return f"Return({self.value!r})"

    def __eq__(self, other):
        return isinstance(other, Return) and other.value == self.value

    __hash__ = None


def returned(outcome: Any) -> bool:
    """True if a block thunk's outcome is a ``return``."""
    return isinstance(outcome, Return)


def while_driver(condition: Callable[[], Any], body: Callable[[], Any]) -> Optional[Any]:
    """
    Default behavior for a virtualized ``while``.

    Runs ``body`` for as long as ``condition`` is truthy. Returns ``BREAK``
    when the body broke out, the ``Return`` signal when the body returned,
    and ``None`` when the condition became false.
    """
    while condition():
        outcome = body()
        if outcome is BREAK or isinstance(outcome, Return):
            return outcome
    return None
