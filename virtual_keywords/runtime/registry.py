"""
Keyword Registry
================

Process-wide table resolving ``(receiver, keyword)`` to the behavior that
replaces the keyword. Rewritten methods call ``lookup`` every time a
virtualized keyword executes.

Resolution order
----------------
1. An entry registered for the receiver object itself.
2. An entry registered for ``type(receiver)`` exactly.
3. Otherwise ``UnvirtualizedKeywordError``: the code was rewritten for a
   target that never got a behavior.

Instance entries are keyed by ``id()`` so unhashable objects can be targets.
When the target supports weak references the entry is dropped once the
object is collected, since its id may then be handed to a new object.

There is no locking; callers serialize registration themselves.
"""

import logging
import weakref
from typing import Any, Callable, Dict, Optional, Tuple

from ..errors import UnvirtualizedKeywordError

logger = logging.getLogger(__name__)

Behavior = Callable[..., Any]

KEYWORDS = ('if', 'and', 'or', 'while')


class KeywordRegistry:
    """
    Mapping of virtualization targets to replacement behaviors.

    Usage:
        >>> registry = KeywordRegistry()
        >>> registry.register(Greeter, 'if', lambda c, t, e: t() if c() else e())
        >>> registry.lookup(Greeter(True), 'if')
        <function <lambda> at ...>
    """

    def __init__(self):
        # id(obj) -> (obj or weakref to obj, {keyword: behavior})
        self._instances: Dict[int, Tuple[Any, Dict[str, Behavior]]] = {}
        self._classes: Dict[type, Dict[str, Behavior]] = {}

    def register(self, target: Any, keyword: str, behavior: Behavior) -> None:
        """Store ``behavior`` for ``target``; classes are class-scoped."""
        if isinstance(target, type):
            self.register_for_class(target, keyword, behavior)
        else:
            self.register_for_instance(target, keyword, behavior)

    def register_for_class(self, klass: type, keyword: str, behavior: Behavior) -> None:
        self._check(keyword, behavior)
        self._classes.setdefault(klass, {})[keyword] = behavior
        logger.debug(f"Registered {keyword!r} for class {klass.__qualname__}")

    def register_for_instance(self, obj: Any, keyword: str, behavior: Behavior) -> None:
        self._check(keyword, behavior)
        key = id(obj)
        entry = self._instances.get(key)
        if entry is None or self._target_of(entry) is not obj:
            entry = (self._reference(obj), {})
            self._instances[key] = entry
        entry[1][keyword] = behavior
        logger.debug(
            f"Registered {keyword!r} for {type(obj).__qualname__} instance {key:#x}"
        )

    def lookup(self, receiver: Any, keyword: str) -> Behavior:
        """Resolve the behavior for ``keyword`` as seen by ``receiver``."""
        entry = self._instances.get(id(receiver))
        if entry is not None and self._target_of(entry) is receiver:
            behavior = entry[1].get(keyword)
            if behavior is not None:
                return behavior

        behaviors = self._classes.get(type(receiver))
        if behaviors is not None and keyword in behaviors:
            return behaviors[keyword]

        raise UnvirtualizedKeywordError(receiver, keyword)

    def unregister(self, target: Any, keyword: str) -> bool:
        """Remove one entry. Returns whether anything was removed."""
        if isinstance(target, type):
            behaviors = self._classes.get(target)
        else:
            entry = self._instances.get(id(target))
            behaviors = entry[1] if entry and self._target_of(entry) is target else None
        if not behaviors or keyword not in behaviors:
            return False
        del behaviors[keyword]
        return True

    def clear(self) -> None:
        self._instances.clear()
        self._classes.clear()

    def __len__(self):
        return (
            sum(len(b) for _, b in self._instances.values())
            + sum(len(b) for b in self._classes.values())
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _check(keyword: str, behavior: Behavior) -> None:
        if keyword not in KEYWORDS:
            raise ValueError(f"unknown keyword {keyword!r}; expected one of {KEYWORDS}")
        if not callable(behavior):
            raise TypeError(f"behavior for {keyword!r} must be callable")

    def _reference(self, obj: Any) -> Any:
        key = id(obj)

        def forget(ref):
            entry = self._instances.get(key)
            if entry is not None and entry[0] is ref:
                del self._instances[key]

        try:
            return weakref.ref(obj, forget)
        except TypeError:
            # Not weak-referenceable: hold it so the id stays reserved.
            return obj

    @staticmethod
    def _target_of(entry: Tuple[Any, Dict[str, Behavior]]) -> Optional[Any]:
        ref = entry[0]
        if isinstance(ref, weakref.ref):
            return ref()
        return ref


REWRITTEN_KEYWORDS = KeywordRegistry()
