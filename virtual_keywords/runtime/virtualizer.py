"""
Virtualizer
===========

Orchestrates keyword virtualization for a fixed set of targets.

Pipeline, per target and keyword:

    methods_of(class)  ->  rewriter.rewrite(tree)  ->  stringify(tree)
        ->  install_on_class / install_on_instance  ->  register behavior

Every method of a target is rewritten and rendered before anything is
registered or installed, so a rewrite or codec failure leaves the target
exactly as it was. The behavior is registered only after every install
succeeded. Installation itself is not rolled back: if the third of five
installs fails, the first two stay in place and no behavior is registered,
so calling them raises ``UnvirtualizedKeywordError``.

Virtualizing the same keyword twice on one target is the caller's
responsibility; the rewriters leave their own output unchanged, but the
second behavior simply replaces the first in the registry.
"""

import ast
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..compiler.bool_rewriter import AndRewriter, OrRewriter
from ..compiler.if_rewriter import IfRewriter
from ..compiler.keyword_rewriter import FLOW_NAME, REGISTRY_NAME, KeywordRewriter
from ..compiler.stringifier import TreeStringifier
from ..compiler.while_rewriter import WhileRewriter
from . import flow
from .class_reflection import ClassReflection
from .registry import REWRITTEN_KEYWORDS, Behavior, KeywordRegistry

logger = logging.getLogger(__name__)


def _default_registry() -> KeywordRegistry:
    return REWRITTEN_KEYWORDS


@dataclass(frozen=True)
class VirtualizerConfig:
    """Targets and collaborators of a ``Virtualizer``; fixed at construction."""
    for_classes: Tuple[type, ...] = ()
    for_instances: Tuple[Any, ...] = ()
    for_subclasses_of: Tuple[type, ...] = ()
    if_rewriter: KeywordRewriter = field(default_factory=IfRewriter)
    and_rewriter: KeywordRewriter = field(default_factory=AndRewriter)
    or_rewriter: KeywordRewriter = field(default_factory=OrRewriter)
    while_rewriter: KeywordRewriter = field(default_factory=WhileRewriter)
    stringifier: TreeStringifier = field(default_factory=TreeStringifier)
    registry: KeywordRegistry = field(default_factory=_default_registry)
    reflection: ClassReflection = field(default_factory=ClassReflection)


class Virtualizer:
    """
    Makes ``if``, ``and``, ``or`` and ``while`` overridable for chosen targets.

    Usage:
        >>> virtualizer = Virtualizer(for_classes=[Greeter])
        >>> @virtualizer.virtual_if
        ... def noisy_if(condition, then, orelse):
        ...     print('deciding')
        ...     return then() if condition() else orelse()
        >>> Greeter(True).greet()
        deciding
        'hi'

    Targets:
        for_classes:        classes whose own methods are rewritten in place
        for_instances:      objects that get rewritten copies of their
                            class's methods, leaving the class alone
        for_subclasses_of:  classes whose live subclasses (not the classes
                            themselves) are rewritten, resolved on every call
    """

    def __init__(
        self,
        for_classes: Iterable[type] = (),
        for_instances: Iterable[Any] = (),
        for_subclasses_of: Iterable[type] = (),
        if_rewriter: Optional[KeywordRewriter] = None,
        and_rewriter: Optional[KeywordRewriter] = None,
        or_rewriter: Optional[KeywordRewriter] = None,
        while_rewriter: Optional[KeywordRewriter] = None,
        stringifier: Optional[TreeStringifier] = None,
        registry: Optional[KeywordRegistry] = None,
        reflection: Optional[ClassReflection] = None,
        enable_logging: bool = False,
    ):
        self.config = VirtualizerConfig(
            for_classes=tuple(for_classes),
            for_instances=tuple(for_instances),
            for_subclasses_of=tuple(for_subclasses_of),
            if_rewriter=if_rewriter or IfRewriter(),
            and_rewriter=and_rewriter or AndRewriter(),
            or_rewriter=or_rewriter or OrRewriter(),
            while_rewriter=while_rewriter or WhileRewriter(),
            stringifier=stringifier or TreeStringifier(),
            registry=registry if registry is not None else REWRITTEN_KEYWORDS,
            reflection=reflection or ClassReflection(),
        )

        if enable_logging:
            logging.basicConfig(level=logging.DEBUG)

    @property
    def registry(self) -> KeywordRegistry:
        return self.config.registry

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def rewritten_code(self, tree: ast.FunctionDef, rewriter: KeywordRewriter) -> str:
        """Rewrite one method tree and render it as source."""
        return self.config.stringifier.stringify(rewriter.rewrite(tree))

    def _render(
        self,
        methods: Dict[str, ast.FunctionDef],
        rewriter: KeywordRewriter,
    ) -> List[str]:
        return [self.rewritten_code(tree, rewriter) for tree in methods.values()]

    def _bindings(self) -> Dict[str, Any]:
        return {REGISTRY_NAME: self.config.registry, FLOW_NAME: flow}

    def rewrite_methods_of_instance(
        self,
        instance: Any,
        keyword: str,
        rewriter: KeywordRewriter,
        behavior: Behavior,
    ) -> None:
        """Rewrite every method of ``instance``'s class onto ``instance`` alone."""
        reflection = self.config.reflection
        methods = {
            name: tree
            for name, tree in reflection.methods_of_instance(instance).items()
            # Special methods are looked up on the type, never the instance.
            if not (name.startswith('__') and name.endswith('__'))
        }
        rendered = self._render(methods, rewriter)

        bindings = self._bindings()
        for code in rendered:
            reflection.install_on_instance(instance, code, bindings)
        self.config.registry.register_for_instance(instance, keyword, behavior)

        logger.debug(
            f"Virtualized {keyword!r} in {len(rendered)} method(s) of "
            f"{type(instance).__qualname__} instance {id(instance):#x}"
        )

    def rewrite_methods_of_class(
        self,
        klass: type,
        keyword: str,
        rewriter: KeywordRewriter,
        behavior: Behavior,
    ) -> None:
        """Rewrite every method declared on ``klass`` in place."""
        reflection = self.config.reflection
        rendered = self._render(reflection.methods_of(klass), rewriter)

        bindings = self._bindings()
        for code in rendered:
            reflection.install_on_class(klass, code, bindings)
        self.config.registry.register_for_class(klass, keyword, behavior)

        logger.debug(
            f"Virtualized {keyword!r} in {len(rendered)} method(s) of {klass.__qualname__}"
        )

    def target_classes(self) -> List[type]:
        """Explicit classes followed by the live subclasses, de-duplicated."""
        subclasses = self.config.reflection.subclasses_of_many(self.config.for_subclasses_of)
        ordered = list(self.config.for_classes) + sorted(
            subclasses, key=lambda k: (k.__module__, k.__qualname__)
        )
        return list(dict.fromkeys(ordered))

    def virtualize(self, keyword: str, rewriter: KeywordRewriter, behavior: Behavior) -> Behavior:
        """Virtualize ``keyword`` with ``behavior`` for every configured target."""
        if not callable(behavior):
            raise TypeError(f"behavior for {keyword!r} must be callable")

        for instance in self.config.for_instances:
            self.rewrite_methods_of_instance(instance, keyword, rewriter, behavior)

        for klass in self.target_classes():
            self.rewrite_methods_of_class(klass, keyword, rewriter, behavior)

        return behavior

    # ------------------------------------------------------------------
    # Entry points (usable as decorators)
    # ------------------------------------------------------------------

    def virtual_if(self, behavior: Behavior) -> Behavior:
        """Replace ``if`` with ``behavior(condition, then, orelse)``."""
        return self.virtualize('if', self.config.if_rewriter, behavior)

    def virtual_and(self, behavior: Behavior) -> Behavior:
        """Replace ``and`` with ``behavior(left, right)``."""
        return self.virtualize('and', self.config.and_rewriter, behavior)

    def virtual_or(self, behavior: Behavior) -> Behavior:
        """Replace ``or`` with ``behavior(left, right)``."""
        return self.virtualize('or', self.config.or_rewriter, behavior)

    def virtual_while(self, behavior: Optional[Behavior] = None) -> Behavior:
        """
        Replace ``while`` with ``behavior(condition, body)``.

        The behavior drives the loop; see ``flow.while_driver``, the default,
        for the signals ``body()`` can return.
        """
        return self.virtualize('while', self.config.while_rewriter, behavior or flow.while_driver)
