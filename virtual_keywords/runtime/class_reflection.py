"""
Class Reflection
================

Inspects the class hierarchy and reads and replaces methods at runtime.

Reading: a method's structural form is obtained the way the rest of the
package reads code, ``inspect.getsource`` → ``textwrap.dedent`` →
``ast.parse``. Class-private names are mangled while translating, because
the tree is later compiled outside the class body where the compiler would
no longer mangle them.

Writing: source text is compiled inside a small factory function

    def __vk_factory__(__class__, <closure names>, <bindings>):
        def method(self, ...):
            ...
        return method

so that zero-argument ``super()``, the replaced function's closure values
and extra handles supplied by the caller (the keyword registry, for one)
resolve as closure variables instead of leaking into module globals.

When the new source spells the same header as the function it replaces,
its header is not evaluated again: defaults and annotations are taken
from the replaced function, so default objects keep their identity and
names only visible in the class body or under ``TYPE_CHECKING`` are never
looked up. Otherwise the header is compiled with the ``annotations``
future of the target module.

The generated text is registered with ``linecache`` under one name per
target and method, so ``inspect.getsource`` works on installed functions
and reinstalling replaces the cached text instead of adding to it.
"""

import __future__
import ast
import inspect
import linecache
import logging
import sys
import textwrap
import types
import weakref
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Set

from ..errors import ReflectionError

logger = logging.getLogger(__name__)

_FUNCTION_DEFS = (ast.FunctionDef, ast.AsyncFunctionDef)
_FUTURE_ANNOTATIONS = __future__.annotations.compiler_flag


@dataclass
class MethodCapture:
    """A method's tree captured from its owning class at one point in time."""
    owner: type
    name: str
    tree: ast.FunctionDef
    function: Callable


class _PrivateNameMangler(ast.NodeTransformer):
    """Apply class-private name mangling (``__x`` -> ``_Owner__x``)."""

    def __init__(self, class_name: str):
        stripped = class_name.lstrip('_')
        self.prefix = f"_{stripped}" if stripped else None

    def mangle(self, name: Optional[str]) -> Optional[str]:
        if (
            self.prefix is None
            or name is None
            or not name.startswith('__')
            or name.endswith('__')
            or '.' in name
        ):
            return name
        return self.prefix + name

    def visit_Name(self, node: ast.Name) -> ast.Name:
        node.id = self.mangle(node.id)
        return node

    def visit_Attribute(self, node: ast.Attribute) -> ast.Attribute:
        self.generic_visit(node)
        node.attr = self.mangle(node.attr)
        return node

    def visit_arg(self, node: ast.arg) -> ast.arg:
        self.generic_visit(node)
        node.arg = self.mangle(node.arg)
        return node

    def visit_keyword(self, node: ast.keyword) -> ast.keyword:
        self.generic_visit(node)
        node.arg = self.mangle(node.arg)
        return node

    def visit_FunctionDef(self, node):
        self.generic_visit(node)
        node.name = self.mangle(node.name)
        return node

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> ast.ClassDef:
        # A nested class body mangles with its own name.
        node.name = self.mangle(node.name)
        return node

    def visit_Global(self, node):
        node.names = [self.mangle(n) for n in node.names]
        return node

    visit_Nonlocal = visit_Global


class ClassReflection:
    """
    Utility for viewing and modifying the methods of classes and objects.

    Usage:
        >>> reflection = ClassReflection()
        >>> trees = reflection.methods_of(Greeter)
        >>> reflection.install_on_class(Greeter, "def greet(self):\\n    return 'hey'\\n")
        >>> Greeter(True).greet()
        'hey'
    """

    FACTORY_NAME = '__vk_factory__'

    # ------------------------------------------------------------------
    # Class hierarchy
    # ------------------------------------------------------------------

    def subclasses_of(self, parent: type) -> Set[type]:
        """All live proper descendants of ``parent``."""
        found: Set[type] = set()
        pending = list(type.__subclasses__(parent))
        while pending:
            klass = pending.pop()
            if klass in found:
                continue
            found.add(klass)
            pending.extend(type.__subclasses__(klass))
        return found

    def subclasses_of_many(self, parents: Iterable[type]) -> Set[type]:
        """De-duplicated union of ``subclasses_of`` over ``parents``."""
        found: Set[type] = set()
        for parent in parents:
            found |= self.subclasses_of(parent)
        return found

    # ------------------------------------------------------------------
    # Reading methods
    # ------------------------------------------------------------------

    def methods_of(self, klass: type) -> Dict[str, ast.FunctionDef]:
        """
        Map method names to trees for functions declared directly on ``klass``.

        Inherited methods are excluded. Decorator wrappers, lambdas and
        aliases (attributes whose function was defined under another name)
        are skipped because their source is not the function stored.
        """
        methods = {}
        mangler = _PrivateNameMangler(klass.__name__)
        for name, value in vars(klass).items():
            if isinstance(value, property):
                logger.debug(f"Skipping {klass.__qualname__}.{name}: property")
                continue
            if not inspect.isfunction(value):
                continue
            if hasattr(value, '__wrapped__'):
                logger.debug(f"Skipping {klass.__qualname__}.{name}: decorated wrapper")
                continue
            # ``def __x`` is stored as ``_Owner__x`` but keeps ``__x`` as its name.
            if mangler.mangle(value.__name__) != name:
                logger.debug(f"Skipping {klass.__qualname__}.{name}: alias of {value.__name__}")
                continue
            methods[name] = self.translate(klass, name)
        return methods

    def methods_of_instance(self, obj: Any) -> Dict[str, ast.FunctionDef]:
        """
        Like ``methods_of(type(obj))``, but a method already overridden on
        ``obj`` by ``install_on_instance`` is read from that override, so a
        second keyword builds on the first instead of replacing it.
        """
        klass = type(obj)
        methods = self.methods_of(klass)
        overrides = getattr(obj, '__dict__', {})
        for name in methods:
            function = getattr(overrides.get(name), '__func__', None)
            if inspect.isfunction(function) and hasattr(function, '__vk_source__'):
                methods[name] = self._parse_function(function, klass, name)
        return methods

    def capture(self, klass: type, name: str) -> MethodCapture:
        """Capture one method of ``klass`` together with its live function."""
        function = vars(klass).get(name)
        return MethodCapture(
            owner=klass,
            name=name,
            tree=self.translate(klass, name),
            function=function,
        )

    def translate(self, klass: type, name: str) -> ast.FunctionDef:
        """Turn ``klass.<name>`` into an ``ast.FunctionDef``."""
        function = vars(klass).get(name)
        if not inspect.isfunction(function):
            raise ReflectionError(
                f"{klass.__qualname__}.{name} is not a function declared on the class"
            )
        return self._parse_function(function, klass, name)

    def _parse_function(self, function: Callable, klass: type, name: str) -> ast.FunctionDef:
        try:
            source = textwrap.dedent(inspect.getsource(function))
        except (OSError, TypeError) as exc:
            raise ReflectionError(
                f"source of {klass.__qualname__}.{name} is unavailable: {exc}"
            ) from exc

        try:
            module = ast.parse(source)
        except SyntaxError as exc:
            raise ReflectionError(
                f"source of {klass.__qualname__}.{name} does not parse: {exc}"
            ) from exc

        mangler = _PrivateNameMangler(klass.__name__)
        for node in module.body:
            if isinstance(node, _FUNCTION_DEFS):
                tree = mangler.visit(node)
                if tree.name == name:
                    return tree

        raise ReflectionError(f"source of {klass.__qualname__}.{name} defines no such function")

    # ------------------------------------------------------------------
    # Installing methods
    # ------------------------------------------------------------------

    def install_on_class(
        self,
        klass: type,
        source: str,
        bindings: Optional[Dict[str, Any]] = None,
    ) -> Callable:
        """
        Define or replace a method on ``klass`` from ``source``.

        Every instance without an instance-level override sees the change.
        """
        func_def = self._parse_single_function(source)
        current = vars(klass).get(func_def.name)
        filename = _source_filename(klass, func_def.name, klass)
        function = self._build_function(source, func_def, klass, current, bindings, filename)

        try:
            setattr(klass, function.__name__, function)
        except (TypeError, AttributeError) as exc:
            raise ReflectionError(
                f"cannot redefine {klass.__qualname__}.{function.__name__}: {exc}"
            ) from exc

        _forget_source_with(klass, filename)
        logger.debug(f"Installed {klass.__qualname__}.{function.__name__}")
        return function

    def install_on_instance(
        self,
        obj: Any,
        source: str,
        bindings: Optional[Dict[str, Any]] = None,
    ) -> Callable:
        """
        Define or replace a method visible only on ``obj``.

        Python looks special methods up on the type, so an instance-level
        ``__dunder__`` has no effect on operators or builtins.
        """
        owner = type(obj)
        func_def = self._parse_single_function(source)

        current = getattr(obj, '__dict__', {}).get(func_def.name)
        current = getattr(current, '__func__', current)
        if not inspect.isfunction(current):
            current = inspect.getattr_static(owner, func_def.name, None)

        filename = _source_filename(owner, func_def.name, obj)
        function = self._build_function(source, func_def, owner, current, bindings, filename)

        try:
            setattr(obj, function.__name__, types.MethodType(function, obj))
        except (TypeError, AttributeError) as exc:
            raise ReflectionError(
                f"cannot redefine {function.__name__} on {owner.__qualname__} "
                f"instance: {exc}"
            ) from exc

        _forget_source_with(obj, filename)
        logger.debug(f"Installed {owner.__qualname__}.{function.__name__} on instance {id(obj):#x}")
        return function

    # ------------------------------------------------------------------

    @staticmethod
    def _parse_single_function(source: str) -> ast.FunctionDef:
        try:
            module = ast.parse(textwrap.dedent(source))
        except SyntaxError as exc:
            raise ReflectionError(f"method source does not parse: {exc}") from exc

        if len(module.body) != 1 or not isinstance(module.body[0], _FUNCTION_DEFS):
            raise ReflectionError("method source must contain exactly one function definition")
        return module.body[0]

    @staticmethod
    def _same_header(func_def: ast.FunctionDef, current: Callable, owner: type) -> bool:
        """
        True if ``func_def`` spells the same parameters, defaults and
        annotations as the source of ``current``.
        """
        if not _same_parameters(func_def, current):
            return False
        try:
            module = ast.parse(textwrap.dedent(inspect.getsource(current)))
        except (OSError, TypeError, SyntaxError):
            return False

        original = next((n for n in module.body if isinstance(n, _FUNCTION_DEFS)), None)
        if original is None:
            return False
        original = _PrivateNameMangler(owner.__name__).visit(original)
        return _header_dump(original) == _header_dump(func_def)

    def _build_function(
        self,
        source: str,
        func_def: ast.FunctionDef,
        owner: type,
        current: Any,
        bindings: Optional[Dict[str, Any]],
        filename: str,
    ) -> Callable:
        """Compile ``func_def`` inside the factory and return the new function."""
        closure: Dict[str, Any] = {}
        if inspect.isfunction(current) and current.__closure__:
            for var, cell in zip(current.__code__.co_freevars, current.__closure__):
                try:
                    closure[var] = cell.cell_contents
                except ValueError:
                    # Empty cell, never assigned.
                    pass
        closure.update(bindings or {})
        closure['__class__'] = owner

        if inspect.isfunction(current):
            namespace = current.__globals__
            flags = current.__code__.co_flags & _FUTURE_ANNOTATIONS
        else:
            module = sys.modules.get(owner.__module__)
            if module is None:
                raise ReflectionError(
                    f"module {owner.__module__!r} of {owner.__qualname__} is not loaded"
                )
            namespace = vars(module)
            flags = _FUTURE_ANNOTATIONS if namespace.get('annotations') is __future__.annotations else 0

        reuse_header = inspect.isfunction(current) and self._same_header(func_def, current, owner)
        if reuse_header:
            _strip_header(func_def)

        params = sorted(closure)
        factory = ast.parse(
            f"def {self.FACTORY_NAME}({', '.join(params)}):\n"
            f"    return {func_def.name}\n"
        )
        factory.body[0].body.insert(0, func_def)
        ast.fix_missing_locations(factory)

        text = textwrap.dedent(source)
        if not text.endswith('\n'):
            text += '\n'

        try:
            code = compile(factory, filename, 'exec', flags=flags, dont_inherit=True)
        except (SyntaxError, ValueError, TypeError) as exc:
            raise ReflectionError(
                f"method {owner.__qualname__}.{func_def.name} does not compile: {exc}"
            ) from exc

        scope: Dict[str, Any] = {}
        try:
            exec(code, namespace, scope)
            function = scope[self.FACTORY_NAME](*[closure[p] for p in params])
        except Exception as exc:
            raise ReflectionError(
                f"method {owner.__qualname__}.{func_def.name} could not be defined: {exc}"
            ) from exc

        if reuse_header:
            _copy_header(current, function)

        linecache.cache[filename] = (len(text), None, text.splitlines(True), filename)
        function.__qualname__ = f"{owner.__qualname__}.{function.__name__}"
        function.__vk_source__ = text
        return function


# ---------------------------------------------------------------------------
# Function headers
# ---------------------------------------------------------------------------

def _same_parameters(func_def: ast.FunctionDef, function: Callable) -> bool:
    """True if ``func_def`` declares exactly the parameters of ``function``."""
    code = function.__code__
    args = func_def.args
    names = code.co_varnames
    end = code.co_argcount + code.co_kwonlyargcount
    kw_defaults = {
        arg.arg for arg, default in zip(args.kwonlyargs, args.kw_defaults)
        if default is not None
    }
    return (
        [a.arg for a in args.posonlyargs + args.args] == list(names[:code.co_argcount])
        and len(args.posonlyargs) == code.co_posonlyargcount
        and [a.arg for a in args.kwonlyargs] == list(names[code.co_argcount:end])
        and (args.vararg is not None) == bool(code.co_flags & inspect.CO_VARARGS)
        and (args.kwarg is not None) == bool(code.co_flags & inspect.CO_VARKEYWORDS)
        and len(args.defaults) == len(function.__defaults__ or ())
        and kw_defaults == set(function.__kwdefaults__ or {})
    )


def _header_dump(func_def: ast.FunctionDef) -> tuple:
    returns = func_def.returns
    return ast.dump(func_def.args), ast.dump(returns) if returns is not None else None


def _strip_header(func_def: ast.FunctionDef) -> None:
    """Remove defaults and annotations so compiling the def evaluates neither."""
    args = func_def.args
    args.defaults = []
    args.kw_defaults = [None] * len(args.kwonlyargs)
    for arg in args.posonlyargs + args.args + args.kwonlyargs + [args.vararg, args.kwarg]:
        if arg is not None:
            arg.annotation = None
    func_def.returns = None


def _copy_header(source: Callable, target: Callable) -> None:
    target.__defaults__ = source.__defaults__
    target.__kwdefaults__ = dict(source.__kwdefaults__) if source.__kwdefaults__ else None
    annotate = getattr(source, '__annotate__', None)
    if annotate is not None:
        # Deferred annotations stay deferred and resolve in their original scope.
        target.__annotate__ = annotate
    else:
        target.__annotations__ = dict(source.__annotations__)


# ---------------------------------------------------------------------------
# Installed source
# ---------------------------------------------------------------------------

_tracked_sources: Set[str] = set()


def _source_filename(owner: type, name: str, target: Any) -> str:
    return f"<virtual_keywords:{owner.__qualname__}.{name}@{id(target):#x}>"


def _forget_source_with(target: Any, filename: str) -> None:
    """Drop the cached source for ``filename`` once ``target`` is collected."""
    if filename in _tracked_sources:
        return

    def forget():
        linecache.cache.pop(filename, None)
        _tracked_sources.discard(filename)

    try:
        weakref.finalize(target, forget)
    except TypeError:
        # Not weak-referenceable: the entry is replaced when the id is reused.
        return
    _tracked_sources.add(filename)
