"""
Keyword Rewriter Base
=====================

Shared machinery for the passes that virtualize one keyword each.

A matched construct is replaced by a call into the keyword registry

    __vk_registry__.lookup(self, 'if')(<thunk>, <thunk>, ...)

where every operand is wrapped in a zero-argument thunk so the replacement
behavior decides whether, when and how often each operand runs.

Expression operands become ``lambda: <expr>``. Blocks of statements become
nested functions:

    def __vk_if_then_1__():
        nonlocal total              # names the block binds
        total = total + 1
        return __vk_flow__.BREAK    # was: break

Because the block now lives in its own function, names it binds are
declared ``nonlocal`` (or ``global``), the enclosing function gets a
non-evaluated ``total: object`` so the ``nonlocal`` has a target, and
``return``/``break``/``continue`` are turned into signals from
``virtual_keywords.runtime.flow`` that generated dispatch code forwards
after the call.

Every generated name starts with ``__vk_`` and ends with ``__`` so class
private-name mangling leaves it alone. Dispatch statements test
``__vk_flow__`` and are never matched again, which keeps a pass stable on
its own output.
"""

import ast
import copy
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

from ..errors import UnsupportedConstructError

RESERVED_PREFIX = '__vk_'
REGISTRY_NAME = '__vk_registry__'
FLOW_NAME = '__vk_flow__'

_FUNCTION_DEFS = (ast.FunctionDef, ast.AsyncFunctionDef)
_SCOPES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)
_COMPREHENSIONS = (ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)
_SUSPENDING = (ast.Yield, ast.YieldFrom, ast.Await, ast.AsyncFor, ast.AsyncWith)


# ---------------------------------------------------------------------------
# Tree queries
# ---------------------------------------------------------------------------

def walk_local(nodes: Iterable[ast.AST], skip: tuple = ()) -> Iterable[ast.AST]:
    """Like ``ast.walk`` but stays inside the current function scope."""
    pending = list(nodes)
    while pending:
        node = pending.pop()
        yield node
        if isinstance(node, _SCOPES) or isinstance(node, skip):
            continue
        pending.extend(ast.iter_child_nodes(node))


def bound_names(nodes: Iterable[ast.AST]) -> List[str]:
    """Names bound by ``nodes`` in their own scope."""
    names: List[str] = []

    def add(name):
        if name and name not in names:
            names.append(name)

    for node in walk_local(nodes, skip=_COMPREHENSIONS):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            add(node.name)
        elif isinstance(node, ast.Name) and isinstance(node.ctx, (ast.Store, ast.Del)):
            add(node.id)
        elif isinstance(node, (ast.Import, ast.ImportFrom)):
            for alias in node.names:
                if alias.name != '*':
                    add(alias.asname or alias.name.split('.')[0])
        elif isinstance(node, ast.ExceptHandler):
            add(node.name)
        elif isinstance(node, (ast.MatchAs, ast.MatchStar)):
            add(node.name)
        elif isinstance(node, ast.MatchMapping):
            add(node.rest)
        elif isinstance(node, _COMPREHENSIONS):
            # Only assignment expressions leak out of a comprehension.
            for inner in walk_local(ast.iter_child_nodes(node)):
                if isinstance(inner, ast.NamedExpr):
                    add(inner.target.id)
        if isinstance(node, ast.NamedExpr):
            add(node.target.id)
    return names


def walrus_targets(nodes: Iterable[ast.AST]) -> List[str]:
    return [
        node.target.id for node in walk_local(nodes)
        if isinstance(node, ast.NamedExpr)
    ]


def suspends(nodes: Iterable[ast.AST]) -> bool:
    """True if ``nodes`` yield or await in the current scope."""
    return any(isinstance(node, _SUSPENDING) for node in walk_local(nodes))


def declared_names(body: List[ast.stmt]) -> Tuple[Set[str], Set[str]]:
    """``global`` and ``nonlocal`` names declared directly by a function body."""
    globals_, nonlocals = set(), set()
    for node in walk_local(body):
        if isinstance(node, ast.Global):
            globals_.update(node.names)
        elif isinstance(node, ast.Nonlocal):
            nonlocals.update(node.names)
    return globals_, nonlocals


def parameter_names(args: ast.arguments) -> Set[str]:
    names = {a.arg for a in args.posonlyargs + args.args + args.kwonlyargs}
    if args.vararg:
        names.add(args.vararg.arg)
    if args.kwarg:
        names.add(args.kwarg.arg)
    return names


def is_dispatch_test(node: ast.AST) -> bool:
    """True if ``node`` is the test of generated signal-dispatch code."""
    return any(
        isinstance(child, ast.Name) and child.id == FLOW_NAME
        for child in ast.walk(node)
    )


def is_lookup_call(node: ast.AST, keyword: str) -> bool:
    """True if ``node`` is ``__vk_registry__.lookup(<recv>, keyword)(...)``."""
    if not (isinstance(node, ast.Call) and isinstance(node.func, ast.Call)):
        return False
    lookup = node.func
    return (
        isinstance(lookup.func, ast.Attribute)
        and lookup.func.attr == 'lookup'
        and isinstance(lookup.func.value, ast.Name)
        and lookup.func.value.id == REGISTRY_NAME
        and len(lookup.args) == 2
        and isinstance(lookup.args[1], ast.Constant)
        and lookup.args[1].value == keyword
    )


def _flow_attr(attr: str) -> ast.Attribute:
    return ast.Attribute(value=ast.Name(id=FLOW_NAME, ctx=ast.Load()), attr=attr, ctx=ast.Load())


def _insert_after_docstring(body: List[ast.stmt], statements: List[ast.stmt]) -> None:
    index = 0
    if (
        body
        and isinstance(body[0], ast.Expr)
        and isinstance(body[0].value, ast.Constant)
        and isinstance(body[0].value.value, str)
    ):
        index = 1
    body[index:index] = statements


# ---------------------------------------------------------------------------
# Block extraction
# ---------------------------------------------------------------------------

class _BlockExtractor(ast.NodeTransformer):
    """
    Prepare a statement block for life inside a nested function.

    - ``return x`` -> ``return __vk_flow__.Return(x)``
    - ``break`` / ``continue`` aimed outside the block -> BREAK / CONTINUE
    - ``x: T = v`` -> ``x = v``; bare annotations dropped
    - ``global`` / ``nonlocal`` statements lifted out (recorded)
    """

    def __init__(self):
        self.signals: Set[str] = set()
        self.lifted_globals: Set[str] = set()
        self.lifted_nonlocals: Set[str] = set()
        self._loop_depth = 0

    def extract(self, statements: List[ast.stmt]) -> List[ast.stmt]:
        return self._visit_block(statements) or [ast.Pass()]

    def _visit_block(self, statements: List[ast.stmt]) -> List[ast.stmt]:
        result = []
        for stmt in statements:
            new = self.visit(stmt)
            if new is None:
                continue
            if isinstance(new, list):
                result.extend(new)
            else:
                result.append(new)
        return result

    def generic_visit(self, node):
        super().generic_visit(node)
        if isinstance(getattr(node, 'body', None), list) and not node.body:
            node.body = [ast.Pass()]
        return node

    # Nested scopes keep their own control flow.
    def _leave(self, node):
        return node

    visit_FunctionDef = _leave
    visit_AsyncFunctionDef = _leave
    visit_ClassDef = _leave
    visit_Lambda = _leave

    def _visit_loop(self, node):
        for name in ('target', 'iter', 'test'):
            if hasattr(node, name):
                setattr(node, name, self.visit(getattr(node, name)))
        self._loop_depth += 1
        node.body = self._visit_block(node.body) or [ast.Pass()]
        self._loop_depth -= 1
        node.orelse = self._visit_block(node.orelse)
        return node

    visit_For = _visit_loop
    visit_AsyncFor = _visit_loop
    visit_While = _visit_loop

    def visit_Return(self, node: ast.Return) -> ast.Return:
        self.signals.add('return')
        args = [node.value] if node.value is not None else []
        call = ast.Call(func=_flow_attr('Return'), args=args, keywords=[])
        return ast.copy_location(ast.Return(value=call), node)

    def visit_Break(self, node: ast.Break) -> ast.stmt:
        if self._loop_depth:
            return node
        self.signals.add('break')
        return ast.copy_location(ast.Return(value=_flow_attr('BREAK')), node)

    def visit_Continue(self, node: ast.Continue) -> ast.stmt:
        if self._loop_depth:
            return node
        self.signals.add('continue')
        return ast.copy_location(ast.Return(value=_flow_attr('CONTINUE')), node)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> Optional[ast.stmt]:
        if node.value is None:
            return None
        return ast.copy_location(ast.Assign(targets=[node.target], value=node.value), node)

    def visit_Global(self, node: ast.Global) -> None:
        self.lifted_globals.update(node.names)
        return None

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self.lifted_nonlocals.update(node.names)
        return None


# ---------------------------------------------------------------------------
# Rewriter
# ---------------------------------------------------------------------------

@dataclass
class _Scope:
    """Binding facts for one real (non-generated) function."""
    params: Set[str]
    globals: Set[str]
    nonlocals: Set[str]
    needs_local: List[str] = field(default_factory=list)
    lifted_globals: Set[str] = field(default_factory=set)
    lifted_nonlocals: Set[str] = field(default_factory=set)


class KeywordRewriter(ast.NodeTransformer):
    """
    Base class for the keyword passes.

    Subclasses set ``keyword`` and implement ``visit_*`` for the keyword's
    node types, calling ``generic_visit`` first so inner occurrences are
    rewritten before the outer one is inspected.
    """

    keyword: str = ''

    def __init__(self):
        self._receiver: Optional[str] = None
        self._scopes: List[_Scope] = []
        self._counter = 0

    def rewrite(self, node: ast.AST) -> ast.FunctionDef:
        """Return a rewritten copy of a method tree; ``node`` is untouched."""
        tree = copy.deepcopy(node)
        if isinstance(tree, ast.Module) and len(tree.body) == 1:
            tree = tree.body[0]
        if not isinstance(tree, _FUNCTION_DEFS):
            raise UnsupportedConstructError(
                f"expected a function definition, got {type(tree).__name__}"
            )

        params = tree.args.posonlyargs + tree.args.args
        if not params:
            raise UnsupportedConstructError(f"method {tree.name!r} has no receiver parameter")

        self._receiver = params[0].arg
        self._scopes = []
        self._counter = self._last_generated_index(tree)
        self._visit_function_body(tree)
        return ast.fix_missing_locations(tree)

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------

    def visit_FunctionDef(self, node):
        if node.name.startswith(RESERVED_PREFIX):
            self.generic_visit(node)
            return node
        self._visit_function_body(node)
        return node

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef) -> ast.ClassDef:
        # Class bodies have no enclosing-function binding to thunk into.
        return node

    def _visit_function_body(self, node) -> None:
        globals_, nonlocals = declared_names(node.body)
        scope = _Scope(parameter_names(node.args), globals_, nonlocals)
        self._scopes.append(scope)
        try:
            node.body = self._visit_block(node.body)
        finally:
            self._scopes.pop()

        header: List[ast.stmt] = []
        if scope.lifted_globals:
            header.append(ast.Global(names=sorted(scope.lifted_globals)))
        if scope.lifted_nonlocals:
            header.append(ast.Nonlocal(names=sorted(scope.lifted_nonlocals)))
        for name in scope.needs_local:
            header.append(ast.AnnAssign(
                target=ast.Name(id=name, ctx=ast.Store()),
                annotation=ast.Name(id='object', ctx=ast.Load()),
                value=None,
                simple=1,
            ))
        _insert_after_docstring(node.body, header)

    def _visit_block(self, statements: List[ast.stmt]) -> List[ast.stmt]:
        result = []
        for stmt in statements:
            new = self.visit(stmt)
            if new is None:
                continue
            if isinstance(new, list):
                result.extend(new)
            else:
                result.append(new)
        return result or [ast.Pass()]

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def _next_index(self) -> int:
        self._counter += 1
        return self._counter

    def _name(self, role: str, index: int) -> str:
        return f"{RESERVED_PREFIX}{self.keyword}_{role}_{index}__"

    def _last_generated_index(self, tree: ast.AST) -> int:
        pattern = re.compile(rf"^{RESERVED_PREFIX}{self.keyword}_[a-z]+_(\d+)__$")
        last = 0
        for node in ast.walk(tree):
            name = getattr(node, 'name', None) or getattr(node, 'id', None)
            match = pattern.match(name) if isinstance(name, str) else None
            if match:
                last = max(last, int(match.group(1)))
        return last

    def lookup_call(self, operands: List[ast.expr]) -> ast.Call:
        """``__vk_registry__.lookup(<receiver>, '<keyword>')(*operands)``"""
        lookup = ast.Call(
            func=ast.Attribute(
                value=ast.Name(id=REGISTRY_NAME, ctx=ast.Load()),
                attr='lookup',
                ctx=ast.Load(),
            ),
            args=[
                ast.Name(id=self._receiver, ctx=ast.Load()),
                ast.Constant(value=self.keyword),
            ],
            keywords=[],
        )
        return ast.Call(func=lookup, args=operands, keywords=[])

    def expression_thunk(self, expr: ast.expr, what: str = 'operand') -> ast.Lambda:
        """Wrap an expression operand in ``lambda: expr``."""
        if suspends([expr]):
            raise UnsupportedConstructError(
                f"cannot virtualize {self.keyword!r}: {what} yields or awaits"
            )
        if walrus_targets([expr]):
            raise UnsupportedConstructError(
                f"cannot virtualize {self.keyword!r}: {what} contains an "
                f"assignment expression"
            )
        return ast.Lambda(
            args=ast.arguments(
                posonlyargs=[], args=[], vararg=None, kwonlyargs=[],
                kw_defaults=[], kwarg=None, defaults=[],
            ),
            body=expr,
        )

    def condition_thunk(self, test: ast.expr, index: int) -> Tuple[ast.expr, List[ast.stmt]]:
        """
        Thunk a statement-level condition.

        Returns the operand and any definitions that must precede the call.
        A condition with ``:=`` gets a ``def`` so the target can be bound
        in the enclosing function.
        """
        targets = walrus_targets([test])
        if not targets:
            return self.expression_thunk(test, 'condition'), []
        if suspends([test]):
            raise UnsupportedConstructError(
                f"cannot virtualize {self.keyword!r}: condition yields or awaits"
            )
        name = self._name('test', index)
        func = self._make_def(name, self._declarations(targets), [ast.Return(value=test)])
        return ast.Name(id=name, ctx=ast.Load()), [func]

    def block_thunk(self, role: str, index: int, statements: List[ast.stmt]) -> Tuple[ast.FunctionDef, Set[str]]:
        """Move ``statements`` into a nested function; return it and its signals."""
        if suspends(statements):
            raise UnsupportedConstructError(
                f"cannot virtualize {self.keyword!r}: {role} block yields or awaits"
            )
        extractor = _BlockExtractor()
        body = extractor.extract(statements)

        scope = self._scopes[-1]
        scope.lifted_globals |= extractor.lifted_globals
        scope.lifted_nonlocals |= extractor.lifted_nonlocals

        names = [n for n in bound_names(body) if not n.startswith(RESERVED_PREFIX)]
        func = self._make_def(self._name(role, index), self._declarations(names), body)
        return func, extractor.signals

    def _declarations(self, names: List[str]) -> List[ast.stmt]:
        scope = self._scopes[-1]
        global_names = [n for n in names if n in scope.globals]
        nonlocal_names = [n for n in names if n not in scope.globals]
        for name in nonlocal_names:
            if (
                name not in scope.params
                and name not in scope.nonlocals
                and name not in scope.needs_local
            ):
                scope.needs_local.append(name)

        declarations: List[ast.stmt] = []
        if global_names:
            declarations.append(ast.Global(names=global_names))
        if nonlocal_names:
            declarations.append(ast.Nonlocal(names=nonlocal_names))
        return declarations

    @staticmethod
    def _make_def(name: str, declarations: List[ast.stmt], body: List[ast.stmt]) -> ast.FunctionDef:
        func = ast.parse(f"def {name}():\n    pass\n").body[0]
        func.body = declarations + body
        return func

    def dispatch(self, flow_var: str, signals: Set[str]) -> List[ast.stmt]:
        """Statements forwarding the signals a block thunk may return."""
        flow = lambda: ast.Name(id=flow_var, ctx=ast.Load())
        statements: List[ast.stmt] = []
        if 'return' in signals:
            statements.append(ast.If(
                test=ast.Call(func=_flow_attr('returned'), args=[flow()], keywords=[]),
                body=[ast.Return(value=ast.Attribute(value=flow(), attr='value', ctx=ast.Load()))],
                orelse=[],
            ))
        for signal, statement in (('break', ast.Break), ('continue', ast.Continue)):
            if signal in signals:
                statements.append(ast.If(
                    test=ast.Compare(
                        left=flow(), ops=[ast.Is()], comparators=[_flow_attr(signal.upper())],
                    ),
                    body=[statement()],
                    orelse=[],
                ))
        return statements

    def call_statements(
        self,
        call: ast.Call,
        flow_var: str,
        signals: Set[str],
        trailer: List[ast.stmt] = (),
    ) -> List[ast.stmt]:
        """The replacement call as a statement, plus dispatch if needed."""
        dispatch = self.dispatch(flow_var, signals) + list(trailer)
        if not dispatch:
            return [ast.Expr(value=call)]
        assign = ast.Assign(targets=[ast.Name(id=flow_var, ctx=ast.Store())], value=call)
        return [assign] + dispatch
