"""
Unifier
=======

Normalization pass run before code generation. The same method can reach
the stringifier in slightly different shapes (wrapped in a ``Module``,
still decorated, using zero-argument ``super()`` from inside a generated
thunk, missing locations on synthesized nodes). The unifier reduces each of
these to one canonical form and rejects anything that is not a real ``ast``
node.
"""

import ast
import copy
from typing import Any, List

from ..errors import CodecError

_FUNCTION_DEFS = (ast.FunctionDef, ast.AsyncFunctionDef)


def _is_known_node(node: Any) -> bool:
    node_type = type(node)
    return (
        isinstance(node, ast.AST)
        and node_type.__module__ == 'ast'
        and getattr(ast, node_type.__name__, None) is node_type
    )


class Unifier(ast.NodeTransformer):
    """
    Canonicalize a method tree for ``ast.unparse``.

        - ``Module([FunctionDef])`` -> ``FunctionDef``
        - decorators removed from the outermost function
        - ``super()`` -> ``super(__class__, <receiver>)``
        - locations filled in
    """

    # Generated thunks take no receiver of their own.
    GENERATED_PREFIX = '__vk_'

    def __init__(self):
        self._receivers: List[str] = []

    def unify(self, node: ast.AST) -> ast.AST:
        self._validate(node)
        node = copy.deepcopy(node)

        if isinstance(node, ast.Module) and len(node.body) == 1:
            node = node.body[0]
        if isinstance(node, _FUNCTION_DEFS):
            node.decorator_list = []

        self._receivers = []
        node = self.visit(node)
        return ast.fix_missing_locations(node)

    def visit_FunctionDef(self, node):
        params = node.args.posonlyargs + node.args.args
        pushed = False
        if params and not node.name.startswith(self.GENERATED_PREFIX):
            self._receivers.append(params[0].arg)
            pushed = True
        self.generic_visit(node)
        if pushed:
            self._receivers.pop()
        return node

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_Call(self, node: ast.Call) -> ast.Call:
        self.generic_visit(node)
        if (
            isinstance(node.func, ast.Name)
            and node.func.id == 'super'
            and not node.args
            and not node.keywords
            and self._receivers
        ):
            node.args = [
                ast.Name(id='__class__', ctx=ast.Load()),
                ast.Name(id=self._receivers[-1], ctx=ast.Load()),
            ]
        return node

    def _validate(self, node: Any) -> None:
        if not _is_known_node(node):
            raise CodecError(f"unrecognized node {type(node).__name__!r}")
        for _, value in ast.iter_fields(node):
            children = value if isinstance(value, list) else [value]
            for child in children:
                if isinstance(child, ast.AST) or not _is_atom(child):
                    self._validate(child)


def _is_atom(value: Any) -> bool:
    return value is None or isinstance(
        value, (str, bytes, int, float, complex, bool, type(Ellipsis), frozenset, tuple)
    )
