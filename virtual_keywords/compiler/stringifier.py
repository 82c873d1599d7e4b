"""Turns method trees back into Python source text."""

import ast
from typing import Optional

from ..errors import CodecError
from .unifier import Unifier


class TreeStringifier:
    """
    Regenerate source from a (possibly rewritten) method tree.

    The output is behaviorally equivalent to the tree, not byte-identical to
    whatever source the tree was first parsed from.

    Usage:
        >>> TreeStringifier().stringify(ast.parse("def f(self):\\n  return 1"))
        'def f(self):\\n    return 1\\n'
    """

    def __init__(self, unifier: Optional[Unifier] = None):
        self.unifier = unifier or Unifier()

    def stringify(self, node: ast.AST) -> str:
        unified = self.unifier.unify(node)

        try:
            source = ast.unparse(unified)
        except (AttributeError, TypeError, ValueError, RecursionError) as exc:
            raise CodecError(f"cannot generate source: {exc}") from exc

        try:
            ast.parse(source)
        except SyntaxError as exc:
            raise CodecError(f"generated source is not valid Python: {exc}") from exc

        return source + '\n'
