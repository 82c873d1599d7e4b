"""Virtualizes the short-circuit operators ``and`` and ``or``."""

import ast
from typing import Type

from ..errors import UnsupportedConstructError
from .keyword_rewriter import KeywordRewriter


class BoolOpRewriter(KeywordRewriter):
    """
    Replace ``a <op> b`` with ``behavior(lambda: a, lambda: b)``.

    Python stores ``a and b and c`` as one node with three operands; it is
    folded to the right, ``and(a, and(b, c))``, which keeps left-to-right
    short-circuit order for a pass-through behavior.
    """

    operator: Type[ast.boolop] = ast.boolop

    def visit_BoolOp(self, node: ast.BoolOp) -> ast.expr:
        self.generic_visit(node)
        if not isinstance(node.op, self.operator):
            return node
        if len(node.values) < 2:
            raise UnsupportedConstructError(
                f"{self.keyword!r} with {len(node.values)} operand(s)"
            )

        result = node.values[-1]
        for left in reversed(node.values[:-1]):
            result = self.lookup_call([
                self.expression_thunk(left, 'left operand'),
                self.expression_thunk(result, 'right operand'),
            ])
        return ast.copy_location(result, node)


class AndRewriter(BoolOpRewriter):
    keyword = 'and'
    operator = ast.And


class OrRewriter(BoolOpRewriter):
    keyword = 'or'
    operator = ast.Or
