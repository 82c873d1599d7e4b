"""Virtualizes ``if``: statements, conditional expressions and comprehension filters."""

import ast
from typing import List, Union

from ..errors import UnsupportedConstructError
from .keyword_rewriter import KeywordRewriter, is_dispatch_test, is_lookup_call


class IfRewriter(KeywordRewriter):
    """
    Replace ``if`` with ``behavior(condition, then, orelse)``.

    Before:
        if self.hello:
            return 'hi'
        else:
            return 'bye'

    After:
        def __vk_if_then_1__():
            return __vk_flow__.Return('hi')
        def __vk_if_else_1__():
            return __vk_flow__.Return('bye')
        __vk_if_flow_1__ = __vk_registry__.lookup(self, 'if')(
            lambda: self.hello, __vk_if_then_1__, __vk_if_else_1__)
        if __vk_flow__.returned(__vk_if_flow_1__):
            return __vk_if_flow_1__.value

    A missing ``else`` is passed as ``lambda: None``.
    """

    keyword = 'if'

    def visit_If(self, node: ast.If) -> Union[ast.If, List[ast.stmt]]:
        if is_dispatch_test(node.test):
            # Dispatch code from an earlier pass; only its body is user code.
            self.generic_visit(node)
            return node

        self.generic_visit(node)
        if not isinstance(node.test, ast.expr):
            raise UnsupportedConstructError("'if' statement without a condition expression")

        index = self._next_index()
        condition, prelude = self.condition_thunk(node.test, index)

        then_def, signals = self.block_thunk('then', index, node.body)
        prelude.append(then_def)
        operands = [condition, ast.Name(id=then_def.name, ctx=ast.Load())]

        if node.orelse:
            else_def, else_signals = self.block_thunk('else', index, node.orelse)
            prelude.append(else_def)
            signals |= else_signals
            operands.append(ast.Name(id=else_def.name, ctx=ast.Load()))
        else:
            operands.append(self.expression_thunk(ast.Constant(value=None)))

        call = self.lookup_call(operands)
        return prelude + self.call_statements(call, self._name('flow', index), signals)

    def visit_IfExp(self, node: ast.IfExp) -> ast.Call:
        self.generic_visit(node)
        return ast.copy_location(self.lookup_call([
            self.expression_thunk(node.test, 'condition'),
            self.expression_thunk(node.body, 'then branch'),
            self.expression_thunk(node.orelse, 'else branch'),
        ]), node)

    def visit_comprehension(self, node: ast.comprehension) -> ast.comprehension:
        self.generic_visit(node)
        node.ifs = [
            self.lookup_call([
                self.expression_thunk(test, 'comprehension filter'),
                self.expression_thunk(ast.Constant(value=True)),
                self.expression_thunk(ast.Constant(value=False)),
            ])
            if not is_lookup_call(test, self.keyword) else test
            for test in node.ifs
        ]
        return node
