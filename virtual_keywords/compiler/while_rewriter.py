"""Virtualizes ``while`` loops."""

import ast
from typing import List

from .keyword_rewriter import FLOW_NAME, KeywordRewriter


class WhileRewriter(KeywordRewriter):
    """
    Replace a ``while`` loop with ``behavior(condition, body)``.

    The behavior owns the iteration (``flow.while_driver`` is the default).
    Inside the body thunk ``break`` and ``continue`` aimed at this loop
    become ``BREAK`` and ``CONTINUE`` signals for the driver, and ``return``
    becomes a ``Return`` signal forwarded after the call. An ``else:`` block
    runs unless the behavior reports ``BREAK``.
    """

    keyword = 'while'

    def visit_While(self, node: ast.While) -> List[ast.stmt]:
        self.generic_visit(node)

        index = self._next_index()
        condition, prelude = self.condition_thunk(node.test, index)
        body_def, signals = self.block_thunk('body', index, node.body)
        prelude.append(body_def)

        flow_var = self._name('flow', index)
        call = self.lookup_call([condition, ast.Name(id=body_def.name, ctx=ast.Load())])

        trailer = []
        if node.orelse:
            trailer.append(ast.If(
                test=ast.Compare(
                    left=ast.Name(id=flow_var, ctx=ast.Load()),
                    ops=[ast.IsNot()],
                    comparators=[ast.Attribute(
                        value=ast.Name(id=FLOW_NAME, ctx=ast.Load()),
                        attr='BREAK',
                        ctx=ast.Load(),
                    )],
                ),
                body=node.orelse,
                orelse=[],
            ))

        # The loop consumes its own break/continue.
        signals &= {'return'}
        return prelude + self.call_statements(call, flow_var, signals, trailer)
