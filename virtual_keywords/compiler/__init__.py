"""Tree-level passes: keyword rewriters and the tree stringifier."""

from virtual_keywords.compiler.keyword_rewriter import KeywordRewriter
from virtual_keywords.compiler.if_rewriter import IfRewriter
from virtual_keywords.compiler.bool_rewriter import AndRewriter, OrRewriter
from virtual_keywords.compiler.while_rewriter import WhileRewriter
from virtual_keywords.compiler.unifier import Unifier
from virtual_keywords.compiler.stringifier import TreeStringifier

__all__ = [
    'KeywordRewriter',
    'IfRewriter',
    'AndRewriter',
    'OrRewriter',
    'WhileRewriter',
    'Unifier',
    'TreeStringifier',
]
