"""
virtual_keywords: overridable control-flow keywords for Python classes
======================================================================

Rewrites the methods of chosen classes or objects so that ``if``, ``and``,
``or`` and ``while`` call a replacement behavior instead of running the
built-in semantics. Operands reach the behavior as zero-argument thunks, so
it decides what gets evaluated and in which order.

Core Components:
    - compiler: keyword rewriters, unifier and tree stringifier
    - runtime: class reflection, keyword registry, flow signals, virtualizer

Usage:
    >>> import virtual_keywords
    >>> log = []
    >>> def logging_if(condition, then, orelse):
    ...     log.append('cond')
    ...     result = then() if condition() else orelse()
    ...     log.append('done')
    ...     return result
    >>> virtualizer = virtual_keywords.Virtualizer(for_classes=[Greeter])
    >>> _ = virtualizer.virtual_if(logging_if)
    >>> Greeter(True).greet()
    'hi'
    >>> log
    ['cond', 'done']
"""

__version__ = "0.3.0"

from virtual_keywords.errors import (
    VirtualKeywordsError,
    ReflectionError,
    CodecError,
    UnsupportedConstructError,
    UnvirtualizedKeywordError,
)
from virtual_keywords.compiler.if_rewriter import IfRewriter
from virtual_keywords.compiler.bool_rewriter import AndRewriter, OrRewriter
from virtual_keywords.compiler.while_rewriter import WhileRewriter
from virtual_keywords.compiler.unifier import Unifier
from virtual_keywords.compiler.stringifier import TreeStringifier
from virtual_keywords.runtime.class_reflection import ClassReflection, MethodCapture
from virtual_keywords.runtime.registry import KeywordRegistry, REWRITTEN_KEYWORDS
from virtual_keywords.runtime.flow import BREAK, CONTINUE, Return, while_driver
from virtual_keywords.runtime.virtualizer import Virtualizer, VirtualizerConfig
