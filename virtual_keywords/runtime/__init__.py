"""Runtime side: reflection, the keyword registry, flow signals, the virtualizer."""

from virtual_keywords.runtime.class_reflection import ClassReflection, MethodCapture
from virtual_keywords.runtime.registry import KeywordRegistry, REWRITTEN_KEYWORDS
from virtual_keywords.runtime.flow import BREAK, CONTINUE, Return, while_driver
from virtual_keywords.runtime.virtualizer import Virtualizer, VirtualizerConfig

__all__ = [
    'ClassReflection',
    'MethodCapture',
    'KeywordRegistry',
    'REWRITTEN_KEYWORDS',
    'BREAK',
    'CONTINUE',
    'Return',
    'while_driver',
    'Virtualizer',
    'VirtualizerConfig',
]
