"""Exception hierarchy for virtual_keywords."""

from typing import Any


class VirtualKeywordsError(Exception):
    """Base class for every error raised by the package."""


class ReflectionError(VirtualKeywordsError):
    """A class or object could not be introspected or redefined."""


class CodecError(VirtualKeywordsError):
    """A tree could not be turned back into valid source."""


class UnsupportedConstructError(VirtualKeywordsError):
    """A rewriter found a keyword pattern it cannot virtualize."""


class UnvirtualizedKeywordError(VirtualKeywordsError, LookupError):
    """Rewritten code ran on a receiver that has no registered behavior."""

    def __init__(self, receiver: Any, keyword: str):
        self.receiver_type = type(receiver).__qualname__
        self.keyword = keyword
        super().__init__(
            f"no behavior registered for {keyword!r} on "
            f"{self.receiver_type} instance or its class"
        )
