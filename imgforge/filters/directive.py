"""
Filter directives and pipeline parsing.

A filter expression is a ``|``-separated list of directives. Each directive is
``name,arg,arg`` or ``name:arg,arg``. Order is significant and preserved.
"""

from dataclasses import dataclass
from typing import List, Tuple


@dataclass(frozen=True)
class FilterDirective:
    """One named filter invocation with its positional argument tokens."""
    name: str
    args: Tuple[str, ...] = ()

    def __str__(self) -> str:
        return ",".join((self.name,) + self.args)


def parse_directive(text: str) -> FilterDirective:
    text = text.strip()
    head, sep, rest = text.partition(":")
    if sep and "," not in head:
        name, tokens = head, rest.split(",") if rest.strip() else []
    else:
        name, *tokens = text.split(",")
    return FilterDirective(name.strip().lower(), tuple(token.strip() for token in tokens))


def parse_pipeline(expression: str) -> List[FilterDirective]:
    """
    Split a filter expression into directives.

    Empty segments are dropped; nothing is reordered or deduplicated.
    """
    if not expression:
        return []
    return [parse_directive(segment) for segment in expression.split("|") if segment.strip()]
