"""
gatehouse_scope.py — scope parsing for the authorization endpoint.

A scope is the set of named permissions a client asks for. Raw scope strings
arrive space (or comma) separated; duplicates are dropped and the first-seen
order is kept so the consent form lists them the way the client sent them.
"""

import re
from dataclasses import dataclass
from typing import Iterator

_SCOPE_SEPARATOR = re.compile(r"[\s,]+")


@dataclass(frozen=True, eq=False)
class Scope:
    tokens: tuple[str, ...] = ()

    def __iter__(self) -> Iterator[str]:
        return iter(self.tokens)

    def __len__(self) -> int:
        return len(self.tokens)

    def __contains__(self, name: object) -> bool:
        return name in self.tokens

    # Order is only for display.
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Scope):
            return NotImplemented
        return frozenset(self.tokens) == frozenset(other.tokens)

    def __hash__(self) -> int:
        return hash(frozenset(self.tokens))

    def to_list(self) -> list[str]:
        return list(self.tokens)

    def to_string(self) -> str:
        return " ".join(self.tokens)


EMPTY_SCOPE = Scope()


def parse_scope(raw: str | None) -> Scope:
    """Turn a raw ``scope`` parameter into a :class:`Scope`.

    ``None`` and blank strings give the empty scope. Never raises.
    """
    if not raw:
        return EMPTY_SCOPE
    seen: dict[str, None] = {}
    for token in _SCOPE_SEPARATOR.split(raw):
        if token:
            seen.setdefault(token, None)
    if not seen:
        return EMPTY_SCOPE
    return Scope(tuple(seen))
