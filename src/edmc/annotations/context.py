# src/edmc/annotations/context.py
"""Diagnostic context while one annotation value is translated."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from edmc.contracts.diagnostics import Location


@dataclass(slots=True)
class MessageContext:
    """Term and value path of the value being translated.

    anno() names the innermost position, e.g. "@UI.LineItem[0].Value"
    while the Value property of the first @UI.LineItem record is
    processed. Steps are ".<property>" or "[<index>]".
    """

    term: str
    location: Location
    stack: list[str] = field(default_factory=list)

    def anno(self) -> str:
        name = self.term if self.term.startswith("@") else f"@{self.term}"
        return name + "".join(self.stack)

    @contextmanager
    def step(self, name: str) -> Iterator[None]:
        self.stack.append(name)
        try:
            yield
        finally:
            self.stack.pop()
