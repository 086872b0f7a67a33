"""Exception hierarchy for the compiler.

Leaf module: no intra-package imports except diagnostics types under
TYPE_CHECKING.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from edmc.contracts.diagnostics import Diagnostic


class CompilationError(ValueError):
    """Raised by the final checkpoint when errors were recorded.

    Carries every error diagnostic of the run, in recording order.
    """

    def __init__(self, diagnostics: list[Diagnostic]) -> None:
        self.diagnostics = diagnostics
        lines = [str(d) for d in diagnostics]
        super().__init__(f"Compilation failed with {len(diagnostics)} error(s):\n" + "\n".join(lines))


class CompilerAssertion(AssertionError):
    """Internal invariant violation.

    Never a user mistake: an input that reaches this point means an earlier
    pass produced inconsistent state.
    """

    pass


class ModelLoadError(ValueError):
    """Raised when an input graph cannot be turned into a schema graph."""

    def __init__(self, message: str, location: tuple[str, ...] = ()) -> None:
        self.location = location
        where = "/".join(location)
        super().__init__(f"{message} (at {where})" if where else message)
