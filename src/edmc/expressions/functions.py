# src/edmc/expressions/functions.py
"""Canonical OData client-side functions and their arity.

Functions are rendered as {"$Apply": [...], "$Function": "odata.<name>"}.
Entries with `use` are legacy spellings that are never rendered; the
diagnostic names the expression form to use instead.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Arity:
    """Argument count constraints of a canonical function.

    exact wins over min/max; an Arity with `use` set is not callable.
    """

    min: int | None = None
    max: int | None = None
    exact: int | None = None
    use: str | None = None

    def violation(self, count: int) -> tuple[str, int] | None:
        """(variant, expected count) of the first violated bound, or None."""
        if self.exact is not None:
            if count != self.exact:
                return ("exactly" if self.exact else "std", self.exact)
            return None
        if self.min is not None and count < self.min:
            return ("atleast", self.min)
        if self.max is not None and count > self.max:
            return ("atmost", self.max)
        return None


_ONE = Arity(exact=1)
_TWO = Arity(exact=2)
_NONE = Arity(exact=0)

CANONICAL_FUNCTIONS: dict[str, Arity] = {
    "fillUriTemplate": Arity(min=2),
    "uriEncode": _ONE,
    "concat": Arity(min=2),
    "contains": _TWO,
    "endswith": _TWO,
    "indexof": _TWO,
    "length": _ONE,
    "matchesPattern": _TWO,
    "startswith": _TWO,
    "substring": Arity(min=2, max=3),
    "tolower": _ONE,
    "toupper": _ONE,
    "trim": _ONE,
    "hassubset": _TWO,
    "hassubsequence": _TWO,
    "year": _ONE,
    "month": _ONE,
    "day": _ONE,
    "hour": _ONE,
    "minute": _ONE,
    "second": _ONE,
    "fractionalseconds": _ONE,
    "totalseconds": _ONE,
    "date": _ONE,
    "time": _ONE,
    "totaloffsetminutes": _ONE,
    "mindatetime": _NONE,
    "maxdatetime": _NONE,
    "now": _NONE,
    "round": _ONE,
    "floor": _ONE,
    "ceiling": _ONE,
    "geo.distance": _TWO,
    "geo.intersects": _TWO,
    "geo.length": _ONE,
    "cast": Arity(use="cast(…)"),
    "isof": Arity(use="IsOf(…)"),
    "case": Arity(use="?:"),
}


def canonical_name(name: str) -> str | None:
    """Function name without an 'odata.' prefix if it is canonical, else None."""
    short = name[len("odata.") :] if name.startswith("odata.") else name
    return short if short in CANONICAL_FUNCTIONS else None
