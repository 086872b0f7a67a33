# src/edmc/expressions/parser.py
"""Token stream expressions to typed operator trees.

Expressions arrive as CSN token streams: lists mixing keyword strings
('and', '=', 'case', ...) with operand objects ({"ref": [...]},
{"val": 1}, {"func": ..., "args": [...]}, {"xpr": [...]}). The parser is
a token sniffer rather than a grammar: each precedence level splits its
range at its own operators and hands the pieces to the next tighter
level. case/when/end blocks are folded first so their inner 'and' tokens
never reach the condition levels; likewise the 'and' of a between is
skipped when splitting conjunctions.

Precedence, loosest first:

    or
    and
    not, exists, is [not] null
    = <> > >= < <= == != like in between
    ||
    + -
    * /
    .
    unary + - new

Malformed input is never rejected here. Whatever does not fit a known
shape is kept as a Sequence or Opaque node and reported by the consumer.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

_COMPARE_OPS = frozenset({"=", "<>", ">", ">=", "<", "<=", "==", "!=", "like", "in"})
_ARITH_SKIPS = frozenset({"+", "-", "*", "/"})
_UNARY_OPS = frozenset({"+", "-", "new"})
_CAST_FACETS = ("length", "precision", "scale", "srid", "unicode")

# Keys that make a mapping an annotation expression, next to "=".
EXPRESSION_KEYS = frozenset(
    {"ref", "xpr", "list", "literal", "val", "#", "func", "args", "SELECT", "SET", "cast"}
)


@dataclass(frozen=True, slots=True)
class Literal:
    value: Any


@dataclass(frozen=True, slots=True)
class Ref:
    """Path reference; steps are element names, `$self` included when written."""

    steps: tuple[str, ...]
    has_args: bool = False
    is_param: bool = False

    @property
    def text(self) -> str:
        return ".".join(self.steps)


@dataclass(frozen=True, slots=True)
class EnumSymbolRef:
    symbol: str


@dataclass(frozen=True, slots=True)
class Func:
    name: str
    args: tuple[Node | None, ...] = ()


@dataclass(frozen=True, slots=True)
class ListNode:
    items: tuple[Node | None, ...]


@dataclass(frozen=True, slots=True)
class Operator:
    """Operator application. Unary operators carry a single argument."""

    op: str
    args: tuple[Node | None, ...]


@dataclass(frozen=True, slots=True)
class When:
    condition: Node | None
    result: Node | None


@dataclass(frozen=True, slots=True)
class Case:
    """case [subject] when ... then ... [else ...] end; subject set for a simple case."""

    subject: Node | None
    whens: tuple[When, ...]
    otherwise: Node | None = None


@dataclass(frozen=True, slots=True)
class Cast:
    type: str | None
    expr: Node | None
    facets: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Query:
    """A nested SELECT or set operation."""

    kind: str


@dataclass(frozen=True, slots=True)
class Sequence:
    """Adjacent tokens without a joining operator."""

    items: tuple[Node | str | None, ...]


@dataclass(frozen=True, slots=True)
class Opaque:
    raw: Any


type Node = Literal | Ref | EnumSymbolRef | Func | ListNode | Operator | Case | Cast | Query | Sequence | Opaque

type _Tokens = list[Any]


def _kw(token: Any) -> str | None:
    return token if isinstance(token, str) else None


def is_annotation_expression(value: Any) -> bool:
    """A mapping with "=" plus at least one expression key."""
    return isinstance(value, Mapping) and "=" in value and any(k in value for k in EXPRESSION_KEYS)


def parse_annotation_expression(value: Mapping[str, Any]) -> Node | None:
    """Parse an annotation value like {"=": "a.b", "ref": ["a", "b"]}."""
    return parse_operand({k: v for k, v in value.items() if k != "="})


def parse_expression(tokens: Any) -> Node | None:
    """Parse a token stream (or a single operand) into an operator tree."""
    if not isinstance(tokens, list):
        return parse_operand(tokens)
    folded = _fold_cases(list(tokens))
    return _or(folded, 0, len(folded))


def parse_operand(token: Any) -> Node | None:
    if isinstance(token, list):
        return parse_expression(token)
    if not isinstance(token, Mapping):
        return Opaque(token)

    other_keys = [k for k in token if k != "cast"]
    if token.get("cast") is not None and len(other_keys) == 1:
        spec = token["cast"] if isinstance(token["cast"], Mapping) else {}
        facets = {f: spec[f] for f in _CAST_FACETS if spec.get(f) is not None}
        return Cast(type=spec.get("type"), expr=parse_operand({other_keys[0]: token[other_keys[0]]}), facets=facets)

    if "xpr" in token:
        return parse_expression(token["xpr"])
    if "ref" in token:
        return _parse_ref(token)
    if "val" in token:
        return Literal(token["val"])
    if "#" in token:
        return EnumSymbolRef(str(token["#"]))
    if "func" in token:
        raw_args = token.get("args") or []
        if isinstance(raw_args, Mapping):
            raw_args = list(raw_args.values())
        return Func(name=str(token["func"]), args=tuple(parse_operand(a) for a in raw_args))
    if "list" in token:
        return ListNode(items=tuple(parse_operand(i) for i in token["list"] or []))
    for kind in ("SELECT", "SET"):
        if kind in token:
            return Query(kind)
    return Opaque(token)


def _parse_ref(token: Mapping[str, Any]) -> Ref:
    steps: list[str] = []
    has_args = False
    for step in token["ref"] or []:
        if isinstance(step, Mapping):
            steps.append(str(step.get("id")))
            has_args = has_args or bool(step.get("args"))
        else:
            steps.append(str(step))
    return Ref(steps=tuple(steps), has_args=has_args, is_param=bool(token.get("param")))


# case ... end ---------------------------------------------------------------


def _fold_cases(tokens: _Tokens) -> _Tokens:
    """Replace every complete case ... end block by a Case node, innermost first."""
    while True:
        starts = [i for i, t in enumerate(tokens) if _kw(t) == "case"]
        if not starts:
            return tokens
        start = starts[-1]
        end = next((i for i in range(start + 1, len(tokens)) if _kw(tokens[i]) == "end"), None)
        if end is None:
            return tokens
        tokens[start : end + 1] = [_build_case(tokens[start + 1 : end])]


def _parse_range(tokens: _Tokens) -> Node | None:
    return _or(tokens, 0, len(tokens))


def _build_case(body: _Tokens) -> Case:
    otherwise: Node | None = None
    else_at = next((i for i in range(len(body) - 1, -1, -1) if _kw(body[i]) == "else"), None)
    if else_at is not None:
        otherwise = _parse_range(body[else_at + 1 :])
        body = body[:else_at]

    positions = [i for i, t in enumerate(body) if _kw(t) == "when"]
    if not positions:
        return Case(subject=_parse_range(body), whens=(), otherwise=otherwise)
    subject = _parse_range(body[: positions[0]]) if positions[0] > 0 else None

    whens: list[When] = []
    for index, start in enumerate(positions):
        stop = positions[index + 1] if index + 1 < len(positions) else len(body)
        clause = body[start + 1 : stop]
        then_at = next((i for i, t in enumerate(clause) if _kw(t) == "then"), None)
        if then_at is None:
            whens.append(When(condition=_parse_range(clause), result=None))
        else:
            whens.append(When(condition=_parse_range(clause[:then_at]), result=_parse_range(clause[then_at + 1 :])))
    return Case(subject=subject, whens=tuple(whens), otherwise=otherwise)


# Precedence levels ------------------------------------------------------------
#
# Every level takes the token list and a half-open range [s, e). Finders
# return (operator width, position) with position -1 when nothing matches.


def _finder(ops: frozenset[str]):
    def find(tokens: _Tokens, s: int, e: int) -> tuple[int, int]:
        for i in range(s, e):
            if _kw(tokens[i]) in ops:
                return 1, i
        return 1, -1

    return find


def _combine(op: _Tokens, lhs: Node | None, rhs: Node | None) -> Operator:
    if len(op) > 1 and op[0] == "not":
        return Operator("not", (Operator("".join(op[1:]), (lhs, rhs)),))
    return Operator("".join(op), (lhs, rhs))


def _binary(tokens: _Tokens, s: int, e: int, find, next_level) -> Node | None:
    """Left fold of next_level results over the operators find locates."""
    width, p = find(tokens, s, e)
    if p < 0:
        return next_level(tokens, s, e)
    lhs = next_level(tokens, s, p)
    op = tokens[p : p + width]
    s = p + width
    width, p = find(tokens, s, e)
    while p >= 0:
        lhs = _combine(op, lhs, next_level(tokens, s, p))
        op = tokens[p : p + width]
        s = p + width
        width, p = find(tokens, s, e)
    return _combine(op, lhs, next_level(tokens, s, e))


_find_or = _finder(frozenset({"or"}))
_find_concat = _finder(frozenset({"||"}))
_find_mul = _finder(frozenset({"*", "/"}))
_find_dot = _finder(frozenset({"."}))


def _find_and(tokens: _Tokens, s: int, e: int) -> tuple[int, int]:
    pending_between = False
    for i in range(s, e):
        keyword = _kw(tokens[i])
        if keyword == "between":
            pending_between = True
        elif keyword == "and":
            if not pending_between:
                return 1, i
            pending_between = False
    return 1, -1


def _find_compare(tokens: _Tokens, s: int, e: int) -> tuple[int, int]:
    for i in range(s, e):
        keyword = _kw(tokens[i])
        if keyword in _COMPARE_OPS:
            if keyword in ("in", "like") and i > s and _kw(tokens[i - 1]) == "not":
                return 2, i - 1
            return 1, i
    return 1, -1


def _find_additive(tokens: _Tokens, s: int, e: int) -> tuple[int, int]:
    for p in range(s + 1, e):
        if _kw(tokens[p]) in ("+", "-") and _kw(tokens[p - 1]) not in _ARITH_SKIPS:
            return 1, p
    return 1, -1


def _or(tokens: _Tokens, s: int, e: int) -> Node | None:
    return _binary(tokens, s, e, _find_or, _and)


def _and(tokens: _Tokens, s: int, e: int) -> Node | None:
    return _binary(tokens, s, e, _find_and, _term)


def _term(tokens: _Tokens, s: int, e: int) -> Node | None:
    if e - s >= 3 and _kw(tokens[s + 1]) == "is":
        subject = _as_node(tokens[s])
        if _kw(tokens[s + 2]) == "null":
            return Operator("isNull", (subject,))
        if _kw(tokens[s + 2]) == "not" and s + 3 < e and _kw(tokens[s + 3]) == "null":
            return Operator("isNotNull", (subject,))
    if s < e and _kw(tokens[s]) in ("not", "exists"):
        return Operator(tokens[s], (_term(tokens, s + 1, e),))
    return _compare(tokens, s, e)


def _compare(tokens: _Tokens, s: int, e: int) -> Node | None:
    between_at = next((i for i in range(s, e) if _kw(tokens[i]) == "between"), None)
    if between_at is None:
        return _binary(tokens, s, e, _find_compare, _concat)

    and_at = next((i for i in range(between_at, e) if _kw(tokens[i]) == "and"), None)
    negated = between_at > s and _kw(tokens[between_at - 1]) == "not"
    subject = _concat(tokens, s, between_at - 1 if negated else between_at)
    if and_at is not None:
        args = (subject, _concat(tokens, between_at + 1, and_at), _concat(tokens, and_at + 1, e))
    else:
        args = (subject, _concat(tokens, between_at + 1, e))
    node = Operator("between", args)
    return Operator("not", (node,)) if negated else node


def _concat(tokens: _Tokens, s: int, e: int) -> Node | None:
    return _binary(tokens, s, e, _find_concat, _additive)


def _additive(tokens: _Tokens, s: int, e: int) -> Node | None:
    return _binary(tokens, s, e, _find_additive, _multiplicative)


def _multiplicative(tokens: _Tokens, s: int, e: int) -> Node | None:
    return _binary(tokens, s, e, _find_mul, _dot)


def _dot(tokens: _Tokens, s: int, e: int) -> Node | None:
    return _binary(tokens, s, e, _find_dot, _unary)


def _unary(tokens: _Tokens, s: int, e: int) -> Node | None:
    if s < e and _kw(tokens[s]) in _UNARY_OPS:
        return Operator(tokens[s], (_unary(tokens, s + 1, e),))
    return _terminal(tokens, s, e)


def _terminal(tokens: _Tokens, s: int, e: int) -> Node | None:
    if e <= s:
        return None
    if e - s == 1 and not isinstance(tokens[s], str):
        return _as_node(tokens[s])
    return Sequence(items=tuple(t if isinstance(t, str) else _as_node(t) for t in tokens[s:e]))


def _as_node(token: Any) -> Node | None:
    """Folded Case nodes pass through; everything else is an operand."""
    return token if isinstance(token, Case) else parse_operand(token)


def iter_nodes(node: Node | When | str | None):
    """Depth-first walk over a tree, parents before children."""
    if node is None or isinstance(node, str):
        return
    yield node
    match node:
        case Operator(args=children) | Func(args=children) | ListNode(items=children) | Sequence(items=children):
            for child in children:
                yield from iter_nodes(child)
        case Case(subject=subject, whens=whens, otherwise=otherwise):
            yield from iter_nodes(subject)
            for when in whens:
                yield from iter_nodes(when)
            yield from iter_nodes(otherwise)
        case When(condition=condition, result=result):
            yield from iter_nodes(condition)
            yield from iter_nodes(result)
        case Cast(expr=expr):
            yield from iter_nodes(expr)


def iter_refs(node: Node | None):
    """All path references of a tree."""
    for child in iter_nodes(node):
        if isinstance(child, Ref):
            yield child
