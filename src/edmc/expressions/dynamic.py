# src/edmc/expressions/dynamic.py
"""Operator trees to OData dynamic expressions in EDM JSON form.

Every translation error is recorded on the sink and marks the translator
as failed; the annotation that carried the expression is dropped by the
caller. Type policy findings (version mismatch of an Edm type, scale
larger than precision) are reported without failing the expression.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping
from typing import Any

from edmc.contracts.diagnostics import Location, MessageSink
from edmc.core.config import CompilerOptions
from edmc.expressions.functions import CANONICAL_FUNCTIONS, Arity, canonical_name
from edmc.expressions.parser import (
    Case,
    Cast,
    EnumSymbolRef,
    Func,
    ListNode,
    Literal,
    Node,
    Opaque,
    Operator,
    Query,
    Ref,
    Sequence,
    is_annotation_expression,
    parse_annotation_expression,
)
from edmc.model.builtins import EDM_FACETS, EDM_PRIMITIVE_TYPES, is_builtin_type, map_cds_to_edm
from edmc.model.schema import SchemaGraph

_BINARY_TAGS = {
    "and": "$And",
    "or": "$Or",
    "=": "$Eq",
    "==": "$Eq",
    "<>": "$Ne",
    "!=": "$Ne",
    ">": "$Gt",
    ">=": "$Ge",
    "<": "$Lt",
    "<=": "$Le",
    "*": "$Mul",
    "/": "$DivBy",
}

# Operators without a dynamic expression counterpart, with their display text.
_NOT_DYNAMIC = {
    ".": ".",
    "isNull": "is null",
    "isNotNull": "is not null",
    "exists": "exists",
    "like": "like",
    "new": "new",
}

_TWO_ARGS = {"$Has": "$Has", "Has": "$Has", "$Div": "$Div", "Div": "$Div", "$Mod": "$Mod", "Mod": "$Mod"}
_ONE = Arity(exact=1)
_TWO = Arity(exact=2)
_INTEGER = re.compile(r"^[+-]?\d+")


def _present(nodes: tuple[Node | None, ...]) -> list[Node]:
    return [n for n in nodes if n is not None]


def _is_call(node: Node | None, *names: str) -> bool:
    return isinstance(node, Func) and node.name in names


def _as_int(value: Any) -> int | None:
    """Leading integer of a facet value, None if there is none."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        match = _INTEGER.match(value)
        return int(match.group()) if match else None
    return None


class DynamicExpressionTranslator:
    """Translates the operator tree of one annotation value.

    Args:
        anno: Annotation name used in diagnostics
        location: Location of the annotation carrier
        options: Compiler options (version dependent types and facets)
        graph: Schema graph used to resolve derived cast types
        sink: Receives every diagnostic
    """

    def __init__(
        self,
        *,
        anno: str,
        location: Location,
        options: CompilerOptions,
        graph: SchemaGraph,
        sink: MessageSink,
    ) -> None:
        self.anno = anno
        self.location = location
        self.options = options
        self.graph = graph
        self.sink = sink
        self.failed = False

    # Diagnostics ------------------------------------------------------------

    def _error(self, msg_id: str, args: Mapping[str, Any] | None = None, variant: str | None = None) -> None:
        self.sink.error(msg_id, self.location, {"anno": self.anno, **(args or {})}, variant=variant)
        self.failed = True

    def _not_dynamic(self, op: str) -> None:
        self._error("odata-anno-xpr", {"op": op}, "notadynexpr")

    def _check_arity(self, arity: Arity, count: int, name: str) -> bool:
        violation = arity.violation(count)
        if violation is None:
            return True
        variant, expected = violation
        args: dict[str, Any] = {"op": f"{name}(…)"}
        if variant != "std":
            args["count"] = expected
        self._error("odata-anno-xpr-args", args, variant)
        return False

    # Dispatch ---------------------------------------------------------------

    def translate(self, node: Node | None) -> Any:
        match node:
            case None:
                return None
            case Literal(value=None):
                return {"$Null": True}
            case Literal(value=value):
                return value
            case Ref():
                return self._ref(node)
            case ListNode(items=items):
                return [self.translate(item) for item in _present(items)]
            case Sequence(items=items):
                return [item if isinstance(item, str) else self.translate(item) for item in items]
            case EnumSymbolRef():
                return self._not_dynamic("#")
            case Query(kind=kind):
                return self._not_dynamic("UNION" if kind == "SET" else kind)
            case Operator():
                return self._operator(node)
            case Case():
                return self._case(node)
            case Cast():
                return self._cast(node)
            case Func():
                return self._func(node)
            case Opaque(raw=raw):
                return copy.deepcopy(raw)
        raise TypeError(f"Unexpected expression node {node!r}")

    def _ref(self, node: Ref) -> dict[str, str]:
        if node.has_args:
            self._error("odata-anno-xpr-ref", {"elemref": node.text}, "args")
        steps = node.steps[1:] if node.steps and node.steps[0] == "$self" else node.steps
        return {"$Path": "/".join(steps)}

    # Operators --------------------------------------------------------------

    def _operator(self, node: Operator) -> Any:
        op = node.op
        args = _present(node.args)
        if op in _NOT_DYNAMIC:
            return self._not_dynamic(_NOT_DYNAMIC[op])
        if op in _BINARY_TAGS:
            self._check_arity(_TWO, len(args), op)
            return {_BINARY_TAGS[op]: [self.translate(a) for a in args]}
        match op, len(node.args):
            case "not", _:
                self._check_arity(_ONE, len(args), op)
                return {"$Not": self.translate(args[0]) if args else None}
            case "-", 1:
                return {"$Neg": self.translate(node.args[0])}
            case "+", 1:
                return self.translate(node.args[0])
            case "-", _:
                self._check_arity(_TWO, len(args), op)
                return {"$Sub": [self.translate(a) for a in args]}
            case "+", _:
                self._check_arity(_TWO, len(args), op)
                return {"$Add": [self.translate(a) for a in args]}
            case "in", _:
                return self._in(node)
            case "between", _:
                return self._between(node)
            case "||", _:
                self._check_arity(_TWO, len(args), op)
                return {"$Apply": [self.translate(a) for a in args], "$Function": "odata.concat"}
        return self._not_dynamic(op)

    def _in(self, node: Operator) -> dict[str, Any]:
        subject = node.args[0] if node.args else None
        candidates = node.args[1] if len(node.args) > 1 else None
        match candidates:
            case ListNode(items=items) | Sequence(items=items):
                values = [i for i in items if i is not None and not isinstance(i, str)]
            case None:
                values = []
            case _:
                values = [candidates]
        self._check_arity(Arity(min=1), len(values), "in")
        return {"$In": [self.translate(subject), [self.translate(v) for v in values]]}

    def _between(self, node: Operator) -> dict[str, Any] | None:
        subject, *bounds = node.args
        bounds = [b for b in bounds if b is not None]
        if not self._check_arity(_TWO, len(bounds), "between"):
            return None
        value = self.translate(subject)
        lower, upper = (self.translate(b) for b in bounds)
        return {"$And": [{"$Le": [lower, value]}, {"$Le": [copy.deepcopy(value), upper]}]}

    def _case(self, node: Case) -> dict[str, Any] | None:
        if not node.whens:
            return self._not_dynamic("case")
        whens = node.whens
        if node.subject is not None:
            conditions = [Operator("=", (node.subject, w.condition)) for w in whens]
        else:
            conditions = [w.condition for w in whens]

        result: Any = self.translate(node.otherwise) if node.otherwise is not None else None
        for condition, when in zip(reversed(conditions), reversed(whens), strict=True):
            branch = [self.translate(condition), self.translate(when.result)]
            if result is not None:
                branch.append(result)
            result = {"$If": branch}
        return result

    # cast(x as T) -----------------------------------------------------------

    def _cast(self, node: Cast) -> dict[str, Any] | None:
        type_name = node.type
        facets = dict(node.facets)
        if type_name and not is_builtin_type(type_name):
            definition = self.graph.get(type_name)
            if definition is not None:
                final = self.graph.effective_type(definition)
                if final.type and is_builtin_type(final.type):
                    type_name = final.type
                    for facet in ("length", "precision", "scale", "srid"):
                        if facets.get(facet) is None and getattr(final, facet) is not None:
                            facets[facet] = getattr(final, facet)

        edm_type = map_cds_to_edm(type_name or "", is_v2=self.options.is_v2)
        if edm_type is None:
            self._error("ref-unsupported-type", {"type": type_name, "version": self.options.version_label})
            return None

        result: dict[str, Any] = {"$Cast": [self.translate(node.expr)], "$Type": edm_type}
        if facets.get("length") is not None:
            result["$MaxLength"] = facets["length"]
        if facets.get("srid") is not None:
            result["$SRID"] = facets["srid"]
        if facets.get("unicode") is not None:
            result["$Unicode"] = facets["unicode"]
        if facets.get("precision") is not None:
            result["$Precision"] = facets["precision"]
        elif type_name == "cds.Timestamp" and edm_type == "Edm.DateTimeOffset":
            result["$Precision"] = 7
        scale = facets.get("scale")
        if (edm_type == "Edm.Decimal" and facets.get("precision") is None and scale is None) or scale == "floating":
            result["$Scale"] = "variable"
        elif scale is not None:
            result["$Scale"] = scale
        self._finish_decimal(edm_type, result)
        return result

    def _finish_decimal(self, edm_type: str, result: dict[str, Any]) -> None:
        if edm_type != "Edm.Decimal":
            return
        precision = _as_int(result.get("$Precision"))
        scale = _as_int(result.get("$Scale"))
        if precision is not None and scale is not None and scale > precision:
            self.sink.error(
                "odata-invalid-scale",
                self.location,
                {"anno": self.anno, "number": scale, "rawvalue": precision},
                variant="anno",
            )
        if self.options.is_v2 and result.get("$Scale") == "variable":
            result["@sap.variable.scale"] = True
            del result["$Scale"]

    # Functions --------------------------------------------------------------

    def _func(self, node: Func) -> Any:
        name = node.name
        args = _present(node.args)
        if name in _TWO_ARGS:
            self._check_arity(_TWO, len(args), name)
            return {_TWO_ARGS[name]: [self.translate(a) for a in args]}
        match name:
            case "$Apply" | "Apply":
                return self._apply(node, "$Function" if name == "$Apply" else "Function")
            case "$Cast" | "$IsOf" | "IsOf":
                return self._typed(node, "$Cast" if name == "$Cast" else "$IsOf")
            case "$LabeledElement" | "LabeledElement":
                return self._labeled_element(node, "$Name" if name.startswith("$") else "Name")
            case "$LabeledElementReference" | "LabeledElementReference":
                return self._labeled_element_reference(node)
            case "$UrlRef" | "UrlRef":
                self._check_arity(_ONE, len(args), name)
                return {"$UrlRef": [self.translate(a) for a in args]}
            case "$Collection" | "Collection":
                return [self.translate(a) for a in args]
            case "$Path" | "Path":
                return self._path(node)
            case "$Null" | "Null":
                if args:
                    self._error("odata-anno-xpr-args", {"op": f"{name}(…)"})
                return {"$Null": True}

        canonical = canonical_name(name)
        if canonical is None:
            return self._not_dynamic(f"{name}(…)")
        arity = CANONICAL_FUNCTIONS[canonical]
        if arity.use:
            self._error("odata-anno-xpr", {"op": f"{name}(…)", "code": arity.use}, "use")
            return None
        self._check_arity(arity, len(args), name)
        return {"$Apply": [self.translate(a) for a in args], "$Function": f"odata.{canonical}"}

    def _named_literal(self, node: Func, prop: str, meta: str = "literal") -> tuple[Any, list[Node]]:
        """Split off the single named argument `prop(<literal>)` of a call.

        Returns the literal (None if missing or invalid) and the remaining arguments.
        """
        named = [a for a in _present(node.args) if _is_call(a, prop)]
        rest = [a for a in _present(node.args) if not _is_call(a, prop)]
        if len(named) != 1:
            self._error("odata-anno-xpr-args", {"op": f"{node.name}(…)", "prop": f"{prop}(…)"}, "wrongcount")
            return None, rest
        inner = _present(named[0].args)
        if not self._check_arity(_ONE, len(inner), prop):
            return None, rest
        value = inner[0].value if isinstance(inner[0], Literal) else None
        if not value:
            self._error("odata-anno-xpr-args", {"op": f"{prop}(…)", "meta": meta}, "wrongval_meta")
            return None, rest
        return value, rest

    def _apply(self, node: Func, prop: str) -> dict[str, Any]:
        function, rest = self._named_literal(node, prop)
        if isinstance(function, str):
            canonical = canonical_name(function)
            if canonical is not None:
                arity = CANONICAL_FUNCTIONS[canonical]
                if arity.use:
                    self._error("odata-anno-xpr", {"op": function, "code": arity.use}, "use")
                else:
                    self._check_arity(arity, len(rest), node.name)
            elif len(function.split(".")) != 2:
                self._error(
                    "odata-anno-xpr",
                    {"op": f"{prop}(…)", "code": function, "meta": "namespace", "othermeta": "function"},
                    "canonfuncalias",
                )
        return {"$Apply": [self.translate(a) for a in rest], "$Function": function}

    def _labeled_element(self, node: Func, prop: str) -> dict[str, Any]:
        name, rest = self._named_literal(node, prop, "qualified name")
        self._check_arity(_ONE, len(rest), node.name)
        return {"$LabeledElement": [self.translate(a) for a in rest], "$Name": name}

    def _labeled_element_reference(self, node: Func) -> dict[str, Any] | None:
        args = _present(node.args)
        if not self._check_arity(_ONE, len(args), node.name):
            return None
        target = args[0]
        if not (isinstance(target, Literal) and isinstance(target.value, str)):
            self._error("odata-anno-xpr-args", {"op": f"{node.name}(…)", "meta": "literal"}, "wrongval_meta")
            return None
        return {"$LabeledElementReference": target.value}

    def _path(self, node: Func) -> dict[str, Any] | None:
        args = _present(node.args)
        if not self._check_arity(_ONE, len(args), node.name):
            return None
        target = args[0]
        if not (isinstance(target, Literal) and isinstance(target.value, str)):
            self._error("odata-anno-xpr-args", {"op": f"{node.name}(…)", "meta": "string"}, "wrongval_meta")
            return None
        return {"$Path": target.value}

    # $Cast / $IsOf with explicit Edm types ------------------------------------

    def _typed(self, node: Func, tag: str) -> dict[str, Any] | None:
        spec = self._type_spec(node)
        if spec is None:
            return None
        attributes, rest = spec
        self._check_arity(_ONE, len(rest), node.name)
        return {tag: [self.translate(a) for a in rest], **attributes}

    def _type_spec(self, node: Func) -> tuple[dict[str, Any], list[Node]] | None:
        """Collect type and facets of a $Cast/$IsOf call.

        The type is given as Type('Edm.X', MaxLength(10)), as an Edm short
        name call String(10) with positional facets, or wrapped in
        Collection(...). Returns the rendered attributes and the remaining
        arguments, or None if no single type could be determined.
        """
        op = f"{node.name}(…)"
        args = _present(node.args)
        collection = False
        wrappers = [a for a in args if _is_call(a, "Collection", "$Collection")]
        args = [a for a in args if not _is_call(a, "Collection", "$Collection")]
        if len(wrappers) > 1:
            self._error("odata-anno-xpr-type", {"op": op})
            return None
        if wrappers:
            inner = _present(wrappers[0].args)
            if not self._check_arity(_ONE, len(inner), wrappers[0].name):
                return None
            collection = True
            args.append(inner[0])

        candidates: list[tuple[Any, dict[str, list[list[Node]]], str]] = []
        rest: list[Node] = []
        for arg in args:
            if isinstance(arg, Func) and f"Edm.{arg.name}" in EDM_PRIMITIVE_TYPES:
                edm_type = f"Edm.{arg.name}"
                positional = zip(EDM_PRIMITIVE_TYPES[edm_type].facets, _present(arg.args), strict=False)
                candidates.append((edm_type, {f: [[v]] for f, v in positional}, f"{arg.name}(…)"))
            elif _is_call(arg, "Type", "$Type"):
                candidate = self._type_call(arg, op)
                if candidate is None:
                    return None
                type_name, facets, in_collection = candidate
                collection = collection or in_collection
                candidates.append((type_name, facets, f"{arg.name}(…)"))
            else:
                rest.append(arg)

        if len(candidates) != 1:
            self._error("odata-anno-xpr-type", {"op": op})
            return None
        type_name, facets, type_op = candidates[0]
        if not isinstance(type_name, str):
            self._error("odata-anno-xpr-type", {"op": op})
            return None

        attributes: dict[str, Any] = {"$Type": type_name}
        if collection:
            attributes["$Collection"] = True
        primitive = EDM_PRIMITIVE_TYPES.get(type_name)
        if primitive is None:
            self._error("odata-anno-xpr-type", {"op": op, "type": type_name}, "edm")
            return None
        if not (primitive.v4 if self.options.is_v4 else primitive.v2):
            self.sink.error(
                "odata-unexpected-edm-type",
                self.location,
                {"anno": self.anno, "type": type_name, "version": self.options.version_label},
                variant="anno",
            )
        for facet in EDM_FACETS:
            if facet not in primitive.facets or facet not in facets:
                continue
            value = self._facet_value(facet, facets[facet], type_op)
            if value is not None:
                attributes[f"${facet}"] = value
        self._finish_decimal(type_name, attributes)
        return attributes, rest

    def _type_call(self, node: Func, op: str) -> tuple[Any, dict[str, list[list[Node]]], bool] | None:
        """Type(name, Facet(v), ...) or Type(Collection(name), ...)."""
        names: list[Any] = []
        facets: dict[str, list[list[Node]]] = {}
        collection = False
        for arg in _present(node.args):
            if _is_call(arg, "Collection", "$Collection"):
                inner = _present(arg.args)
                if collection or names or len(inner) != 1:
                    self._error("odata-anno-xpr-type", {"op": op})
                    return None
                collection = True
                names.append(inner[0].value if isinstance(inner[0], Literal) else None)
            elif isinstance(arg, Literal):
                names.append(arg.value)
            elif isinstance(arg, Func):
                facets.setdefault(arg.name.removeprefix("$"), []).append(_present(arg.args))
        if len(names) != 1:
            self._error("odata-anno-xpr-type", {"op": op})
            return None
        return names[0], facets, collection

    def _facet_value(self, facet: str, occurrences: list[list[Node]], type_op: str) -> Any:
        if len(occurrences) > 1:
            self._error("odata-anno-xpr-args", {"op": type_op, "prop": f"{facet}(…)"}, "wrongcount")
            return None
        values = occurrences[0]
        if len(values) != 1:
            self._error("odata-anno-xpr-args", {"op": f"{facet}(…)", "count": 1}, "exactly")
            return None
        value = values[0].value if isinstance(values[0], Literal) else None
        if _as_int(value) is None:
            if facet == "Scale" and self.options.is_v4 and value != "variable":
                self._error(
                    "odata-anno-xpr-args",
                    {"op": f"{facet}(…)", "meta": "number", "rawvalues": ["variable"]},
                    "wrongval_meta_list",
                )
                return None
            if facet != "Scale":
                self._error("odata-anno-xpr-args", {"op": f"{facet}(…)", "meta": "number"}, "wrongval_meta")
                return None
        return value


def xpr_to_edm_json(
    value: Any,
    *,
    anno: str,
    location: Location,
    options: CompilerOptions,
    graph: SchemaGraph,
    sink: MessageSink,
) -> tuple[Any, bool]:
    """Replace every annotation expression inside a value by {"$edmJson": ...}.

    Returns the rewritten value and whether all expressions translated
    without error.
    """
    translator = DynamicExpressionTranslator(anno=anno, location=location, options=options, graph=graph, sink=sink)

    def rewrite(current: Any) -> Any:
        if is_annotation_expression(current):
            return {"$edmJson": translator.translate(parse_annotation_expression(current))}
        if isinstance(current, Mapping):
            return {k: rewrite(v) for k, v in current.items()}
        if isinstance(current, list):
            return [rewrite(v) for v in current]
        return current

    result = rewrite(value)
    return result, not translator.failed
