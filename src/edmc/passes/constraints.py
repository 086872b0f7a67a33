# src/edmc/passes/constraints.py
"""Referential constraints and cardinalities of associations.

Two phases, run as separate passes over all requested definitions:

1. init_constraints cracks the ON condition of every association into
   [dependent, principal] pairs and $self backlink candidates and
   establishes backlink partnership.
2. finalize_constraints runs after foreign keys were materialized and
   ignored properties were muted. It filters the pairs down to rendered
   candidates, mirrors the target cardinality onto the partner, and seals
   the constraint set.
"""

from __future__ import annotations

from typing import Any

from edmc.contracts.errors import CompilerAssertion
from edmc.model.builtins import is_association_type, is_builtin_type
from edmc.model.schema import Cardinality, Definition, Element, walk_elements
from edmc.model.state import ConstraintPair, ConstraintSet
from edmc.passes.context import CompilerContext
from edmc.passes.structure import is_structured_artifact

_ALLOWED_TOKENS = frozenset({"=", "and", "(", ")"})

type Multiplicity = str


# Phase 1 ------------------------------------------------------------------


def init_constraints(ctx: CompilerContext, definition: Definition) -> None:
    if not is_structured_artifact(definition):
        return
    for element, _ in walk_elements(definition):
        if element.target is not None and ctx.state.assoc(element).constraints is None:
            resolve_on_condition(ctx, element)


def resolve_on_condition(ctx: CompilerContext, element: Element) -> ConstraintSet:
    """Collect constraint candidates and backlink partnership of one association."""
    assoc_state = ctx.state.assoc(element)
    constraints = ConstraintSet()
    assoc_state.constraints = constraints
    if element.on is None:
        return constraints

    _collect_terms(element.on, element.name, constraints)
    is_backlink = constraints.is_backlink_shape
    owner = ctx.graph.get(element.owner)
    owner_in_schema = owner is not None and ctx.state.of(owner).schema_name is not None

    for partner_path in constraints.selfs:
        # Redirected parameter targets resolve the path in the original entity
        lookup = assoc_state.original_target or element.target
        origin = resolve_origin_assoc(ctx, lookup, partner_path)
        if origin is None:
            ctx.sink.warning(
                "odata-unresolved-backlink",
                ("definitions", element.owner),
                {"name": f"{element.target}/{'.'.join(partner_path)}", "target": f"{element.owner}/{element.name}"},
            )
            continue
        if not origin.is_association:
            raise CompilerAssertion(
                f"Backlink association element is not an association or composition: {origin.name!r}"
            )
        origin_state = ctx.state.assoc(origin)
        if owner_in_schema and element.owner not in (origin_state.original_target, origin.target):
            is_backlink = False
            origin_state.no_partner = True
            ctx.sink.info(
                "odata-unexpected-comparison",
                ("definitions", element.owner, "elements", element.name),
                {"name": f"{origin.owner}:{'.'.join(partner_path)}", "target": origin.target},
            )
        if is_backlink:
            # Only the first backlink becomes the partner of the forward association
            if not origin_state.self_references:
                constraints.partner = origin.location
            else:
                is_backlink = False
        if owner_in_schema and constraints.is_backlink_shape:
            origin_state.self_references.append(element.location)
        constraints.origins.append(origin.location)
    return constraints


def resolve_origin_assoc(ctx: CompilerContext, env_name: str | None, path: tuple[str, ...]) -> Element | None:
    """Resolve a $self partner path starting at a definition."""
    env: Element | Definition | None = ctx.graph.get(env_name)
    for segment in path:
        if env is None:
            return None
        members = env.items.elements if env.items is not None and env.items.elements else env.elements
        if members:
            env = members.get(segment)
        if env is None:
            return None
        type_name = env.items.type if env.items is not None else env.type
        has_members = bool(env.elements or (env.items is not None and env.items.elements))
        if type_name and not is_builtin_type(type_name) and not has_members:
            env = ctx.graph.get(type_name)
    return env if isinstance(env, Element) else None


def _is_not_constraint_term(token: Any) -> bool:
    if isinstance(token, dict) and "xpr" in token:
        return any(_is_not_constraint_term(t) for t in token["xpr"])
    if isinstance(token, list):
        return any(_is_not_constraint_term(t) for t in token)
    return not (isinstance(token, dict) or token in _ALLOWED_TOKENS)


def _collect_terms(expr: Any, assoc_name: str, constraints: ConstraintSet) -> None:
    if not isinstance(expr, list) or any(_is_not_constraint_term(t) for t in expr):
        return
    for pos, token in enumerate(expr):
        if isinstance(token, dict) and "xpr" in token:
            _collect_terms(token["xpr"], assoc_name, constraints)
        elif isinstance(token, list):
            _collect_terms(token, assoc_name, constraints)
        elif token == "=" and 0 < pos < len(expr) - 1:
            constraints.term_count += 1
            _collect_comparison(expr[pos - 1], expr[pos + 1], assoc_name, constraints)


def _collect_comparison(lhs: Any, rhs: Any, assoc_name: str, constraints: ConstraintSet) -> None:
    if not (isinstance(lhs, dict) and "ref" in lhs and isinstance(rhs, dict) and "ref" in rhs):
        return
    left = _strip_self(tuple(str(s) for s in lhs["ref"]))
    right = _strip_self(tuple(str(s) for s in rhs["ref"]))
    if not left or not right or (left[0] == assoc_name) == (right[0] == assoc_name):
        return
    # Pairs are ordered [property, referenced property]
    if left[0] == assoc_name:
        pair = ConstraintPair(dependent=right, principal=left[1:])
    else:
        pair = ConstraintPair(dependent=left, principal=right[1:])
    if pair.dependent == ("$self",):
        constraints.selfs.append(pair.principal)
    else:
        constraints.add(pair)


def _strip_self(ref: tuple[str, ...]) -> tuple[str, ...]:
    if ref and ref[0] == "$self" and len(ref) > 1:
        return ref[1:]
    return ref


# Phase 2 ------------------------------------------------------------------


def is_constraint_candidate(ctx: CompilerContext, element: Element | None) -> bool:
    """Typed, rendered, not an association; builtin typed in flat format."""
    if element is None or not element.type:
        return False
    if ctx.options.is_flat and not is_builtin_type(element.type):
        return False
    if is_association_type(element.type):
        return False
    return ctx.state.is_rendered(element)


def finalize_constraints(ctx: CompilerContext, definition: Definition) -> None:
    if not is_structured_artifact(definition):
        return
    for element, _ in walk_elements(definition):
        constraints = ctx.state.assoc(element).constraints if element.target is not None else None
        if constraints is not None and not constraints.finalized:
            finalize_association(ctx, element)


def finalize_association(ctx: CompilerContext, element: Element) -> ConstraintSet:
    """Resolve (if needed) and seal the constraints of one association."""
    constraints = ctx.state.assoc(element).constraints
    if constraints is None:
        constraints = resolve_on_condition(ctx, element)
    if not constraints.finalized:
        finalize_referential_constraints(ctx, element)
        _mirror_partner_cardinality(ctx, element)
        constraints.finalize()
    return constraints


def finalize_referential_constraints(ctx: CompilerContext, element: Element) -> ConstraintSet:
    """Reduce the prepared pairs to those whose both ends are rendered candidates."""
    constraints = ctx.state.assoc(element).constraints
    if constraints is None:
        raise CompilerAssertion(f"Constraints of {element.name!r} were never initialized")
    target = ctx.target_of(element)
    if target is None:
        return constraints
    target_is_param = ctx.state.of(target).is_param_entity

    if element.on is not None:
        if not target_is_param:
            _add_origin_key_constraints(ctx, element, constraints)
            _filter_unmanaged(ctx, element, target, constraints)
    elif element.keys is not None and not target_is_param:
        _collect_managed(ctx, element, target, constraints)

    if target_is_param:
        constraints.clear()
    return constraints


def _add_origin_key_constraints(ctx: CompilerContext, element: Element, constraints: ConstraintSet) -> None:
    """Foreign keys of a managed key origin are keys of the origin entity too."""
    siblings = ctx.siblings_of(element)
    for location in constraints.origins:
        origin = ctx.element_at(location)
        if origin is None or not origin.key or origin.keys is None:
            continue
        origin_siblings = ctx.siblings_of(origin)
        for fk in origin.keys:
            real_fk = origin_siblings.get(fk.generated_name)
            pk = siblings.get(fk.ref[0])
            if is_constraint_candidate(ctx, pk) and is_constraint_candidate(ctx, real_fk):
                constraints.add(ConstraintPair(dependent=(fk.ref[0],), principal=(fk.generated_name,)))


def _filter_unmanaged(ctx: CompilerContext, element: Element, target: Definition, constraints: ConstraintSet) -> None:
    dependent_entity = ctx.graph.get(element.owner)
    local_members: dict[str, Element] | None = ctx.siblings_of(element)
    principal = target
    if element.is_composition:
        # The composing side is the principal
        principal = dependent_entity if dependent_entity is not None else target
        dependent_entity = target
        local_members = None
        for key, pair in list(constraints.constraints.items()):
            constraints.replace(key, pair.swapped())

    principal_keys = ctx.state.of(principal).keys
    flat = ctx.options.is_flat
    environment = element.element_path[:-1]
    remaining: list[str] = []
    for key, pair in list(constraints.constraints.items()):
        dep_name = "_".join(pair.dependent) if flat else pair.dependent[0]
        principal_name = "_".join(pair.principal) if flat else pair.principal[0]
        fk = None
        if dependent_entity is not None and dependent_entity.is_entity:
            fk = dependent_entity.elements.get(dep_name)
        if fk is None and local_members:
            fk = local_members.get(dep_name)
        pk = principal_keys.get(principal_name)

        keep = False
        if is_constraint_candidate(ctx, fk) and is_constraint_candidate(ctx, pk):
            if flat:
                keep = True
            elif fk is not None and fk.location[:-1] == element.location[:-1]:
                keep = True
            elif pair.dependent[: len(environment)] == environment:
                # Absolute path touching the association's environment
                constraints.replace(key, ConstraintPair(pair.dependent[len(environment) :], pair.principal))
                keep = True
        if keep:
            remaining.append(principal_name)
        else:
            constraints.discard(key)

    if principal_keys:
        _check_v2_coverage(ctx, element, principal_keys.values(), remaining, constraints)


def _collect_managed(ctx: CompilerContext, element: Element, target: Definition, constraints: ConstraintSet) -> None:
    siblings = ctx.siblings_of(element)
    remaining: list[str] = []
    for fk in element.keys or []:
        real_fk = siblings.get(fk.generated_name)
        pk = target.elements.get(fk.ref[0])
        if pk is not None and pk.key and is_constraint_candidate(ctx, pk) and is_constraint_candidate(ctx, real_fk):
            remaining.append(fk.ref[0])
            constraints.add(ConstraintPair(dependent=(fk.generated_name,), principal=(fk.ref[0],)))
    _check_v2_coverage(ctx, element, ctx.state.of(target).keys.values(), remaining, constraints)


def _check_v2_coverage(
    ctx: CompilerContext, element: Element, keys: Any, remaining: list[str], constraints: ConstraintSet
) -> None:
    """V2 constraints must cover every rendered principal key."""
    if not ctx.options.is_v2:
        return
    rendered = [k.name for k in keys if is_constraint_candidate(ctx, k)]
    if all(name in remaining for name in rendered):
        return
    if ctx.options.odata_v2_partial_constraints:
        ctx.sink.info(
            "odata-incomplete-constraints",
            ("definitions", element.owner, "elements", element.name),
            {"version": "2.0"},
        )
    else:
        constraints.clear()


def _mirror_partner_cardinality(ctx: CompilerContext, element: Element) -> None:
    """The backlink's target cardinality becomes the source cardinality of its partner."""
    partner = ctx.partner_of(element)
    if partner is None:
        return
    own = ctx.state.assoc(element).cardinality
    own_min = own.min if own is not None else None
    own_max = own.max if own is not None else None
    partner_state = ctx.state.assoc(partner)
    card = partner_state.cardinality
    if card is None:
        partner_state.cardinality = Cardinality(src=own_max or 1, srcmin=own_min)
        return
    if card.src:
        source = "0..1" if card.src == 1 else "*"
        if own_min == 1 and own_max == 1:
            target: Multiplicity = "1"
        elif own_max == "*" or (isinstance(own_max, int) and own_max > 1):
            target = "*"
        else:
            target = "0..1"
        if source != target:
            ctx.sink.warning(
                "odata-unexpected-cardinality",
                element.location,
                {"value": source, "othervalue": target, "name": f"{partner.owner}/{partner.name}"},
            )
        return
    card.src = own_max or 1
    if own_min is not None and card.srcmin is None:
        card.srcmin = own_min


# Cardinality queries -------------------------------------------------------


def determine_multiplicity(ctx: CompilerContext, element: Element) -> tuple[Multiplicity, Multiplicity]:
    """(source, target) Edm multiplicity of an association.

    Undeclared source cardinality is '*' for associations and '1' for
    compositions; the target defaults to 0..1.
    """
    card = ctx.state.assoc(element).cardinality or Cardinality()
    is_assoc = not element.is_composition
    src = card.src or ("*" if is_assoc else 1)
    low = card.min or 0
    high = card.max or 1
    if src == 1 or src == "1":
        source = "1" if not is_assoc or card.srcmin == 1 else "0..1"
    else:
        source = "*"
    if high == "*" or (isinstance(high, int) and high > 1):
        target = "*"
    elif low == 1:
        target = "1"
    else:
        target = "0..1"
    return source, target


def effective_target_cardinality(ctx: CompilerContext, element: Element) -> tuple[int | str, int | str]:
    return ctx.state.effective_target_cardinality(element, ctx.partner_of(element))
