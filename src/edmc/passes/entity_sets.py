# src/edmc/passes/entity_sets.py
"""Entity set placement and the parameterized entity split.

An entity with parameters is split into

    <N>Parameters   entity set N, one mandatory key per parameter,
                    containment association 'Set' to the type entity
    <N>Type         the original definition (its definition name stays),
                    entity set <N>Set, back association 'Parameters'

Inbound associations are redirected to the Parameters entity; their
original target is kept for constraint resolution.
"""

from __future__ import annotations

from edmc.contracts.enums import DefinitionKind
from edmc.model.schema import Cardinality, Definition, Element, clone_element
from edmc.model.state import ContainmentEntry
from edmc.passes.containment import init_containments
from edmc.passes.context import CompilerContext

PARAMETERS_SUFFIX = "Parameters"
TYPE_SUFFIX = "Type"
SET_SUFFIX = "Set"
SET_ASSOC = "Set"
PARAMETERS_ASSOC = "Parameters"

_SINGLETON_ANNOTATIONS = ("@odata.singleton", "@odata.singleton.nullable")


def is_parameterized_entity(definition: Definition | None) -> bool:
    return definition is not None and definition.is_entity and bool(definition.params)


def determine_entity_set(ctx: CompilerContext, definition: Definition) -> None:
    """Decide once whether the entity gets an entity set."""
    if not definition.is_entity:
        return
    state = ctx.state.of(definition)
    if state.has_entity_set is not None:
        return
    contained = ctx.options.is_v4 and state.is_containee
    state.decide_entity_set(not (contained or state.is_proxy))


def split_parameterized_entity(ctx: CompilerContext, definition: Definition) -> None:
    if not is_parameterized_entity(definition):
        return
    name = definition.name
    state = ctx.state.of(definition)
    parameters = create_parameter_entity(ctx, definition, name, is_proxy=False)
    state.origin = parameters.name

    type_name = f"{name}{TYPE_SUFFIX}"
    if type_name in ctx.graph:
        ctx.sink.error("odata-duplicate-definition", definition.location, {"name": type_name})
    else:
        state.edm_name = type_name
    state.entity_set_name = f"{name}{SET_SUFFIX}"

    back = Element(
        name=PARAMETERS_ASSOC,
        location=(*definition.location, "elements", PARAMETERS_ASSOC),
        owner=name,
        element_path=(PARAMETERS_ASSOC,),
        type="cds.Association",
        target=parameters.name,
        on=[{"ref": [PARAMETERS_ASSOC, SET_ASSOC]}, "=", {"ref": ["$self"]}],
    )
    definition.elements[PARAMETERS_ASSOC] = back
    ctx.state.assoc(back)

    state.set_attributes.update(
        {"@sap.creatable": False, "@sap.updatable": False, "@sap.deletable": False, "@sap.addressable": False}
    )

    for location in state.sources.values():
        source = ctx.element_at(location)
        if source is None:
            continue
        ctx.state.assoc(source).original_target = source.target
        source.target = parameters.name


def create_parameter_entity(
    ctx: CompilerContext, entity: Definition, entity_name: str, *, is_proxy: bool
) -> Definition:
    """Build the <N>Parameters entity carrying the parameters of an entity.

    Proxies get no entity set, no 'Set' association and are registered by
    the proxy generator, not here.
    """
    param_name = f"{entity_name}{PARAMETERS_SUFFIX}"
    parameters = Definition(
        name=param_name,
        kind=DefinitionKind.ENTITY,
        annotations={"@sap.semantics": "parameters"},
    )
    param_state = ctx.state.of(parameters)
    entity_state = ctx.state.of(entity)
    if not is_proxy:
        param_state.entity_set_name = entity_name
    param_state.set_attributes.update(
        {"@sap.creatable": False, "@sap.updatable": False, "@sap.deletable": False, "@sap.pageable": False}
    )
    param_state.is_param_entity = True
    param_state.schema_name = entity_state.schema_name

    for pname, param in (entity.params or {}).items():
        element = clone_element(param, pname, (*parameters.location, "elements", pname), param_name, (pname,))
        element.key = True
        if ctx.options.is_v2:
            ctx.state.assign_annotation(element, "@sap.parameter", "mandatory")
        else:
            ctx.state.assign_annotation(element, "@Common.FieldControl", {"#": "Mandatory"})
        parameters.elements[pname] = element

    init_containments(ctx, parameters)
    if not is_proxy:
        contained = Element(
            name=SET_ASSOC,
            location=(*parameters.location, "elements", SET_ASSOC),
            owner=param_name,
            element_path=(SET_ASSOC,),
            type="cds.Association",
            target=entity.name,
            keys=None,
            cardinality=Cardinality(src=1, min=0, max="*"),
            annotations={"@odata.contained": True},
        )
        parameters.elements[SET_ASSOC] = contained
        ctx.state.assoc(contained)

    for anno in _SINGLETON_ANNOTATIONS:
        if entity.annotations.get(anno) is not None:
            parameters.annotations[anno] = entity.annotations[anno]
        if not is_proxy:
            entity.annotations.pop(anno, None)

    if entity_state.container_names:
        param_state.container_names = [
            param_name if c == entity.name else c for c in entity_state.container_names
        ]
    if not is_proxy:
        entity_state.container_names = [param_name]
        param_state.containees.append(
            ContainmentEntry(path=(SET_ASSOC,), assoc=parameters.elements[SET_ASSOC].location)
        )
        if param_name in ctx.graph:
            ctx.sink.error("odata-duplicate-definition", entity.location, {"name": param_name})
        else:
            ctx.add_definition(parameters)
    return parameters

