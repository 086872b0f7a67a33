# src/edmc/passes/proxies.py
"""Proxies and schema references for associations leaving their service.

A navigable association whose target lives outside the requesting service
is either muted (no navigation property), pointed at a schema reference
(the target's service is hosted elsewhere), or retargeted to a proxy: a
synthetic entity exposing only the target's primary key. Structured key
types are cloned next to the proxy with all anonymous key parts made
non-nullable; managed associations inside those keys produce further
proxies or references.

Proxies are cached per (target, requesting service root) and merged into
the graph only after every service member was processed.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from edmc.contracts.enums import DefinitionKind
from edmc.core.logging import get_logger
from edmc.model.builtins import is_builtin_type
from edmc.model.schema import Cardinality, Definition, Element, clone_element
from edmc.model.services import schema_prefix
from edmc.model.state import SchemaInfo
from edmc.passes.constraints import finalize_association
from edmc.passes.containment import finalize_proxy_containments
from edmc.passes.context import CompilerContext
from edmc.passes.entity_sets import (
    PARAMETERS_SUFFIX,
    create_parameter_entity,
    determine_entity_set,
    is_parameterized_entity,
)
from edmc.passes.structure import FOREIGN_KEY_ANNOTATION

logger = get_logger(__name__)

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")

type Proxy = Definition | SchemaInfo


def service_path(service: Definition) -> str:
    """Endpoint path of a service: @path, else the kebab-cased name without 'Service'."""
    path = service.anno("@path")
    if path:
        return str(path).removeprefix("/")
    last = service.name.split(".")[-1]
    last = last.removesuffix("Service")
    last = _CAMEL_BOUNDARY.sub(lambda m: f"{m.group(1)}-{m.group(2).lower()}", last)
    return last.replace("_", "-").lower()


def create_schema_ref(ctx: CompilerContext, name: str, target_schema: str) -> SchemaInfo:
    """A reference to the $metadata document of another service."""
    service = ctx.graph.get(target_schema)
    segments = [s for s in service_path(service).split("/") if s] if service is not None else []
    uri_parts = [".."] * len(segments) + segments
    if not uri_parts or uri_parts[-1] != "$metadata":
        uri_parts.append("$metadata")
    return SchemaInfo(name=name, is_reference=True, uri="/".join(uri_parts), namespace=target_schema)


def convert_foreign_service_schemas(ctx: CompilerContext) -> None:
    """Replace definitions exposed under '<root>.<other root>.' by a schema reference.

    Such definitions belong to another service that is rendered on its
    own; the requesting service only references it.
    """
    if not (ctx.options.odata_x_service_refs and ctx.options.is_v4):
        return
    roots = ctx.services.roots
    for root in roots:
        for other in roots:
            if other == root:
                continue
            fq_schema = f"{root}.{other}"
            doomed = [n for n in ctx.graph.definitions if n.startswith(f"{fq_schema}.")]
            if not doomed and fq_schema not in ctx.services.schema_names:
                continue
            for name in doomed:
                ctx.graph.remove_definition(name)
                ctx.requested.pop(name, None)
            ctx.services.add_schema(fq_schema)
            ctx.state.schemas[fq_schema] = create_schema_ref(ctx, fq_schema, other)
            logger.debug("Converted foreign service schema", schema=fq_schema, removed=len(doomed))


@dataclass(frozen=True, slots=True)
class _Registration:
    proxy: Proxy
    origin: Element


@dataclass(slots=True)
class _ProxyInfo:
    short_name: str
    schema: str
    service_root: str
    exposed_types: dict[str, Definition] = field(default_factory=dict)


class ProxyGenerator:
    """Creates proxies and schema references, then merges them into the graph."""

    def __init__(self, ctx: CompilerContext) -> None:
        self.ctx = ctx
        self._cache: dict[tuple[str, str], Proxy] = {}
        self._type_clones: dict[tuple[str, str], Definition] = {}
        self._registrations: list[_Registration] = []
        self._proxy_info: dict[str, _ProxyInfo] = {}
        self._exposed_assocs: set[tuple[str, ...]] = set()

    # Exposure --------------------------------------------------------------

    def expose(self, definition: Definition) -> None:
        """Handle every navigable top-level association of a service member."""
        if definition.kind in (DefinitionKind.CONTEXT, DefinitionKind.SERVICE):
            return
        state = self.ctx.state.of(definition)
        if state.is_proxy:
            return
        root = self.ctx.services.service_root_of(state.schema_name)
        if root is None:
            return
        members = definition.items.elements if definition.items is not None and definition.items.elements else definition.elements
        for element in list((members or {}).values()):
            if element.target is None or not self.ctx.state.is_navigable(element):
                continue
            target = self.ctx.target_of(element)
            if target is None or not self._is_proxy_required(target, root):
                continue
            self._expose_association(element, target, root)

    def _expose_association(self, element: Element, target: Definition, root: str) -> None:
        options = self.ctx.options
        if not (options.is_v4 and (options.odata_proxies or options.odata_x_service_refs)):
            self._mute(element, target, root)
            return
        constraints = self.ctx.state.assoc(element).constraints
        resolvable = element.keys is not None or (
            element.on is not None and constraints is not None and constraints.is_backlink_shape
        )
        proxy = self._cache.get((target.name, root))
        if proxy is None:
            target_schema = self.ctx.state.of(target).schema_name
            if target_schema and options.odata_x_service_refs:
                proxy = self._schema_ref_for(target_schema, root)
            elif options.odata_proxies and resolvable:
                proxy = self._create_proxy(element, target, target_schema, root)
            proxy = self._register(proxy, element, target, root)
        elif not resolvable:
            # Reuse is conservative: only the tier that created the proxy navigates to it
            self._mute(element, target, root, variant="onCond")
            return
        if proxy is None:
            self._mute(element, target, root, variant="std" if resolvable else "onCond")
            return

        assoc_state = self.ctx.state.assoc(element)
        assoc_state.no_partner = True
        if assoc_state.constraints is not None:
            assoc_state.constraints = assoc_state.constraints.emptied()
        if isinstance(proxy, Definition):
            if not self.ctx.state.of(proxy).is_param_entity:
                self._populate(element, proxy, self._foreign_key_definitions(element, target))
            if assoc_state.original_target is None:
                assoc_state.original_target = element.target
            element.target = proxy.name
        else:
            assoc_state.external_ref = True

    def _mute(self, element: Element, target: Definition, root: str, *, variant: str = "std") -> None:
        self.ctx.state.assign_annotation(element, "@odata.navigable", False)
        if target.anno("@cds.autoexpose") is not False:
            self.ctx.sink.warning(
                "odata-navigation", element.location, {"target": target.name, "service": root}, variant=variant
            )

    def _is_proxy_required(self, target: Definition, root: str) -> bool:
        target_state = self.ctx.state.of(target)
        if target_state.is_proxy:
            return False
        target_schema = target_state.schema_name
        if target_schema == root:
            return False
        return not (target_schema and root == self.ctx.services.service_root_of(target_schema))

    def _schema_ref_for(self, target_schema: str, root: str) -> SchemaInfo:
        name = f"{root}.{target_schema}"
        existing = self.ctx.state.schemas.get(name)
        if existing is not None and existing.is_reference:
            return existing
        return create_schema_ref(self.ctx, name, target_schema)

    def _create_proxy(self, assoc: Element, target: Definition, target_schema: str | None, root: str) -> Definition:
        proxy_schema = target_schema or schema_prefix(target.name)
        def_name = target.name.replace(f"{proxy_schema}.", "", 1).replace(".", "_")
        base_name = f"{root}.{proxy_schema}.{def_name}"
        is_param_proxy = is_parameterized_entity(target)
        if is_param_proxy:
            proxy = create_parameter_entity(self.ctx, target, base_name, is_proxy=True)
        else:
            proxy = Definition(name=base_name, kind=DefinitionKind.ENTITY)

        proxy_state = self.ctx.state.of(proxy)
        proxy_state.is_proxy = True
        proxy_state.schema_name = f"{root}.{proxy_schema}"
        proxy_state.keys = {}
        self._proxy_info[proxy.name] = _ProxyInfo(
            short_name=def_name + (PARAMETERS_SUFFIX if is_param_proxy else ""),
            schema=proxy_schema,
            service_root=root,
        )
        for name, value in self.ctx.state.annotations_of(target).items():
            if name != "@open":
                proxy.annotations[name] = value

        if is_param_proxy:
            params = list(proxy.elements.values())
            proxy.elements = {}
            self._populate(assoc, proxy, params)
        else:
            self._populate(assoc, proxy, self.ctx.state.of(target).keys.values())
        return proxy

    @staticmethod
    def _foreign_key_definitions(element: Element, target: Definition) -> list[Element | None]:
        return [target.elements.get(fk.ref[0]) for fk in element.keys or []]

    def _register(self, proxy: Proxy | None, element: Element, target: Definition, root: str) -> Proxy | None:
        if proxy is None:
            return None
        key = (target.name, root)
        if key in self._cache:
            self.ctx.sink.info("odata-proxy-registered", element.location, {"name": proxy.name})
            return proxy
        if isinstance(proxy, Definition):
            determine_entity_set(self.ctx, proxy)
        self._registrations.append(_Registration(proxy=proxy, origin=element))
        self._cache[key] = proxy
        return proxy

    # Proxy population ------------------------------------------------------

    def _populate(self, assoc: Element, proxy: Definition, elements: Iterable[Element | None]) -> None:
        """Copy rendered key elements into the proxy and expose their structured types."""
        info = self._proxy_info[proxy.name]
        exposed = info.exposed_types
        root = info.service_root
        proxy_state = self.ctx.state.of(proxy)

        for element in elements:
            if element is None or not self.ctx.state.is_rendered(element) or element.name in proxy.elements:
                continue
            location = (*proxy.location, "elements", element.name)
            if element.is_association:
                if element.is_managed:
                    new = self._proxy_or_ref_for_managed_assoc(element, location, proxy.name, root)
                else:
                    self.ctx.sink.info(
                        "odata-proxy-unmanaged-key",
                        assoc.location,
                        {"name": proxy.name, "target": assoc.target},
                    )
                    continue
            else:
                new = self._copy_element(element, location, proxy.name)
            proxy.elements[new.name] = new
            if self.ctx.graph.is_structured(new):
                self._expose_struct_type(
                    new,
                    f"{info.short_name}_{new.name}",
                    info.schema,
                    root,
                    exposed,
                    is_key=new.key,
                    force_not_null=new.key and bool(new.elements),
                )
            if new.key:
                proxy_state.keys[new.name] = new

        ordered = dict(sorted(exposed.items()))
        exposed.clear()
        exposed.update(ordered)
        proxy_state.exposed_types = list(exposed)

    def _copy_element(self, element: Element, location: tuple[str, ...], owner: str) -> Element:
        copy = clone_element(element, element.name, location, owner, (element.name,))
        copy.annotations = self.ctx.state.annotations_of(element)
        return copy

    def _expose_struct_type(
        self,
        node: Element,
        artificial_name: str,
        type_schema: str,
        root: str,
        exposed: dict[str, Definition],
        *,
        is_key: bool,
        force_not_null: bool,
    ) -> None:
        """Give a structured key node a type clone in the proxy's service."""
        if node.type and is_builtin_type(node.type):
            return
        named = self.ctx.graph.get(node.type) if not node.elements and node.type else None
        if not node.elements and named is None:
            return

        clone = self._type_clones.get((named.name, root)) if named is not None else None
        if clone is None:
            type_id = artificial_name
            if named is not None:
                type_schema = self.ctx.state.of(named).schema_name or schema_prefix(named.name)
                type_id = named.name.replace(f"{type_schema}.", "", 1).replace(".", "_")
                type_root = self.ctx.services.service_root_of(type_schema)
                if type_root is not None and type_schema != type_root:
                    type_schema = type_schema.removeprefix(f"{type_root}.")
            members = node.elements if named is None else self.ctx.graph.structured_elements(named)
            if not members:
                return
            # Only anonymous key structures are forced to non-null
            force = force_not_null and is_key and named is None
            clone = self._clone_struct_type(
                f"{root}.{type_schema}.{type_id}", named, members, type_schema, root, force=force
            )
            for elem_name, elem in clone.elements.items():
                fk_of = elem.anno(FOREIGN_KEY_ANNOTATION)
                if fk_of:
                    assoc = clone.elements.get(str(fk_of).rpartition(".")[2])
                    if assoc is not None and assoc.location in self._exposed_assocs:
                        continue
                self._expose_struct_type(
                    elem,
                    f"{type_id}_{elem_name}",
                    type_schema,
                    root,
                    exposed,
                    is_key=is_key,
                    force_not_null=force,
                )
            if named is not None:
                self._type_clones[(named.name, root)] = clone

        exposed[clone.name] = clone
        node.type = clone.name
        if clone.elements:
            node.elements = clone.elements

    def _clone_struct_type(
        self,
        name: str,
        named: Definition | None,
        members: dict[str, Element],
        type_schema: str,
        root: str,
        *,
        force: bool,
    ) -> Definition:
        clone = Definition(name=name, kind=DefinitionKind.TYPE)
        clone_state = self.ctx.state.of(clone)
        clone_state.schema_name = f"{root}.{type_schema}"
        clone_state.is_exposed_type = True
        if named is not None and "@open" in named.annotations:
            clone.annotations["@open"] = named.annotations["@open"]
        for elem_name, elem in members.items():
            location = (*clone.location, "elements", elem_name)
            if elem.target is None:
                new = self._copy_element(elem, location, name)
            elif elem.is_managed:
                new = self._proxy_or_ref_for_managed_assoc(elem, location, name, root)
            else:
                continue
            if force:
                if new.target is not None:
                    card = self.ctx.state.assoc(new).cardinality
                    if card is None:
                        card = Cardinality()
                        self.ctx.state.assoc(new).cardinality = card
                    card.min = 1
                new.not_null = True
            clone.elements[elem_name] = new
        return clone

    def _proxy_or_ref_for_managed_assoc(
        self, element: Element, location: tuple[str, ...], owner: str, root: str
    ) -> Element:
        """Clone a managed key association and point it at a proxy or reference of its target."""
        options = self.ctx.options
        target = self.ctx.target_of(element)
        new = self._copy_element(element, location, owner)
        proxy: Proxy | None = target
        if target is not None and self._is_proxy_required(target, root):
            proxy = self._cache.get((target.name, root))
            if proxy is None:
                target_state = self.ctx.state.of(target)
                if target_state.schema_name and options.odata_x_service_refs:
                    proxy = self._schema_ref_for(target_state.schema_name, root)
                elif options.odata_proxies:
                    proxy = self._create_proxy(element, target, target_state.schema_name, root)
                    if not target_state.is_param_entity:
                        self._populate(element, proxy, self._foreign_key_definitions(element, target))
                proxy = self._register(proxy, element, target, root)
        if proxy is None:
            self.ctx.state.assign_annotation(new, "@odata.navigable", False)

        self._exposed_assocs.add(new.location)
        constraints = finalize_association(self.ctx, element)
        new_state = self.ctx.state.assoc(new)
        new_state.no_partner = True
        new_state.constraints = constraints
        new_state.original_target = element.target
        if isinstance(proxy, Definition) and proxy.is_entity:
            new.target = proxy.name
        return new

    # Merge -----------------------------------------------------------------

    def merge(self) -> None:
        """Add registered proxies, their exposed types and references to the graph."""
        for registration in self._registrations:
            proxy = registration.proxy
            if isinstance(proxy, Definition):
                self._merge_proxy(proxy, registration)
            else:
                self._merge_reference(proxy, registration)

    def _merge_proxy(self, proxy: Definition, registration: _Registration) -> None:
        origin = registration.origin
        finalize_proxy_containments(self.ctx, proxy)
        schema_names = [self.ctx.state.of(proxy).schema_name or schema_prefix(proxy.name)]
        exposed_types = self._proxy_info[proxy.name].exposed_types
        schema_names.extend(schema_prefix(t) for t in exposed_types)
        for schema in dict.fromkeys(schema_names):
            self.ctx.services.add_schema(schema)
            self.ctx.state.schemas.setdefault(schema, SchemaInfo(name=schema))

        existing = self.ctx.graph.get(proxy.name)
        if existing is None:
            self.ctx.add_definition(proxy)
            for type_name, type_def in exposed_types.items():
                if type_name not in self.ctx.graph:
                    self.ctx.add_definition(type_def)
            self.ctx.sink.info("odata-proxy-created", origin.location, {"name": proxy.name})
        elif not self.ctx.state.of(existing).is_proxy and not existing.is_entity:
            self.ctx.sink.warning(
                "odata-duplicate-proxy", origin.location, {"name": proxy.name, "kind": str(existing.kind)}
            )

    def _merge_reference(self, reference: SchemaInfo, registration: _Registration) -> None:
        if reference.name in self.ctx.state.schemas:
            return
        self.ctx.state.schemas[reference.name] = reference
        self.ctx.services.add_schema(reference.name)
        self.ctx.sink.info("odata-schema-reference", registration.origin.location, {"name": reference.name})
