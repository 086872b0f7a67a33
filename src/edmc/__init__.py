"""
edmc: Entity Data Model compiler.

Turns a resolved schema graph (entities, structured types, associations,
actions and vocabulary annotations) into a linked, protocol-ready model
for an OData metadata document.
"""

__version__ = "0.1.0"
