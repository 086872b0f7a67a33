# tests/property/__init__.py
"""Property-based tests for edmc.

Property-based testing validates invariants that must hold for ALL inputs,
not just the specific examples we think of.

Test modules:
- test_identifier_properties: SimpleIdentifier and type mapping tables
- test_key_path_properties: key path order and delimiters
- test_compile_properties: proxies, constraints and entity sets of generated models
- test_expression_properties: operator precedence and arity checks
"""
