"""Preprocessing passes over the schema graph.

Each pass is a function of (CompilerContext, Definition) or of the
context alone; edmc.engine.orchestrator runs them in dependency order.
"""
