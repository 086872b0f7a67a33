"""Core infrastructure: configuration and logging.

Import from the submodules directly (edmc.core.config, edmc.core.logging);
contracts depend on logging, so this package stays free of re-exports.
"""
