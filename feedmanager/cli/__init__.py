"""CLI command modules for the feed manager.

Command modules are imported by ``feedmanager.main``; this package module
stays import-free so that ``feedmanager.errors`` can use the exit codes.
"""
