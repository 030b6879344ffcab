"""Warehouse packing verification tool: CSV order import, worker lookups, xlsx export."""

__version__ = "0.1.0"
