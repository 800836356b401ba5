"""Saga-style transactions across an orchestrator and order and product services."""

__version__ = "0.1.0"