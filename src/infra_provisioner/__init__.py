"""Declarative infrastructure provisioning core with staged secret rotation."""

__version__ = "0.1.0"
