"""Operational dashboard for a cluster running on ECS."""

__version__ = "0.1.0"
