"""Dependency-aware, bounded-parallel orchestration of agent tasks."""

__version__ = "0.1.0"
