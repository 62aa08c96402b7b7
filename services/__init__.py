"""
Service layer for the order import system.

This package contains the framework-agnostic import pipeline (row
normalization, entity diff, dependency materialization, order preparation
and batch commit) used by the Celery task, the API and the CLI.
"""

__version__ = "1.0.0"
