"""
FastAPI application for the order import system.

This package contains the REST API and WebSocket server for previewing
order exports, starting imports and following their progress.
"""

__version__ = "1.0.0"
