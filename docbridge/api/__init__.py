"""
HTTP gateway for DocBridge (FastAPI).
"""

from .config import Settings
from .http_server import create_app, status_for

__all__ = ["Settings", "create_app", "status_for"]
