"""
API Module

HTTP surface of the router.
"""

from .server import create_app

__all__ = ["create_app"]
