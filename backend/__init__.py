"""
Backend package: Flask HTTP API for the companion device.
Calls only the core facade (core.device).
"""

from .app import create_app

__all__ = ['create_app']
