"""
API Module - Read-only HTTP access to bot audits.
"""

from .app import create_app, make_error_response

__all__ = ["create_app", "make_error_response"]
