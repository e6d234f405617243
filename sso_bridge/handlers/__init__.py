"""
Authentication and request handlers for SSO Bridge.
"""

from .auth import verify_bearer_token

__all__ = ["verify_bearer_token"]
