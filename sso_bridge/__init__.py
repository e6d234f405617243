"""
SSO Bridge

Provisions and tears down organization OIDC identity providers in Keycloak,
keeping a local record of each organization's SSO integration.
"""

__version__ = "1.0.0"
