"""Keyward — identity and access service.

Password-grant bearer tokens, WebAuthn passkey registration, and
role-based access control for the rest of the platform.
"""

__version__ = "0.1.0"
