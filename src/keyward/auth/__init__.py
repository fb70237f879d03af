"""Authentication and authorization.

Learn: One authentication path — email/password → OAuth2 password grant
→ opaque-to-clients bearer token. Every protected route resolves that
token to a Principal; admin routes additionally require the admin role.
"""
