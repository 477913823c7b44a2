"""Multi-provider OAuth2 / OpenID Connect client engine."""

__version__ = "0.1.0"
