"""HTTP service mapping OpenID Connect token roles to per-context claims."""

__version__ = "0.1.0"
__all__ = ["__version__"]