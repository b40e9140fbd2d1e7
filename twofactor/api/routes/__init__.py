"""
API Routes.
"""
from .mfa import router as mfa_router

__all__ = [
    "mfa_router",
]
