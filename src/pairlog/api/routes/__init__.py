"""
API routes for Pairlog.
"""

from pairlog.api.routes import analytics

__all__ = ["analytics"]
