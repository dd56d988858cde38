"""API routers for Civic Core."""

from . import feed, issues, users

__all__ = ["feed", "issues", "users"]
