"""Civic Core - municipal issue reporting and tracking.

Modules:
- models: SQLAlchemy tables for users, issues, progress notes and history
- state_machine: status transition rules and role authorization
- lifecycle: submission, transition, assignment and progress note commands
- store: SQLAlchemy-backed issue store publishing to the change feed
- feed: in-process change feed with per-subscription row filters
- reconcile: idempotent application of feed events to local caches
- dashboard: live role-scoped projections for one client session
- api: FastAPI application exposing all of the above
"""

__version__ = "1.0.0"
