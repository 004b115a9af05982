"""Delivery-date and slip estimation for project scopes.

This package provides:
- A workday calendar with cached public-holiday lookups
- Remaining-work and capacity calculations per role
- Single-project delivery estimates (basic, assignment and workflow aware)
- Priority sequencing of a scope's projects into one team timeline
- Scope-level slip/reserve summaries

Everything here is a pure function of a ScopeSnapshot and a pinned "today".
"""
