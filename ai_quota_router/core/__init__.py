"""
Core modules for AI Quota Router.

This package contains the quota catalog, capacity snapshots, backend
selection, capacity aggregation and usage history.
"""
