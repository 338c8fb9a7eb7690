"""
Core modules for the power bill tracker.

This package contains duplicate detection, insert/update reconciliation,
bulk import and dashboard aggregation.
"""
