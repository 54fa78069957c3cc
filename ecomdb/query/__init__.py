"""
Query module for ecomdb.

This module provides read-only reporting:
- reports: pure functions over a StoreSnapshot returning frozen rows
- ReportService: runs reports by name against a fresh snapshot per call

Invariants:
    - Reports never mutate the store
    - Each report reads exactly one snapshot
"""

from .reports import REPORTS
from .service import ReportService

__all__ = ["REPORTS", "ReportService"]
