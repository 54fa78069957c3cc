"""
CLI tools for ecomdb.

This module provides command-line tools for:
- report: Load a seed file (or a persisted store) and print a report

Invariants:
    - Tools never write to a persisted store unless a seed is applied
    - Output is deterministic JSON for scripting
"""

from .report_cli import ReportCLI

__all__ = ["ReportCLI"]
