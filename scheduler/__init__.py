"""
Scheduler package for the schedule change monitor.

This package contains:
- Interval scheduler for batch checks
- Comparison engine and message builder
- Week-keyed cache store
- Per-class change detection pipeline
"""

__version__ = "1.0.0"
