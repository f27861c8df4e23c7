"""
Timetable package: fetching and reading the school schedule pages.

This package contains:
- HTML normalisation and content hashing
- Change extraction from the weekly timetable grid
- Schedule page and class mapping fetcher
"""

__version__ = "1.0.0"
