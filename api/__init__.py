"""
FastAPI REST API for the schedule change monitor.

This module provides endpoints for:
- Device registration and removal
- Service health and status
- Admin-only checks, diagnostics, cache and device maintenance
"""
