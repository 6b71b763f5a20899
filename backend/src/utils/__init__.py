"""
Utility modules for the scheduling engine.

This package contains shared helpers used across services: datetime
handling, interval arithmetic, recurrence expansion and storage error
translation.
"""
