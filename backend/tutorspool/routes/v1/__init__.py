# backend/tutorspool/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import bookings, payments, tutors

__all__ = [
    "bookings",
    "payments",
    "tutors",
]
