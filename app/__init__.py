# app/__init__.py
"""
Freelance invoicing API.

Run the server with:
    uvicorn app:app --reload

Set SCHEDULER_ENABLED=1 to run reminders, generation, overdue and late-fee
jobs in the same process.
"""

from .main import app

__all__ = ["app"]
