"""Shared SQLAlchemy models registry for the workspace database.

Currently holds the SMS correlation working table used by ``sms_ledger``.
"""

from .sms import Base, SmsContext

__all__ = [
    "Base",
    "SmsContext",
]
