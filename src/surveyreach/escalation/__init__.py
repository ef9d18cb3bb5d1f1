"""
Voice escalation of non-responders.

NOTE:
This package __init__ must stay lightweight. Importing the scheduler here
would pull in ORM models and providers at import time.
"""

__all__: list[str] = []
