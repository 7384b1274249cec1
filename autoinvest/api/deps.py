"""
Request-scoped dependencies shared by the v1 routers.
"""

from datetime import datetime, timezone


def get_now() -> datetime:
    """
    Current UTC time for the request.

    Services never read the clock themselves; routes inject it here so tests
    can pin it with ``app.dependency_overrides[get_now]``.
    """
    return datetime.now(timezone.utc)
