# drop_relay/core/rate_limit.py

from slowapi import Limiter
from slowapi.util import get_remote_address

from drop_relay.core.config import Settings


def build_limiter(settings: Settings) -> Limiter:
    """Per-client limiter for one app.

    SlowAPIMiddleware applies ``RATE_LIMIT`` to every route the limiter has
    not been told to exempt.
    """
    return Limiter(
        key_func=get_remote_address,
        default_limits=[settings.RATE_LIMIT],
        enabled=settings.RATE_LIMIT_ENABLED,
    )
