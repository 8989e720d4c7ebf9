import random
from typing import Optional

DEFAULT_WAIT_MS = 1000
MAX_BASE_WAIT_MS = 60_000


def compute_delay_ms(
    retry_count: int,
    server_hint_ms: Optional[int] = None,
    *,
    default_wait_ms: int = DEFAULT_WAIT_MS,
    max_base_wait_ms: int = MAX_BASE_WAIT_MS,
    rng: Optional[random.Random] = None,
) -> int:
    """Calculates the delay before the next dispatch.

    A server hint (X-Retry-After on a 202) is honored exactly. Without one the
    delay grows exponentially with the retry count, capped at
    ``max_base_wait_ms``, and is spread by a jitter factor in [0.5, 1.5].
    """
    if server_hint_ms is not None:
        return server_hint_ms

    base = min(max_base_wait_ms, default_wait_ms * (2**retry_count))
    jitter = (rng or random).uniform(0.5, 1.5)
    return round(base * jitter)
