"""Per-client HTTP throttling using slowapi.

This sits in front of the API only; per-backend admission control lives in
memegen.gateway.scheduler.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Keyed by client address
limiter = Limiter(key_func=get_remote_address)
