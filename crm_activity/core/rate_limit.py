from slowapi import Limiter
from slowapi.util import get_remote_address

# Per-IP limiter shared by every router; limits are set per endpoint
limiter = Limiter(key_func=get_remote_address)
