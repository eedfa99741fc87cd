"""Per-IP rate limiting shared by every router (slowapi)."""
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
