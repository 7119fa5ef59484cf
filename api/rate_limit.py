# api/rate_limit.py
import os
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from fastapi import FastAPI

READ_LIMIT = os.getenv("READ_RATE_LIMIT", "100/hour")
# each update fans out to ~100 store requests
UPDATE_LIMIT = os.getenv("UPDATE_RATE_LIMIT", "5/hour")

limiter = Limiter(key_func=get_remote_address)


def register_rate_limit(app: FastAPI):
    """Attach the limiter to app state and answer exceeded limits with 429."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
