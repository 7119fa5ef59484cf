# api/auth.py
from fastapi import HTTPException, Security
import os
from fastapi.security.api_key import APIKeyHeader
from dotenv import load_dotenv

load_dotenv()
API_KEY = os.getenv("API_KEY")
APIKEY_NAME = "X-API-Key"
api_key_header = APIKeyHeader(name=APIKEY_NAME, auto_error=False)


async def require_api_key(api_key: str = Security(api_key_header)):
    """
    Guard for endpoints that trigger upstream work.

    Raises:
        HTTPException: 401 if the X-API-Key header is missing
        HTTPException: 403 if it does not match API_KEY, or if no API_KEY
            is configured at all (updates are then only run by the scheduler)
    """
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing API Key")
    if not API_KEY or api_key != API_KEY:
        raise HTTPException(status_code=403, detail="Forbidden")
    return api_key
