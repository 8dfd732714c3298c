import secrets

from fastapi import Request

from app.config import settings
from app.services.errors import Unauthorized

SYNC_KEY_HEADER = 'X-Sync-Key'


def verify_sync_key(request: Request) -> None:
    supplied = request.headers.get(SYNC_KEY_HEADER) or ''
    if not supplied or not secrets.compare_digest(supplied, settings.sync_api_key):
        raise Unauthorized('Invalid sync key')
