from __future__ import annotations


class ServiceError(Exception):
    category = 'error'
    status_code = 500

    def __init__(self, message: str, *, extra: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_payload(self) -> dict:
        return {'error': self.category, 'detail': self.message, **self.extra}


class Unauthorized(ServiceError):
    category = 'unauthorized'
    status_code = 401


class Forbidden(ServiceError, PermissionError):
    category = 'forbidden'
    status_code = 403


class NotFound(ServiceError, LookupError):
    category = 'not_found'
    status_code = 404


class Conflict(ServiceError):
    category = 'conflict'
    status_code = 409


class SpotOccupied(Conflict):
    def __init__(self, spot_code: str) -> None:
        super().__init__(f'Spot {spot_code} is already occupied', extra={'spot': spot_code})


class InvalidTransition(Conflict):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f'Cannot move staging record from {current} to {requested}',
            extra={'current_status': current, 'requested_status': requested},
        )


class InvalidInput(ServiceError, ValueError):
    category = 'invalid_input'
    status_code = 400


class UpstreamSyncFailure(ServiceError):
    category = 'upstream_sync_failure'
    status_code = 502
