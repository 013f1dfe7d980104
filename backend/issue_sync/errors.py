# issue_sync/errors.py — Failure taxonomy for webhook processing
#
# Benign outcomes (no integration, no linked task, already processed) are not
# errors; handlers report them through SyncOutcome instead.


class SyncError(Exception):
    """Base class for failures raised while synchronising with an issue tracker"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationFailure(SyncError):
    """Missing or mismatched webhook signature"""
    status_code = 401


class ValidationFailure(SyncError):
    """Malformed payload, repository identity, title or issue state"""
    status_code = 400


class NotFound(SyncError):
    status_code = 404


class DownstreamFailure(SyncError):
    """The external tracker rejected or failed an outbound call"""
    status_code = 502

    def __init__(self, message: str, upstream_status: int = None):
        super().__init__(message)
        self.upstream_status = upstream_status
