class TrackerError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500
    kind = 'Error'
    default_message = 'Something went wrong'

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.details = details

    def to_dict(self):
        body = {'error': self.message, 'kind': self.kind}
        if self.details:
            body['details'] = self.details
        return body


class Unauthenticated(TrackerError):
    status_code = 401
    kind = 'Unauthenticated'
    default_message = 'Unauthorized'


class MissingLinkedAccount(TrackerError):
    status_code = 400
    kind = 'MissingLinkedAccount'
    default_message = 'Please set your LeetCode username first.'


class UpstreamFetchFailed(TrackerError):
    # Safe to retry later; never retried automatically.
    status_code = 500
    kind = 'UpstreamFetchFailed'
    default_message = 'Failed to sync submissions'


class NotFound(TrackerError):
    status_code = 404
    kind = 'NotFound'
    default_message = 'Not found'


class ValidationError(TrackerError):
    status_code = 400
    kind = 'ValidationError'
    default_message = 'Invalid request'
