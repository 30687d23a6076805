"""
Error taxonomy shared by the services and the JSON API.

Every error carries the HTTP status the API layer renders it with. Quota and
timeout errors are retryable signals; everything else surfaces immediately.
"""


class WorkloomError(Exception):
    """Base class for all errors raised by the integration core."""
    status_code = 500
    retryable = False

    def __init__(self, message=''):
        self.message = message
        super().__init__(message)

    def to_dict(self):
        return {'error': self.message, 'type': self.__class__.__name__}


class ValidationError(WorkloomError):
    """Malformed input, rejected before anything is persisted."""
    status_code = 400


class NotFoundError(WorkloomError):
    status_code = 404


class ConflictError(WorkloomError):
    """Concurrent state violation (double run, job already running, ...)."""
    status_code = 409


class AccountUnavailable(ConflictError):
    """Account is not schedulable: inactive, not ACTIVE, or already busy."""

    def __init__(self, account_id, reason):
        self.account_id = account_id
        self.reason = reason
        if account_id is None:
            super().__init__(f"No account available: {reason}")
        else:
            super().__init__(f"Account {account_id} is unavailable: {reason}")


class CredentialError(WorkloomError):
    """Credential decryption failed or the provider rejected them."""
    status_code = 400


class QuotaExceeded(WorkloomError):
    """Daily budget exhausted — a scheduling signal, not a job failure."""
    status_code = 429
    retryable = True

    def __init__(self, account_id, limit, retry_after=None):
        self.account_id = account_id
        self.limit = limit
        self.retry_after = retry_after
        super().__init__(f"Daily quota of {limit} exhausted for account {account_id}")

    def to_dict(self):
        data = super().to_dict()
        if self.retry_after is not None:
            data['retry_after'] = int(self.retry_after)
        return data


class ConnectionTimeout(WorkloomError):
    """A connector call kept timing out after exponential backoff."""
    status_code = 504
    retryable = True

    def __init__(self, provider, attempts):
        self.provider = provider
        self.attempts = attempts
        super().__init__(f"{provider} did not respond after {attempts} attempt(s)")


class PartialSyncFailure(WorkloomError):
    """Some records of a sync batch failed. Raised only on request."""
    status_code = 207

    def __init__(self, operation_id, errors):
        self.operation_id = operation_id
        self.errors = errors
        super().__init__(f"{len(errors)} record(s) failed in sync operation {operation_id}")

    def to_dict(self):
        data = super().to_dict()
        data['errors'] = self.errors
        return data


class ProviderError(WorkloomError):
    """The provider answered with an error that is neither auth nor timeout."""
    status_code = 502

    def __init__(self, provider, message, status=None):
        self.provider = provider
        self.status = status
        super().__init__(f"{provider}: {message}")
