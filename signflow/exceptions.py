"""
Signing Workflow Exceptions

Custom exceptions for template configuration, workflow validation and
failures of the collaborators the workflow core depends on.
"""


class SigningError(Exception):
    """Base exception for all signing workflow errors."""
    pass


class ConfigurationError(SigningError):
    """
    Raised when template configuration is invalid.

    This includes YAML syntax errors, schema validation failures,
    and referential integrity issues found while loading the
    templates directory.
    """
    pass


class ValidationError(SigningError):
    """
    Raised when a template, submission or submitter fails validation.

    Covers malformed condition references, unknown field uuids and
    role uuids that are not part of a submission snapshot.
    """
    def __init__(self, message: str, template_slug: str = None, field: str = None):
        self.template_slug = template_slug
        self.field = field
        super().__init__(message)


class InvalidTransitionError(ValidationError):
    """Raised when a submitter lifecycle event is applied out of order."""
    def __init__(self, message: str, submitter_uuid: str = None, event: str = None):
        self.submitter_uuid = submitter_uuid
        self.event = event
        super().__init__(message)


class RateLimitedError(SigningError):
    """
    Raised by an external notification or one-time-code limiter.

    The workflow core never retries; the caller decides on backoff.
    """
    def __init__(self, message: str, retry_after: int = None):
        self.retry_after = retry_after
        super().__init__(message)


class TransientDependencyError(SigningError):
    """
    Raised when persistence or the asset store is unavailable.

    Propagated to the caller for retry.
    """
    def __init__(self, message: str, dependency: str = None):
        self.dependency = dependency
        super().__init__(message)


class StaleRecordError(TransientDependencyError):
    """Raised when an optimistic version check on a submitter fails."""
    def __init__(self, message: str, record_id: str = None, expected_version: int = None):
        self.record_id = record_id
        self.expected_version = expected_version
        super().__init__(message, dependency='persistence')
