"""Module for autotls controller responsible for error handling.

The exceptions are grouped by the way the reconciler reacts to them:

* :class:`InvalidAnnotationError` and :class:`NoDefaultIssuerError`: static
  errors, surfaced on the object and not retried;
* :class:`DependencyError`: recoverable errors, retried with exponential
  backoff;
* :class:`ConflictError`: concurrent modification, the object is requeued
  immediately;
* :class:`NotFoundError`: the object does not exist anymore;
* :class:`InvariantViolationError`: internal error for one object, retried at
  the capped backoff interval.
"""
from autotls.data.core import ReasonCode


class ControllerError(Exception):
    """Base class for exceptions in this module."""

    code = ReasonCode.INTERNAL_ERROR

    def __init__(self, message=None):
        super().__init__(message)
        self.message = message

    def __str__(self):
        """Custom error message for exception"""
        message = self.message or ""
        code = f"[{self.code.value}]" if self.code is not None else ""

        return f"{type(self).__name__}{code}: {message}"


class InvalidAnnotationError(ControllerError):
    """Raised when an annotation of a routing object has an invalid value."""


class InvalidIssuerError(InvalidAnnotationError):
    code = ReasonCode.INVALID_ISSUER


class InvalidDomainError(InvalidAnnotationError):
    code = ReasonCode.INVALID_DOMAIN


class NoDefaultIssuerError(ControllerError):
    """Raised when the "auto" issuer is requested but the controller has no
    default issuer configured.
    """

    code = ReasonCode.NO_DEFAULT_ISSUER


class DependencyError(ControllerError):
    """Base class for recoverable errors caused by the cluster."""


class IssuerNotFoundError(DependencyError):
    code = ReasonCode.ISSUER_NOT_FOUND


class IssuerNotReadyError(DependencyError):
    code = ReasonCode.ISSUER_NOT_READY


class TransientApiError(DependencyError):
    """Raised when the Kubernetes API cannot be reached or answers with an
    unexpected error.
    """

    code = ReasonCode.KUBERNETES_ERROR


class ConflictError(ControllerError):
    """Raised when the resource version given as precondition of a mutation does
    not match the one of the live object anymore.
    """

    code = ReasonCode.RESOURCE_CONFLICT


class NotFoundError(ControllerError):
    code = ReasonCode.RESOURCE_NOT_FOUND


class InvariantViolationError(ControllerError):
    """Raised when a desired state would bind a TLS secret that is not backed
    by any certificate request.
    """

    code = ReasonCode.INVARIANT_VIOLATION
