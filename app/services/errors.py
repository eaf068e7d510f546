from __future__ import annotations


class WorkflowError(RuntimeError):
    """Base for failures a caller can act on. ``status_code`` is the HTTP mapping."""

    status_code = 500


class UnauthorizedError(WorkflowError):
    status_code = 401


class ForbiddenError(WorkflowError):
    status_code = 403


class NotFoundError(WorkflowError):
    status_code = 404


class ValidationError(WorkflowError):
    status_code = 400


class InvalidStateError(WorkflowError):
    status_code = 400


class ConflictError(WorkflowError):
    status_code = 400
