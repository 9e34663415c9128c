"""
casedesk error taxonomy.

Validation, NotFound and Conflict are raised synchronously by the
services and mapped to HTTP statuses by the API layer. Dependency
failures (inbox writes, external channel) never reach these types:
they are logged where they happen.
"""


class CaseDeskError(Exception):
    """Base for errors surfaced to the caller."""
    status_code = 500


class ValidationError(CaseDeskError):
    """Missing/invalid field, out-of-range score, bad date range."""
    status_code = 400


class NotFoundError(CaseDeskError):
    """Unknown case, config or notification id."""
    status_code = 404


class ConflictError(CaseDeskError):
    """Duplicate config, illegal transition, stale version."""
    status_code = 409
