"""Exception hierarchy for embellishment orchestration."""


class EmbellishmentError(Exception):
    """Base exception for embellishment errors."""

    status_code = 500


# =============================================================================
# REQUEST VALIDATION
# =============================================================================


class MethodNotCapable(EmbellishmentError):
    """The requested method does not resolve to a known capability."""

    status_code = 400

    def __init__(self, method: str):
        super().__init__(f'Method "{method}" does not have embellishment capabilities')
        self.method = method


class NotFoundError(EmbellishmentError):
    """A referenced resource, container or task does not exist."""

    status_code = 404


class ForbiddenError(EmbellishmentError):
    """The requester does not own the referenced resource or task."""

    status_code = 403


class EmptyResourceError(EmbellishmentError):
    """The resource has no units of work."""

    status_code = 400


class ConflictingTaskError(EmbellishmentError):
    """A task of the same type is already running against the resource."""

    status_code = 409

    def __init__(self, resource_id: str, task_type: str):
        super().__init__(
            f'An embellishment task of type "{task_type}" is already running '
            f"for resource {resource_id}"
        )
        self.resource_id = resource_id
        self.task_type = task_type


# =============================================================================
# ITEM FAILURES (routed through the retry policy, never raised to callers)
# =============================================================================


class DispatchError(EmbellishmentError):
    """The execution engine rejected a dispatch synchronously."""


class ExtractionFailed(EmbellishmentError):
    """No value could be extracted from a completion payload."""

    def __init__(self, path: str):
        super().__init__(f'Failed to extract result for path "{path}"')
        self.path = path
