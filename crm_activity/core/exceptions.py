from typing import Optional


class AggregatorError(Exception):
    """Base class for all activity aggregator exceptions.

    Every custom exception in this module inherits from here so that a
    single ``except AggregatorError`` clause can catch any domain
    error.
    """

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(detail)


class FetchCancelled(AggregatorError):
    """Raised inside the fetch client when a request's token was cancelled.

    Never escapes the fetch client: cancellation is an expected outcome
    of latest-request-wins and is reported as "ignored", not as a failure.
    """

    def __init__(self, detail: str = "Request cancelled"):
        super().__init__(detail)


class ActivityFetchError(AggregatorError):
    """Common parent of the failures a channel may surface to the user."""


class NetworkFailure(ActivityFetchError):
    """Raised on transport errors, timeouts or unparseable payloads."""

    def __init__(self, detail: str = "Activity service unreachable"):
        super().__init__(detail)


class HttpFailure(ActivityFetchError):
    """Raised when the activity service answers with a non-2xx status."""

    def __init__(self, status_code: int, detail: Optional[str] = None):
        self.status_code = status_code
        super().__init__(detail or f"Activity service returned {status_code}")


class InvalidFilterState(AggregatorError):
    """Raised when a view needs a selected user but none is chosen.

    The orchestrator resolves this by skipping the fetch; the API layer
    reports it as a client error only when a caller insists on data.
    """

    def __init__(self, detail: str = "A selected user is required for this view"):
        super().__init__(detail)


class InvalidScopeError(AggregatorError):
    """Raised when an unknown scope or history window is requested."""

    def __init__(self, detail: str = "Unknown scope"):
        super().__init__(detail)


class InvalidStatusTransitionError(AggregatorError):
    """Raised when a status does not belong to the activity's kind."""

    def __init__(self, detail: str = "Invalid status transition"):
        super().__init__(detail)


class ActivityNotFoundError(AggregatorError):
    """Raised when a transition targets an id absent from committed state."""

    def __init__(self, detail: str = "Activity not found"):
        super().__init__(detail)


class AuthenticationRequiredError(AggregatorError):
    """Raised when the current user cannot be resolved from the bearer token."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(detail)


class AmbiguousActivityError(AggregatorError):
    """Raised when an id matches loaded activities of more than one kind."""

    def __init__(self, detail: str = "Activity id is ambiguous; pass its kind"):
        super().__init__(detail)
