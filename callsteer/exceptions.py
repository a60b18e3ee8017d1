"""
Exception hierarchy for the call-steering engine.

All engine exceptions inherit from ``SteeringError``.  The HTTP layer maps
the three families onto status codes: ``NotFoundError`` -> 404,
``InvalidInputError`` -> 400, ``ServiceUnavailableError`` -> 503.
"""


class SteeringError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(SteeringError):
    """Referenced record does not exist."""

    pass


class SessionNotFoundError(NotFoundError):
    """Session id does not resolve."""

    pass


class EscalationNotFoundError(NotFoundError):
    """Escalation id does not resolve."""

    pass


class FlowNotFoundError(NotFoundError):
    """Conversation flow template id does not resolve."""

    pass


# =============================================================================
# Invalid input
# =============================================================================


class InvalidInputError(SteeringError):
    """Request is malformed or not permitted in the current state."""

    pass


class MissingFieldError(InvalidInputError):
    """A required field is absent or blank."""

    pass


class InvalidActionError(InvalidInputError):
    """Steering action or escalation action is malformed or unknown."""

    pass


class InvalidSeverityError(InvalidInputError):
    """Escalation severity is not one of the known levels."""

    pass


class InvalidTransitionError(InvalidInputError):
    """Action is not allowed from the session's current status."""

    pass


# =============================================================================
# Collaborators
# =============================================================================


class ServiceUnavailableError(SteeringError):
    """An external collaborator reports itself down.

    Surfaced to the caller as-is.  The engine does not own collaborators
    and never retries them.
    """

    pass
