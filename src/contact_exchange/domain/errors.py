"""Exchange error taxonomy."""


class ExchangeError(Exception):
    """Base class for exchange failures surfaced to callers."""

    code = "EXCHANGE_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SessionNotFoundError(ExchangeError):
    """The referenced session does not exist."""

    code = "SESSION_NOT_FOUND"
    status_code = 404


class SessionExpiredError(ExchangeError):
    """The referenced session is past its window."""

    code = "SESSION_EXPIRED"
    status_code = 410


class InvalidTokenError(ExchangeError):
    """A token is malformed, unknown, or cannot be paired against."""

    code = "INVALID_TOKEN"
    status_code = 404


class TokenAlreadyUsedError(ExchangeError):
    """The token's session was already matched by someone else."""

    code = "ALREADY_SCANNED"
    status_code = 409


class ProfileNotFoundError(ExchangeError):
    """The counterpart profile could not be resolved."""

    code = "PROFILE_NOT_FOUND"
    status_code = 404


class InvalidHitError(ExchangeError):
    """A hit payload failed validation."""

    code = "INVALID_HIT"
    status_code = 400


class RateLimitedError(ExchangeError):
    """Too many hits from one session in the rate window."""

    code = "RATE_LIMITED"
    status_code = 429


class ExchangeTransportError(ExchangeError):
    """A client-side request failed before a usable response arrived."""

    code = "TRANSPORT_ERROR"
    status_code = 503


class MotionPermissionError(Exception):
    """The motion source was denied sensor access."""


def error_for_code(code: str | None, message: str) -> ExchangeError:
    """Rebuild a typed error from a wire error code."""
    for error_type in (
        SessionNotFoundError,
        SessionExpiredError,
        InvalidTokenError,
        TokenAlreadyUsedError,
        ProfileNotFoundError,
        InvalidHitError,
        RateLimitedError,
    ):
        if error_type.code == code:
            return error_type(message)
    return ExchangeError(message)
