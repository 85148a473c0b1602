from typing import Optional

from eventrelay.constants import EXIT_CODE_FAILURE, EXIT_CODE_INVALID_INPUT


class RelayError(Exception):
    """
    Base error for the event relay.

    Args:
        message (str): The error message.
    """
    def __init__(self, message: str = "An error occurred while delivering events."):
        self.message = message
        super().__init__(self.message)

    def get_exit_code(self) -> int:
        """
        Get the exit code associated with this error.

        Returns:
            int: The exit code.
        """
        return EXIT_CODE_FAILURE


class InvalidConfigError(RelayError):
    """
    Error raised when a configuration value cannot be used.

    Args:
        name (str): The setting name.
        value (str): The rejected value.
    """
    def __init__(self, name: str, value: str):
        self.name = name
        self.value = value
        super().__init__(f"Invalid value for '{name}': {value!r}")

    def get_exit_code(self) -> int:
        return EXIT_CODE_INVALID_INPUT


class DeliveryError(RelayError):
    """
    A chunk could not be delivered to the collection endpoint.

    Args:
        message (str): The error message.
        status_code (Optional[int]): HTTP status of the last response, if any.
    """
    retryable = False

    def __init__(self, message: str = "Unable to deliver events.",
                 status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RetryableDeliveryError(DeliveryError):
    """
    Transient failure. Retried with backoff until the retry budget runs out.
    """
    retryable = True


class NetworkDeliveryError(RetryableDeliveryError):
    """
    The request never produced a response (connection refused, timeout, DNS).
    """
    def __init__(self, reason: Optional[str] = None):
        message = "Network error while delivering events."
        if reason:
            message += f" Details: {reason}"
        super().__init__(message)


class ServerDeliveryError(RetryableDeliveryError):
    """
    The collection endpoint answered with a 5xx status.
    """
    def __init__(self, status_code: int, reason: Optional[str] = None):
        message = f"Server error {status_code} while delivering events."
        if reason:
            message += f" Details: {reason}"
        super().__init__(message, status_code=status_code)


class TooManyRequestsError(RetryableDeliveryError):
    """
    The collection endpoint rate limited the request (429).
    """
    def __init__(self, reason: Optional[str] = None):
        message = "Too many requests while delivering events."
        if reason:
            message += f" Details: {reason}"
        super().__init__(message, status_code=429)


class TerminalDeliveryError(DeliveryError):
    """
    Failure that retrying cannot fix. Surfaced immediately.
    """


class ClientDeliveryError(TerminalDeliveryError):
    """
    The collection endpoint rejected the request with a 4xx status other than 429.
    """
    def __init__(self, status_code: int, reason: Optional[str] = None):
        message = f"Request rejected with status {status_code}."
        if reason:
            message += f" Details: {reason}"
        super().__init__(message, status_code=status_code)


class RetriesExhaustedError(TerminalDeliveryError):
    """
    A transient failure persisted through every allowed attempt.

    Args:
        last_error (DeliveryError): The error of the final attempt.
        attempts (int): Number of requests sent.
    """
    def __init__(self, last_error: DeliveryError, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"Giving up after {attempts} attempts. {last_error.message}",
            status_code=last_error.status_code,
        )
