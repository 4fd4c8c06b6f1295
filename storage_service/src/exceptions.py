from typing import Optional


class StorageError(Exception):
    pass

class InvalidConfigurationError(StorageError):
    """Raised at construction time; never retried."""
    pass

class UnsupportedInputTypeError(StorageError, TypeError):
    """Raised by save() before any network activity; never retried."""
    pass

class TransferError(StorageError):
    """One attempt failed: stream error, provider error, replay of a consumed stream."""
    pass

class AttemptTimeoutError(StorageError, TimeoutError):
    """One attempt did not reach a final state within its deadline."""
    pass

class RetryExhaustedError(StorageError):
    """Terminal: every attempt failed. Wraps the error of the last attempt."""

    def __init__(self, last_error: Optional[BaseException], attempts: int, operation: str = "operation"):
        self.last_error = last_error
        self.attempts = attempts
        self.operation = operation
        super().__init__(f"{operation} failed after {attempts} attempt(s): {cause_message(last_error)}")

    @property
    def cause_message(self) -> str:
        return cause_message(self.last_error)


def cause_message(error: Optional[BaseException]) -> str:
    """Innermost message of a wrapped error chain, for diagnostics."""
    seen = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        inner = error.__cause__
        if inner is None:
            break
        error = inner
    if error is None:
        return ""
    return str(error) or type(error).__name__
