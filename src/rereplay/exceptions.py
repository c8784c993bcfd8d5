"""Exception hierarchy for rereplay.

All exceptions inherit from :class:`RereplayError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`rereplay.exit_codes`.
The command-line entry point in :func:`rereplay.app.main` catches
``RereplayError`` and exits with the appropriate code.

Errors that come from the wrapped network call are never converted into
one of these types; they reach the caller exactly as httpx raised them.

Subclass hierarchy::

    RereplayError (exit 1)
    +-- SerializationError   (exit 5)
    +-- MalformedEntryError  (exit 6)
    +-- NotConfiguredError   (exit 1)
    +-- ConfigError          (exit 1)
    +-- ReadOnlyStoreError   (exit 1)
    +-- EntryNotFoundError   (exit 4)
    +-- InvalidUsageError    (exit 2)
"""

from rereplay.exit_codes import (
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_MALFORMED_ENTRY,
    EXIT_NOT_FOUND,
    EXIT_SERIALIZATION_ERROR,
)


class RereplayError(Exception):
    """Base exception for all rereplay errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`rereplay.exit_codes`.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class SerializationError(RereplayError):
    """Raised when a request field cannot be reduced to stable text.

    A header or body value that fell back to a default object repr would
    hash to a key that changes between runs, so no key is produced at all.
    """

    exit_code = EXIT_SERIALIZATION_ERROR


class MalformedEntryError(RereplayError):
    """Raised when a stored value is not a valid serialized response."""

    exit_code = EXIT_MALFORMED_ENTRY


class NotConfiguredError(RereplayError):
    """Raised when interception runs before :func:`rereplay.setup` created a store."""


class ConfigError(RereplayError):
    """Raised for configuration problems (invalid project file, bad env values)."""


class ReadOnlyStoreError(RereplayError):
    """Raised when a store opened for inspection is asked to write its file."""


class EntryNotFoundError(RereplayError):
    """Raised by the CLI when a key is not present in the active scope."""

    exit_code = EXIT_NOT_FOUND


class InvalidUsageError(RereplayError):
    """Raised for invalid CLI arguments such as a malformed ``-H`` header."""

    exit_code = EXIT_INVALID_USAGE
