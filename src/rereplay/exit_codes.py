"""Numeric process exit codes for the ``rereplay`` command-line tool.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~rereplay.exceptions.RereplayError` subclass.
Shell scripts and CI jobs can inspect the exit code to tell a missing
cache entry apart from a corrupt one without parsing stderr.

Example::

    $ rereplay show does-not-exist
    $ echo $?
    4   # EXIT_NOT_FOUND -- no entry with that key in the active scope
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_NOT_FOUND = 4
"""The requested cache entry does not exist in the active scope."""

EXIT_SERIALIZATION_ERROR = 5
"""A request could not be canonicalized into a stable fingerprint."""

EXIT_MALFORMED_ENTRY = 6
"""A cached entry is not a valid serialized response."""
