"""
Custom exception hierarchy for the music library synchronizer.

This module defines a structured hierarchy of exceptions that allows for
precise error handling and clear separation of different failure modes.
Apart from ConfigurationError, every error here is scoped to one file, one
album or one destination and is caught at that boundary.
"""


class MorgError(Exception):
    """Base class for all application-specific errors."""
    pass


class ConfigurationError(MorgError):
    """Raised when there are configuration-related issues."""
    pass


class AlbumParseError(MorgError):
    """Raised when album details cannot be derived from a file path."""

    def __init__(self, path: str, reason: str = None):
        self.path = path
        self.reason = reason

        message = f"Could not parse album details from {path}"
        if reason:
            message += f": {reason}"

        super().__init__(message)


class AlbumMergeError(MorgError):
    """Raised when two album records of one directory disagree."""

    def __init__(self, first, second):
        self.first = first
        self.second = second

        message = (
            f"Failed to merge '{first.artist} - {first.title}' ({first.dir_path}) "
            f"with '{second.artist} - {second.title}' ({second.dir_path})"
        )
        super().__init__(message)


class FilesystemError(MorgError):
    """Raised when filesystem operations fail."""

    def __init__(self, path: str, operation: str, reason: str = None):
        self.path = path
        self.operation = operation
        self.reason = reason

        message = f"Filesystem error during {operation} on {path}"
        if reason:
            message += f": {reason}"

        super().__init__(message)


class DeviceError(MorgError):
    """Raised when a command on the bridge-connected device fails."""

    def __init__(self, command: str, reason: str = None):
        self.command = command
        self.reason = reason

        message = f"Device command failed: {command}"
        if reason:
            message += f" - {reason}"

        super().__init__(message)


class LocationError(MorgError):
    """Raised when a destination location cannot be opened."""

    def __init__(self, descriptor: str, reason: str = None):
        self.descriptor = descriptor
        self.reason = reason

        message = f"Cannot open location {descriptor}"
        if reason:
            message += f": {reason}"

        super().__init__(message)


class ConversionError(MorgError):
    """Raised when an album cannot be converted to another file type."""

    def __init__(self, album: str, reason: str = None):
        self.album = album
        self.reason = reason

        message = f"Failed to convert {album}"
        if reason:
            message += f": {reason}"

        super().__init__(message)


class ConversionPolicyError(ConversionError):
    """Raised when a lossy source would be converted to a lossless type."""

    def __init__(self, album: str, source_type: str, target_type: str):
        self.source_type = source_type
        self.target_type = target_type
        super().__init__(
            album,
            f"refusing lossy {source_type} to lossless {target_type} conversion"
        )


class MetadataLookupError(MorgError):
    """Raised when the external music database cannot answer a query."""

    def __init__(self, query: str, reason: str = None, status_code: int = None):
        self.query = query
        self.reason = reason
        self.status_code = status_code

        message = f"Failed to query music database for: {query}"
        if reason:
            message += f" - {reason}"

        super().__init__(message)
