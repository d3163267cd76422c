"""Custom Exceptions for whisperwrap."""

from typing import Optional


class WhisperWrapError(Exception):
    """Base class for exceptions in this package."""
    pass

class ConfigurationError(WhisperWrapError):
    """Exception raised for errors in configuration loading."""
    pass

class InvalidConfigurationError(ConfigurationError):
    """Exception raised when an option is malformed (e.g. a non-positive thread count)."""
    pass

class InputNotFoundError(WhisperWrapError):
    """Exception raised when the audio file is missing or is not a regular file."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path

class ExecutableNotFoundError(WhisperWrapError):
    """Exception raised when the whisper executable cannot be found."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path

class ModelNotFoundError(WhisperWrapError):
    """Exception raised when a model file override cannot be found."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path

class SpawnFailureError(WhisperWrapError):
    """Exception raised when the whisper process could not be started."""
    pass

class ProcessFailureError(WhisperWrapError):
    """Exception raised when the whisper process exits with a non-zero code."""

    def __init__(self, exit_code: Optional[int], stderr: str):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Whisper process exited with code {exit_code}: {stderr}")

class OutputMissingError(WhisperWrapError):
    """Exception raised when whisper succeeded but its JSON output file was not written."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Whisper finished successfully but output file was not found at {path}")

class MalformedOutputError(WhisperWrapError):
    """Exception raised when whisper output is missing, unparseable or fails validation.

    ``reason`` is one of ``NO_JSON``, ``PARSE_ERROR`` or ``INVALID_FIELD``.
    """

    NO_JSON = "no_json"
    PARSE_ERROR = "parse_error"
    INVALID_FIELD = "invalid_field"

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason

class TranscriptionTimeoutError(WhisperWrapError):
    """Exception raised when a caller-imposed timeout expires before whisper exits."""
    pass

class FormattingError(WhisperWrapError):
    """Exception raised for errors while writing a transcript to disk."""
    pass

class FileSystemError(WhisperWrapError):
    """Exception raised for file system related errors (permissions, not a directory etc)."""
    pass
