"""Utility functions for whisperwrap."""

import os
import shutil
import logging
import sys
from typing import Type

from .exceptions import FileSystemError, WhisperWrapError
from .models import OutputMode

logger = logging.getLogger(__name__)

DEFAULT_MODEL_RELPATH = os.path.join("models", "ggml-base.bin")

def ensure_dir_exists(dir_path: str) -> None:
    """
    Ensures that a directory exists. Creates it if it doesn't.

    Args:
        dir_path: The path to the directory.

    Raises:
        FileSystemError: If the directory cannot be created due to permissions
                         or if the path exists but is not a directory.
    """
    if not dir_path:
        raise ValueError("Directory path cannot be empty.")
    try:
        if not os.path.exists(dir_path):
            os.makedirs(dir_path)
            logger.info(f"Created directory: {dir_path}")
        elif not os.path.isdir(dir_path):
            raise FileSystemError(f"Path exists but is not a directory: {dir_path}")
    except OSError as e:
        logger.error(f"Error creating or accessing directory {dir_path}: {e}", exc_info=True)
        raise FileSystemError(f"Could not create or access directory {dir_path}: {e}") from e

def assert_file_exists(file_path: str, label: str, error_cls: Type[WhisperWrapError]) -> str:
    """
    Checks that a path points at an existing regular file.

    Args:
        file_path: The path to check.
        label: Human readable name used in the error message (e.g. "Audio file").
        error_cls: Exception class raised on failure. It must accept
                   ``(message, path)``.

    Returns:
        The absolute path.
    """
    resolved = os.path.abspath(file_path)
    if not os.path.exists(resolved):
        raise error_cls(f"{label} not found at {resolved}", resolved)
    if not os.path.isfile(resolved):
        raise error_cls(f"{label} is not a file at {resolved}", resolved)
    return resolved

def get_platform_binary_name() -> str:
    return "whisper.exe" if sys.platform == "win32" else "whisper"

def get_default_binary_path(output_mode: OutputMode) -> str:
    """
    Returns the executable used when no override is configured.

    whisper.cpp builds are expected under ``./bin``; the openai-whisper CLI is
    looked up on PATH. The result may not exist, callers check it.
    """
    binary_name = get_platform_binary_name()
    if output_mode is OutputMode.STDOUT:
        return os.path.abspath(os.path.join("bin", binary_name))
    return shutil.which("whisper") or binary_name

def get_default_model_path() -> str:
    return os.path.abspath(DEFAULT_MODEL_RELPATH)

def output_json_name(audio_path: str) -> str:
    """
    Name of the JSON file whisper writes for an input file.

    Only the final extension is stripped: "my.file.wav" -> "my.file.json".
    """
    base_name = os.path.splitext(os.path.basename(audio_path))[0]
    return f"{base_name}.json"

def format_time_srt(seconds: float) -> str:
    """
    Formats seconds into SRT time format HH:MM:SS,ms.

    Args:
        seconds: Time in seconds.

    Returns:
        Formatted time string.
    """
    if seconds < 0:
        seconds = 0.0 # Ensure non-negative time
    milliseconds = round(seconds * 1000)
    hrs = milliseconds // 3600000
    milliseconds %= 3600000
    mins = milliseconds // 60000
    milliseconds %= 60000
    secs = milliseconds // 1000
    milliseconds %= 1000
    return f"{hrs:02d}:{mins:02d}:{secs:02d},{milliseconds:03d}"

def format_time_vtt(seconds: float) -> str:
    """Same as format_time_srt but with the WebVTT '.' millisecond separator."""
    return format_time_srt(seconds).replace(",", ".")
