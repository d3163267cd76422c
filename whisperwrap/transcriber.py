"""Handles Speech-to-Text transcription by running the external whisper executable."""

import asyncio
import json
import logging
import math
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Awaitable, List, Optional, Tuple, Union

from .exceptions import (
    ExecutableNotFoundError,
    FileSystemError,
    InputNotFoundError,
    InvalidConfigurationError,
    MalformedOutputError,
    ModelNotFoundError,
    OutputMissingError,
    ProcessFailureError,
    SpawnFailureError,
    TranscriptionTimeoutError,
)
from .models import OutputMode, Segment, TranscriptionRequest, TranscriptionResult, WhisperModel
from .utils import (
    assert_file_exists,
    ensure_dir_exists,
    get_default_binary_path,
    get_default_model_path,
    output_json_name,
)

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
TEMP_DIR_PREFIX = "whisperwrap-"


class Transcriber(ABC):
    """Abstract base class for transcription services."""

    @abstractmethod
    async def transcribe_async(self, request: TranscriptionRequest) -> TranscriptionResult:
        """
        Transcribes the audio file named by the request.

        Args:
            request: The options for this call.

        Returns:
            A TranscriptionResult with the full text and its segments.

        Raises:
            WhisperWrapError: A subclass describing what went wrong.
        """
        pass

    def transcribe(self, request: TranscriptionRequest, timeout: Optional[float] = None) -> TranscriptionResult:
        """
        Blocking variant of transcribe_async.

        Must not be called from inside a running event loop.

        Args:
            request: The options for this call.
            timeout: Optional limit in seconds. When it expires the subprocess
                     is killed, temporary files are removed and
                     TranscriptionTimeoutError is raised.
        """
        return asyncio.run(_with_timeout(self.transcribe_async(request), timeout))


class WhisperTranscriber(Transcriber):
    """Runs whisper.cpp or the openai-whisper CLI as a subprocess and parses its JSON."""

    def __init__(
        self,
        output_mode: Union[OutputMode, str] = OutputMode.STDOUT,
        binary_path: Optional[str] = None,
        default_model: Optional[str] = None,
        temp_root: Optional[str] = None,
    ):
        """
        Initializes the WhisperTranscriber.

        Args:
            output_mode: OutputMode.STDOUT for whisper.cpp style executables that
                         print JSON, OutputMode.FILE for the openai-whisper CLI
                         which writes <name>.json into an output directory.
            binary_path: Executable used when the request has no override.
                         Falls back to a platform default.
            default_model: Model name or model file used when the request has none.
            temp_root: Parent directory for per-call temporary directories.
                       The platform temp directory is used when None.

        Raises:
            InvalidConfigurationError: If the output mode is unknown.
        """
        self.output_mode = _parse_output_mode(output_mode)
        self.binary_path = binary_path
        self.default_model = default_model
        self.temp_root = temp_root
        logger.debug(f"WhisperTranscriber configured: mode={self.output_mode.value}, binary={self.binary_path or 'default'}")

    @classmethod
    def from_config(cls, config: dict) -> "WhisperTranscriber":
        """Builds a transcriber from a loaded configuration dictionary."""
        return cls(
            output_mode=config.get('output_mode') or OutputMode.STDOUT,
            binary_path=config.get('binary_path'),
            default_model=config.get('model'),
            temp_root=config.get('temp_dir'),
        )

    async def transcribe_async(self, request: TranscriptionRequest) -> TranscriptionResult:
        """
        Validates the request, runs whisper and returns the parsed result.

        Raises:
            InputNotFoundError: If the audio file does not exist.
            ExecutableNotFoundError: If the whisper executable does not exist.
            ModelNotFoundError: If a model file does not exist.
            InvalidConfigurationError: If the thread count or output mode is invalid.
            SpawnFailureError: If the process could not be started.
            ProcessFailureError: If whisper exits with a non-zero code.
            OutputMissingError: File mode only, if whisper wrote no JSON file.
            MalformedOutputError: If the JSON is absent, unreadable, unparseable or invalid.
            FileSystemError: File mode only, if the temporary directory cannot be created.
        """
        audio_path = assert_file_exists(request.audio_path, "Audio file", InputNotFoundError)
        mode = self.resolve_mode(request)
        binary_path = assert_file_exists(
            request.binary_path or self.binary_path or get_default_binary_path(mode),
            "Whisper binary",
            ExecutableNotFoundError,
        )
        model = self._resolve_model(request.model or self.default_model, mode)
        threads = validate_threads(request.threads)

        logger.info(f"Starting transcription for: {audio_path} (mode: {mode.value})")

        if mode is OutputMode.STDOUT:
            args = build_args(mode, audio_path, model, request.language, threads, request.translate)
            exit_code, stdout, stderr = await self._run_process(binary_path, args)
            _check_exit_code(exit_code, stderr)
            result = parse_whisper_output(stdout)
        else:
            if self.temp_root:
                ensure_dir_exists(self.temp_root)
            try:
                temp_dir = tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX, dir=self.temp_root)
            except OSError as e:
                logger.error(f"Could not create temporary output directory in {self.temp_root or tempfile.gettempdir()}: {e}")
                raise FileSystemError(f"Could not create temporary output directory: {e}") from e
            logger.debug(f"Created temporary output directory: {temp_dir}")
            try:
                args = build_args(
                    mode, audio_path, model, request.language, threads, request.translate, output_dir=temp_dir
                )
                exit_code, _, stderr = await self._run_process(binary_path, args)
                _check_exit_code(exit_code, stderr)
                result = read_output_file(os.path.join(temp_dir, output_json_name(audio_path)))
            finally:
                _remove_temp_dir(temp_dir)

        logger.info(f"Transcription completed for {audio_path}: {len(result.segments)} segments.")
        return result

    def resolve_mode(self, request: TranscriptionRequest) -> OutputMode:
        if request.output_mode is None:
            return self.output_mode
        return _parse_output_mode(request.output_mode)

    def _resolve_model(self, model: Optional[str], mode: OutputMode) -> Optional[str]:
        """
        Turns a model selector into the value passed on the command line.

        The openai-whisper CLI takes model names directly. whisper.cpp needs a
        ggml file, so names map to models/ggml-<name>.bin and a missing model
        falls back to the default ggml-base.bin.
        """
        if model is None:
            if mode is OutputMode.FILE:
                return None # Let the CLI pick its own default
            return assert_file_exists(get_default_model_path(), "Whisper model", ModelNotFoundError)
        if WhisperModel.is_name(model):
            if mode is OutputMode.FILE:
                return model
            model = os.path.join("models", f"ggml-{model}.bin")
        return assert_file_exists(model, "Whisper model", ModelNotFoundError)

    async def _run_process(self, binary_path: str, args: List[str]) -> Tuple[Optional[int], str, str]:
        """
        Spawns whisper and waits for it to exit, collecting stdout and stderr.

        If the awaiting task is cancelled (for example by asyncio.wait_for) the
        process is killed and reaped before the cancellation propagates. The
        spawn itself is shielded, so a cancellation that arrives while the
        child is being started still finds and kills it.
        """
        logger.debug(f"Running: {binary_path} {' '.join(args)}")
        spawn = asyncio.ensure_future(asyncio.create_subprocess_exec(
            binary_path,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        ))
        try:
            process = await asyncio.shield(spawn)
        except asyncio.CancelledError:
            # The child may already be starting; it must not outlive the call
            try:
                process = await spawn
            except OSError:
                process = None
            if process is not None:
                await _kill(process)
            raise
        except OSError as e:
            logger.error(f"Failed to start Whisper process {binary_path}: {e}")
            raise SpawnFailureError(f"Failed to start Whisper process: {e}") from e

        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []
        try:
            await asyncio.gather(
                _drain(process.stdout, stdout_chunks),
                _drain(process.stderr, stderr_chunks, log_output=True),
            )
            exit_code = await process.wait()
        except asyncio.CancelledError:
            await _kill(process)
            raise

        return exit_code, _decode(stdout_chunks), _decode(stderr_chunks)


def build_args(
    mode: OutputMode,
    audio_path: str,
    model: Optional[str] = None,
    language: Optional[str] = None,
    threads: Optional[int] = None,
    translate: bool = False,
    output_dir: Optional[str] = None,
) -> List[str]:
    """
    Maps request options onto whisper command line flags.

    Args:
        mode: Selects the whisper.cpp (STDOUT) or openai-whisper (FILE) flag set.
        audio_path: Input audio file.
        model: Model file path (STDOUT) or model name/path (FILE).
        language: Language code, e.g. "en".
        threads: Number of CPU threads.
        translate: Translate to English instead of transcribing.
        output_dir: Directory for the JSON file. Required in FILE mode.

    Returns:
        The argument list, without the executable itself.
    """
    if mode is OutputMode.STDOUT:
        args = []
        if model:
            args += ["-m", model]
        args += ["-f", audio_path, "--output-json"]
        if language:
            args += ["-l", language]
        if threads is not None:
            args += ["-t", str(threads)]
        if translate:
            args.append("--translate")
        return args

    if not output_dir:
        raise InvalidConfigurationError("File output mode requires an output directory.")
    args = [audio_path, "--output_format", "json", "--output_dir", output_dir, "--verbose", "False"]
    if model:
        args += ["--model", model]
    if language:
        args += ["--language", language]
    if threads is not None:
        args += ["--threads", str(threads)]
    if translate:
        args += ["--task", "translate"]
    return args


def validate_threads(threads: Any) -> Optional[int]:
    """Returns the thread count as an int, or raises InvalidConfigurationError."""
    if threads is None:
        return None
    if isinstance(threads, bool) or not isinstance(threads, (int, float)):
        raise InvalidConfigurationError(f"Thread count must be a number, got {threads!r}")
    if not math.isfinite(threads) or threads <= 0:
        raise InvalidConfigurationError(f"Thread count must be a positive number, got {threads!r}")
    if threads != int(threads):
        raise InvalidConfigurationError(f"Thread count must be a whole number, got {threads!r}")
    return int(threads)


def parse_whisper_output(raw_output: str) -> TranscriptionResult:
    """
    Parses JSON printed on stdout.

    Anything before the first '{' (model loading banners and the like) is
    discarded; the remainder must be a single JSON document.

    Raises:
        MalformedOutputError: With reason NO_JSON, PARSE_ERROR or INVALID_FIELD.
    """
    if not raw_output.strip():
        raise MalformedOutputError("Whisper returned empty output", MalformedOutputError.NO_JSON)
    start_index = raw_output.find("{")
    if start_index == -1:
        raise MalformedOutputError("Whisper output does not contain JSON", MalformedOutputError.NO_JSON)
    return parse_whisper_json(raw_output[start_index:])


def read_output_file(json_path: str) -> TranscriptionResult:
    """
    Reads and validates the JSON file written by the openai-whisper CLI.

    Raises:
        OutputMissingError: If the file does not exist or is not a regular file.
        MalformedOutputError: If it cannot be read or is not valid whisper JSON.
    """
    try:
        with open(json_path, 'r', encoding='utf-8') as f:
            content = f.read()
    except (FileNotFoundError, IsADirectoryError) as e:
        logger.error(f"Expected whisper output file is missing: {json_path}")
        raise OutputMissingError(json_path) from e
    except UnicodeDecodeError as e:
        raise MalformedOutputError(
            f"Failed to parse Whisper JSON output: {json_path} is not valid UTF-8", MalformedOutputError.PARSE_ERROR
        ) from e
    except OSError as e:
        logger.error(f"Could not read whisper output file {json_path}: {e}")
        raise MalformedOutputError(
            f"Failed to read Whisper JSON output {json_path}: {e}", MalformedOutputError.PARSE_ERROR
        ) from e
    if not content.strip():
        raise MalformedOutputError(f"Whisper output file is empty: {json_path}", MalformedOutputError.NO_JSON)
    return parse_whisper_json(content)


def parse_whisper_json(json_text: str) -> TranscriptionResult:
    try:
        data = json.loads(json_text)
    except json.JSONDecodeError as e:
        raise MalformedOutputError(
            f"Failed to parse Whisper JSON output: {e}", MalformedOutputError.PARSE_ERROR
        ) from e
    return validate_payload(data)


def validate_payload(data: Any) -> TranscriptionResult:
    """
    Checks the decoded JSON against the whisper result schema.

    Fields are never coerced or defaulted: a missing or wrongly typed field
    rejects the whole response. Extra fields are ignored.
    """
    if not isinstance(data, dict):
        raise _invalid_field("Whisper JSON output is not an object")
    text = data.get('text')
    raw_segments = data.get('segments')
    if not isinstance(text, str):
        raise _invalid_field("Whisper JSON output is missing a string 'text' field")
    if not isinstance(raw_segments, list):
        raise _invalid_field("Whisper JSON output is missing a 'segments' array")

    segments = []
    for index, seg_data in enumerate(raw_segments):
        if not isinstance(seg_data, dict):
            raise _invalid_field(f"Whisper JSON segment {index} is not an object")
        start = seg_data.get('start')
        end = seg_data.get('end')
        seg_text = seg_data.get('text')
        if not _is_number(start) or not _is_number(end):
            raise _invalid_field(f"Whisper JSON segment {index} has a missing or non-numeric 'start'/'end'")
        if not isinstance(seg_text, str):
            raise _invalid_field(f"Whisper JSON segment {index} is missing a string 'text' field")
        if start < 0 or end < start:
            raise _invalid_field(f"Whisper JSON segment {index} has an invalid time range {start} -> {end}")
        segments.append(Segment(start=float(start), end=float(end), text=seg_text.strip()))

    return TranscriptionResult(text=text.strip(), segments=tuple(segments))


def transcribe(
    request: TranscriptionRequest,
    transcriber: Optional[Transcriber] = None,
    timeout: Optional[float] = None,
) -> TranscriptionResult:
    """Transcribes with the given transcriber, or a default WhisperTranscriber."""
    return (transcriber or WhisperTranscriber()).transcribe(request, timeout=timeout)


async def transcribe_async(
    request: TranscriptionRequest,
    transcriber: Optional[Transcriber] = None,
) -> TranscriptionResult:
    return await (transcriber or WhisperTranscriber()).transcribe_async(request)


def _parse_output_mode(value: Union[OutputMode, str]) -> OutputMode:
    try:
        return OutputMode.parse(value)
    except ValueError as e:
        raise InvalidConfigurationError(
            f"Unknown output mode {value!r}. Choose 'stdout' or 'file'."
        ) from e


def _check_exit_code(exit_code: Optional[int], stderr: str) -> None:
    if exit_code != 0:
        logger.error(f"Whisper process exited with code {exit_code}")
        raise ProcessFailureError(exit_code, stderr.strip())


def _is_number(value: Any) -> bool:
    # bool is an int subclass but not a timestamp
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _invalid_field(message: str) -> MalformedOutputError:
    return MalformedOutputError(message, MalformedOutputError.INVALID_FIELD)


def _decode(chunks: List[bytes]) -> str:
    return b"".join(chunks).decode('utf-8', errors='replace')


async def _drain(stream: Optional[asyncio.StreamReader], chunks: List[bytes], log_output: bool = False) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        chunks.append(chunk)
        if log_output and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"whisper: {chunk.decode('utf-8', errors='replace').rstrip()}")


async def _kill(process: asyncio.subprocess.Process) -> None:
    logger.warning(f"Transcription cancelled, killing whisper process (pid {process.pid})")
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass # Already gone
    await process.wait()


def _remove_temp_dir(temp_dir: str) -> None:
    try:
        shutil.rmtree(temp_dir)
        logger.debug(f"Removed temporary output directory: {temp_dir}")
    except OSError as e:
        logger.warning(f"Could not remove temporary directory {temp_dir}: {e}")


async def _with_timeout(awaitable: Awaitable[TranscriptionResult], timeout: Optional[float]) -> TranscriptionResult:
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise TranscriptionTimeoutError(f"Whisper did not finish within {timeout} seconds") from e
