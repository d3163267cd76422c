import asyncio
import os
import tempfile

import pytest

from whisperwrap.exceptions import (
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
from whisperwrap.models import OutputMode, Segment, TranscriptionRequest
from whisperwrap.transcriber import WhisperTranscriber, read_output_file, transcribe, transcribe_async


def test_stdout_mode_returns_trimmed_result(stdout_whisper, audio_file, model_file) -> None:
    transcriber = WhisperTranscriber(output_mode=OutputMode.STDOUT, binary_path=stdout_whisper.path)
    result = transcriber.transcribe(
        TranscriptionRequest(audio_path=audio_file, model=model_file, language="en", threads=4, translate=True)
    )

    assert result.text == "hello world"
    assert result.segments == (
        Segment(start=0.0, end=1.5, text="hello"),
        Segment(start=1.5, end=3.0, text="world"),
    )
    assert stdout_whisper.calls == [[
        "-m", model_file, "-f", audio_file, "--output-json", "-l", "en", "-t", "4", "--translate",
    ]]


def test_stdout_mode_maps_model_name_to_ggml_file(stdout_whisper, audio_file, tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "models").mkdir()
    (tmp_path / "models" / "ggml-small.bin").write_bytes(b"ggml")

    transcriber = WhisperTranscriber(binary_path=stdout_whisper.path, default_model="small")
    transcriber.transcribe(TranscriptionRequest(audio_path=audio_file))

    args = stdout_whisper.calls[0]
    assert os.path.samefile(args[args.index("-m") + 1], tmp_path / "models" / "ggml-small.bin")


def test_stdout_mode_requires_default_model(stdout_whisper, audio_file, tmp_path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    transcriber = WhisperTranscriber(binary_path=stdout_whisper.path)

    with pytest.raises(ModelNotFoundError) as exc_info:
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file))

    assert os.path.realpath(exc_info.value.path) == os.path.realpath(tmp_path / "models" / "ggml-base.bin")
    assert stdout_whisper.calls == []


def test_file_mode_reads_json_from_temp_dir(file_whisper, audio_file, temp_root) -> None:
    transcriber = WhisperTranscriber(output_mode=OutputMode.FILE, binary_path=file_whisper.path, temp_root=str(temp_root))
    result = transcriber.transcribe(TranscriptionRequest(audio_path=audio_file, model="tiny", translate=True))

    assert result.text == "transcript of meeting"
    assert result.segments == (Segment(start=0.0, end=2.25, text="meeting"),)
    args = file_whisper.calls[0]
    assert args[0] == audio_file
    assert args[args.index("--model") + 1] == "tiny"
    assert args[args.index("--task") + 1] == "translate"
    assert os.path.dirname(args[args.index("--output_dir") + 1]) == str(temp_root)
    assert list(temp_root.iterdir()) == []


def test_file_mode_keeps_inner_dots_in_output_name(file_whisper, tmp_path, temp_root) -> None:
    audio = tmp_path / "my.file.wav"
    audio.write_bytes(b"RIFF")
    transcriber = WhisperTranscriber(output_mode=OutputMode.FILE, binary_path=file_whisper.path, temp_root=str(temp_root))

    result = transcriber.transcribe(TranscriptionRequest(audio_path=str(audio)))

    assert result.text == "transcript of my.file"


def test_nonzero_exit_reports_code_and_stderr(make_whisper, audio_file, temp_root) -> None:
    whisper = make_whisper('''
        sys.stderr.write("error: failed to open audio file\\n\\n")
        sys.exit(3)
    ''')
    transcriber = WhisperTranscriber(output_mode=OutputMode.FILE, binary_path=whisper.path, temp_root=str(temp_root))

    with pytest.raises(ProcessFailureError) as exc_info:
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file))

    assert exc_info.value.exit_code == 3
    assert exc_info.value.stderr == "error: failed to open audio file"
    assert "3" in str(exc_info.value)
    assert "error: failed to open audio file" in str(exc_info.value)
    assert list(temp_root.iterdir()) == []


def test_missing_output_file_is_output_missing(make_whisper, audio_file, temp_root) -> None:
    whisper = make_whisper('''
        print("done")
    ''')
    transcriber = WhisperTranscriber(output_mode=OutputMode.FILE, binary_path=whisper.path, temp_root=str(temp_root))

    with pytest.raises(OutputMissingError) as exc_info:
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file))

    output_dir = whisper.calls[0][whisper.calls[0].index("--output_dir") + 1]
    assert exc_info.value.path == os.path.join(output_dir, "meeting.json")
    assert not os.path.exists(output_dir)
    assert list(temp_root.iterdir()) == []


def test_invalid_json_file_is_malformed_and_cleaned_up(make_whisper, audio_file, temp_root) -> None:
    whisper = make_whisper('''
        out_dir = arg_after("--output_dir")
        with open(os.path.join(out_dir, "meeting.json"), "w") as f:
            f.write('{"text": "hi", "segments": [{"start": "0", "end": 1, "text": "hi"}]}')
    ''')
    transcriber = WhisperTranscriber(output_mode=OutputMode.FILE, binary_path=whisper.path, temp_root=str(temp_root))

    with pytest.raises(MalformedOutputError) as exc_info:
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file))

    assert exc_info.value.reason == MalformedOutputError.INVALID_FIELD
    assert list(temp_root.iterdir()) == []


def test_directory_in_place_of_output_file_is_output_missing(make_whisper, audio_file, temp_root) -> None:
    whisper = make_whisper('''
        os.mkdir(os.path.join(arg_after("--output_dir"), "meeting.json"))
    ''')
    transcriber = WhisperTranscriber(output_mode=OutputMode.FILE, binary_path=whisper.path, temp_root=str(temp_root))

    with pytest.raises(OutputMissingError) as exc_info:
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file))

    assert exc_info.value.path.endswith("meeting.json")
    assert list(temp_root.iterdir()) == []


def test_unreadable_output_file_is_parse_error(tmp_path, monkeypatch) -> None:
    json_path = tmp_path / "meeting.json"
    json_path.write_text('{"text": "hi", "segments": []}', encoding="utf-8")

    def denied(*args, **kwargs):
        raise PermissionError(13, "Permission denied", str(json_path))

    monkeypatch.setattr("whisperwrap.transcriber.open", denied, raising=False)

    with pytest.raises(MalformedOutputError) as exc_info:
        read_output_file(str(json_path))

    assert exc_info.value.reason == MalformedOutputError.PARSE_ERROR
    assert isinstance(exc_info.value.__cause__, PermissionError)


def test_temp_dir_creation_failure_is_file_system_error(file_whisper, audio_file, temp_root, monkeypatch) -> None:
    def denied(*args, **kwargs):
        raise PermissionError(13, "Permission denied", str(temp_root))

    monkeypatch.setattr(tempfile, "mkdtemp", denied)
    transcriber = WhisperTranscriber(output_mode=OutputMode.FILE, binary_path=file_whisper.path, temp_root=str(temp_root))

    with pytest.raises(FileSystemError) as exc_info:
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file))

    assert isinstance(exc_info.value.__cause__, PermissionError)
    assert file_whisper.calls == []


def test_stdout_segment_missing_start_is_malformed(make_whisper, audio_file, model_file) -> None:
    whisper = make_whisper('''
        print('{"text": "hi", "segments": [{"start": 0, "end": 1, "text": "a"}, {"end": 2, "text": "b"}]}')
    ''')
    transcriber = WhisperTranscriber(binary_path=whisper.path)

    with pytest.raises(MalformedOutputError) as exc_info:
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file, model=model_file))

    assert exc_info.value.reason == MalformedOutputError.INVALID_FIELD


def test_missing_audio_fails_before_spawning(stdout_whisper, tmp_path, model_file) -> None:
    missing = str(tmp_path / "nope.wav")
    transcriber = WhisperTranscriber(binary_path=stdout_whisper.path)

    with pytest.raises(InputNotFoundError) as exc_info:
        transcriber.transcribe(TranscriptionRequest(audio_path=missing, model=model_file))

    assert exc_info.value.path == missing
    assert missing in str(exc_info.value)
    assert stdout_whisper.calls == []


def test_missing_audio_is_reported_before_a_bad_output_mode(stdout_whisper, tmp_path, model_file) -> None:
    transcriber = WhisperTranscriber(binary_path=stdout_whisper.path)
    request = TranscriptionRequest(audio_path=str(tmp_path / "missing.wav"), model=model_file, output_mode="bogus")

    with pytest.raises(InputNotFoundError):
        transcriber.transcribe(request)

    assert stdout_whisper.calls == []


def test_audio_path_must_be_a_regular_file(stdout_whisper, tmp_path, model_file) -> None:
    transcriber = WhisperTranscriber(binary_path=stdout_whisper.path)

    with pytest.raises(InputNotFoundError):
        transcriber.transcribe(TranscriptionRequest(audio_path=str(tmp_path), model=model_file))


def test_missing_executable(audio_file, tmp_path, model_file) -> None:
    missing = str(tmp_path / "bin" / "whisper-cli")
    transcriber = WhisperTranscriber(binary_path="/does/not/exist")

    with pytest.raises(ExecutableNotFoundError) as exc_info:
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file, model=model_file, binary_path=missing))

    assert exc_info.value.path == missing


def test_missing_model_override(stdout_whisper, audio_file, tmp_path) -> None:
    transcriber = WhisperTranscriber(binary_path=stdout_whisper.path)

    with pytest.raises(ModelNotFoundError):
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file, model=str(tmp_path / "ggml-huge.bin")))

    assert stdout_whisper.calls == []


def test_bad_thread_count_is_rejected_before_spawn(stdout_whisper, audio_file, model_file) -> None:
    transcriber = WhisperTranscriber(binary_path=stdout_whisper.path)

    with pytest.raises(InvalidConfigurationError):
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file, model=model_file, threads=0))

    assert stdout_whisper.calls == []


def test_unrunnable_executable_is_spawn_failure(tmp_path, audio_file, temp_root) -> None:
    not_executable = tmp_path / "whisper"
    not_executable.write_text("plain text, no exec bit\n")
    not_executable.chmod(0o644)
    transcriber = WhisperTranscriber(output_mode=OutputMode.FILE, binary_path=str(not_executable), temp_root=str(temp_root))

    with pytest.raises(SpawnFailureError) as exc_info:
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file))

    assert isinstance(exc_info.value.__cause__, OSError)
    assert list(temp_root.iterdir()) == []


def test_concurrent_calls_use_separate_temp_dirs(file_whisper, tmp_path, temp_root) -> None:
    slow = tmp_path / "slow_talk.wav"
    fast = tmp_path / "fast_talk.wav"
    slow.write_bytes(b"RIFF")
    fast.write_bytes(b"RIFF")
    transcriber = WhisperTranscriber(output_mode=OutputMode.FILE, binary_path=file_whisper.path, temp_root=str(temp_root))

    async def run_both():
        return await asyncio.gather(
            transcriber.transcribe_async(TranscriptionRequest(audio_path=str(slow))),
            transcriber.transcribe_async(TranscriptionRequest(audio_path=str(fast))),
        )

    slow_result, fast_result = asyncio.run(run_both())

    assert slow_result.text == "transcript of slow_talk"
    assert fast_result.text == "transcript of fast_talk"
    output_dirs = {call[call.index("--output_dir") + 1] for call in file_whisper.calls}
    assert len(output_dirs) == 2
    assert list(temp_root.iterdir()) == []


def test_timeout_kills_process_and_cleans_up(make_whisper, audio_file, temp_root) -> None:
    whisper = make_whisper('''
        time.sleep(30)
    ''')
    transcriber = WhisperTranscriber(output_mode=OutputMode.FILE, binary_path=whisper.path, temp_root=str(temp_root))

    with pytest.raises(TranscriptionTimeoutError):
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file), timeout=1.0)

    assert list(temp_root.iterdir()) == []


def test_timeout_during_spawn_still_kills_process(make_whisper, audio_file, temp_root, monkeypatch) -> None:
    whisper = make_whisper('''
        time.sleep(30)
    ''')
    real_spawn = asyncio.create_subprocess_exec
    spawned = []

    async def slow_spawn(*args, **kwargs):
        await asyncio.sleep(0.3)
        process = await real_spawn(*args, **kwargs)
        spawned.append(process)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", slow_spawn)
    transcriber = WhisperTranscriber(output_mode=OutputMode.FILE, binary_path=whisper.path, temp_root=str(temp_root))

    with pytest.raises(TranscriptionTimeoutError):
        transcriber.transcribe(TranscriptionRequest(audio_path=audio_file), timeout=0.1)

    assert len(spawned) == 1
    assert spawned[0].returncode is not None
    assert list(temp_root.iterdir()) == []


def test_module_level_helpers_use_given_transcriber(stdout_whisper, audio_file, model_file) -> None:
    transcriber = WhisperTranscriber(binary_path=stdout_whisper.path)
    request = TranscriptionRequest(audio_path=audio_file, model=model_file)

    assert transcribe(request, transcriber=transcriber).text == "hello world"
    assert asyncio.run(transcribe_async(request, transcriber=transcriber)).text == "hello world"
