import json
import logging
import sys
import textwrap
from pathlib import Path

import pytest

# Fake executables are /bin/sh wrappers around a Python script
if sys.platform == "win32":
    collect_ignore_glob = ["test_transcriber_process.py", "test_cli.py", "test_batch.py"]

PRELUDE = '''
import json
import logging
import os
import sys
import time

with open(ARGS_LOG, "a", encoding="utf-8") as _log:
    _log.write(json.dumps(sys.argv[1:]) + "\\n")


def arg_after(flag):
    args = sys.argv[1:]
    return args[args.index(flag) + 1] if flag in args else None
'''

STDOUT_PAYLOAD = {
    "text": " hello world ",
    "language": "en",
    "segments": [
        {"id": 0, "start": 0.0, "end": 1.5, "text": " hello ", "tokens": [50364, 2425]},
        {"id": 1, "start": 1.5, "end": 3, "text": " world ", "avg_logprob": -0.2},
    ],
}

STDOUT_WHISPER = f'''
print("whisper_init_from_file: loading model")
print({json.dumps(json.dumps(STDOUT_PAYLOAD))})
'''

FILE_WHISPER = '''
audio = sys.argv[1]
out_dir = arg_after("--output_dir")
stem = os.path.splitext(os.path.basename(audio))[0]
if stem.startswith("slow"):
    time.sleep(0.5)
payload = {
    "text": "  transcript of " + stem + "\\n",
    "segments": [{"start": 0, "end": 2.25, "text": " " + stem + " "}],
    "language": "en",
}
with open(os.path.join(out_dir, stem + ".json"), "w", encoding="utf-8") as f:
    json.dump(payload, f)
'''


class FakeWhisper:
    """Path to a fake executable plus access to the arguments it was called with."""

    def __init__(self, path: Path, args_log: Path):
        self.path = str(path)
        self.args_log = args_log

    @property
    def calls(self) -> list:
        if not self.args_log.exists():
            return []
        return [json.loads(line) for line in self.args_log.read_text(encoding="utf-8").splitlines()]


@pytest.fixture
def make_whisper(tmp_path):
    def _make(body: str, name: str = "whisper") -> FakeWhisper:
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        args_log = bin_dir / f"{name}.args"
        script = bin_dir / f"{name}_impl.py"
        script.write_text(f"ARGS_LOG = {str(args_log)!r}\n" + PRELUDE + textwrap.dedent(body), encoding="utf-8")
        wrapper = bin_dir / name
        wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n', encoding="utf-8")
        wrapper.chmod(0o755)
        return FakeWhisper(wrapper, args_log)

    return _make


@pytest.fixture
def stdout_whisper(make_whisper):
    return make_whisper(STDOUT_WHISPER, name="whisper-cpp")


@pytest.fixture
def file_whisper(make_whisper):
    return make_whisper(FILE_WHISPER, name="whisper-file")


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "meeting.wav"
    path.write_bytes(b"RIFF....WAVEfmt ")
    return str(path)


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / "ggml-base.bin"
    path.write_bytes(b"ggml")
    return str(path)


@pytest.fixture
def temp_root(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def restore_logging():
    """setup_logging replaces root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
