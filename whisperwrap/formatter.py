"""Handles writing transcription results to text, JSON and subtitle files."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Dict, List, Type

from .models import TranscriptionResult, Segment
from .exceptions import FormattingError
from .utils import format_time_srt, format_time_vtt

logger = logging.getLogger(__name__)

class TranscriptFormatter(ABC):
    """Abstract base class for transcript formatters."""

    extension: str = ""

    @abstractmethod
    def render(self, result: TranscriptionResult) -> str:
        """Returns the file content for a transcription result."""
        pass

    def write(self, result: TranscriptionResult, output_path: str) -> None:
        """
        Renders the result and writes it to output_path.

        Args:
            result: The result from the transcription process.
            output_path: The path to save the formatted file.

        Raises:
            FormattingError: If writing fails.
        """
        logger.info(f"Writing {self.extension} transcript to: {output_path}")
        content = self.render(result)
        try:
            with open(output_path, 'w', encoding='utf-8') as f:
                f.write(content)
        except OSError as e:
            logger.error(f"Failed to write transcript to {output_path}: {e}", exc_info=True)
            raise FormattingError(f"Could not write transcript file {output_path}: {e}") from e


class TextFormatter(TranscriptFormatter):
    """Plain transcript text, one trailing newline."""

    extension = "txt"

    def render(self, result: TranscriptionResult) -> str:
        return f"{result.text}\n"


class JSONFormatter(TranscriptFormatter):
    """The normalized result as JSON (text plus start/end/text segments)."""

    extension = "json"

    def render(self, result: TranscriptionResult) -> str:
        payload = {
            'text': result.text,
            'segments': [asdict(segment) for segment in result.segments],
        }
        return json.dumps(payload, ensure_ascii=False, indent=2) + "\n"


class SRTFormatter(TranscriptFormatter):
    """Formats segments into the SRT (SubRip Text) format."""

    extension = "srt"

    def __init__(self, max_chars_per_line: int = 42, max_lines_per_block: int = 2):
        self.max_chars_per_line = max_chars_per_line
        self.max_lines_per_block = max_lines_per_block

    def _format_time(self, seconds: float) -> str:
        return format_time_srt(seconds)

    def _wrap(self, text: str) -> str:
        """Basic word wrap, limited to max_lines_per_block lines."""
        lines: List[str] = []
        current = ""
        for word in text.split():
            if not current:
                current = word
            elif len(current) + len(word) + 1 <= self.max_chars_per_line:
                current += f" {word}"
            else:
                lines.append(current)
                current = word
        if current:
            lines.append(current)
        if len(lines) > self.max_lines_per_block:
            # Fold the overflow into the last allowed line rather than dropping words
            head = lines[:self.max_lines_per_block - 1]
            tail = " ".join(lines[self.max_lines_per_block - 1:])
            lines = head + [tail]
        return "\n".join(lines)

    def _cues(self, segments: List[Segment]) -> List[str]:
        cues = []
        index = 1
        for segment in segments:
            if not segment.text:
                continue # Nothing to show
            end = segment.end
            if end <= segment.start:
                logger.debug(f"Segment {index} has zero duration, extending end time slightly.")
                end = segment.start + 0.1
            timing = f"{self._format_time(segment.start)} --> {self._format_time(end)}"
            cues.append(self._cue(index, timing, self._wrap(segment.text)))
            index += 1
        return cues

    def _cue(self, index: int, timing: str, text: str) -> str:
        return f"{index}\n{timing}\n{text}\n"

    def render(self, result: TranscriptionResult) -> str:
        return "\n".join(self._cues(list(result.segments)))


class VTTFormatter(SRTFormatter):
    """Formats segments into WebVTT: header plus '.' millisecond separator."""

    extension = "vtt"

    def _format_time(self, seconds: float) -> str:
        return format_time_vtt(seconds)

    def _cue(self, index: int, timing: str, text: str) -> str:
        return f"{timing}\n{text}\n"

    def render(self, result: TranscriptionResult) -> str:
        cues = self._cues(list(result.segments))
        return "WEBVTT\n\n" + "\n".join(cues)


FORMATTERS: Dict[str, Type[TranscriptFormatter]] = {
    'txt': TextFormatter,
    'json': JSONFormatter,
    'srt': SRTFormatter,
    'vtt': VTTFormatter,
}

def get_formatter(output_format: str) -> TranscriptFormatter:
    """
    Returns a formatter instance for 'txt', 'json', 'srt' or 'vtt'.

    Raises:
        FormattingError: If the format is not supported.
    """
    formatter_cls = FORMATTERS.get(output_format.lower())
    if formatter_cls is None:
        raise FormattingError(
            f"Unsupported output format '{output_format}'. Choose one of: {', '.join(FORMATTERS)}"
        )
    return formatter_cls()
