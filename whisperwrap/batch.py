"""
Batch transcription entry point.

Transcribes every audio file in a directory, smallest first, writing one
transcript per input file.
"""

import argparse
import asyncio
import logging
import os
import sys
import time
from collections import Counter
from typing import Dict, List, Optional, Tuple

from tqdm import tqdm

from .cli import add_common_arguments, build_request, load_settings
from .exceptions import ConfigurationError, WhisperWrapError
from .formatter import TranscriptFormatter, get_formatter
from .transcriber import Transcriber, WhisperTranscriber
from .utils import ensure_dir_exists

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = (".wav", ".mp3", ".m4a", ".flac", ".ogg", ".webm", ".mp4")


def find_and_sort_audio(input_dir: str) -> List[Tuple[str, int]]:
    """
    Finds all audio files in the input directory and sorts them by size.

    Args:
        input_dir: The directory to search for audio files.

    Returns:
        A list of (filepath, filesize) tuples sorted by filesize ascending.

    Raises:
        FileNotFoundError: If the input directory doesn't exist.
        ValueError: If the input path is not a directory.
    """
    if not os.path.exists(input_dir):
        raise FileNotFoundError(f"Input directory not found: {input_dir}")
    if not os.path.isdir(input_dir):
        raise ValueError(f"Input path is not a directory: {input_dir}")

    files = []
    logger.info(f"Scanning directory for audio files: {input_dir}")
    for filename in sorted(os.listdir(input_dir)):
        if filename.lower().endswith(AUDIO_EXTENSIONS):
            filepath = os.path.join(input_dir, filename)
            try:
                if os.path.isfile(filepath):
                    files.append((filepath, os.path.getsize(filepath)))
            except OSError as e:
                logger.warning(f"Could not access file {filepath}: {e}. Skipping.")

    files.sort(key=lambda item: item[1])
    logger.info(f"Found {len(files)} audio files. Sorted by size (smallest first).")
    return files


def transcript_names(audio_paths: List[str], extension: str) -> Dict[str, str]:
    """
    Maps each audio path to its transcript file name.

    Normally "talk.wav" -> "talk.txt". When two inputs share a stem
    (talk.wav and talk.mp3) each keeps its source extension instead:
    "talk.wav.txt" and "talk.mp3.txt".
    """
    stems = Counter(os.path.splitext(os.path.basename(path))[0] for path in audio_paths)
    names = {}
    for path in audio_paths:
        filename = os.path.basename(path)
        stem = os.path.splitext(filename)[0]
        base_name = filename if stems[stem] > 1 else stem
        names[path] = f"{base_name}.{extension}"
    return names


async def transcribe_all(
    audio_paths: List[str],
    output_dir: str,
    transcriber: Transcriber,
    formatter: TranscriptFormatter,
    config: dict,
    jobs: int = 1,
) -> Tuple[int, int]:
    """
    Transcribes audio files with at most `jobs` whisper processes at a time.

    Each file gets its own request; one failure does not stop the others.

    Returns:
        (files_processed, files_failed)
    """
    semaphore = asyncio.Semaphore(max(1, jobs))
    output_names = transcript_names(audio_paths, formatter.extension)
    files_processed = 0
    files_failed = 0

    async def process(audio_path: str, pbar: tqdm) -> None:
        nonlocal files_processed, files_failed
        filename = os.path.basename(audio_path)
        output_path = os.path.join(output_dir, output_names[audio_path])
        async with semaphore:
            pbar.set_description(f"Processing: {filename[:30]}")
            started = time.time()
            try:
                result = await transcriber.transcribe_async(build_request(audio_path, config))
                formatter.write(result, output_path)
                files_processed += 1
                logger.info(f"Transcribed {filename} in {time.time() - started:.2f}s -> {output_path}")
            except WhisperWrapError as e:
                logger.error(f"Transcription failed for '{filename}': {e}")
                files_failed += 1
            except Exception as e:
                logger.error(f"An unexpected error occurred processing '{filename}': {e}", exc_info=True)
                files_failed += 1
            finally:
                pbar.update(1) # Increment progress bar regardless of success/failure

    with tqdm(total=len(audio_paths), unit="file", desc="Starting Batch") as pbar:
        await asyncio.gather(*(process(path, pbar) for path in audio_paths))

    return files_processed, files_failed


def _create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="whisperwrap-batch",
        description="Transcribe all audio files in a directory with a local whisper executable.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "-i", "--input-dir",
        required=True,
        help="Directory containing the input audio files."
    )
    parser.add_argument(
        "-o", "--output-dir",
        default=None,
        help="Directory for the transcripts. Defaults to <input-dir>/transcripts."
    )
    parser.add_argument(
        "-j", "--jobs",
        type=int,
        default=1,
        help="Number of whisper processes to run at the same time."
    )
    add_common_arguments(parser)
    return parser


def run_batch_processing(argv: Optional[List[str]] = None) -> None:
    """Parses arguments, sets up, and runs the batch transcription."""
    args = _create_parser().parse_args(argv)

    try:
        config = load_settings(args)
    except (ConfigurationError, FileNotFoundError) as e:
        logger.critical(f"Failed to load configuration: {e}")
        sys.exit(1)

    if args.jobs < 1:
        logger.critical(f"--jobs must be at least 1, got {args.jobs}")
        sys.exit(1)

    try:
        audio_paths = [item[0] for item in find_and_sort_audio(args.input_dir)]
    except (FileNotFoundError, ValueError) as e:
        logger.critical(f"Input directory error: {e}")
        sys.exit(1)
    if not audio_paths:
        logger.warning(f"No audio files found in {args.input_dir}. Exiting.")
        sys.exit(0)

    output_dir = args.output_dir or os.path.join(args.input_dir, "transcripts")
    try:
        ensure_dir_exists(output_dir)
        transcriber = WhisperTranscriber.from_config(config)
        formatter = get_formatter(config.get('output_format') or 'txt')
    except WhisperWrapError as e:
        logger.critical(f"Could not set up batch transcription: {e}")
        sys.exit(1)

    total_files = len(audio_paths)
    batch_start_time = time.time()
    logger.info(f"--- Starting batch transcription for {total_files} files ---")
    try:
        files_processed, files_failed = asyncio.run(
            transcribe_all(audio_paths, output_dir, transcriber, formatter, config, jobs=args.jobs)
        )
    except KeyboardInterrupt:
        logger.warning("Batch process interrupted by user (Ctrl+C). Exiting.")
        sys.exit(1)

    logger.info(f"--- Batch transcription finished in {time.time() - batch_start_time:.2f} seconds ---")
    logger.info(f"Successfully processed: {files_processed}/{total_files} files")
    logger.info(f"Failed: {files_failed}/{total_files} files")
    sys.exit(1 if files_failed > 0 else 0)


def main() -> None:
    run_batch_processing()


if __name__ == "__main__":
    main()
