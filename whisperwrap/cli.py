"""Command-Line Interface handler for whisperwrap."""

import argparse
import logging
import os
import sys
from typing import List, Optional

from .config_loader import ConfigLoader, DEFAULT_CONFIG_PATH
from .formatter import FORMATTERS, get_formatter
from .log_setup import setup_logging
from .models import TranscriptionRequest
from .transcriber import WhisperTranscriber
from .exceptions import WhisperWrapError, ConfigurationError

logger = logging.getLogger(__name__) # Get logger for this module

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Adds the whisper option flags shared by the single-file and batch commands."""
    parser.add_argument(
        "--model",
        default=None, # Default taken from config
        help="Model name (tiny, base, small, medium, large, turbo) or path to a model file."
    )
    parser.add_argument(
        "--language",
        default=None,
        help="Language code of the audio (e.g. pt, en)."
    )
    parser.add_argument(
        "--threads",
        type=float,
        default=None,
        help="Number of CPU threads."
    )
    parser.add_argument(
        "--translate",
        action="store_true",
        default=None,
        help="Translate to English."
    )
    parser.add_argument(
        "--binary",
        default=None,
        help="Override the whisper executable path."
    )
    parser.add_argument(
        "--output-mode",
        default=None,
        choices=["stdout", "file"],
        help="How the executable returns JSON: 'stdout' (whisper.cpp) or 'file' (openai-whisper)."
    )
    parser.add_argument(
        "--format",
        dest="output_format",
        default=None,
        choices=sorted(FORMATTERS),
        help="Transcript output format."
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Path to the configuration YAML file."
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=LOG_LEVELS,
        help="Set the logging level for console and file output."
    )


def load_settings(args: argparse.Namespace) -> dict:
    """
    Sets up logging, loads the config file and applies CLI overrides.

    Returns:
        The merged configuration dictionary.

    Raises:
        ConfigurationError: If the config file is invalid.
        FileNotFoundError: If an explicitly given config file does not exist.
    """
    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    setup_logging(log_level=log_level)

    config = ConfigLoader().load_or_default(args.config)

    # Re-configure logging now that the log directory is known
    if config.get('log_dir'):
        setup_logging(log_level=log_level, log_dir=config['log_dir'], log_file=config.get('log_file') or 'whisperwrap.log')

    overrides = {
        'model': args.model,
        'language': args.language,
        'threads': args.threads,
        'translate': args.translate,
        'binary_path': args.binary,
        'output_mode': args.output_mode,
        'output_format': args.output_format,
    }
    for key, value in overrides.items():
        if value is not None:
            logger.info(f"Overriding {key} from config with CLI argument: {value}")
            config[key] = value
    return config


def build_request(audio_path: str, config: dict) -> TranscriptionRequest:
    """Creates a request for one audio file from the merged configuration."""
    return TranscriptionRequest(
        audio_path=audio_path,
        language=config.get('language'),
        threads=config.get('threads'),
        translate=bool(config.get('translate')),
    )


class CLIHandler:
    """Parses arguments and runs a single transcription."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        parser = argparse.ArgumentParser(
            prog="whisperwrap",
            description="Transcribe an audio file with a local whisper executable.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter # Show defaults in help
        )
        parser.add_argument(
            "audio",
            help="Path to the input audio file."
        )
        parser.add_argument(
            "--file",
            default=None,
            help="Write the transcript to this file instead of stdout."
        )
        parser.add_argument(
            "--timeout",
            type=float,
            default=None,
            help="Give up and kill the whisper process after this many seconds."
        )
        add_common_arguments(parser)
        return parser

    def _resolve_format(self, args: argparse.Namespace, config: dict) -> str:
        if args.output_format:
            return args.output_format
        if args.file:
            # Guess from the destination name, e.g. out.srt
            ext = os.path.splitext(args.file)[1].lstrip('.').lower()
            if ext in FORMATTERS:
                return ext
        return config.get('output_format') or 'txt'

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Parses arguments, loads config, transcribes and writes the result."""
        args = self.parser.parse_args(argv)

        try:
            config = load_settings(args)
        except ConfigurationError as e:
            logger.critical(f"Failed to load configuration from {args.config}: {e}")
            sys.exit(1)
        except FileNotFoundError:
            logger.critical(f"Configuration file not found: {args.config}")
            sys.exit(1)

        try:
            transcriber = WhisperTranscriber.from_config(config)
            request = build_request(args.audio, config)
            formatter = get_formatter(self._resolve_format(args, config))

            result = transcriber.transcribe(request, timeout=args.timeout)

            if args.file:
                formatter.write(result, os.path.abspath(args.file))
            else:
                sys.stdout.write(formatter.render(result))
                sys.stdout.flush()
            sys.exit(0)

        except WhisperWrapError as e:
            # Catch errors originating from our application logic
            logger.debug("Transcription failed", exc_info=True)
            sys.stderr.write(f"{e}\n")
            sys.exit(1)
        except KeyboardInterrupt:
            logger.warning("Process interrupted by user (Ctrl+C). Exiting.")
            sys.exit(1)
        except Exception as e:
            logger.critical(f"An unexpected critical error occurred at the top level: {e}", exc_info=True)
            sys.exit(2) # Use a different exit code for unexpected crashes


def main() -> None:
    CLIHandler().run()


if __name__ == "__main__":
    main()
