from __future__ import annotations

import argparse
import asyncio
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from live_transcription.app.headless_mic import HeadlessTranscriptionRunner
from live_transcription.app.wiring import create_client, create_secret_store
from live_transcription.config.paths import default_settings_path
from live_transcription.config.settings import AppSettings, load_settings
from live_transcription.core.stt.client import preview_client

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(*, verbose: bool = False, log_file: Path | None = None) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=0, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="live-transcription")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument(
        "--config",
        type=Path,
        default=default_settings_path(),
        help="Path to settings JSON (default: user config dir)",
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Also write logs to a rotating file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("auth-status", help="Print the recognition authorization status")
    sub.add_parser("run-mic", help="Transcribe the microphone until Ctrl-C")

    preview = sub.add_parser("run-preview", help="Stream canned text without audio hardware")
    preview.add_argument("--interval", type=float, default=0.3, help="Seconds between words")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__

        print(__version__)
        return 0

    if args.command is None:
        parser.print_help()
        return 2

    configure_logging(verbose=args.verbose, log_file=args.log_file)

    if args.command == "run-preview":
        runner = HeadlessTranscriptionRunner(client=preview_client(interval_s=args.interval))
        return _run(runner)

    try:
        settings = _load_settings_or_default(args.config)
        secrets = create_secret_store(settings.secrets)
        client = create_client(settings, secrets=secrets)
    except Exception as exc:
        print(f"Error: failed to initialize transcription: {exc}", flush=True)
        return 2

    if args.command == "auth-status":
        status = asyncio.run(client.request_authorization())
        print(status.value)
        return 0

    if args.command == "run-mic":
        return _run(HeadlessTranscriptionRunner(client=client))

    parser.print_help()
    return 2


def _run(runner: HeadlessTranscriptionRunner) -> int:
    try:
        return asyncio.run(runner.run())
    except KeyboardInterrupt:
        return 0


def _load_settings_or_default(path: Path) -> AppSettings:
    if path.exists():
        return load_settings(path)
    return AppSettings()


if __name__ == "__main__":
    raise SystemExit(main())
