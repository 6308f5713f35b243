from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

from tuner.config import AppConfig, get_default_config_path
from tuner.llm_client import validate_llm_settings
from tuner.models import UI_DOMAIN_MAX, UI_DOMAIN_MIN, Bound, StyleParameter
from tuner.session import CaptionSession
from tuner.style_service import LlmStyleService
from tuner.subtitles import compose_srt, compose_webvtt, export_bounds, read_srt
from tuner.token_utils import build_token_counter, configure_token_counter

logger = logging.getLogger(__name__)

LogCallback = Callable[[str, str], None]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("srt", type=Path, help="SubRip file with the original captions.")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json (user profile by default).")
    parser.add_argument("--base-url", default=None, help="Override the chat-completions base URL.")
    parser.add_argument("--model", default=None, help="Override the model identifier for every operation.")
    parser.add_argument("--api-key", default=None, help="API key (falls back to config, then OPENAI_API_KEY).")
    parser.add_argument("--log-level", default=None, help="Logging level override (DEBUG, INFO, WARNING).")


def build_parser() -> argparse.ArgumentParser:
    """Construct the CLI entry point with subcommands and shared options."""
    parser = argparse.ArgumentParser(
        prog="caption-tuner",
        description="Calibrate and restyle non-speech captions with a language model.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    calibrate_parser = subparsers.add_parser("calibrate", help="Estimate the style parameters of a caption file.")
    _add_common_arguments(calibrate_parser)

    tune_parser = subparsers.add_parser("tune", help="Move one slider of one bound and write the restyled track.")
    _add_common_arguments(tune_parser)
    tune_parser.add_argument(
        "--bound", choices=[bound.value for bound in Bound], required=True, help="Bound track to tune."
    )
    tune_parser.add_argument(
        "--parameter",
        choices=[parameter.value for parameter in StyleParameter],
        required=True,
        help="Style parameter to change.",
    )
    tune_parser.add_argument(
        "--value", type=float, required=True, help=f"Slider position in [{UI_DOMAIN_MIN:g}, {UI_DOMAIN_MAX:g}]."
    )
    tune_parser.add_argument(
        "--focal-ms", type=int, default=0, help="Playback position (ms) whose neighbours are previewed first."
    )
    tune_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Output file; .srt, .vtt or .json (bounds export). Defaults to <input>.<bound>.srt.",
    )
    return parser


def load_config(args: argparse.Namespace) -> AppConfig:
    config = AppConfig(args.config or get_default_config_path())
    overrides = {"llm_base_url": args.base_url, "llm_model": args.model, "llm_api_key": args.api_key}
    for key, value in overrides.items():
        if value:
            config.settings[key] = value
    ok, message = validate_llm_settings(
        config.get("llm_base_url"), config.get("llm_model"), config.get("llm_api_key")
    )
    if not ok:
        raise ValueError(message)
    return config


def build_session(config: AppConfig, items) -> CaptionSession:
    service = LlmStyleService.from_config(config)
    return CaptionSession(
        service,
        items,
        preview_count=config.get("preview_count"),
        upcoming_chunk_size=config.get("upcoming_chunk_size"),
        window_size=config.get("window_size_ms"),
    )


def default_output_path(source: Path, bound: Bound) -> Path:
    return source.with_name(f"{source.stem}.{bound.value}.srt")


def write_output(session: CaptionSession, bound: Bound, path: Path) -> None:
    suffix = path.suffix.lower()
    track = session.track(bound)
    if suffix == ".vtt":
        content = compose_webvtt(track)
    elif suffix == ".json":
        content = json.dumps(export_bounds(session), indent=2, ensure_ascii=False)
    else:
        content = compose_srt(track)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


async def run_calibrate(session: CaptionSession, log: LogCallback) -> int:
    values = await session.calibrate()
    log("success", f"detail={values.detail:.2f} expressiveness={values.expressiveness:.2f}")
    return 0


async def run_tune(session: CaptionSession, args: argparse.Namespace, log: LogCallback) -> int:
    bound = Bound.from_flag(args.bound)
    parameter = StyleParameter.from_flag(args.parameter)

    values = await session.calibrate()
    log("info", f"Calibrated: detail={values.detail:.2f} expressiveness={values.expressiveness:.2f}")

    invocation = await session.preview(bound, parameter, args.value, focal_point=args.focal_ms)
    if invocation.error is not None:
        log("error", f"Preview failed: {invocation.error}")
        return 1
    log("info", f"Preview ready around {args.focal_ms} ms.")

    def on_progress(processed: int, total: int) -> None:
        log("info", f"Restyled {processed}/{total} remaining captions.")

    invocation = await session.commit(bound, focal_point=args.focal_ms, on_progress=on_progress)
    if invocation is not None and invocation.error is not None:
        log("error", f"Commit failed: {invocation.error}")
        return 1

    output = args.output or default_output_path(args.srt, bound)
    write_output(session, bound, output)
    positions = session.slider_positions(bound)
    log(
        "success",
        f"{bound.value.capitalize()} bound saved to {output} "
        f"(detail={positions[StyleParameter.DETAIL]}, expressiveness={positions[StyleParameter.EXPRESSIVENESS]}).",
    )
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        config = load_config(args)
        configure_logging(args.log_level or config.get("log_level") or "INFO")
        if config.load_warning:
            _console_log("warning", config.load_warning)
        if args.command == "tune" and not UI_DOMAIN_MIN <= args.value <= UI_DOMAIN_MAX:
            raise ValueError(f"--value must be within [{UI_DOMAIN_MIN:g}, {UI_DOMAIN_MAX:g}]")
        items = read_srt(args.srt)
    except (OSError, ValueError) as exc:
        parser.error(str(exc))

    configure_token_counter(build_token_counter(config.get("transform_model")))
    session = build_session(config, items)
    eligible = sum(1 for item in items if item.is_eligible)
    _console_log("info", f"Loaded {len(items)} captions ({eligible} non-speech) from {args.srt.name}.")

    if args.command == "calibrate":
        return asyncio.run(run_calibrate(session, _console_log))
    return asyncio.run(run_tune(session, args, _console_log))


def _console_log(level: str, message: str) -> None:
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    if level.lower() == "success":
        prefix = "[OK]"
    elif level.lower() == "warning":
        prefix = "[WARN]"
    elif level.lower() == "error":
        prefix = "[ERR]"
    else:
        prefix = "[INFO]"
    print(f"{prefix} [{timestamp}] {message}")


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
