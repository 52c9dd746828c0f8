"""task-wrapper command-line entry point.

Runs one command through TaskWrapper, mirrors its output to the terminal
and exits with its exit code.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from collections.abc import Sequence

import anyio

from . import __version__
from .channels import ChannelMode
from .config import Config, get_config
from .controller import TerminalController
from .errors import ProcessStartError
from .wrapper import TaskWrapper

__all__ = ["build_parser", "run_command", "main", "exit_status"]

logger = logging.getLogger(__name__)

# Shell convention for "command could not be run"
EXIT_START_FAILED = 127


def exit_status(exit_code: int) -> int:
    """Map a child return code to a shell exit status (128 + signal)."""
    if exit_code < 0:
        return 128 - exit_code
    return exit_code


def _parse_env_item(item: str) -> tuple[str, str]:
    key, sep, value = item.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {item!r}")
    return key, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="task-wrapper",
        description="Run a command and report when it has really finished.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--cwd", default=None, help="Working directory for the command")
    parser.add_argument(
        "--env",
        action="append",
        type=_parse_env_item,
        default=[],
        metavar="KEY=VALUE",
        help="Extra environment variable (repeatable); the rest is inherited",
    )
    parser.add_argument(
        "--clear-env",
        action="store_true",
        help="Start from an empty environment instead of inheriting",
    )
    stdin_group = parser.add_mutually_exclusive_group()
    stdin_group.add_argument("--input", default=None, help="Text to send to the command's stdin")
    stdin_group.add_argument(
        "--pass-stdin",
        action="store_true",
        help="Connect this process's stdin directly to the command",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Stop the command after this many seconds",
    )
    parser.add_argument("--input-encoding", default=None, help="Encoding for --input")
    parser.add_argument("--output-encoding", default=None, help="Encoding of the command's output")
    parser.add_argument("launch_path", help="Executable to run")
    parser.add_argument("arguments", nargs=argparse.REMAINDER, help="Arguments for the executable")
    return parser


async def run_command(args: argparse.Namespace, controller: TerminalController, config: Config) -> int:
    """Run the parsed command.

    Returns:
        Shell exit status for this process
    """
    env = None
    if args.env or args.clear_env:
        env = {} if args.clear_env else dict(os.environ)
        env.update(dict(args.env))

    if args.pass_stdin:
        stdin = sys.stdin
    elif args.input is not None:
        stdin = ChannelMode.PIPE
    else:
        stdin = ChannelMode.DEVNULL

    wrapper = TaskWrapper(
        controller,
        args.launch_path,
        args.arguments,
        stdin=stdin,
        env=env,
        cwd=args.cwd,
        config=config,
    )
    if args.input_encoding:
        wrapper.set_input_encoding(args.input_encoding)
    if args.output_encoding:
        wrapper.set_output_encoding(args.output_encoding)

    try:
        await wrapper.start()
    except ProcessStartError as e:
        logger.error(f"Could not start {args.launch_path}: {e}")
        return EXIT_START_FAILED

    logger.info(f"Started {args.launch_path} pid={wrapper.pid}")

    if args.input is not None:
        wrapper.write(args.input)
        wrapper.close_input()

    try:
        # move_on_after(None) never expires
        with anyio.move_on_after(args.timeout) as scope:
            exit_code = await wrapper.wait()
        if scope.cancelled_caught:
            logger.warning(f"Timed out after {args.timeout}s, stopping pid={wrapper.pid}")
            await wrapper.aclose()
            if wrapper.exit_code is None:
                return 128 + signal.SIGKILL
            exit_code = wrapper.exit_code
    finally:
        await wrapper.aclose()

    logger.info(f"{args.launch_path} finished exit_code={exit_code}")
    return exit_status(exit_code)


def setup_logging(config: Config) -> None:
    """Configure logging for the command-line entry point."""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.WARNING

    # Third-party loggers stay at WARNING
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("task_wrapper").setLevel(log_level)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    config = get_config()
    setup_logging(config)
    logger.debug(f"Loaded {config}")

    controller = TerminalController()
    try:
        status = asyncio.run(run_command(args, controller, config))
    except KeyboardInterrupt:
        status = 128 + signal.SIGINT
    sys.exit(status)


if __name__ == "__main__":
    main()
