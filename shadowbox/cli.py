"""
CLI -- Command interface

Thin layer: parse flags, set up logging, resolve the project, dispatch to a
command module. Precondition failures print one line and exit 1; command
output from builds goes through the shadowbox.output logger.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from .config import Config, ConfigManager
from .core.errors import NoSandboxError, ShadowboxError
from .core.sandbox import resolve_sandbox
from .commands.apply_cmd import ApplyCommand
from .commands.clean import CleanCommand
from .commands.config_cmd import ConfigCommand
from .commands.context_cmd import ContextCommand
from .commands.diff_cmd import DiffCommand
from .commands.init_cmd import InitCommand
from .commands.note import NoteCommand
from .commands.start import StartCommand
from .commands.status import StatusCommand

logger = logging.getLogger("shadowbox")


class _CliFormatter(logging.Formatter):
    """[shadowbox] message for INFO, [shadowbox] LEVEL: message otherwise."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if record.name == "shadowbox.output":
            return message
        if record.levelno == logging.INFO:
            text = f"[shadowbox] {message}"
        else:
            text = f"[shadowbox] {record.levelname}: {message}"
        if record.exc_info and logger.isEnabledFor(logging.DEBUG):
            text += "\n" + self.formatException(record.exc_info)
        return text


def setup_logging(quiet: bool = False, debug: bool = False) -> None:
    """Install the stderr handler on the shadowbox logger (idempotent)."""
    if debug or os.environ.get("SHADOWBOX_DEBUG") == "1":
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    for handler in list(logger.handlers):
        if getattr(handler, "_shadowbox", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_CliFormatter())
    handler._shadowbox = True
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False


class ShadowboxCLI:
    """Resources shared by every command for one invocation."""

    def __init__(self, project_dir: Path, config_path: Optional[str] = None, agent: Optional[str] = None):
        self.project_dir = Path(project_dir).resolve()
        self.config_manager = ConfigManager(self.project_dir, config_path)
        self.agent = agent or os.environ.get("SHADOWBOX_AGENT") or None
        self._config: Optional[Config] = None

        # Initialize command handlers (modular architecture)
        self._init_cmd = InitCommand(self)
        self._start_cmd = StartCommand(self)
        self._status_cmd = StatusCommand(self)
        self._apply_cmd = ApplyCommand(self)
        self._clean_cmd = CleanCommand(self)
        self._context_cmd = ContextCommand(self)
        self._note_cmd = NoteCommand(self)
        self._diff_cmd = DiffCommand(self)
        self._config_cmd = ConfigCommand(self)

    @property
    def config(self) -> Config:
        """Effective configuration, loaded on first use."""
        if self._config is None:
            self._config = self.config_manager.load()
        return self._config

    def load_config(self, overrides: Optional[Dict[str, Any]] = None) -> Config:
        """Reload configuration with command-line overrides on top."""
        self._config = self.config_manager.load(overrides)
        return self._config

    def require_sandbox(self, explicit: Optional[str] = None) -> Path:
        """
        Resolve the sandbox for this project.

        Raises:
            NoSandboxError: nothing registered, or the resolved path is gone
        """
        sandbox_root = resolve_sandbox(self.project_dir, explicit)
        if sandbox_root is None:
            raise NoSandboxError()
        if not sandbox_root.is_dir():
            raise NoSandboxError(f"Sandbox not found: {sandbox_root}")
        return sandbox_root


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shadowbox",
        description="Shadowbox -- sandboxed live rebuilds with change tracking",
        epilog="Edit the sandbox, let the build re-run, apply when green."
    )

    parser.add_argument(
        '--project', '-p',
        default=os.environ.get("SHADOWBOX_PROJECT", "."),
        help='Source tree (default: SHADOWBOX_PROJECT or current directory)'
    )
    parser.add_argument('--config', '-c', metavar='PATH',
                        help='Project config file (default: .shadowbox/config.yaml)')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='Only log warnings and errors')
    parser.add_argument('--debug', action='store_true',
                        help='Verbose logging (also SHADOWBOX_DEBUG=1)')
    parser.add_argument('--agent', metavar='NAME',
                        help='Agent label recorded on runs and notes (also SHADOWBOX_AGENT)')
    parser.add_argument(
        '--version', '-V',
        action='version',
        version=f'shadowbox {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Register all commands from command modules (self-registration pattern)
    from .commands import register_all
    register_all(subparsers)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the shadowbox CLI.

    Returns the process exit status.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(quiet=args.quiet, debug=args.debug)

    if not args.command:
        parser.print_help()
        return 0

    from .commands import dispatch
    cli = ShadowboxCLI(Path(args.project), config_path=args.config, agent=args.agent)

    try:
        result = dispatch(args.command, cli, args)
    except ShadowboxError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.error("%s", e, exc_info=True)
        return 1
    return result or 0


if __name__ == '__main__':
    sys.exit(main())
