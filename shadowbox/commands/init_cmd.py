"""
InitCommand -- Write a starter project config
"""

from ..commands.base import BaseCommand
from ..config import detect_default_commands, write_sample_config


class InitCommand(BaseCommand):
    """Create .shadowbox/config.yaml with commands detected from the tree."""

    def init(self) -> int:
        path, created = write_sample_config(self.project_dir)
        if not created:
            print(f"Config already exists: {path}")
            return 0

        print(f"Created {path}")
        print("Detected commands:")
        for command in detect_default_commands(self.project_dir):
            print(f"  {command.name}: {command.cmd}")
        print("\nEdit the file, then run: shadowbox start")
        return 0


# =============================================================================
# Command Registration (Self-Registration Pattern)
# =============================================================================

def register_parser(subparsers):
    """Register init command parser."""
    p = subparsers.add_parser('init', help='Write a sample .shadowbox/config.yaml')
    return p


def handle(cli, args):
    """Handle init command dispatch."""
    return cli._init_cmd.init()
