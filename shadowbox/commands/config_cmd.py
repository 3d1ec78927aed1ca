"""
ConfigCommand -- View or change configuration

Handles configuration operations:
- Displaying the effective configuration
- Reading one value by dotted key
- Setting a value in the project or user config
"""

from ..commands.base import BaseCommand


class ConfigCommand(BaseCommand):
    """Command for configuration management."""

    def show_config(self) -> int:
        """Show current configuration."""
        print(self.config_manager.display(self.config))
        return 0

    def get_config(self, key: str) -> int:
        value = self.config_manager.get(key)
        if value is None:
            print(f"Error: Unknown setting: {key}")
            return 1
        print(value)
        return 0

    def set_config(self, key: str, value: str, scope: str = "project") -> int:
        """Set a configuration value."""
        error = self.config_manager.set(key, value, scope)
        if error:
            print(f"Error: {error}")
            return 1

        if scope == "project":
            saved_to = self.config_manager.project_config_path
        else:
            saved_to = self.config_manager.user_config_path
        print(f"Set {key} = {value}")
        print(f"Saved to {saved_to}")
        return 0


# =============================================================================
# Command Registration (Self-Registration Pattern)
# =============================================================================

def register_parser(subparsers):
    """Register config command parser."""
    p = subparsers.add_parser('config', help='View or set configuration')
    p.add_argument('--set', metavar='KEY=VALUE',
                   help='Set config value (e.g., tracking.max_diff_bytes=65536)')
    p.add_argument('--get', metavar='KEY',
                   help='Print one effective value (e.g., debounce_ms)')
    p.add_argument('--user', action='store_true',
                   help='Apply to user config instead of project')
    return p


def handle(cli, args):
    """Handle config command dispatch."""
    if args.set:
        if '=' not in args.set:
            print("Error: Use format KEY=VALUE (e.g., debounce_ms=500)")
            return 1
        key, value = args.set.split('=', 1)
        scope = "user" if args.user else "project"
        return cli._config_cmd.set_config(key.strip(), value.strip(), scope)
    if args.get:
        return cli._config_cmd.get_config(args.get)
    return cli._config_cmd.show_config()
