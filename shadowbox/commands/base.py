"""
BaseCommand -- Shared foundation for all CLI commands

Provides access to CLI resources via composition.
Commands receive the CLI instance and access its resources through properties.
"""

from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ..core.session import Session

if TYPE_CHECKING:
    from ..cli import ShadowboxCLI


class BaseCommand:
    """
    Base class for CLI commands with access to shared resources.

    Commands don't load configuration or resolve sandboxes themselves;
    they go through the CLI instance so every command sees the same view.
    """

    def __init__(self, cli: 'ShadowboxCLI'):
        self._cli = cli

    # -------------------------------------------------------------------------
    # Core resources (convenience properties)
    # -------------------------------------------------------------------------

    @property
    def project_dir(self) -> Path:
        """Source tree root."""
        return self._cli.project_dir

    @property
    def config(self):
        """Effective configuration (without per-command overrides)."""
        return self._cli.config

    @property
    def config_manager(self):
        return self._cli.config_manager

    @property
    def agent(self) -> Optional[str]:
        """Agent label recorded on events, if any."""
        return self._cli.agent

    # -------------------------------------------------------------------------
    # Sandbox helpers
    # -------------------------------------------------------------------------

    def sandbox(self, explicit: Optional[str] = None) -> Path:
        """Resolve the sandbox or raise NoSandboxError."""
        return self._cli.require_sandbox(explicit)

    def session(self, explicit: Optional[str] = None) -> Session:
        """Tracking session for the resolved sandbox."""
        return Session(self.sandbox(explicit), self.config, agent=self.agent)
