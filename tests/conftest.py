"""
Shared pytest fixtures for the shadowbox test suite.

Provides fixtures built on ShadowboxTestFactory: real source trees and
sandboxes under tmp_path, with the user config directory redirected so a
developer's ~/.shadowbox/config.yaml never leaks into a test.

Usage in tests:
    def test_something(sb_factory):
        sb_factory.write("a.txt", "hello\\n")
        sandbox = sb_factory.create_sandbox()

    def test_with_sandbox(sandbox_env):
        factory, sandbox = sandbox_env
"""

import logging

import pytest

from shadowbox.config import ConfigManager
from tests.factories import ShadowboxTestFactory


@pytest.fixture(autouse=True)
def isolated_user_config(tmp_path, monkeypatch):
    """Point the user config layer at an empty temp directory."""
    user_dir = tmp_path / "home" / ".shadowbox"
    monkeypatch.setattr(ConfigManager, "USER_CONFIG_DIR", user_dir)
    monkeypatch.setattr(ConfigManager, "USER_CONFIG_FILE", user_dir / "config.yaml")
    for key in ("SHADOWBOX_DEBOUNCE_MS", "SHADOWBOX_PARALLEL", "SHADOWBOX_RESTART_ON_CHANGE",
                "SHADOWBOX_AGENT", "SHADOWBOX_PROJECT", "SHADOWBOX_DEBUG"):
        monkeypatch.delenv(key, raising=False)
    return user_dir


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo setup_logging() so caplog keeps working across CLI tests."""
    sb_logger = logging.getLogger("shadowbox")
    level, propagate = sb_logger.level, sb_logger.propagate
    yield
    for handler in list(sb_logger.handlers):
        if getattr(handler, "_shadowbox", False):
            sb_logger.removeHandler(handler)
    sb_logger.setLevel(level)
    sb_logger.propagate = propagate


@pytest.fixture
def sb_factory(tmp_path):
    """
    Create an empty ShadowboxTestFactory.

    Example:
        def test_copy(sb_factory):
            sb_factory.write("src/app.py", "print('hi')\\n")
            sandbox = sb_factory.create_sandbox()
            assert (sandbox / "src/app.py").exists()
    """
    return ShadowboxTestFactory(tmp_path)


@pytest.fixture
def sandbox_env(sb_factory):
    """
    A factory plus a sandbox created from a small source tree.

    Source tree:
    - a.txt = "hello\\n"
    - src/main.py
    - docs/readme.md
    """
    sb_factory.create_tree({
        "a.txt": "hello\n",
        "src/main.py": "print('main')\n",
        "docs/readme.md": "# Readme\n",
    })
    return sb_factory, sb_factory.create_sandbox()
