"""
Tests for the Sandbox Manager -- create, registry, resolve, clean
"""

import os

from shadowbox.core.fsutil import CONTROL_DIR, read_json
from shadowbox.core.sandbox import (
    clean_sandboxes,
    read_meta,
    registry_path,
    resolve_sandbox,
    sandbox_id,
)


class TestSandboxId:

    def test_format(self):
        """<epoch-ms>-<6 hex>"""
        stamp, suffix = sandbox_id().split("-")
        assert stamp.isdigit() and len(stamp) >= 13
        assert len(suffix) == 6
        int(suffix, 16)

    def test_unique(self):
        assert len({sandbox_id() for _ in range(50)}) == 50


class TestCreateSandbox:

    def test_copies_tree_without_ignored_paths(self, sb_factory):
        sb_factory.create_tree({
            "src/app.py": "app",
            "dist/bundle.js": "bundle",
            ".git/HEAD": "ref",
            ".env": "SECRET=1",
        })
        sandbox = sb_factory.create_sandbox()

        assert sandbox.parent == sb_factory.source / CONTROL_DIR / "sandboxes"
        assert (sandbox / "src/app.py").read_text() == "app"
        assert (sandbox / ".env").read_text() == "SECRET=1"
        assert not (sandbox / "dist").exists()
        assert not (sandbox / ".git").exists()

    def test_writes_meta(self, sb_factory):
        config = sb_factory.config(["make"])
        sandbox = sb_factory.create_sandbox(config)

        meta = read_meta(sandbox)
        assert meta.source_root == str(sb_factory.source.resolve())
        assert meta.sandbox_root == str(sandbox)
        assert meta.created_at
        assert meta.config["commands"] == [{"name": "cmd1", "cmd": "make"}]

    def test_registers_most_recent(self, sb_factory):
        first = sb_factory.create_sandbox()
        second = sb_factory.create_sandbox()

        state = read_json(registry_path(sb_factory.source))
        assert state["lastSandbox"] == str(second)
        assert state["sandboxes"] == [str(first), str(second)]

    def test_never_copies_other_sandboxes(self, sb_factory):
        sb_factory.write("a.txt", "a")
        sb_factory.create_sandbox()
        second = sb_factory.create_sandbox()
        assert not (second / CONTROL_DIR / "sandboxes").exists()

    def test_links_dependency_dir(self, sb_factory):
        sb_factory.write("node_modules/left-pad/index.js", "module.exports = 1")
        sandbox = sb_factory.create_sandbox()

        link = sandbox / "node_modules"
        assert link.is_symlink()
        assert os.readlink(link) == str(sb_factory.source.resolve() / "node_modules")

    def test_dependency_link_disabled(self, sb_factory):
        sb_factory.write("node_modules/x/index.js", "x")
        sandbox = sb_factory.create_sandbox(sb_factory.config(link_dependencies=False))
        assert not os.path.lexists(sandbox / "node_modules")

    def test_explicit_existing_directory_reused_verbatim(self, sb_factory, tmp_path):
        """An existing explicit sandbox is not re-copied over."""
        sb_factory.write("a.txt", "source version")
        existing = tmp_path / "mine"
        existing.mkdir()
        (existing / "a.txt").write_text("sandbox version")

        sandbox = sb_factory.create_sandbox(explicit=str(existing))

        assert sandbox == existing.resolve()
        assert (sandbox / "a.txt").read_text() == "sandbox version"
        assert read_meta(sandbox) is not None
        assert resolve_sandbox(sb_factory.source) == sandbox

    def test_explicit_new_directory_gets_copy(self, sb_factory):
        sb_factory.write("a.txt", "a")
        sandbox = sb_factory.create_sandbox(explicit="../elsewhere")
        assert (sandbox / "a.txt").read_text() == "a"


class TestResolveSandbox:

    def test_none_when_nothing_registered(self, sb_factory):
        assert resolve_sandbox(sb_factory.source) is None

    def test_explicit_wins(self, sb_factory, tmp_path):
        sb_factory.create_sandbox()
        assert resolve_sandbox(sb_factory.source, str(tmp_path / "other")) == (tmp_path / "other").resolve()

    def test_falls_back_to_registry(self, sb_factory):
        sandbox = sb_factory.create_sandbox()
        assert resolve_sandbox(sb_factory.source) == sandbox

    def test_corrupt_registry_is_none(self, sb_factory):
        path = registry_path(sb_factory.source)
        path.parent.mkdir(parents=True)
        path.write_text("][")
        assert resolve_sandbox(sb_factory.source) is None


class TestCleanSandboxes:

    def test_removes_all_sandboxes(self, sb_factory):
        sandbox = sb_factory.create_sandbox()
        assert clean_sandboxes(sb_factory.source) is True
        assert not sandbox.exists()

    def test_idempotent(self, sb_factory):
        assert clean_sandboxes(sb_factory.source) is False
        assert clean_sandboxes(sb_factory.source) is False
