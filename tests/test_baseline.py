"""
Tests for BaselineTracker -- change detection, diffs and baseline advancement

These tests validate:
- The a.txt/b.txt scenario end to end
- Idempotent full rescans
- Incremental hints agree with full scans
- Diffs apply back onto the baseline exactly
- Skip reasons (too_large, binary, symlink) and diff truncation
"""

import logging
import re

import pytest

from shadowbox.core import baseline
from shadowbox.core.baseline import ChangeHint, ChangeType, unified_patch


def apply_patch(original: str, patch: str) -> str:
    """Apply a single-file unified diff to original text."""
    src = original.splitlines(keepends=True)
    lines = patch.splitlines(keepends=True)
    out = []
    pos = 0
    prev_tag = None
    i = 0
    while i < len(lines) and not lines[i].startswith("@@"):
        i += 1
    while i < len(lines):
        m = re.match(r"@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@", lines[i])
        start, count = int(m.group(1)), m.group(2)
        old_start = start if count == "0" else start - 1
        out.extend(src[pos:old_start])
        pos = old_start
        i += 1
        while i < len(lines) and not lines[i].startswith("@@"):
            line = lines[i]
            i += 1
            if line.startswith("\\"):
                if prev_tag in (" ", "+"):
                    out[-1] = out[-1].rstrip("\n")
                continue
            tag, body = line[0], line[1:]
            if tag == " ":
                out.append(body)
                pos += 1
            elif tag == "-":
                pos += 1
            elif tag == "+":
                out.append(body)
            prev_tag = tag
    out.extend(src[pos:])
    return "".join(out)


@pytest.fixture
def tracked(sandbox_env):
    """Sandbox with a fresh baseline: (factory, sandbox, tracker)."""
    factory, sandbox = sandbox_env
    tracker = factory.tracker(sandbox)
    tracker.ensure_baseline()
    return factory, sandbox, tracker


def _summary(changes):
    return [(c.path, c.type) for c in changes]


class TestEnsureBaseline:

    def test_indexes_every_tracked_file(self, tracked):
        factory, sandbox, tracker = tracked
        index = tracker.load_index()
        assert set(index.files) == {"a.txt", "src/main.py", "docs/readme.md"}
        assert index.files["a.txt"].kind == "file"
        assert index.files["a.txt"].size == len("hello\n")
        assert index.updated_at

    def test_idempotent(self, tracked):
        """A second call leaves the existing baseline alone."""
        factory, sandbox, tracker = tracked
        (sandbox / "a.txt").write_text("changed\n")
        assert tracker.ensure_baseline() is False
        assert (tracker.baseline_root / "a.txt").read_text() == "hello\n"

    def test_records_symlink_targets(self, sb_factory):
        sb_factory.write("real.txt", "x")
        sb_factory.symlink("alias.txt", "real.txt")
        sandbox = sb_factory.create_sandbox()
        tracker = sb_factory.tracker(sandbox)
        tracker.ensure_baseline()

        record = tracker.load_index().files["alias.txt"]
        assert record.kind == "symlink"
        assert record.target == "real.txt"


class TestComputeChanges:

    def test_modified_and_added_scenario(self, tracked):
        """Edit a.txt and add b.txt: exactly two changes, both with diffs."""
        factory, sandbox, tracker = tracked
        (sandbox / "a.txt").write_text("hello world\n")
        (sandbox / "b.txt").write_text("new\n")

        index = tracker.load_index()
        result = tracker.compute_changes(index)
        tracker.enrich_with_diff(result.changes, 512 * 1024, 128 * 1024)

        assert _summary(result.changes) == [("a.txt", ChangeType.MODIFIED), ("b.txt", ChangeType.ADDED)]
        assert all(c.diff for c in result.changes)
        assert "+hello world" in result.changes[0].diff
        assert "+new" in result.changes[1].diff

        tracker.apply_updates(result.pending, index)
        assert tracker.compute_changes(tracker.load_index()).changes == []

    def test_full_rescan_is_idempotent(self, tracked):
        """Two scans with no mutation in between: nothing, and an unchanged index."""
        factory, sandbox, tracker = tracked
        (sandbox / "src/main.py").write_text("print('edited')\n")
        index = tracker.load_index()
        tracker.apply_updates(tracker.compute_changes(index).pending, index)

        before = dict(tracker.load_index().files)
        second = tracker.compute_changes(tracker.load_index())
        assert second.changes == []
        assert second.pending == []
        assert tracker.load_index().files == before

    def test_deleted_file(self, tracked):
        factory, sandbox, tracker = tracked
        (sandbox / "docs/readme.md").unlink()

        index = tracker.load_index()
        result = tracker.compute_changes(index)
        tracker.enrich_with_diff(result.changes, 1024, 1024)

        assert _summary(result.changes) == [("docs/readme.md", ChangeType.DELETED)]
        assert "-# Readme" in result.changes[0].diff

        tracker.apply_updates(result.pending, index)
        assert "docs/readme.md" not in tracker.load_index().files
        assert not (tracker.baseline_root / "docs/readme.md").exists()

    def test_incremental_equals_full_for_single_edit(self, tracked):
        factory, sandbox, tracker = tracked
        (sandbox / "src/main.py").write_text("print('changed')\n")
        index = tracker.load_index()

        full = tracker.compute_changes(index, ChangeHint(full_scan=True))
        incremental = tracker.compute_changes(index, ChangeHint(paths={"src/main.py"}))

        assert [c.to_dict() for c in incremental.changes] == [c.to_dict() for c in full.changes]
        assert _summary(incremental.changes) == [("src/main.py", ChangeType.MODIFIED)]

    def test_incremental_only_inspects_hinted_paths(self, tracked):
        factory, sandbox, tracker = tracked
        (sandbox / "a.txt").write_text("edited\n")
        (sandbox / "b.txt").write_text("new\n")

        result = tracker.compute_changes(tracker.load_index(), ChangeHint(paths={"b.txt"}))
        assert _summary(result.changes) == [("b.txt", ChangeType.ADDED)]

    def test_hint_for_vanished_path_reports_nothing(self, tracked):
        """A path in neither the sandbox nor the index is not a change."""
        factory, sandbox, tracker = tracked
        result = tracker.compute_changes(tracker.load_index(), ChangeHint(paths={"ghost.txt"}))
        assert result.changes == []

    def test_hint_for_ignored_path_skipped(self, tracked):
        factory, sandbox, tracker = tracked
        factory.write("node_modules/pkg/index.js", "x", root=sandbox)
        result = tracker.compute_changes(tracker.load_index(), ChangeHint(paths={"node_modules/pkg/index.js"}))
        assert result.changes == []

    def test_hint_paths_normalized(self, tracked):
        factory, sandbox, tracker = tracked
        (sandbox / "a.txt").write_text("edited\n")
        result = tracker.compute_changes(tracker.load_index(), ChangeHint(paths={"/a.txt"}))
        assert _summary(result.changes) == [("a.txt", ChangeType.MODIFIED)]

    def test_corrupt_index_treated_as_empty(self, tracked, caplog):
        """A malformed index degrades to 'everything added' with a warning."""
        factory, sandbox, tracker = tracked
        tracker.index_path.write_text('{"files": "oops"}')

        with caplog.at_level(logging.WARNING, logger="shadowbox"):
            index = tracker.load_index()
        assert index.files == {}
        assert "malformed" in caplog.text

        result = tracker.compute_changes(index)
        assert {c.type for c in result.changes} == {ChangeType.ADDED}

    def test_file_removed_while_hashing(self, tracked, monkeypatch):
        """A path that vanishes between lstat and hashing is treated as absent."""
        factory, sandbox, tracker = tracked
        (sandbox / "tmp.swp").write_text("swap\n")
        real_hash = baseline.hash_file

        def unlink_then_hash(path):
            path.unlink()
            return real_hash(path)

        monkeypatch.setattr(baseline, "hash_file", unlink_then_hash)
        result = tracker.compute_changes(tracker.load_index(), ChangeHint(paths={"tmp.swp"}))
        assert result.changes == []
        assert result.pending == []

    def test_file_removed_before_copy(self, tracked, monkeypatch):
        """An upsert whose source is gone by copy time is left for the next scan."""
        factory, sandbox, tracker = tracked
        (sandbox / "tmp.swp").write_text("swap\n")
        (sandbox / "b.txt").write_text("new\n")
        index = tracker.load_index()
        result = tracker.compute_changes(index)
        real_copy = baseline.copy_entry

        def unlink_then_copy(src, dest, kind):
            if src.name == "tmp.swp":
                src.unlink()
            real_copy(src, dest, kind)

        monkeypatch.setattr(baseline, "copy_entry", unlink_then_copy)
        index = tracker.apply_updates(result.pending, index)

        assert "tmp.swp" not in index.files
        assert "b.txt" in index.files
        assert not (tracker.baseline_root / "tmp.swp").exists()
        assert tracker.compute_changes(index).changes == []


class TestEnrichWithDiff:

    def test_diff_round_trips_onto_baseline(self, tracked):
        """Applying the diff to baseline content reproduces the sandbox content."""
        factory, sandbox, tracker = tracked
        old = "".join(f"line {n}\n" for n in range(1, 40))
        new = old.replace("line 3\n", "line three\n").replace("line 30\n", "") + "tail"
        (sandbox / "a.txt").write_text(old)
        index = tracker.load_index()
        tracker.apply_updates(tracker.compute_changes(index).pending, index)

        (sandbox / "a.txt").write_text(new)
        result = tracker.compute_changes(tracker.load_index())
        tracker.enrich_with_diff(result.changes, 512 * 1024, 128 * 1024)

        change = result.changes[0]
        assert change.truncated is False
        assert apply_patch(old, change.diff) == new

    def test_missing_newline_marker(self):
        patch = unified_patch("x.txt", "a\n", "a\nb")
        assert "\\ No newline at end of file" in patch
        assert apply_patch("a\n", patch) == "a\nb"

    def test_too_large(self, tracked):
        factory, sandbox, tracker = tracked
        (sandbox / "big.txt").write_text("x" * 100)
        result = tracker.compute_changes(tracker.load_index())
        tracker.enrich_with_diff(result.changes, 50, 1024)

        change = result.changes[0]
        assert change.reason == "too_large"
        assert change.diff is None

    def test_binary(self, tracked):
        factory, sandbox, tracker = tracked
        (sandbox / "blob.bin").write_bytes(b"PK\x00\x01\x02")
        result = tracker.compute_changes(tracker.load_index())
        tracker.enrich_with_diff(result.changes, 1024, 1024)

        assert result.changes[0].reason == "binary"
        assert result.changes[0].diff is None

    def test_file_removed_before_read(self, tracked, monkeypatch):
        factory, sandbox, tracker = tracked
        (sandbox / "tmp.swp").write_text("swap\n")
        result = tracker.compute_changes(tracker.load_index())
        real_kind = baseline.entry_kind

        def kind_then_unlink(path):
            kind = real_kind(path)
            if path.name == "tmp.swp" and kind is not None:
                path.unlink()
            return kind

        monkeypatch.setattr(baseline, "entry_kind", kind_then_unlink)
        tracker.enrich_with_diff(result.changes, 1024, 1024)

        change = result.changes[0]
        assert change.path == "tmp.swp"
        assert change.reason is None
        assert change.diff is None

    def test_symlink_change_has_reason(self, tracked):
        factory, sandbox, tracker = tracked
        factory.symlink("alias", "a.txt", root=sandbox)
        result = tracker.compute_changes(tracker.load_index())
        tracker.enrich_with_diff(result.changes, 1024, 1024)

        assert _summary(result.changes) == [("alias", ChangeType.ADDED)]
        assert result.changes[0].reason == "symlink"
        assert result.changes[0].diff is None

    def test_truncation_flag(self, tracked):
        factory, sandbox, tracker = tracked
        (sandbox / "long.txt").write_text("".join(f"row {n}\n" for n in range(200)))
        result = tracker.compute_changes(tracker.load_index())
        tracker.enrich_with_diff(result.changes, 512 * 1024, 64)

        change = result.changes[0]
        assert change.truncated is True
        assert len(change.diff.encode("utf-8")) <= 64
        assert change.to_dict()["truncated"] is True

    def test_truncation_inside_multibyte_text(self, tracked):
        factory, sandbox, tracker = tracked
        (sandbox / "accents.txt").write_text("é" * 200 + "\n", encoding="utf-8")
        result = tracker.compute_changes(tracker.load_index())
        tracker.enrich_with_diff(result.changes, 512 * 1024, 62)

        assert result.changes[0].truncated is True
        assert len(result.changes[0].diff.encode("utf-8")) <= 62
