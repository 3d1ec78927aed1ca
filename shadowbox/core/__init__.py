"""
Core -- Sandbox, baseline, journal and supervisor layers

- Fsutil: ignore matching, tree walking, copying, JSON persistence
- Sandbox: creation, registry and cleanup
- Apply: gated sync of a sandbox back onto its source
- Baseline: content-hash index and change detection
- Journal: append-only event log
- Session: per-sandbox tracking pipeline and context export
- Runner: run supervisor and watch loop
"""
