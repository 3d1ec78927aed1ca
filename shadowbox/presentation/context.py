"""
Context renderers -- last run + intent notes + config as text

All three renderers are pure functions of their arguments: no file access,
no clock, no hidden state. The session layer reads the inputs from disk and
writes the results back.

  render_full()        context.md, for humans
  render_compact()     context.compact.md, bounded for agent prompts
  render_structured()  JSON bundle {session, lastRun, intent, agent}
"""

from typing import Any, Dict, List, Optional

import orjson

from ..config import CompactConfig
from .text import head_lines, tail_lines


def _flag(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def exit_label(exit_record: Dict[str, Any]) -> str:
    """ok / exit N / signal SIGTERM"""
    code = exit_record.get("code")
    if code == 0:
        return "ok"
    if code is None and exit_record.get("signal"):
        return f"signal {exit_record['signal']}"
    return f"exit {code}"


def first_failure(last_run: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for exit_record in last_run.get("exits") or []:
        if exit_record.get("code") != 0:
            return exit_record
    return None


def _header(title: str, sandbox_root: str, source_root: Optional[str], agent: Optional[str]) -> List[str]:
    lines = [f"# {title}", "", f"Sandbox: {sandbox_root}"]
    if source_root:
        lines.append(f"Source: {source_root}")
    if agent:
        lines.append(f"Agent: {agent}")
    lines.append("")
    return lines


def render_full(
    sandbox_root: str,
    source_root: Optional[str],
    last_run: Optional[Dict[str, Any]],
    intent: str,
    agent: Optional[str],
    config: Dict[str, Any],
) -> str:
    lines = _header("Shadowbox Context", sandbox_root, source_root, agent)
    lines.append("## Last Run")
    if not last_run:
        lines.append("No runs recorded yet.")
    else:
        lines.append(f"Run ID: {last_run.get('runId')}")
        lines.append(f"Status: {'ok' if last_run.get('ok') else 'failed'}")
        if last_run.get("interrupted"):
            lines.append("Interrupted: yes")
        lines.append(f"Duration: {last_run.get('durationMs')}ms")
        lines.append(f"Timestamp: {last_run.get('timestamp')}")
        lines.append("")
        lines.append("Commands:")
        for exit_record in last_run.get("exits") or []:
            lines.append(f"- {exit_record.get('name')}: {exit_label(exit_record)}")
        lines.append("")
        changes = last_run.get("changes") or []
        if changes:
            lines.append("Changes:")
            for change in changes:
                lines.append(f"- {change['type']}: {change['path']}")
        else:
            lines.append("Changes: none")

    if intent.strip():
        lines.extend(["", "## Intent Notes", intent.strip()])

    lines.extend([
        "",
        "## Config",
        "",
        "```json",
        orjson.dumps(config, option=orjson.OPT_INDENT_2).decode(),
        "```",
        "",
    ])
    return "\n".join(lines)


def render_compact(
    sandbox_root: str,
    source_root: Optional[str],
    last_run: Optional[Dict[str, Any]],
    intent: str,
    agent: Optional[str],
    config: Dict[str, Any],
    compact: CompactConfig,
) -> str:
    lines = _header("Shadowbox Compact Context", sandbox_root, source_root, agent)

    if not last_run:
        lines.append("No runs recorded yet.")
        return "\n".join(lines)

    status = "ok" if last_run.get("ok") else "failed"
    lines.append(f"Last Run: {status} ({last_run.get('durationMs')}ms) @ {last_run.get('timestamp')}")
    failed = first_failure(last_run)
    if failed:
        lines.append(f"Failed Command: {failed.get('name')} ({exit_label(failed)})")
    lines.append("")

    lines.append("Changes:")
    changes = last_run.get("changes") or []
    for change in changes:
        lines.append(f"- {change['type']}: {change['path']}")
        if change.get("diff") and compact.enabled:
            lines.extend(["```diff", head_lines(change["diff"].rstrip("\n"), compact.max_diff_lines), "```"])
        elif change.get("reason"):
            lines.append(f"  ({change['reason']})")
    if not changes:
        lines.append("- none")

    outputs = last_run.get("outputs")
    if outputs:
        lines.extend(["", "Outputs:"])
        for name, output in outputs.items():
            stderr = tail_lines((output.get("stderr") or "").rstrip("\n"), compact.max_stderr_lines)
            stdout = tail_lines((output.get("stdout") or "").rstrip("\n"), compact.max_stdout_lines)
            if stderr.strip():
                lines.extend([f"- {name} stderr:", "```", stderr, "```"])
            if not last_run.get("ok") and stdout.strip():
                lines.extend([f"- {name} stdout:", "```", stdout, "```"])

    if intent.strip():
        lines.extend(["", "Intent Notes:", intent.strip()])

    command_names = ", ".join(c.get("name", "") for c in config.get("commands") or []) or "none"
    lines.extend([
        "",
        "Config (summary):",
        f"- parallel: {_flag(config.get('parallel'))}",
        f"- debounce_ms: {config.get('debounce_ms')}",
        f"- restart_on_change: {_flag(config.get('restart_on_change'))}",
        f"- commands: {command_names}",
    ])
    return "\n".join(lines)


def render_structured(
    session: Dict[str, Any],
    last_run: Optional[Dict[str, Any]],
    intent: str,
    agent: Optional[str],
) -> str:
    bundle = {
        "session": session or {},
        "lastRun": last_run or {},
        "intent": intent.strip(),
        "agent": agent,
    }
    return orjson.dumps(bundle, option=orjson.OPT_INDENT_2).decode()
