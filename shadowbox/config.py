"""
Configuration -- Centralized settings management

Config hierarchy (highest to lowest priority):
  1. CLI overrides (flags passed to a command)
  2. Environment variables (SHADOWBOX_*)
  3. Project config (.shadowbox/config.yaml, or --config PATH)
  4. User config (~/.shadowbox/config.yaml)
  5. Defaults (with build commands detected from the source tree)

Dicts merge deeply, lists replace. A malformed config file is skipped
with a warning rather than aborting the command.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import orjson
import yaml
from rapidfuzz import process

from .core.fsutil import CONTROL_DIR

logger = logging.getLogger(__name__)


def _pair(name: str) -> List[str]:
    return [name, f"{name}/**"]


DEFAULT_IGNORE: List[str] = [
    pattern
    for name in (
        "node_modules", ".git", CONTROL_DIR, "dist", "build", "coverage",
        ".next", "out", ".cache", "tmp", "temp",
        "__pycache__", ".venv", ".pytest_cache",
    )
    for pattern in _pair(name)
]

DEFAULT_WATCH: List[str] = ["**/*"]

# Dependency cache linked (not copied) into new sandboxes
DEPENDENCY_DIR = "node_modules"


@dataclass
class CommandSpec:
    """One configured build/test command."""
    name: str
    cmd: str
    cwd: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {"name": self.name, "cmd": self.cmd}
        if self.cwd:
            d["cwd"] = self.cwd
        return d


@dataclass
class CompactConfig:
    """Caps for the compact context rendering."""
    enabled: bool = True
    max_diff_lines: int = 80
    max_stdout_lines: int = 20
    max_stderr_lines: int = 60


@dataclass
class TrackingConfig:
    """Change tracking, journaling and capture limits."""
    enabled: bool = True
    verbose: bool = True               # attach diffs to changes
    journal: bool = True
    include_outputs: bool = True
    baseline: bool = True
    intent_notes: bool = True
    scan_all_on_dir_change: bool = True
    max_file_bytes: int = 512 * 1024
    max_diff_bytes: int = 128 * 1024
    max_output_bytes: int = 32 * 1024
    compact: CompactConfig = field(default_factory=CompactConfig)


@dataclass
class Config:
    """Effective configuration for one invocation."""
    watch: List[str] = field(default_factory=lambda: list(DEFAULT_WATCH))
    ignore: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE))
    commands: List[CommandSpec] = field(default_factory=list)
    debounce_ms: int = 250
    parallel: bool = True
    restart_on_change: bool = True
    link_dependencies: bool = True
    apply_requires_success: bool = True
    prune_on_apply: bool = False
    tracking: TrackingConfig = field(default_factory=TrackingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        t = self.tracking
        return {
            "watch": list(self.watch),
            "ignore": list(self.ignore),
            "commands": [c.to_dict() for c in self.commands],
            "debounce_ms": self.debounce_ms,
            "parallel": self.parallel,
            "restart_on_change": self.restart_on_change,
            "link_dependencies": self.link_dependencies,
            "apply_requires_success": self.apply_requires_success,
            "prune_on_apply": self.prune_on_apply,
            "tracking": {
                "enabled": t.enabled,
                "verbose": t.verbose,
                "journal": t.journal,
                "include_outputs": t.include_outputs,
                "baseline": t.baseline,
                "intent_notes": t.intent_notes,
                "scan_all_on_dir_change": t.scan_all_on_dir_change,
                "max_file_bytes": t.max_file_bytes,
                "max_diff_bytes": t.max_diff_bytes,
                "max_output_bytes": t.max_output_bytes,
                "compact": {
                    "enabled": t.compact.enabled,
                    "max_diff_lines": t.compact.max_diff_lines,
                    "max_stdout_lines": t.compact.max_stdout_lines,
                    "max_stderr_lines": t.compact.max_stderr_lines,
                },
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_commands: Optional[List[CommandSpec]] = None) -> 'Config':
        """Create from dictionary. Missing keys take their defaults."""
        defaults = cls()
        tracking_data = data.get("tracking") or {}
        compact_data = tracking_data.get("compact") or {}
        dt = defaults.tracking

        commands = normalize_commands(data.get("commands"))
        if not commands:
            commands = list(default_commands or [])

        return cls(
            watch=list(data.get("watch") or defaults.watch),
            ignore=list(data["ignore"]) if data.get("ignore") is not None else defaults.ignore,
            commands=commands,
            debounce_ms=int(data.get("debounce_ms", defaults.debounce_ms)),
            parallel=_as_bool(data.get("parallel"), defaults.parallel),
            restart_on_change=_as_bool(data.get("restart_on_change"), defaults.restart_on_change),
            link_dependencies=_as_bool(data.get("link_dependencies"), defaults.link_dependencies),
            apply_requires_success=_as_bool(data.get("apply_requires_success"), defaults.apply_requires_success),
            prune_on_apply=_as_bool(data.get("prune_on_apply"), defaults.prune_on_apply),
            tracking=TrackingConfig(
                enabled=_as_bool(tracking_data.get("enabled"), dt.enabled),
                verbose=_as_bool(tracking_data.get("verbose"), dt.verbose),
                journal=_as_bool(tracking_data.get("journal"), dt.journal),
                include_outputs=_as_bool(tracking_data.get("include_outputs"), dt.include_outputs),
                baseline=_as_bool(tracking_data.get("baseline"), dt.baseline),
                intent_notes=_as_bool(tracking_data.get("intent_notes"), dt.intent_notes),
                scan_all_on_dir_change=_as_bool(tracking_data.get("scan_all_on_dir_change"), dt.scan_all_on_dir_change),
                max_file_bytes=int(tracking_data.get("max_file_bytes", dt.max_file_bytes)),
                max_diff_bytes=int(tracking_data.get("max_diff_bytes", dt.max_diff_bytes)),
                max_output_bytes=int(tracking_data.get("max_output_bytes", dt.max_output_bytes)),
                compact=CompactConfig(
                    enabled=_as_bool(compact_data.get("enabled"), dt.compact.enabled),
                    max_diff_lines=int(compact_data.get("max_diff_lines", dt.compact.max_diff_lines)),
                    max_stdout_lines=int(compact_data.get("max_stdout_lines", dt.compact.max_stdout_lines)),
                    max_stderr_lines=int(compact_data.get("max_stderr_lines", dt.compact.max_stderr_lines)),
                ),
            ),
        )


def normalize_commands(entries: Any) -> List[CommandSpec]:
    """
    Accept bare strings or {name, cmd, cwd} mappings.

    Unnamed entries become cmd1, cmd2, ... by position; entries without
    a command string are dropped.
    """
    if not isinstance(entries, list):
        return []
    commands = []
    for index, entry in enumerate(entries, start=1):
        if isinstance(entry, str):
            commands.append(CommandSpec(name=f"cmd{index}", cmd=entry))
        elif isinstance(entry, dict) and entry.get("cmd"):
            commands.append(CommandSpec(
                name=entry.get("name") or f"cmd{index}",
                cmd=entry["cmd"],
                cwd=entry.get("cwd"),
            ))
    return commands


def detect_default_commands(source_root: Path) -> List[CommandSpec]:
    """Guess a build command from the files present at the source root."""
    source_root = Path(source_root)

    pkg_path = source_root / "package.json"
    if pkg_path.exists():
        try:
            scripts = (orjson.loads(pkg_path.read_bytes()) or {}).get("scripts") or {}
        except (orjson.JSONDecodeError, OSError, AttributeError):
            scripts = {}
        for script in ("build", "compile", "test", "lint"):
            if script in scripts:
                cmd = "npm test" if script == "test" else f"npm run {script}"
                return [CommandSpec(name=script, cmd=cmd)]

    if (source_root / "Makefile").exists():
        return [CommandSpec(name="make", cmd="make")]

    if (source_root / "pyproject.toml").exists() or (source_root / "setup.py").exists():
        return [CommandSpec(name="test", cmd="python -m pytest -q")]

    return [CommandSpec(
        name="noop",
        cmd='echo "No build command configured. Run shadowbox init and edit .shadowbox/config.yaml"',
    )]


class ConfigManager:
    """
    Manages configuration loading and persistence.

    Hierarchy:
      1. Overrides passed to load()
      2. Environment (SHADOWBOX_DEBOUNCE_MS, SHADOWBOX_PARALLEL, SHADOWBOX_RESTART_ON_CHANGE)
      3. Project config (.shadowbox/config.yaml or explicit path)
      4. User config (~/.shadowbox/config.yaml)
      5. Defaults
    """

    USER_CONFIG_DIR = Path.home() / CONTROL_DIR
    USER_CONFIG_FILE = USER_CONFIG_DIR / "config.yaml"
    PROJECT_CONFIG_FILE = "config.yaml"

    ENV_OVERRIDES = {
        "SHADOWBOX_DEBOUNCE_MS": "debounce_ms",
        "SHADOWBOX_PARALLEL": "parallel",
        "SHADOWBOX_RESTART_ON_CHANGE": "restart_on_change",
    }

    def __init__(self, project_dir: Optional[Path] = None, config_path: Optional[Path] = None):
        self.project_dir = Path(project_dir) if project_dir else Path.cwd()
        self.explicit_path = Path(self.project_dir, config_path) if config_path else None
        self.sources: List[Path] = []

    @property
    def project_config_path(self) -> Path:
        if self.explicit_path:
            return self.explicit_path
        return self.project_dir / CONTROL_DIR / self.PROJECT_CONFIG_FILE

    @property
    def user_config_path(self) -> Path:
        return self.USER_CONFIG_FILE

    def load(self, overrides: Optional[Dict[str, Any]] = None) -> Config:
        """Load configuration from all sources."""
        config_data: Dict[str, Any] = {}
        self.sources = []

        for path in (self.user_config_path, self.project_config_path):
            layer = self._read_yaml(path)
            if layer is not None:
                config_data = self._merge(config_data, layer)
                self.sources.append(path)

        for env_key, key in self.ENV_OVERRIDES.items():
            if os.environ.get(env_key):
                config_data[key] = os.environ[env_key]

        if overrides:
            config_data = self._merge(config_data, {k: v for k, v in overrides.items() if v is not None})

        return Config.from_dict(config_data, default_commands=detect_default_commands(self.project_dir))

    def _read_yaml(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.exists():
            return None
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning("Ignoring malformed config %s: %s", path, e)
            return None
        if not isinstance(data, dict):
            logger.warning("Ignoring config %s: top level must be a mapping", path)
            return None
        return data

    def save(self, data: Dict[str, Any], scope: str = "project") -> Path:
        """Write a raw config mapping to the project or user config file."""
        path = self.user_config_path if scope == "user" else self.project_config_path
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        return path

    def set(self, key: str, value: str, scope: str = "project") -> Optional[str]:
        """
        Set a configuration value.

        Args:
            key: Dot-separated key (e.g., "tracking.max_diff_bytes")
            value: Value to set, coerced to the type of the default
            scope: "project" or "user"

        Returns:
            Error message or None if successful
        """
        known = self.known_keys()
        if key not in known:
            return self._unknown_key_message(key, known)

        default = known[key]
        if isinstance(default, bool):
            coerced: Any = value.lower() in ("true", "1", "yes", "on")
        elif isinstance(default, int):
            try:
                coerced = int(value)
            except ValueError:
                return f"Invalid value for {key}: expected an integer, got '{value}'"
        elif isinstance(default, list):
            coerced = [v.strip() for v in value.split(",") if v.strip()]
        else:
            coerced = value

        path = self.user_config_path if scope == "user" else self.project_config_path
        data = self._read_yaml(path) or {}
        node = data
        parts = key.split(".")
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = coerced
        self.save(data, scope)
        return None

    def get(self, key: str) -> Optional[str]:
        """Get an effective configuration value as display text."""
        flat = _flatten(self.load().to_dict())
        if key not in flat:
            return None
        value = flat[key]
        if isinstance(value, bool):
            return str(value).lower()
        return str(value)

    def known_keys(self) -> Dict[str, Any]:
        """Dotted key -> default value for every settable key."""
        flat = _flatten(Config().to_dict())
        flat.pop("commands", None)
        return flat

    def _unknown_key_message(self, key: str, known: Dict[str, Any]) -> str:
        message = f"Unknown setting: {key}."
        match = process.extractOne(key, list(known.keys()), score_cutoff=60)
        if match:
            message += f" Did you mean '{match[0]}'?"
        return message

    def _merge(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dicts, override wins."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge(result[key], value)
            else:
                result[key] = value
        return result

    def display(self, config: Optional[Config] = None) -> str:
        """Format config for display."""
        config = config or self.load()
        lines = ["Configuration:", ""]
        lines.append("Commands:")
        for command in config.commands:
            where = f" (in {command.cwd})" if command.cwd else ""
            lines.append(f"  {command.name}: {command.cmd}{where}")
        lines.append("")
        for key, value in _flatten(config.to_dict()).items():
            if key == "commands":
                continue
            lines.append(f"  {key}: {value}")
        lines.extend([
            "",
            "Config files:",
            f"  User: {self.user_config_path}",
            f"  Project: {self.project_config_path}",
        ])
        return "\n".join(lines)


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, dotted + "."))
        else:
            flat[dotted] = value
    return flat


def _as_bool(value: Any, default: bool) -> bool:
    """Coerce yaml/env values to bool; None keeps the default."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off"):
        return False
    return default


SAMPLE_CONFIG: Dict[str, Any] = {
    "commands": [{"name": "build", "cmd": "npm run build"}],
    "debounce_ms": 250,
    "parallel": True,
    "restart_on_change": True,
    "link_dependencies": True,
    "tracking": {"enabled": True, "verbose": True, "compact": {"enabled": True}},
}


def write_sample_config(source_root: Path) -> Tuple[Path, bool]:
    """Create a starter project config. Returns (path, created)."""
    manager = ConfigManager(source_root)
    target = manager.project_config_path
    if target.exists():
        return target, False
    sample = dict(SAMPLE_CONFIG)
    sample["commands"] = [c.to_dict() for c in detect_default_commands(source_root)]
    manager.save(sample)
    return target, True


# Convenience function
def get_config(project_dir: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None) -> Config:
    """Load configuration for a project."""
    return ConfigManager(project_dir).load(overrides)
