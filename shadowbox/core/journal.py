"""
Journal -- Append-only event log for runs, intent notes and applies

Events are immutable. Once written, never modified.
One JSON object per line; readers skip malformed lines rather than fail.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson
import xxhash


class EventType(Enum):
    RUN = "run"
    INTENT = "intent"
    APPLY = "apply"


@dataclass
class Event:
    type: EventType
    data: Dict[str, Any]
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    agent: Optional[str] = None
    id: str = field(default="")

    def __post_init__(self):
        if not self.id:
            content = self.type.value.encode() + self.timestamp.encode() + orjson.dumps(
                self.data, option=orjson.OPT_SORT_KEYS
            )
            self.id = xxhash.xxh64(content).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['type'] = self.type.value
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Event':
        d = dict(d)
        d['type'] = EventType(d['type'])
        return cls(**d)


class Journal:
    """Append-only JSON-lines journal."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def append(self, event: Event) -> Event:
        """Append one event as a single line. Returns the event with its id."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'ab') as f:
            f.write(orjson.dumps(event.to_dict()) + b'\n')
        return event

    def read_all(self) -> List[Event]:
        """Read all events in order."""
        events = []
        if self.path.exists():
            with open(self.path, 'rb') as f:
                for line in f:
                    line = line.strip()
                    if line:
                        try:
                            events.append(Event.from_dict(orjson.loads(line)))
                        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError):
                            continue  # Skip malformed lines
        return events

    def read_by_type(self, event_type: EventType) -> List[Event]:
        """Read events of specific type."""
        return [e for e in self.read_all() if e.type == event_type]

    def count(self) -> int:
        return len(self.read_all())
