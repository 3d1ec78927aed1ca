"""
Presentation -- Display layer

- Context: full / compact / structured renderers
- Text: head/tail trimming, durations, encoding-safe printing
"""

from .text import head_lines, tail_lines, format_duration, truncate, safe_print
from .context import render_full, render_compact, render_structured

__all__ = [
    "head_lines", "tail_lines", "format_duration", "truncate", "safe_print",
    "render_full", "render_compact", "render_structured",
]
