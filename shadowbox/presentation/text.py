"""
Text -- Small formatting helpers shared by renderers and commands

Also provides safe_print(): encoding-safe printing for command output,
diffs and other content shadowbox does not control.
"""

import re
import sys

# Common Unicode to ASCII replacements for display
UNICODE_TO_ASCII = {
    '→': '->',
    '←': '<-',
    '…': '...',
    '–': '-',
    '—': '--',
    '•': '*',
    '≈': '~',
}

_LINE_SPLIT = re.compile(r"\r?\n")

SUMMARY_LENGTH = 120


def head_lines(text: str, max_lines: int) -> str:
    """First max_lines lines of text (unchanged if already short enough)."""
    if not text:
        return ""
    lines = _LINE_SPLIT.split(text)
    if len(lines) <= max_lines:
        return text
    return "\n".join(lines[:max_lines])


def tail_lines(text: str, max_lines: int) -> str:
    """Last max_lines lines of text (unchanged if already short enough)."""
    if not text:
        return ""
    lines = _LINE_SPLIT.split(text)
    if len(lines) <= max_lines:
        return text
    return "\n".join(lines[len(lines) - max_lines:])


def format_duration(ms: int) -> str:
    """
    Human duration for log lines.

    Examples:
        format_duration(250)   -> "250ms"
        format_duration(1500)  -> "1.50s"
    """
    if ms < 1000:
        return f"{ms}ms"
    return f"{ms / 1000:.2f}s"


def truncate(text: str, length: int = SUMMARY_LENGTH) -> str:
    """Truncate text with ellipsis."""
    if not text:
        return ""
    if len(text) <= length:
        return text
    if length <= 3:
        return text[:length]
    return text[:length - 3] + "..."


def safe_print(text: str, end: str = '\n', file=None) -> None:
    """
    Print with graceful encoding fallback.

    Handles UnicodeEncodeError by replacing known characters with ASCII
    equivalents, then by replacing anything still unencodable with '?'.
    """
    if file is None:
        file = sys.stdout

    try:
        print(text, end=end, file=file)
    except UnicodeEncodeError:
        safe_text = text
        for unicode_char, ascii_equiv in UNICODE_TO_ASCII.items():
            safe_text = safe_text.replace(unicode_char, ascii_equiv)

        try:
            print(safe_text, end=end, file=file)
        except UnicodeEncodeError:
            encoding = getattr(file, 'encoding', 'utf-8') or 'utf-8'
            encoded = safe_text.encode(encoding, errors='replace')
            print(encoded.decode(encoding), end=end, file=file)
