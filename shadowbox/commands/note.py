"""
NoteCommand -- Record an intent note

Notes explain why the sandbox is being changed. They are appended to
intent.md, journaled, and included in every rendered context.
"""

from typing import List, Optional

from ..commands.base import BaseCommand
from ..core.errors import PreconditionError


class NoteCommand(BaseCommand):

    def note(self, words: List[str], sandbox: Optional[str] = None) -> int:
        text = " ".join(words).strip()
        if not text:
            raise PreconditionError("Note text is empty.")
        event = self.session(sandbox).append_intent(text)
        if event is None:
            print("Intent notes are disabled (tracking.intent_notes = false).")
            return 0
        print("Noted.")
        return 0


# =============================================================================
# Command Registration (Self-Registration Pattern)
# =============================================================================

def register_parser(subparsers):
    """Register note command parser."""
    p = subparsers.add_parser('note', help='Record why you are changing things')
    p.add_argument('text', nargs='+', help='Note text')
    p.add_argument('--sandbox', metavar='PATH',
                   help='Sandbox to annotate (default: most recent)')
    return p


def handle(cli, args):
    """Handle note command dispatch."""
    return cli._note_cmd.note(args.text, sandbox=args.sandbox)
