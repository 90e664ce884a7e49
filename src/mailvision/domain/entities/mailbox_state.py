from __future__ import annotations
from dataclasses import dataclass, field
from uuid import uuid4

@dataclass
class MailboxState:
    """Running summary of processed mail for one watched mailbox."""
    email: str
    id: str = field(default_factory=lambda: str(uuid4()))
    messages_count: int = 0
    size: int = 0

    # Highest UID whose summary has been counted
    last_counted_uid: int = 0

    # Highest UID fully processed, extraction included
    last_seen_uid: int = 0
