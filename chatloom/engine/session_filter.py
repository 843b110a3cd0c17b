"""Session isolation predicate."""
from __future__ import annotations

from chatloom.adapters.events import Envelope


def admit(envelope: Envelope, active_session_id: str | None) -> bool:
    """Return True when *envelope* may be applied to the active session's view.

    Envelopes without a session id predate session tagging and are always
    admitted. Tagged envelopes are admitted only for the active session;
    with no active session every tagged envelope is rejected. An envelope
    whose tag was present but unreadable is rejected for every session.
    """
    if envelope.session_tag_malformed:
        return False
    if not envelope.session_id:
        return True
    return envelope.session_id == active_session_id
