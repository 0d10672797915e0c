from typing import Iterable, List, Mapping, Optional

from models import Participant, QueueEntry


def derive_queue(participants: Mapping[str, Participant], queue_entries: Mapping[str, QueueEntry]) -> List[QueueEntry]:
    """Order raised hands earliest first.

    Entries whose participant is gone are dropped: a leave can be visible
    before the matching queue removal. Equal timestamps fall back to the
    entry id, which follows allocation order.
    """
    live = [entry for entry in queue_entries.values() if entry.participant_id in participants]
    return sorted(live, key=lambda entry: (entry.raised_at, entry.entry_id))


def queue_position_of(participant_id: str, ordered_entries: Iterable[QueueEntry]) -> Optional[int]:
    """1-based position of a participant in an ordered queue, or None."""
    for position, entry in enumerate(ordered_entries, start=1):
        if entry.participant_id == participant_id:
            return position
    return None


def people_ahead(position: Optional[int]) -> Optional[int]:
    if position is None:
        return None
    return position - 1
