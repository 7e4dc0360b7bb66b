from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List

from sqlalchemy.orm import Session

from .catalog import HallCatalog
from .overlap import busy_resources, find_conflict

MAX_SUGGESTIONS = 5
MAX_OTHER_HALLS = 3
DAY_OFFSETS = (1, -1, 2, -2)


@dataclass(frozen=True)
class AlternativeSlot:
    resource_id: str
    start_time: datetime
    end_time: datetime
    reason: str


def suggest_alternatives(
    db: Session,
    catalog: HallCatalog,
    resource_id: str,
    start_time: datetime,
    end_time: datetime,
    now: datetime,
) -> List[AlternativeSlot]:
    """
    Suggest free slots close to a conflicting request.

    Strategy
    --------
    1. Same hall, same time of day, one and two days before/after.
       Candidates starting before ``now`` are skipped.
    2. Other halls from the catalog that are free for the exact window.

    Same-hall candidates are listed first; at most five suggestions are
    returned.
    """
    duration = end_time - start_time
    alternatives: List[AlternativeSlot] = []

    for offset in DAY_OFFSETS:
        candidate_start = start_time + timedelta(days=offset)
        if candidate_start < now:
            continue
        candidate_end = candidate_start + duration
        if find_conflict(db, resource_id, candidate_start, candidate_end) is None:
            alternatives.append(
                AlternativeSlot(
                    resource_id=resource_id,
                    start_time=candidate_start,
                    end_time=candidate_end,
                    reason=f"Available on {candidate_start.date().isoformat()}",
                )
            )

    busy = busy_resources(db, start_time, end_time)
    other_halls = [
        hall for hall in catalog.list_halls() if hall != resource_id and hall not in busy
    ]
    for hall in other_halls[:MAX_OTHER_HALLS]:
        alternatives.append(
            AlternativeSlot(
                resource_id=hall,
                start_time=start_time,
                end_time=end_time,
                reason=f"Available in {hall} at requested time",
            )
        )

    return alternatives[:MAX_SUGGESTIONS]
