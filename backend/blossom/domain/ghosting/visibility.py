"""Discovery visibility multiplier derived from response history."""

from __future__ import annotations

GHOSTING_PENALTY = 0.15
CLOSURE_OFFSET = 0.5
# Closures beyond this count stop softening the penalty, so ghosting history
# is never fully erased.
MAX_COUNTED_CLOSURES = 10
MIN_VISIBILITY = 0.1


def visibility_score(ghosted_count: int, graceful_closures: int) -> float:
    """Return a multiplier in [MIN_VISIBILITY, 1.0].

    Non-increasing in ``ghosted_count`` and non-decreasing in
    ``graceful_closures``. Users who never ghosted keep full visibility.
    """

    ghosted = max(0, int(ghosted_count))
    if ghosted == 0:
        return 1.0
    closures = min(max(0, int(graceful_closures)), MAX_COUNTED_CLOSURES)
    penalty = ghosted * GHOSTING_PENALTY / (1.0 + CLOSURE_OFFSET * closures)
    return round(max(MIN_VISIBILITY, 1.0 - penalty), 4)
