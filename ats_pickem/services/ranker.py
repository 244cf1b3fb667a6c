"""
Leaderboard ordering.

Ranks are dense 1..N with no ties: total points, then wins, then the
display name (case-insensitive), then user id so that the order is total.
"""


def leaderboard_sort_key(row):
    return (
        -(row.total_points or 0),
        -(row.wins or 0),
        (row.display_name or "").casefold(),
        row.user_id,
    )


def rank_rows(rows):
    """
    Assign sequential ranks to every row of one period.

    Args:
        rows: Leaderboard rows (or any objects with the same attributes)

    Returns:
        The rows in rank order; each row's ``rank`` is updated in place.
    """
    ordered = sorted(rows, key=leaderboard_sort_key)
    for position, row in enumerate(ordered, start=1):
        row.rank = position
    return ordered


def _percentage(part, whole):
    return part / whole if whole else 0.0


def best_finish_sort_key(entry):
    decided = entry["wins"] + entry["losses"]
    lock_decided = entry["lock_wins"] + entry["lock_losses"]
    return (
        -entry["total_points"],
        -_percentage(entry["wins"], decided),
        -_percentage(entry["lock_wins"], lock_decided),
        (entry["display_name"] or "").casefold(),
        entry["user_id"],
    )


def rank_best_finish(entries):
    """Order Best Finish totals (dicts) and number them from 1"""
    ordered = sorted(entries, key=best_finish_sort_key)
    for position, entry in enumerate(ordered, start=1):
        entry["rank"] = position
    return ordered
