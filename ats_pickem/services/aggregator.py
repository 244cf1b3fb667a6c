"""
Aggregation of counted picks into leaderboard summaries.

Every summary is computed from the source rows each time it is needed;
nothing here adjusts a stored total incrementally.
"""

from ats_pickem.models.leaderboard import PAYMENT_STATUSES

MIXED_SOURCES = "mixed"

_PAYMENT_LOOKUP = {status.lower(): status for status in PAYMENT_STATUSES if status != "NotPaid"}


def map_payment_status(raw_status):
    """Normalize a raw ledger value to Paid / Pending / NotPaid"""
    if not raw_status:
        return "NotPaid"
    return _PAYMENT_LOOKUP.get(str(raw_status).strip().lower(), "NotPaid")


def is_verified(payment_status, ledger_matched):
    return payment_status == "Paid" and bool(ledger_matched)


class PickSummary:
    """Win/loss/points totals for one user over one period"""

    FIELDS = (
        "picks_counted",
        "wins",
        "losses",
        "pushes",
        "lock_wins",
        "lock_losses",
        "total_points",
    )

    def __init__(self):
        self.picks_counted = 0
        self.wins = 0
        self.losses = 0
        self.pushes = 0
        self.lock_wins = 0
        self.lock_losses = 0
        self.total_points = 0
        self.sources = set()
        self.overridden = False

    def add_pick(self, pick):
        """Count one graded pick; ungraded picks are ignored"""
        if pick.result is None:
            return

        self.picks_counted += 1
        self.total_points += pick.points or 0

        if pick.result == "win":
            self.wins += 1
            if pick.is_lock:
                self.lock_wins += 1
        elif pick.result == "loss":
            self.losses += 1
            if pick.is_lock:
                self.lock_losses += 1
        elif pick.result == "push":
            self.pushes += 1

    def merge(self, other):
        """Fold another summary into this one"""
        for field in self.FIELDS:
            setattr(self, field, getattr(self, field) + getattr(other, field))
        self.sources |= other.sources
        self.overridden = self.overridden or other.overridden
        return self

    @property
    def is_empty(self):
        return self.picks_counted == 0

    @property
    def pick_source_used(self):
        if len(self.sources) == 1:
            return next(iter(self.sources))
        if self.sources:
            return MIXED_SOURCES
        return None

    def as_dict(self):
        data = {field: getattr(self, field) for field in self.FIELDS}
        data["pick_source_used"] = self.pick_source_used
        data["source_overridden"] = self.overridden
        return data

    def __eq__(self, other):
        if not isinstance(other, PickSummary):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def __repr__(self):
        return (
            f"<PickSummary {self.wins}-{self.losses}-{self.pushes} "
            f"pts={self.total_points} source={self.pick_source_used}>"
        )


def summarize_picks(resolved):
    """
    Summarize a resolved pick set for one user and week.

    Args:
        resolved: ResolvedPickSet from the precedence resolver

    Returns:
        PickSummary; empty when nothing graded was counted
    """
    summary = PickSummary()
    for pick in resolved.picks:
        summary.add_pick(pick)

    if not summary.is_empty:
        summary.sources.add(resolved.choice.source)
        summary.overridden = resolved.choice.overridden
    return summary


def fold_season(weekly_summaries):
    """Combine per-week summaries into a season summary"""
    season = PickSummary()
    for summary in weekly_summaries:
        season.merge(summary)
    return season
