from ats_pickem import db  # noqa: F401 - imported for model imports

from .admin_action import AdminAction
from .anonymous_pick import AnonymousPick
from .game import Game
from .leaderboard import SeasonLeaderboard, WeeklyLeaderboard
from .payment import PaymentRecord
from .pick import Pick
from .pick_set_override import PickSetOverride
from .recompute_job import RecomputeJob
from .season import Season
from .user import User

__all__ = [
    "User",
    "Season",
    "Game",
    "Pick",
    "AnonymousPick",
    "PickSetOverride",
    "PaymentRecord",
    "WeeklyLeaderboard",
    "SeasonLeaderboard",
    "AdminAction",
    "RecomputeJob",
]
