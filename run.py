import time

from ats_pickem import create_app, db
from ats_pickem.models import Game, Pick, RecomputeJob, Season, SeasonLeaderboard, User, WeeklyLeaderboard
from ats_pickem.services.scheduler_service import scheduler_service

app = create_app(start_scheduler=True)


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "Season": Season,
        "Game": Game,
        "Pick": Pick,
        "WeeklyLeaderboard": WeeklyLeaderboard,
        "SeasonLeaderboard": SeasonLeaderboard,
        "RecomputeJob": RecomputeJob,
    }


if __name__ == "__main__":
    # The scheduler runs in background threads; keep the process alive
    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        scheduler_service.shutdown()
