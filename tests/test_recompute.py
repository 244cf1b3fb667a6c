"""
tests/test_recompute.py

Purpose:
    End-to-end recompute flow: grading, aggregation, storage and ranking
    through the job queue, plus failure isolation and idempotence.
"""

from ats_pickem import db
from ats_pickem.models import AnonymousPick, Pick, RecomputeJob, SeasonLeaderboard, WeeklyLeaderboard
from ats_pickem.services import admin, leaderboard_store, recompute


def _weekly(user_id, season=2024, week=1):
    return WeeklyLeaderboard.query.filter_by(user_id=user_id, season=season, week=week).first()


def _season(user_id, season=2024):
    return SeasonLeaderboard.query.filter_by(user_id=user_id, season=season).first()


def test_completed_game_flows_to_both_leaderboards(
    make_user, make_game, make_pick, complete_game
):
    alice = make_user("alice", display_name="Alice")
    bob = make_user("bob", display_name="Bob")
    game = make_game(spread=-3)
    make_pick(alice, game, side="home", is_lock=True)
    make_pick(bob, game, side="away")

    complete_game(game, 35, 10)
    result = recompute.drain()

    assert result["failed"] == 0
    assert result["remaining"] == 0

    assert db.session.get(Pick, 1).result == "win"
    alice_week = _weekly(alice.id)
    assert alice_week.total_points == 26
    assert (alice_week.wins, alice_week.lock_wins) == (1, 1)
    assert alice_week.rank == 1
    assert alice_week.pick_source_used == "authenticated"

    bob_week = _weekly(bob.id)
    assert (bob_week.losses, bob_week.total_points, bob_week.rank) == (1, 0, 2)

    assert _season(alice.id).total_points == 26
    assert _season(bob.id).rank == 2


def test_pending_picks_produce_no_rows(make_user, make_game, make_pick):
    alice = make_user("alice")
    make_pick(alice, make_game())

    recompute.enqueue_user_week(alice.id, 2024, 1)
    db.session.commit()
    recompute.drain()

    assert _weekly(alice.id) is None
    assert _season(alice.id) is None


def test_hiding_the_only_pick_removes_the_rows(make_user, make_game, make_pick, complete_game):
    alice = make_user("alice")
    pick = make_pick(alice, make_game(spread=-3))
    complete_game(pick.game, 35, 10)
    recompute.drain()
    assert _weekly(alice.id) is not None

    admin.set_pick_visibility(None, pick.id, False, "duplicate entry")
    recompute.drain()

    assert _weekly(alice.id) is None
    assert _season(alice.id) is None


def test_ranking_follows_points_wins_and_name(make_user, make_game, make_pick, complete_game):
    zed = make_user("zed", display_name="zed")
    amy = make_user("amy", display_name="Amy")
    max_ = make_user("max", display_name="max")
    game = make_game(spread=-3)
    for user in (zed, amy, max_):
        make_pick(user, game, side="home")

    complete_game(game, 24, 20)  # home covers by 1
    recompute.drain()

    board = leaderboard_store.get_weekly_leaderboard(2024, 1)
    assert [row["display_name"] for row in board] == ["Amy", "max", "zed"]
    assert [row["rank"] for row in board] == [1, 2, 3]


def test_push_scores_ten_points(make_user, make_game, make_pick, complete_game):
    alice = make_user("alice")
    make_pick(alice, make_game(spread=-3), is_lock=True)

    complete_game(db.session.get(Pick, 1).game, 20, 17)
    recompute.drain()

    row = _weekly(alice.id)
    assert (row.pushes, row.total_points, row.lock_wins, row.lock_losses) == (1, 10, 0, 0)


def test_recompute_is_idempotent(make_user, make_game, make_pick, complete_game):
    alice = make_user("alice")
    make_pick(alice, make_game(spread=-3))
    complete_game(db.session.get(Pick, 1).game, 35, 10)
    recompute.drain()
    before = _weekly(alice.id).to_dict()

    recompute.recompute_user_week(alice.id, 2024, 1)
    recompute.commit_and_invalidate()
    recompute.recompute_user_week(alice.id, 2024, 1)
    recompute.commit_and_invalidate()

    assert _weekly(alice.id).to_dict() == before
    assert WeeklyLeaderboard.query.count() == 1
    assert SeasonLeaderboard.query.count() == 1


def test_unchanged_recompute_keeps_row_timestamps(make_user, make_game, make_pick, complete_game):
    alice = make_user("alice")
    game = make_game(spread=-3)
    make_pick(alice, game)
    complete_game(game, 35, 10)
    recompute.drain()
    weekly_stamp = _weekly(alice.id).updated_at
    season_stamp = _season(alice.id).updated_at

    recompute.enqueue_user_week(alice.id, 2024, 1)
    recompute.commit_and_invalidate()
    recompute.drain()

    assert _weekly(alice.id).updated_at == weekly_stamp
    assert _season(alice.id).updated_at == season_stamp

    complete_game(game, 21, 20)
    recompute.drain()

    row = _weekly(alice.id)
    assert row.total_points == 0
    assert row.updated_at >= weekly_stamp


def test_enqueue_collapses_duplicates_and_bumps_generation(app):
    recompute.enqueue_user_week(7, 2024, 3)
    recompute.enqueue_user_week(7, 2024, 3)
    db.session.commit()

    jobs = RecomputeJob.query.all()
    assert len(jobs) == 1
    assert jobs[0].job_key == "user_week:7:2024:3"
    assert jobs[0].generation == 2


def test_job_reenqueued_while_running_stays_pending(app, monkeypatch):
    recompute.enqueue_user_week(7, 2024, 3)
    db.session.commit()

    def _recompute_and_requeue(user_id, season, week):
        recompute.enqueue_user_week(user_id, season, week)

    monkeypatch.setattr(recompute, "recompute_user_week", _recompute_and_requeue)
    job_id = RecomputeJob.query.first().id

    assert recompute.process_job(job_id) is True
    job = RecomputeJob.query.first()
    assert job is not None
    assert (job.status, job.generation) == ("pending", 2)


def test_failed_unit_does_not_block_others(app, make_user, monkeypatch):
    good = make_user("good")
    bad = make_user("bad")
    recompute.enqueue_user_week(bad.id, 2024, 1)
    recompute.enqueue_user_week(good.id, 2024, 1)
    db.session.commit()

    original = recompute.recompute_user_week
    done = []

    def _flaky(user_id, season, week):
        if user_id == bad.id:
            raise RuntimeError("boom")
        done.append(user_id)
        return original(user_id, season, week)

    monkeypatch.setattr(recompute, "recompute_user_week", _flaky)
    result = recompute.drain()

    assert (result["processed"], result["failed"]) == (1, 1)
    assert done == [good.id]
    job = RecomputeJob.query.one()
    assert (job.user_id, job.status, job.attempts) == (bad.id, "pending", 1)
    assert "boom" in job.last_error


def test_job_parks_as_failed_after_max_attempts(app, monkeypatch):
    app.config["RECOMPUTE_MAX_ATTEMPTS"] = 2
    recompute.enqueue_user_week(1, 2024, 1)
    db.session.commit()

    def _broken(*args):
        raise RuntimeError("still broken")

    monkeypatch.setattr(recompute, "recompute_user_week", _broken)
    recompute.drain()
    recompute.drain()

    job = RecomputeJob.query.one()
    assert (job.status, job.attempts) == ("failed", 2)
    assert recompute.drain()["failed"] == 0

    assert recompute.retry_failed_jobs() == 1
    job = RecomputeJob.query.one()
    assert (job.status, job.attempts) == ("pending", 0)


def test_score_correction_regrades_completed_game(make_user, make_game, make_pick, complete_game):
    alice = make_user("alice")
    game = make_game(spread=-3)
    make_pick(alice, game, side="home")
    complete_game(game, 35, 10)
    recompute.drain()
    assert _weekly(alice.id).total_points == 23

    # Corrected final: home wins by 1, fails to cover
    complete_game(game, 21, 20)
    recompute.drain()

    row = _weekly(alice.id)
    assert (row.losses, row.total_points) == (1, 0)


def test_status_regression_is_ignored(make_game):
    game = make_game(spread=-3)
    game.record_result(home_score=35, away_score=10, status="completed")
    db.session.commit()

    just_completed, outcome_changed = game.record_result(status="in_progress")

    assert game.status == "completed"
    assert (just_completed, outcome_changed) == (False, False)
    assert game.ats_winner == "home"


def test_anonymous_picks_count_after_validation(make_user, make_game, make_anonymous_pick, complete_game):
    alice = make_user("alice")
    game = make_game(spread=-3)
    make_anonymous_pick(
        "alice@example.com", game, user=alice, validation_status="auto_validated", visible=True
    )

    complete_game(game, 35, 10)
    recompute.drain()

    row = _weekly(alice.id)
    assert (row.total_points, row.pick_source_used) == (23, "anonymous")
    assert AnonymousPick.query.one().active is True


def test_season_row_folds_weeks_and_marks_mixed_sources(
    make_user, make_game, make_pick, make_anonymous_pick, complete_game
):
    alice = make_user("alice")
    week1 = make_game(week=1, spread=-3)
    week2 = make_game(week=2, spread=-3)
    make_pick(alice, week1, side="home")
    make_anonymous_pick(
        "alice@example.com", week2, side="away", user=alice,
        validation_status="auto_validated", visible=True,
    )

    complete_game(week1, 35, 10)
    complete_game(week2, 10, 35)
    recompute.drain()

    season_row = _season(alice.id)
    assert season_row.total_points == 46
    assert season_row.wins == 2
    assert season_row.pick_source_used == "mixed"


def test_verify_and_rebuild_repair_drift(make_user, make_game, make_pick, complete_game):
    alice = make_user("alice")
    bob = make_user("bob")
    game = make_game(spread=-3)
    make_pick(alice, game, side="home")
    make_pick(bob, game, side="away")
    complete_game(game, 35, 10)
    recompute.drain()
    assert recompute.verify_week(2024, 1)["ok"] is True

    row = _weekly(alice.id)
    row.total_points = 999
    db.session.commit()

    report = recompute.verify_week(2024, 1)
    assert report["ok"] is False
    assert report["mismatched_rows"][0]["user_id"] == alice.id
    assert report["rank_errors"] is False

    recompute.rebuild_week(2024, 1)
    recompute.commit_and_invalidate()

    assert recompute.verify_week(2024, 1)["ok"] is True
    assert _weekly(alice.id).total_points == 23


def test_consistency_check_queues_rebuilds(make_user, make_game, make_pick, complete_game):
    alice = make_user("alice")
    make_pick(alice, make_game(spread=-3))
    complete_game(db.session.get(Pick, 1).game, 35, 10)
    recompute.drain()

    db.session.delete(_weekly(alice.id))
    db.session.commit()

    assert recompute.check_season_consistency(2024) == [1]
    assert RecomputeJob.query.one().job_key == "rebuild_week:2024:1"

    recompute.drain()
    assert _weekly(alice.id) is not None
