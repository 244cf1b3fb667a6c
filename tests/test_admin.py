"""
tests/test_admin.py

Purpose:
    Admin controls: visibility toggles, pick-set overrides, conflict
    detection, payment sync and rebuild requests. Each must leave an audit
    row and flow through to the leaderboards once the queue drains.
"""

import pytest

from ats_pickem.models import AdminAction, Pick, PickSetOverride, RecomputeJob, WeeklyLeaderboard
from ats_pickem.services import admin, recompute


@pytest.fixture
def graded_week(make_user, make_game, make_pick, make_anonymous_pick, complete_game):
    """alice: two authenticated wins and one anonymous loss in week 1"""
    boss = make_user("boss")
    alice = make_user("alice")
    games = [make_game(spread=-3) for _ in range(2)]
    for game in games:
        make_pick(alice, game, side="home")
    make_anonymous_pick(
        "alice@example.com", games[0], side="away", user=alice,
        validation_status="auto_validated", visible=True,
    )
    for game in games:
        complete_game(game, 35, 10)
    recompute.drain()
    return boss, alice


def _alice_week(alice):
    return WeeklyLeaderboard.query.filter_by(user_id=alice.id, season=2024, week=1).first()


def test_override_switches_counted_source(graded_week):
    boss, alice = graded_week
    assert _alice_week(alice).total_points == 46

    admin.set_pick_set_override(boss.id, alice.id, 2024, 1, "anonymous", "emailed picks first")
    recompute.drain()

    row = _alice_week(alice)
    assert (row.total_points, row.losses) == (0, 1)
    assert row.pick_source_used == "anonymous"
    assert row.source_overridden is True

    action = AdminAction.query.filter_by(action_type="set_override").one()
    assert action.admin_user_id == boss.id
    assert action.action_metadata["reasoning"] == "emailed picks first"


def test_override_is_idempotent(graded_week):
    boss, alice = graded_week

    admin.set_pick_set_override(boss.id, alice.id, 2024, 1, "anonymous")
    admin.set_pick_set_override(boss.id, alice.id, 2024, 1, "anonymous")

    assert PickSetOverride.query.count() == 1
    actions = AdminAction.query.filter_by(action_type="set_override").order_by(AdminAction.id).all()
    assert [a.action_metadata["previous_source"] for a in actions] == [None, "anonymous"]


def test_override_rejects_source_without_picks(make_user, make_game, make_pick):
    boss = make_user("boss")
    alice = make_user("alice")
    make_pick(alice, make_game())

    with pytest.raises(ValueError):
        admin.set_pick_set_override(boss.id, alice.id, 2024, 1, "anonymous")
    with pytest.raises(ValueError):
        admin.set_pick_set_override(boss.id, alice.id, 2024, 1, "email")

    assert PickSetOverride.query.count() == 0
    assert AdminAction.query.count() == 0


def test_clearing_override_restores_default(graded_week):
    boss, alice = graded_week
    admin.set_pick_set_override(boss.id, alice.id, 2024, None, "anonymous")
    recompute.drain()
    assert _alice_week(alice).pick_source_used == "anonymous"

    assert admin.clear_pick_set_override(boss.id, alice.id, 2024) is True
    recompute.drain()

    assert _alice_week(alice).pick_source_used == "authenticated"
    assert admin.clear_pick_set_override(boss.id, alice.id, 2024) is False


def test_conflicts_report_counted_source_without_side_effects(graded_week):
    boss, alice = graded_week

    conflicts = admin.detect_pick_set_conflicts(2024)

    assert conflicts == [
        {
            "user_id": alice.id,
            "season": 2024,
            "week": 1,
            "authenticated_picks": 2,
            "anonymous_picks": 1,
            "anonymous_active": False,
            "counted_source": "authenticated",
            "override_source": None,
        }
    ]
    assert admin.detect_pick_set_conflicts(2024, user_id=boss.id) == []


def test_hiding_a_pick_set_falls_back_to_other_source(graded_week):
    boss, alice = graded_week

    assert admin.set_pick_set_visibility(
        boss.id, alice.id, 2024, 1, "authenticated", False, reason="duplicate account"
    ) == 2
    recompute.drain()

    row = _alice_week(alice)
    assert row.pick_source_used == "anonymous"
    assert row.source_overridden is False


def test_pick_set_visibility_requires_picks(make_user):
    alice = make_user("alice")
    with pytest.raises(ValueError):
        admin.set_pick_set_visibility(None, alice.id, 2024, 1, "anonymous", False)


def test_payment_sync_marks_rows_verified(graded_week):
    boss, alice = graded_week
    assert _alice_week(alice).payment_status == "NotPaid"

    admin.record_payment(alice.id, 2024, "paid", ledger_matched=True, admin_user_id=boss.id)
    recompute.drain()

    row = _alice_week(alice)
    assert (row.payment_status, row.verified) == ("Paid", True)


def test_payment_without_ledger_match_is_not_verified(graded_week):
    boss, alice = graded_week

    admin.record_payment(alice.id, 2024, "Paid")
    recompute.drain()

    row = _alice_week(alice)
    assert (row.payment_status, row.verified) == ("Paid", False)


def test_rebuild_request_queues_each_week(graded_week, make_game):
    boss, _ = graded_week
    make_game(week=2)

    assert admin.request_rebuild(boss.id, 2024) == [1, 2]
    assert sorted(job.job_key for job in RecomputeJob.query.all()) == [
        "rebuild_week:2024:1",
        "rebuild_week:2024:2",
    ]
    assert AdminAction.query.filter_by(action_type="rebuild").one().action_metadata == {
        "weeks": [1, 2]
    }


def test_single_pick_visibility_is_audited(graded_week):
    boss, alice = graded_week
    pick_id = Pick.query.filter_by(user_id=alice.id).order_by(Pick.id).first().id

    admin.set_pick_visibility(boss.id, pick_id, False, reason="late entry")

    action = AdminAction.query.filter_by(action_type="pick_visibility").one()
    assert (action.pick_id, action.target_user_id) == (pick_id, alice.id)
    assert action.action_metadata == {"visible": False, "reason": "late entry"}
