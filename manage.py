#!/usr/bin/env python3
"""
ATS Pick'em Management CLI

This script provides command-line management for the ATS Pick'em scoring engine:
seasons, game results, picks, the recompute queue, leaderboards and admin tools.
"""

import json
import logging
import time

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ats_pickem import create_app, db
from ats_pickem.models import AdminAction, Game, RecomputeJob, Season, User
from ats_pickem.services import admin, leaderboard_store, recompute, submissions
from ats_pickem.services.game_feed import GameFeedClient, GameFeedError, apply_game_update
from ats_pickem.utils.cache_utils import get_cache_stats


@click.group()
def cli():
    """ATS Pick'em Management CLI"""
    pass


def _fail(action, e):
    db.session.rollback()
    click.echo(f"❌ {action} failed: {str(e)}")
    logging.error(f"{action} failed: {e}")


# Season Management Commands
@cli.group()
def season():
    """Season management commands"""
    pass


@season.command()
@click.argument("year", type=int)
@click.option("--weeks", type=int, default=14, show_default=True, help="Regular season weeks")
@click.option(
    "--best-finish",
    nargs=2,
    type=int,
    help="Best Finish window as START END weeks",
)
@click.option("--activate", is_flag=True, help="Activate this season")
@with_appcontext
def create(year, weeks, best_finish, activate):
    """Create a new season"""
    try:
        if Season.get_by_year(year):
            click.echo(f"Season {year} already exists!")
            return

        new_season = Season.create_season(year, weeks, best_finish_weeks=best_finish or None)
        if activate:
            new_season.activate()

        db.session.commit()
        click.echo(f"✅ Created season {year} ({weeks} weeks)")
        if activate:
            click.echo(f"✅ Activated season {year}")

    except IntegrityError as e:
        db.session.rollback()
        click.echo(f"❌ Season {year} already exists!")
        logging.error(f"Season creation failed - integrity error: {e}")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error creating season: {str(e)}")
        logging.error(f"Season creation failed - SQL error: {e}")
    except ValueError as e:
        db.session.rollback()
        click.echo(f"❌ {e}")


@season.command()
@click.argument("year", type=int)
@with_appcontext
def activate(year):
    """Activate a season"""
    try:
        target = Season.get_by_year(year)
        if not target:
            click.echo(f"❌ Season {year} not found!")
            return

        target.activate()
        db.session.commit()
        click.echo(f"✅ Activated season {year}")

    except SQLAlchemyError as e:
        _fail("Season activation", e)


@season.command("best-finish")
@click.argument("year", type=int)
@click.argument("start_week", type=int)
@click.argument("end_week", type=int)
@with_appcontext
def best_finish_window(year, start_week, end_week):
    """Set the Best Finish week window"""
    target = Season.get_by_year(year)
    if not target:
        click.echo(f"❌ Season {year} not found!")
        return
    try:
        target.set_best_finish_weeks(start_week, end_week)
        db.session.commit()
        leaderboard_store.invalidate_leaderboards()
        click.echo(f"✅ Best Finish for {year}: weeks {start_week}-{end_week}")
    except ValueError as e:
        click.echo(f"❌ {e}")
    except SQLAlchemyError as e:
        _fail("Setting Best Finish window", e)


@season.command("list")
@with_appcontext
def list_seasons():
    """List all seasons"""
    seasons = Season.query.order_by(Season.year.desc()).all()

    if not seasons:
        click.echo("No seasons found.")
        return

    click.echo("Seasons:")
    for s in seasons:
        status = "🟢 ACTIVE" if s.is_active else "⚪ Inactive"
        window = s.best_finish_weeks
        best_finish = f", Best Finish weeks {window[0]}-{window[-1]}" if window else ""
        click.echo(f"  {s.year}: {status} - Week {s.current_week}{best_finish}")


# User Commands
@cli.group()
def user():
    """User management commands"""
    pass


@user.command("add")
@click.argument("username")
@click.argument("email")
@click.option("--display-name", help="Name shown on leaderboards")
@click.option("--admin", "is_admin", is_flag=True, help="Grant admin privileges")
@with_appcontext
def add_user(username, email, display_name, is_admin):
    """Register a player"""
    try:
        new_user = User(username=username, email=email.strip().lower(), is_admin=is_admin)
        new_user.set_display_name(display_name)
        db.session.add(new_user)
        db.session.commit()
        click.echo(f"✅ Created user #{new_user.id} '{username}' ({email})")
    except IntegrityError:
        db.session.rollback()
        click.echo(f"❌ User with username '{username}' or email '{email}' already exists!")
    except SQLAlchemyError as e:
        _fail("User creation", e)


@user.command("list")
@with_appcontext
def list_users():
    """List all users"""
    users = User.query.order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("Users:")
    for u in users:
        flag = "👑" if u.is_admin else "  "
        click.echo(f"  {flag} #{u.id} {u.username} ({u.email}) - {u.full_name}")


# Game Commands
@cli.group()
def game():
    """Game result commands"""
    pass


@game.command()
@click.argument("game_id")
@click.option("--season", "season_year", type=int)
@click.option("--week", type=int)
@click.option("--home", "home_team")
@click.option("--away", "away_team")
@click.option("--spread", help="Points added to the home score")
@click.option("--home-score")
@click.option("--away-score")
@click.option("--status", type=click.Choice(["scheduled", "in_progress", "completed"]))
@click.option("--kickoff", help="ISO-8601 kickoff time")
@with_appcontext
def update(game_id, season_year, week, home_team, away_team, spread, home_score, away_score, status, kickoff):
    """Create or update a game from the given fields"""
    record = {
        "game_id": game_id,
        "season": season_year,
        "week": week,
        "home_team": home_team,
        "away_team": away_team,
        "spread": spread,
        "home_score": home_score,
        "away_score": away_score,
        "status": status,
        "kickoff": kickoff,
    }
    try:
        updated, graded = apply_game_update(record)
        click.echo(f"✅ {updated} - status {updated.status}, ATS winner {updated.ats_winner or 'pending'}")
        if graded:
            click.echo("   Grading queued")
    except ValueError as e:
        click.echo(f"❌ {e}")
    except SQLAlchemyError as e:
        _fail("Game update", e)


@game.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_games(path):
    """Apply a JSON file of feed records"""
    with open(path) as f:
        data = json.load(f)
    records = data.get("games", []) if isinstance(data, dict) else data

    applied = failed = 0
    for record in records:
        try:
            apply_game_update(record)
            applied += 1
        except (ValueError, SQLAlchemyError) as e:
            db.session.rollback()
            failed += 1
            click.echo(f"❌ {e}")
    click.echo(f"✅ Applied {applied} records, {failed} failed")


@game.command()
@click.option("--season", "season_year", type=int, help="Season year (default: active season)")
@click.option("--week", type=int)
@with_appcontext
def sync(season_year, week):
    """Pull game data from the configured feed"""
    if season_year is None:
        current_season = Season.get_current_season()
        season_year = current_season.year if current_season else None
    try:
        stats = GameFeedClient().sync(season=season_year, week=week)
        click.echo(
            f"✅ Feed sync: {stats['applied']} applied, {stats['graded']} queued for grading, "
            f"{stats['failed']} failed"
        )
    except GameFeedError as e:
        click.echo(f"❌ {e}")


@game.command("list")
@click.argument("season_year", type=int)
@click.argument("week", type=int)
@with_appcontext
def list_games(season_year, week):
    """List the games of a week"""
    for g in Game.get_games_for_week(season_year, week):
        score = (
            f"{g.away_score}-{g.home_score}" if g.home_score is not None and g.away_score is not None else "-"
        )
        counts = g.get_picks_count()
        click.echo(
            f"  #{g.id} [{g.external_id}] {g.away_team} @ {g.home_team} "
            f"spread {g.spread} score {score} {g.status} ATS {g.ats_winner or 'pending'}"
            f" picks {counts['away']}-{counts['home']}"
        )


# Pick Commands
@cli.group()
def picks():
    """Pick submission commands"""
    pass


@picks.command()
@click.argument("user_id", type=int)
@click.argument("game_id", type=int)
@click.argument("side")
@click.option("--lock", is_flag=True, help="Make this the week's lock pick")
@click.option("--draft", is_flag=True, help="Save without submitting")
@with_appcontext
def submit(user_id, game_id, side, lock, draft):
    """Submit a pick (side is home, away or a team name)"""
    pick, message = submissions.submit_pick(user_id, game_id, side, is_lock=lock, submitted=not draft)
    click.echo(f"{'✅' if pick else '❌'} {message}")


@picks.command()
@click.argument("user_id", type=int)
@click.argument("game_id", type=int)
@with_appcontext
def remove(user_id, game_id):
    """Remove a pick before kickoff"""
    removed, message = submissions.remove_pick(user_id, game_id)
    click.echo(f"{'✅' if removed else '❌'} {message}")


@picks.command()
@click.argument("email")
@click.argument("game_id", type=int)
@click.argument("side")
@click.option("--name", help="Submitter name")
@click.option("--lock", is_flag=True)
@with_appcontext
def anonymous(email, game_id, side, name, lock):
    """Submit a pick for a player without an account"""
    pick, message = submissions.submit_anonymous_pick(email, name, game_id, side, is_lock=lock)
    click.echo(f"{'✅' if pick else '❌'} {message}")


@picks.command()
@click.argument("email")
@click.argument("user_id", type=int)
@click.option("--admin-id", type=int, help="Admin performing the assignment")
@with_appcontext
def assign(email, user_id, admin_id):
    """Assign anonymous picks for an email to a user"""
    try:
        count = submissions.assign_anonymous_picks(email, user_id, admin_user_id=admin_id)
        click.echo(f"✅ Assigned {count} anonymous picks to user {user_id}")
    except ValueError as e:
        click.echo(f"❌ {e}")
    except SQLAlchemyError as e:
        _fail("Assignment", e)


@picks.command()
@click.argument("pick_ids", type=int, nargs=-1, required=True)
@click.option("--admin-id", type=int, required=True)
@click.option("--conflicting", is_flag=True, help="Mark as conflicting instead of validating")
@click.option("--reason")
@with_appcontext
def validate(pick_ids, admin_id, conflicting, reason):
    """Validate assigned anonymous picks"""
    status = "conflicting" if conflicting else "manually_validated"
    try:
        count = submissions.validate_anonymous_picks(admin_id, list(pick_ids), status, reason)
        click.echo(f"✅ Marked {count} anonymous picks {status}")
    except ValueError as e:
        click.echo(f"❌ {e}")
    except SQLAlchemyError as e:
        _fail("Validation", e)


# Recompute Queue Commands
@cli.group()
def jobs():
    """Recompute queue commands"""
    pass


@jobs.command()
@click.option("--batch-size", type=int, help="Jobs fetched per batch")
@with_appcontext
def run(batch_size):
    """Drain the recompute queue once"""
    result = recompute.drain(batch_size=batch_size)
    click.echo(
        f"✅ Processed {result['processed']} jobs, {result['failed']} failed, "
        f"{result['remaining']} still pending"
    )


@jobs.command("status")
@with_appcontext
def jobs_status():
    """Show queue counts and failed jobs"""
    counts = recompute.queue_status()
    if not counts:
        click.echo("✅ Queue is empty")
        return
    for job_status, by_type in sorted(counts.items()):
        summary = ", ".join(f"{job_type}: {count}" for job_type, count in sorted(by_type.items()))
        click.echo(f"  {job_status}: {summary}")

    for job in RecomputeJob.query.filter_by(status="failed").order_by(RecomputeJob.id).limit(20):
        click.echo(f"  ❌ {job.job_key} after {job.attempts} attempts: {job.last_error}")


@jobs.command()
@click.option("--key", "job_key", help="Retry a single job by key")
@with_appcontext
def retry(job_key):
    """Move failed jobs back to pending"""
    count = recompute.retry_failed_jobs(job_key)
    click.echo(f"✅ {count} jobs queued for retry")


# Leaderboard Commands
@cli.group()
def leaderboard():
    """Leaderboard commands"""
    pass


def _print_board(rows):
    if not rows:
        click.echo("No entries.")
        return
    for row in rows:
        badge = "✔" if row["verified"] else " "
        click.echo(
            f"  {row['rank']:>3}. {row['display_name']:<24} {row['total_points']:>5} pts "
            f"{row['record']:<9} locks {row['lock_wins']}-{row['lock_losses']} "
            f"{row['payment_status']:<8}{badge} [{row['pick_source_used']}]"
        )


@leaderboard.command()
@click.argument("season_year", type=int)
@click.argument("week_number", type=int)
@click.option("--verified-only", is_flag=True)
@with_appcontext
def week(season_year, week_number, verified_only):
    """Show a weekly leaderboard"""
    click.echo(f"🏈 Week {week_number}, {season_year}")
    _print_board(leaderboard_store.get_weekly_leaderboard(season_year, week_number, verified_only=verified_only))


@leaderboard.command("season")
@click.argument("season_year", type=int)
@click.option("--verified-only", is_flag=True)
@with_appcontext
def season_board(season_year, verified_only):
    """Show a season leaderboard"""
    click.echo(f"🏆 Season {season_year}")
    _print_board(leaderboard_store.get_season_leaderboard(season_year, verified_only=verified_only))


@leaderboard.command("best-finish")
@click.argument("season_year", type=int)
@with_appcontext
def best_finish(season_year):
    """Show the Best Finish leaderboard"""
    entries = leaderboard_store.get_best_finish_leaderboard(season_year)
    if not entries:
        click.echo("No Best Finish window or no entries.")
        return
    for entry in entries:
        click.echo(
            f"  {entry['rank']:>3}. {entry['display_name']:<24} {entry['total_points']:>5} pts "
            f"{entry['wins']}-{entry['losses']}-{entry['pushes']} over {entry['weeks_played']} weeks"
        )


@leaderboard.command()
@click.argument("season_year", type=int)
@click.argument("week_number", type=int)
@with_appcontext
def verify(season_year, week_number):
    """Compare stored rows with a fresh computation"""
    report = recompute.verify_week(season_year, week_number)
    if report["ok"]:
        click.echo(f"✅ Week {week_number} of {season_year} is consistent")
        return

    click.echo(f"❌ Week {week_number} of {season_year} has drifted:")
    for pick in report["stale_picks"]:
        click.echo(f"   stale {pick['pick']}: stored {pick['stored']}, expected {pick['expected']}")
    for user_id in report["missing_rows"]:
        click.echo(f"   missing row for user {user_id}")
    for user_id in report["extra_rows"]:
        click.echo(f"   unexpected row for user {user_id}")
    for mismatch in report["mismatched_rows"]:
        click.echo(f"   user {mismatch['user_id']}: {mismatch['fields']}")
    if report["rank_errors"]:
        click.echo("   ranks are out of order")


@leaderboard.command()
@click.argument("season_year", type=int)
@click.option("--week", "week_number", type=int, help="Rebuild one week only")
@click.option("--now", is_flag=True, help="Rebuild immediately instead of queueing")
@click.option("--admin-id", type=int)
@with_appcontext
def rebuild(season_year, week_number, now, admin_id):
    """Rebuild leaderboards for a season or week"""
    try:
        if now:
            if week_number is not None:
                count = recompute.rebuild_week(season_year, week_number)
                recompute.commit_and_invalidate()
                click.echo(f"✅ Rebuilt week {week_number}: {count} users")
            else:
                weeks = recompute.rebuild_season(season_year)
                recompute.commit_and_invalidate()
                click.echo(f"✅ Rebuilt {weeks} weeks of {season_year}")
        else:
            weeks = admin.request_rebuild(admin_id, season_year, week_number)
            click.echo(f"✅ Queued rebuild of weeks {weeks}")
    except SQLAlchemyError as e:
        _fail("Rebuild", e)


# Admin Commands
@cli.group("admin")
def admin_cmd():
    """Admin control commands"""
    pass


@admin_cmd.command()
@click.argument("pick_id", type=int)
@click.option("--show/--hide", default=True)
@click.option("--admin-id", type=int, required=True)
@click.option("--reason")
@with_appcontext
def visibility(pick_id, show, admin_id, reason):
    """Show or hide a single pick"""
    try:
        admin.set_pick_visibility(admin_id, pick_id, show, reason)
        click.echo(f"✅ Pick {pick_id} {'shown' if show else 'hidden'}")
    except ValueError as e:
        click.echo(f"❌ {e}")
    except SQLAlchemyError as e:
        _fail("Visibility change", e)


@admin_cmd.command("set-visibility")
@click.argument("user_id", type=int)
@click.argument("season_year", type=int)
@click.argument("week_number", type=int)
@click.argument("source", type=click.Choice(["authenticated", "anonymous"]))
@click.option("--show/--hide", default=True)
@click.option("--admin-id", type=int, required=True)
@click.option("--reason")
@with_appcontext
def set_visibility(user_id, season_year, week_number, source, show, admin_id, reason):
    """Show or hide a user's whole pick set for a week"""
    try:
        count = admin.set_pick_set_visibility(
            admin_id, user_id, season_year, week_number, source, show, reason
        )
        click.echo(f"✅ {count} {source} picks {'shown' if show else 'hidden'}")
    except ValueError as e:
        click.echo(f"❌ {e}")
    except SQLAlchemyError as e:
        _fail("Visibility change", e)


@admin_cmd.command()
@click.argument("user_id", type=int)
@click.argument("season_year", type=int)
@click.argument("source", type=click.Choice(["authenticated", "anonymous"]))
@click.option("--week", "week_number", type=int, help="Limit to one week (default: whole season)")
@click.option("--admin-id", type=int, required=True)
@click.option("--reason")
@with_appcontext
def override(user_id, season_year, source, week_number, admin_id, reason):
    """Choose which pick source counts for a user"""
    try:
        admin.set_pick_set_override(admin_id, user_id, season_year, week_number, source, reason)
        click.echo(f"✅ {source} picks now count for user {user_id}")
    except ValueError as e:
        click.echo(f"❌ {e}")
    except SQLAlchemyError as e:
        _fail("Override", e)


@admin_cmd.command("clear-override")
@click.argument("user_id", type=int)
@click.argument("season_year", type=int)
@click.option("--week", "week_number", type=int)
@click.option("--admin-id", type=int, required=True)
@with_appcontext
def clear_override(user_id, season_year, week_number, admin_id):
    """Remove a pick-source override"""
    try:
        if admin.clear_pick_set_override(admin_id, user_id, season_year, week_number):
            click.echo("✅ Override cleared")
        else:
            click.echo("No override found.")
    except SQLAlchemyError as e:
        _fail("Clearing override", e)


@admin_cmd.command()
@click.argument("season_year", type=int)
@click.option("--user", "user_id", type=int)
@with_appcontext
def conflicts(season_year, user_id):
    """List users with both authenticated and anonymous picks in a week"""
    found = admin.detect_pick_set_conflicts(season_year, user_id)
    if not found:
        click.echo("✅ No pick set conflicts")
        return
    for conflict in found:
        click.echo(
            f"  user {conflict['user_id']} week {conflict['week']}: "
            f"{conflict['authenticated_picks']} authenticated, {conflict['anonymous_picks']} anonymous "
            f"(counting {conflict['counted_source']}"
            f"{', override ' + conflict['override_source'] if conflict['override_source'] else ''})"
        )


@admin_cmd.command()
@click.argument("user_id", type=int)
@click.option("--limit", type=int, default=20, show_default=True)
@with_appcontext
def history(user_id, limit):
    """Show recent admin actions affecting a user"""
    actions = AdminAction.get_for_user(user_id, limit=limit)
    if not actions:
        click.echo(f"No admin actions for user {user_id}")
        return
    for action in actions:
        when = action.created_at.strftime("%Y-%m-%d %H:%M") if action.created_at else "?"
        click.echo(f"  {when} [{action.action_type}] {action.action_description}")


# Payment Commands
@cli.group()
def payments():
    """Payment ledger commands"""
    pass


@payments.command()
@click.argument("user_id", type=int)
@click.argument("season_year", type=int)
@click.argument("raw_status")
@click.option("--ledger-matched", is_flag=True, help="The ledger entry matched a transaction")
@click.option("--admin-id", type=int)
@with_appcontext
def record(user_id, season_year, raw_status, ledger_matched, admin_id):
    """Record a payment status for a user and season"""
    try:
        admin.record_payment(user_id, season_year, raw_status, ledger_matched, admin_user_id=admin_id)
        click.echo(f"✅ Payment recorded for user {user_id}")
    except SQLAlchemyError as e:
        _fail("Payment record", e)


# Worker Commands
@cli.command()
@with_appcontext
def worker():
    """Run the background scheduler in the foreground"""
    from ats_pickem.services.scheduler_service import scheduler_service

    scheduler_service.init_app(current_app._get_current_object())
    if not scheduler_service.is_running:
        scheduler_service.start()

    click.echo("🏈 Worker running, press Ctrl+C to stop")
    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        scheduler_service.shutdown()


@cli.command()
@with_appcontext
def status():
    """Show application status"""
    click.echo("🏈 ATS Pick'em Status")
    click.echo("=" * 40)

    # Database connection
    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except SQLAlchemyError as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    current_season = Season.get_current_season()
    if current_season:
        click.echo(f"✅ Current Season: {current_season.year} (Week {current_season.current_week})")
        game_count = Game.query.filter_by(season=current_season.year).count()
        final_count = Game.query.filter_by(season=current_season.year, status="completed").count()
        click.echo(f"🏈 Games: {final_count}/{game_count} completed")
    else:
        click.echo("⚠️  Current Season: None active")

    click.echo(f"👥 Users: {User.query.count()}")
    pending = RecomputeJob.query.filter_by(status="pending").count()
    failed = RecomputeJob.query.filter_by(status="failed").count()
    click.echo(f"⚙️  Recompute queue: {pending} pending, {failed} failed")

    stats = get_cache_stats()
    click.echo(f"🗄️  Cache: {stats['type']} (leaderboard version {stats['leaderboard_version']})")


def main():
    app = create_app()
    with app.app_context():
        cli()


if __name__ == "__main__":
    main()
