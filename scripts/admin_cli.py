#!/usr/bin/env python3
"""Admin maintenance CLI for accounts, stats and seasons."""

from __future__ import annotations

import argparse
import sqlite3

from config import Config
from services.season_service import SeasonError, archive_and_reset_season
from services.stats_service import check_consistency, recompute_user_stats


def db_connect():
    conn = sqlite3.connect(Config.DATABASE_PATH)
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def grant_admin(conn, email: str, revoke: bool = False):
    cur = conn.cursor()
    cur.execute(
        "UPDATE users SET is_admin = ? WHERE email = ?",
        (0 if revoke else 1, email.strip().lower()),
    )
    conn.commit()
    print(f"updated_rows={cur.rowcount}")
    return cur.rowcount


def recompute_stats(conn, visits_per_entry: int, dry_run: bool = False):
    changes = recompute_user_stats(conn, visits_per_entry)
    for user_id, old, new in changes:
        print(f"user={user_id} visits {old[0]}->{new[0]} entries {old[1]}->{new[1]}")
    if dry_run:
        conn.rollback()
        print(f"would_update={len(changes)}")
    else:
        conn.commit()
        print(f"updated_rows={len(changes)}")
    return changes


def report_consistency(conn, visits_per_entry: int):
    report = check_consistency(conn, visits_per_entry)
    print(f"restaurants={report.restaurant_count}")
    print(f"visits={report.visit_count}")
    for orphan in report.orphaned_visits:
        print(f"orphaned_visit id={orphan['visit_id']} restaurant_id={orphan['restaurant_id']}")
    for dup in report.duplicate_visits:
        print(f"duplicate_visit user={dup['user_id']} restaurant={dup['restaurant_id']} count={dup['count']}")
    for mismatch in report.stats_mismatches:
        print(
            f"stats_mismatch user={mismatch['user_id']} "
            f"recorded={mismatch['recorded_visits']}/{mismatch['recorded_entries']} "
            f"actual={mismatch['actual_visits']}/{mismatch['expected_entries']}"
        )
    print("consistent" if report.ok else "inconsistent")
    return report


def season_rollover(conn, season_key: str):
    result = archive_and_reset_season(conn, season_key)
    for key, value in result.items():
        print(f"{key}={value}")
    return result


def clear_visits(conn, email=None):
    """Delete visits for one user (by email) or for everyone; triggers keep user_stats in step."""
    with conn:
        if email:
            deleted = conn.execute(
                "DELETE FROM visits WHERE user_id IN (SELECT id FROM users WHERE email = ?)",
                (email.strip().lower(),),
            ).rowcount
        else:
            deleted = conn.execute("DELETE FROM visits").rowcount
            conn.execute("UPDATE user_stats SET visit_count = 0, raffle_entries = 0, updated_at = CURRENT_TIMESTAMP")
    print(f"deleted_visits={deleted}")
    return deleted


def show_codes(conn):
    cur = conn.cursor()
    cur.execute("SELECT name, code FROM restaurants ORDER BY name COLLATE NOCASE")
    rows = cur.fetchall()
    width = max((len(name) for name, _ in rows), default=0)
    for name, code in rows:
        print(f"{name.ljust(width)}  {code}")
    return rows


def _confirmed(args, prompt):
    if args.yes:
        return True
    return input(f"{prompt} Type 'yes' to continue: ").strip().lower() == 'yes'


def main(argv=None):
    parser = argparse.ArgumentParser(description='Restaurant Week Bingo admin utility')
    sub = parser.add_subparsers(dest='cmd', required=True)

    p1 = sub.add_parser('grant-admin')
    p1.add_argument('--email', required=True)
    p1.add_argument('--revoke', action='store_true')

    p2 = sub.add_parser('recompute-stats')
    p2.add_argument('--dry-run', action='store_true')

    sub.add_parser('check-consistency')

    p4 = sub.add_parser('season-rollover')
    p4.add_argument('--season', required=True, help='key for the finished season, e.g. fall2025')
    p4.add_argument('--yes', action='store_true')

    p5 = sub.add_parser('clear-visits')
    p5.add_argument('--email', help='only this player (default: everyone)')
    p5.add_argument('--yes', action='store_true')

    sub.add_parser('show-codes')

    args = parser.parse_args(argv)
    conn = db_connect()
    try:
        if args.cmd == 'grant-admin':
            grant_admin(conn, args.email, args.revoke)
        elif args.cmd == 'recompute-stats':
            recompute_stats(conn, Config.VISITS_PER_RAFFLE_ENTRY, args.dry_run)
        elif args.cmd == 'check-consistency':
            report = report_consistency(conn, Config.VISITS_PER_RAFFLE_ENTRY)
            return 0 if report.ok else 1
        elif args.cmd == 'season-rollover':
            if not _confirmed(args, f"Archive season '{args.season}' and clear all visits?"):
                print("cancelled")
                return 1
            try:
                season_rollover(conn, args.season)
            except SeasonError as exc:
                print(f"error={exc}")
                return 2
        elif args.cmd == 'clear-visits':
            target = args.email or "ALL players"
            if not _confirmed(args, f"Delete visits for {target}?"):
                print("cancelled")
                return 1
            clear_visits(conn, args.email)
        elif args.cmd == 'show-codes':
            show_codes(conn)
    finally:
        conn.close()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
