#!/usr/bin/env python3
"""Draw the raffle winner: every raffle entry is one ticket."""

from __future__ import annotations

import argparse
import random
import sqlite3

from config import Config
from services.raffle import RaffleError, draw_winner, get_eligible_entrants


def run_raffle(conn, rng=None, assume_yes=False, input_func=input, out=print):
    entrants = get_eligible_entrants(conn)
    if not entrants:
        out('No eligible users for the raffle.')
        return None

    total = sum(e.raffle_entries for e in entrants)
    out(f'Eligible players: {len(entrants)}  Total tickets: {total}\n')
    for entrant in entrants:
        out(f'  {entrant.name:<25} {entrant.email:<30} visits={entrant.visits:<3} tickets={entrant.raffle_entries}')
    out('')

    if not assume_yes and input_func('Draw the winner now? (y/N): ').strip().lower() not in ('y', 'yes'):
        out('Raffle cancelled')
        return None

    try:
        winner, index, pool_size = draw_winner(entrants, rng)
    except RaffleError as exc:
        out(str(exc))
        return None

    out('WINNER')
    out(f'  Name:    {winner.name}')
    out(f'  Email:   {winner.email}')
    out(f'  Phone:   {winner.phone}')
    out(f'  Visits:  {winner.visits}')
    out(f'  Tickets: {winner.raffle_entries} of {pool_size} (ticket #{index + 1})')
    return winner


def main(argv=None):
    parser = argparse.ArgumentParser(description='Restaurant Week Bingo raffle draw')
    parser.add_argument('--seed', type=int, help='reproducible draw (testing only)')
    parser.add_argument('--yes', action='store_true', help='skip the confirmation prompt')
    args = parser.parse_args(argv)

    rng = random.Random(args.seed) if args.seed is not None else None
    conn = sqlite3.connect(Config.DATABASE_PATH)
    try:
        winner = run_raffle(conn, rng=rng, assume_yes=args.yes)
    finally:
        conn.close()
    return 0 if winner else 1


if __name__ == '__main__':
    raise SystemExit(main())
