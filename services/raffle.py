"""Raffle drawing: one ticket per raffle entry, one winner per draw."""

from __future__ import annotations

import random
from dataclasses import dataclass


class RaffleError(Exception):
    pass


@dataclass
class Entrant:
    user_id: int
    name: str
    phone: str
    email: str
    visits: int
    raffle_entries: int


def get_eligible_entrants(conn):
    c = conn.cursor()
    c.execute(
        '''
        SELECT s.user_id, u.name, u.phone, u.email, s.visit_count, s.raffle_entries
        FROM user_stats s
        INNER JOIN users u ON u.id = s.user_id
        WHERE s.raffle_entries > 0
        ORDER BY s.raffle_entries DESC, s.user_id
        '''
    )
    return [
        Entrant(
            user_id=row[0],
            name=row[1] or 'N/A',
            phone=row[2] or 'N/A',
            email=row[3] or 'N/A',
            visits=row[4],
            raffle_entries=row[5],
        )
        for row in c.fetchall()
    ]


def build_ticket_pool(entrants):
    pool = []
    for entrant in entrants:
        pool.extend([entrant] * entrant.raffle_entries)
    return pool


def draw_winner(entrants, rng=None):
    """Return ``(winner, ticket_index, total_tickets)``; ticket_index is 0-based."""
    pool = build_ticket_pool(entrants)
    if not pool:
        raise RaffleError('No eligible users for the raffle.')
    rng = rng or random.SystemRandom()
    index = rng.randrange(len(pool))
    return pool[index], index, len(pool)
