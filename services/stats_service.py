"""User stats maintenance: recompute derived counters and audit consistency."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def raffle_entries_for(visit_count: int, visits_per_entry: int) -> int:
    if visits_per_entry <= 0:
        raise ValueError('visits_per_entry must be positive')
    return visit_count // visits_per_entry


def _valid_visit_counts(conn):
    c = conn.cursor()
    c.execute(
        '''
        SELECT v.user_id, COUNT(*)
        FROM visits v
        INNER JOIN restaurants r ON r.id = v.restaurant_id
        GROUP BY v.user_id
        '''
    )
    return {row[0]: row[1] for row in c.fetchall()}


def recompute_user_stats(conn, visits_per_entry):
    """Bring every user_stats row in line with the user's valid visits.

    Returns a list of ``(user_id, old, new)`` tuples for the rows that
    changed, where old/new are ``(visit_count, raffle_entries)``. The caller
    owns the transaction.
    """
    counts = _valid_visit_counts(conn)
    c = conn.cursor()
    c.execute('INSERT OR IGNORE INTO user_stats (user_id) SELECT id FROM users')
    c.execute('SELECT user_id, visit_count, raffle_entries FROM user_stats ORDER BY user_id')
    changes = []
    for user_id, visit_count, raffle_entries in c.fetchall():
        actual = counts.get(user_id, 0)
        entries = raffle_entries_for(actual, visits_per_entry)
        if (actual, entries) != (visit_count, raffle_entries):
            conn.execute(
                '''
                UPDATE user_stats
                SET visit_count = ?, raffle_entries = ?, updated_at = CURRENT_TIMESTAMP
                WHERE user_id = ?
                ''',
                (actual, entries, user_id),
            )
            changes.append((user_id, (visit_count, raffle_entries), (actual, entries)))
    logger.info('Recomputed user stats: %s row(s) changed', len(changes))
    return changes


@dataclass
class ConsistencyReport:
    restaurant_count: int = 0
    visit_count: int = 0
    orphaned_visits: list = field(default_factory=list)
    stats_mismatches: list = field(default_factory=list)
    duplicate_visits: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.orphaned_visits or self.stats_mismatches or self.duplicate_visits)


def check_consistency(conn, visits_per_entry) -> ConsistencyReport:
    report = ConsistencyReport()
    c = conn.cursor()
    c.execute('SELECT COUNT(*) FROM restaurants')
    report.restaurant_count = c.fetchone()[0]
    c.execute('SELECT COUNT(*) FROM visits')
    report.visit_count = c.fetchone()[0]

    c.execute(
        '''
        SELECT v.id, v.restaurant_id
        FROM visits v
        LEFT JOIN restaurants r ON r.id = v.restaurant_id
        WHERE r.id IS NULL
        ORDER BY v.id
        '''
    )
    report.orphaned_visits = [{'visit_id': row[0], 'restaurant_id': row[1]} for row in c.fetchall()]

    c.execute('SELECT user_id, restaurant_id FROM visits')
    pairs = Counter((row[0], row[1]) for row in c.fetchall())
    report.duplicate_visits = [
        {'user_id': user_id, 'restaurant_id': restaurant_id, 'count': n}
        for (user_id, restaurant_id), n in sorted(pairs.items())
        if n > 1
    ]

    counts = _valid_visit_counts(conn)
    c.execute('SELECT user_id, visit_count, raffle_entries FROM user_stats ORDER BY user_id')
    for user_id, visit_count, raffle_entries in c.fetchall():
        actual = counts.get(user_id, 0)
        expected_entries = raffle_entries_for(actual, visits_per_entry)
        if actual != visit_count or expected_entries != raffle_entries:
            report.stats_mismatches.append({
                'user_id': user_id,
                'recorded_visits': visit_count,
                'actual_visits': actual,
                'recorded_entries': raffle_entries,
                'expected_entries': expected_entries,
            })
    return report
