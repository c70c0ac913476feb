"""Season rollover: archive the finished season's visits and stats, then clear them."""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

SEASON_KEY_RE = re.compile(r'^[A-Za-z0-9_-]{1,40}$')


class SeasonError(Exception):
    pass


def archive_and_reset_season(conn, season_key):
    season_key = (season_key or '').strip()
    if not SEASON_KEY_RE.match(season_key):
        raise SeasonError('Season key must be 1-40 letters, digits, "-" or "_" (example: fall2025).')

    with conn:
        c = conn.cursor()
        c.execute(
            '''
            INSERT OR REPLACE INTO visits_archive (season_key, id, user_id, restaurant_id, created_at)
            SELECT ?, id, user_id, restaurant_id, created_at FROM visits
            ''',
            (season_key,),
        )
        visits_archived = c.rowcount
        c.execute(
            '''
            INSERT OR REPLACE INTO user_stats_archive
                (season_key, user_id, visit_count, raffle_entries, created_at, updated_at)
            SELECT ?, user_id, visit_count, raffle_entries, created_at, updated_at FROM user_stats
            ''',
            (season_key,),
        )
        stats_archived = c.rowcount
        c.execute('DELETE FROM visits')
        c.execute('DELETE FROM user_stats')

    logger.info('Season %s archived: visits=%s user_stats=%s', season_key, visits_archived, stats_archived)
    return {
        'previous_season_key': season_key,
        'visits_archived': visits_archived,
        'user_stats_archived': stats_archived,
        'visits_cleared': True,
        'user_stats_cleared': True,
    }
