import sqlite3

import pytest

from app import app, db_connect, init_db
from services.stats_service import check_consistency, raffle_entries_for, recompute_user_stats


def insert_visits(user_id, restaurant_ids):
    conn = db_connect()
    conn.executemany(
        'INSERT INTO visits (user_id, restaurant_id) VALUES (?, ?)',
        [(user_id, rid) for rid in restaurant_ids],
    )
    conn.commit()
    conn.close()


def test_raffle_entries_for():
    assert raffle_entries_for(0, 4) == 0
    assert raffle_entries_for(7, 4) == 1
    assert raffle_entries_for(8, 4) == 2
    with pytest.raises(ValueError):
        raffle_entries_for(3, 0)


def test_triggers_maintain_user_stats(client, signup, add_restaurant, user_stats):
    ids = [add_restaurant(f'R{i}', f'C{i}') for i in range(8)]
    user_id = signup()
    insert_visits(user_id, ids)
    assert user_stats(user_id) == (8, 2)

    conn = db_connect()
    conn.execute('DELETE FROM visits WHERE user_id = ? AND restaurant_id = ?', (user_id, ids[0]))
    conn.commit()
    conn.close()
    assert user_stats(user_id) == (7, 1)


def test_unique_visit_per_restaurant(client, signup, add_restaurant):
    rid = add_restaurant('Pizza Palace', 'PIZZA1')
    user_id = signup()
    insert_visits(user_id, [rid])
    with pytest.raises(sqlite3.IntegrityError):
        insert_visits(user_id, [rid])


def test_init_db_applies_new_divisor(client, signup, add_restaurant, user_stats):
    ids = [add_restaurant(f'R{i}', f'C{i}') for i in range(6)]
    user_id = signup()
    app.config['VISITS_PER_RAFFLE_ENTRY'] = 3
    init_db()
    insert_visits(user_id, ids)
    assert user_stats(user_id) == (6, 2)


def test_recompute_and_consistency(client, signup, add_restaurant, user_stats):
    ids = [add_restaurant(f'R{i}', f'C{i}') for i in range(4)]
    user_id = signup()
    insert_visits(user_id, ids)

    # delete a restaurant without foreign keys so the visit is orphaned
    raw = sqlite3.connect(app.config['DATABASE_PATH'])
    raw.execute('DELETE FROM restaurants WHERE id = ?', (ids[0],))
    raw.commit()
    raw.close()

    conn = db_connect()
    report = check_consistency(conn, 4)
    assert not report.ok
    assert report.orphaned_visits == [{'visit_id': 1, 'restaurant_id': ids[0]}]
    assert report.stats_mismatches[0]['user_id'] == user_id
    assert report.stats_mismatches[0]['actual_visits'] == 3

    changes = recompute_user_stats(conn, 4)
    conn.commit()
    assert changes == [(user_id, (4, 1), (3, 0))]
    assert check_consistency(conn, 4).stats_mismatches == []
    conn.close()
    assert user_stats(user_id) == (3, 0)
