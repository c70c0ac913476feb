import pytest

from app import db_connect
from services.season_service import SeasonError, archive_and_reset_season


def test_rollover_archives_and_clears(client, signup, add_restaurant):
    add_restaurant('Pizza Palace', 'PIZZA1')
    add_restaurant('Taco Town', 'TACO22')
    user_id = signup()
    client.post('/api/check-in', json={'code': 'PIZZA1'})
    client.post('/api/check-in', json={'code': 'TACO22'})

    conn = db_connect()
    result = archive_and_reset_season(conn, 'fall2025')
    assert result['previous_season_key'] == 'fall2025'
    assert result['visits_archived'] == 2
    assert result['visits_cleared'] is True

    cur = conn.cursor()
    cur.execute('SELECT COUNT(*) FROM visits')
    assert cur.fetchone()[0] == 0
    cur.execute('SELECT COUNT(*) FROM user_stats')
    assert cur.fetchone()[0] == 0
    cur.execute("SELECT visit_count FROM user_stats_archive WHERE season_key = 'fall2025' AND user_id = ?", (user_id,))
    assert cur.fetchone()[0] == 2
    conn.close()

    # players start the new season from zero
    assert client.get('/api/me/stats').get_json() == {'visit_count': 0, 'raffle_entries': 0}
    assert client.post('/api/check-in', json={'code': 'PIZZA1'}).status_code == 200


def test_invalid_season_key(client):
    conn = db_connect()
    with pytest.raises(SeasonError):
        archive_and_reset_season(conn, 'fall 2025!')
    with pytest.raises(SeasonError):
        archive_and_reset_season(conn, '')
    conn.close()
