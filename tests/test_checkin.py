from datetime import date, timedelta

from app import app, db_connect


def test_check_in_requires_login(client, add_restaurant):
    add_restaurant('Pizza Palace', 'PIZZA1')
    resp = client.post('/api/check-in', json={'code': 'PIZZA1'})
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'Please sign in to check in'


def test_closed_window_rejected_before_auth(client):
    app.config['CHECKIN_FORCE_CLOSED'] = True
    resp = client.post('/api/check-in', json={'code': 'ANY'})
    assert resp.status_code == 403
    body = resp.get_json()
    assert 'currently closed' in body['error']
    assert body['eventStatus']['active'] is False


def test_force_closed_wins_over_force_open(client, signup, add_restaurant):
    add_restaurant('Pizza Palace', 'PIZZA1')
    signup()
    app.config.update(CHECKIN_FORCE_OPEN=True, CHECKIN_FORCE_CLOSED=True)
    resp = client.post('/api/check-in', json={'code': 'PIZZA1'})
    assert resp.status_code == 403


def test_not_started_message(client, signup):
    signup()
    start = date.today() + timedelta(days=10)
    app.config.update(CHECKIN_START_DATE=start.isoformat(), CHECKIN_END_DATE=(start + timedelta(days=7)).isoformat())
    resp = client.post('/api/check-in', json={'code': 'PIZZA1'})
    assert resp.status_code == 403
    assert 'will be available starting' in resp.get_json()['error']
    assert resp.get_json()['eventStatus']['daysUntilStart'] >= 9


def test_ended_window(client, signup):
    signup()
    app.config.update(CHECKIN_START_DATE='2020-01-01', CHECKIN_END_DATE='2020-01-07')
    resp = client.post('/api/check-in', json={'code': 'PIZZA1'})
    assert resp.status_code == 403
    assert 'has ended' in resp.get_json()['error']


def test_force_open_ignores_dates(client, signup, add_restaurant):
    add_restaurant('Pizza Palace', 'PIZZA1')
    signup()
    app.config.update(CHECKIN_START_DATE='2020-01-01', CHECKIN_END_DATE='2020-01-07', CHECKIN_FORCE_OPEN=True)
    resp = client.post('/api/check-in', json={'code': 'PIZZA1'})
    assert resp.status_code == 200


def test_successful_check_in(client, signup, add_restaurant):
    add_restaurant('Pizza Palace', 'PIZZA1')
    signup()
    resp = client.post('/api/check-in', json={'code': 'PIZZA1'})
    assert resp.status_code == 200
    assert resp.get_json() == {
        'success': True,
        'restaurant': 'Pizza Palace',
        'stats': {'visitCount': 1, 'raffleEntries': 0},
    }


def test_code_is_trimmed_and_case_insensitive(client, signup, add_restaurant):
    add_restaurant('Taco Town', 'TACO22')
    signup()
    resp = client.post('/api/check-in', json={'code': '  taco22 '})
    assert resp.status_code == 200
    assert resp.get_json()['restaurant'] == 'Taco Town'


def test_unknown_code(client, signup):
    signup()
    resp = client.post('/api/check-in', json={'code': 'NOPE'})
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'Invalid code. Please check and try again.'


def test_blank_code_and_bad_body(client, signup):
    signup()
    assert client.post('/api/check-in', json={'code': '   '}).status_code == 400
    assert client.post('/api/check-in', json={'code': 42}).status_code == 400
    resp = client.post('/api/check-in', data='not json', content_type='application/json')
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Invalid request body'


def test_duplicate_check_in(client, signup, add_restaurant, user_stats):
    add_restaurant('Pizza Palace', 'PIZZA1')
    user_id = signup()
    assert client.post('/api/check-in', json={'code': 'PIZZA1'}).status_code == 200
    resp = client.post('/api/check-in', json={'code': 'pizza1'})
    assert resp.status_code == 409
    body = resp.get_json()
    assert body['alreadyVisited'] is True
    assert body['error'] == "You've already checked in at Pizza Palace!"
    assert user_stats(user_id) == (1, 0)


class VisitLookupMisses:
    """Connection whose duplicate-visit lookup sees nothing, as if another request inserted in between."""

    class _Cursor:
        def __init__(self, cursor):
            self._cursor = cursor
            self._hide = False

        def execute(self, sql, params=()):
            self._hide = sql.startswith('SELECT 1 FROM visits')
            return self._cursor.execute(sql, params)

        def fetchone(self):
            row = self._cursor.fetchone()
            return None if self._hide else row

        def __getattr__(self, name):
            return getattr(self._cursor, name)

    def __init__(self, conn):
        self._conn = conn

    def cursor(self):
        return self._Cursor(self._conn.cursor())

    def __getattr__(self, name):
        return getattr(self._conn, name)


def test_concurrent_duplicate_hits_unique_index(client, signup, add_restaurant, user_stats, monkeypatch):
    add_restaurant('Pizza Palace', 'PIZZA1')
    user_id = signup()
    assert client.post('/api/check-in', json={'code': 'PIZZA1'}).status_code == 200

    monkeypatch.setattr('app.db_connect', lambda: VisitLookupMisses(db_connect()))
    resp = client.post('/api/check-in', json={'code': 'PIZZA1'})
    assert resp.status_code == 409
    assert resp.get_json() == {
        'error': "You've already checked in at Pizza Palace!",
        'restaurant': 'Pizza Palace',
        'alreadyVisited': True,
    }
    assert user_stats(user_id) == (1, 0)


def test_raffle_entry_earned_every_fourth_visit(client, signup, add_restaurant):
    codes = ['A1', 'B2', 'C3', 'D4', 'E5']
    for i, code in enumerate(codes):
        add_restaurant(f'Restaurant {i}', code)
    signup()
    results = [client.post('/api/check-in', json={'code': code}).get_json()['stats'] for code in codes]
    assert [r['visitCount'] for r in results] == [1, 2, 3, 4, 5]
    assert [r['raffleEntries'] for r in results] == [0, 0, 0, 1, 1]


def test_rate_limit_per_user(client, signup, add_restaurant):
    app.config['CHECKIN_RATE_LIMIT'] = '2/minute'
    signup()
    assert client.post('/api/check-in', json={'code': 'X1'}).status_code == 404
    assert client.post('/api/check-in', json={'code': 'X2'}).status_code == 404
    resp = client.post('/api/check-in', json={'code': 'X3'})
    assert resp.status_code == 429
    body = resp.get_json()
    assert 1 <= body['retryAfter'] <= 60
    assert body['error'] == f"Too many attempts. Please wait {body['retryAfter']} seconds."
    assert resp.headers['Retry-After'] == str(body['retryAfter'])

    # a different player has their own budget
    add_restaurant('Pizza Palace', 'PIZZA1')
    signup(email='second@example.com')
    assert client.post('/api/check-in', json={'code': 'PIZZA1'}).status_code == 200


def test_unexpected_error_returns_generic_500(client, signup, add_restaurant, monkeypatch):
    add_restaurant('Pizza Palace', 'PIZZA1')
    signup()

    def broken(*args, **kwargs):
        raise RuntimeError('db down')

    monkeypatch.setattr('app.get_user_stats', broken)
    resp = client.post('/api/check-in', json={'code': 'PIZZA1'})
    assert resp.status_code == 500
    assert resp.get_json() == {'error': 'Something went wrong. Please try again.'}


def test_event_status_endpoint(client):
    resp = client.get('/api/event-status')
    body = resp.get_json()
    assert body['active'] is True
    assert body['startDate'] is None
    assert body['daysUntilStart'] == 0

    app.config['CHECKIN_FORCE_CLOSED'] = True
    assert client.get('/api/event-status').get_json()['active'] is False
