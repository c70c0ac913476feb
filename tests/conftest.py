import os
import tempfile

import pytest

os.environ.setdefault('SECRET_KEY', 'test-secret')

from app import app, checkin_limiter, db_connect, init_db

ADMIN_EMAIL = 'admin@example.com'
ADMIN_PASSWORD = 'changeme123'
PLAYER_PASSWORD = 'StrongPass1'


@pytest.fixture
def client():
    db_fd, db_path = tempfile.mkstemp()
    app.config.update(
        DATABASE_PATH=db_path,
        TESTING=True,
        WTF_CSRF_ENABLED=False,
        SESSION_COOKIE_SECURE=False,
        ADMIN_EMAIL=ADMIN_EMAIL,
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        EVENT_NAME='Restaurant Week',
        EVENT_TIMEZONE='America/New_York',
        CHECKIN_START_DATE=None,
        CHECKIN_END_DATE=None,
        CHECKIN_FORCE_OPEN=False,
        CHECKIN_FORCE_CLOSED=False,
        VISITS_PER_RAFFLE_ENTRY=4,
        CHECKIN_RATE_LIMIT='10/minute',
        PUBLIC_BASE_URL=None,
    )
    checkin_limiter.reset()
    with app.app_context():
        init_db()
    with app.test_client() as c:
        yield c
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def add_restaurant(client):
    def _add(name, code, latitude=40.0, longitude=-75.0, address=None):
        conn = db_connect()
        cur = conn.cursor()
        cur.execute(
            'INSERT INTO restaurants (name, code, latitude, longitude, address) VALUES (?, ?, ?, ?, ?)',
            (name, code, latitude, longitude, address),
        )
        conn.commit()
        restaurant_id = cur.lastrowid
        conn.close()
        return restaurant_id

    return _add


@pytest.fixture
def signup(client):
    """Register (and thereby sign in) a player; returns the new user id."""
    def _signup(email='player@example.com', password=PLAYER_PASSWORD, **extra):
        resp = client.post('/register', json={'email': email, 'password': password, **extra})
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()['user']['id']

    return _signup


@pytest.fixture
def login(client):
    def _login(email=ADMIN_EMAIL, password=ADMIN_PASSWORD):
        client.post('/logout')
        return client.post('/login', json={'email': email, 'password': password})

    return _login


@pytest.fixture
def user_stats():
    def _stats(user_id):
        conn = db_connect()
        cur = conn.cursor()
        cur.execute('SELECT visit_count, raffle_entries FROM user_stats WHERE user_id = ?', (user_id,))
        row = cur.fetchone()
        conn.close()
        return row

    return _stats
