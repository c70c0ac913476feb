"""
Restaurant Week Bingo - Flask Application
JSON API for player check-ins, raffle stats, and restaurant/sponsor administration
"""

import os
import csv
import re
import sqlite3
from io import BytesIO, StringIO
from datetime import datetime, timedelta, timezone
from collections import Counter
from functools import wraps
from time import perf_counter
import logging
from logging.handlers import RotatingFileHandler

from flask import (
    Flask,
    request,
    send_file,
    jsonify,
)
from flask_login import (
    LoginManager,
    UserMixin,
    login_user,
    logout_user,
    login_required,
    current_user,
)
from flask_wtf.csrf import CSRFProtect, CSRFError, generate_csrf
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.security import generate_password_hash, check_password_hash
from werkzeug.exceptions import RequestEntityTooLarge
import bleach
import sentry_sdk
from sentry_sdk.integrations.flask import FlaskIntegration
from email.utils import parseaddr

from config import Config
from qr_sheet import generate_qr_sheet
from services.event_window import CheckInWindow
from services.qr_service import generate_qr_png, qr_filename, qr_payload
from services.rate_limit import CheckInRateLimiter

# Initialize Flask app
app = Flask(__name__)
app.config.from_object(Config)
app.config.setdefault('SESSION_COOKIE_HTTPONLY', True)
app.config.setdefault('SESSION_COOKIE_SAMESITE', 'Lax')
app.config.setdefault('SESSION_COOKIE_SECURE', not app.config.get('DEBUG', False))

# Initialize CSRF protection (JSON clients send the token in X-CSRFToken)
csrf = CSRFProtect(app)

# Initialize basic rate limiting
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=app.config.get('RATELIMIT_STORAGE_URI', 'memory://'),
    strategy='fixed-window',
    default_limits=[app.config.get('RATELIMIT_DEFAULT', '1000 per hour')],
)
limiter.init_app(app)


@limiter.request_filter
def _rate_limit_exempt_for_tests():
    return app.config.get('TESTING', False)


# Per-user check-in throttle, separate from the IP-based limits above
checkin_limiter = CheckInRateLimiter(
    limit=app.config['CHECKIN_RATE_LIMIT'],
    storage_uri=app.config.get('RATELIMIT_STORAGE_URI', 'memory://'),
)

os.makedirs(app.config.get('LOG_DIR', 'logs'), exist_ok=True)
_file_handler = RotatingFileHandler(
    os.path.join(app.config.get('LOG_DIR', 'logs'), 'app.log'),
    maxBytes=5 * 1024 * 1024,
    backupCount=5,
)
_file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))
if not any(isinstance(h, RotatingFileHandler) for h in app.logger.handlers):
    app.logger.addHandler(_file_handler)

if app.config.get('SENTRY_DSN'):
    sentry_sdk.init(
        dsn=app.config.get('SENTRY_DSN'),
        integrations=[FlaskIntegration()],
        traces_sample_rate=app.config.get('SENTRY_TRACES_SAMPLE_RATE', 0.1),
        environment=app.config.get('APP_ENV'),
    )

MAX_NAME_LENGTH = 120
MAX_TEXT_LENGTH = 2000
MAX_CODE_LENGTH = 32
EMAIL_REGEX = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
GENERIC_ERROR = 'Something went wrong. Please try again.'

RESTAURANT_FIELDS = (
    'name', 'address', 'url', 'code', 'latitude', 'longitude',
    'description', 'phone', 'specials', 'promotions',
)

REQUEST_METRICS = {
    'requests_total': 0,
    'errors_total': 0,
    'latency_ms_total': 0.0,
}


@app.before_request
def _metrics_before_request():
    request._start_ts = perf_counter()


@app.after_request
def _metrics_after_request(response):
    started = getattr(request, '_start_ts', None)
    if started is not None:
        REQUEST_METRICS['requests_total'] += 1
        elapsed = (perf_counter() - started) * 1000.0
        REQUEST_METRICS['latency_ms_total'] += elapsed
        if response.status_code >= 400:
            REQUEST_METRICS['errors_total'] += 1
    return response


def db_connect():
    conn = sqlite3.connect(app.config['DATABASE_PATH'])
    conn.execute('PRAGMA foreign_keys = ON')
    return conn


def is_valid_email(email):
    if not email:
        return False
    _, parsed = parseaddr(email)
    return bool(parsed and EMAIL_REGEX.match(parsed) and len(parsed) <= 254)


def validate_password_strength(password):
    if not password or len(password) < 8:
        return False, 'Password must be at least 8 characters long.'
    if not re.search(r'[A-Za-z]', password):
        return False, 'Password must include at least one letter.'
    if not re.search(r'\d', password):
        return False, 'Password must include at least one number.'
    return True, ''


def normalize_phone(phone):
    """Digits-only US phone number, or None when it is not 10 digits."""
    digits = re.sub(r'\D', '', phone or '')
    return digits if len(digits) == 10 else None


def clean_text(value, max_length=MAX_TEXT_LENGTH):
    if value is None:
        return None
    text = bleach.clean(str(value), tags=set(), strip=True).strip()
    return text[:max_length] or None


def request_payload():
    """JSON body when present, otherwise submitted form fields."""
    payload = request.get_json(silent=True)
    if isinstance(payload, dict):
        return payload
    return request.form.to_dict()


# Initialize Flask-Login
login_manager = LoginManager()


@login_manager.user_loader
def load_user(user_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        'SELECT id, email, name, phone, is_admin FROM users WHERE id = ?',
        (user_id,),
    )
    user_data = c.fetchone()
    conn.close()

    if user_data:
        return User(
            id=user_data[0],
            email=user_data[1],
            name=user_data[2],
            phone=user_data[3],
            is_admin=user_data[4],
        )
    return None


@login_manager.unauthorized_handler
def _unauthorized():
    return jsonify({'error': 'Unauthorized'}), 401


login_manager.init_app(app)

# ===== DATABASE INITIALIZATION =====

STATS_TRIGGER_SQL = '''
    CREATE TRIGGER {name} AFTER {event} ON visits
    BEGIN
        {ensure_row}
        UPDATE user_stats
        SET visit_count = (SELECT COUNT(*) FROM visits WHERE user_id = {ref}.user_id),
            raffle_entries = (SELECT COUNT(*) FROM visits WHERE user_id = {ref}.user_id) / {per_entry},
            updated_at = CURRENT_TIMESTAMP
        WHERE user_id = {ref}.user_id;
    END
'''


def init_db():
    """Create tables, indexes and the user_stats triggers; seed the admin account."""
    per_entry = int(app.config['VISITS_PER_RAFFLE_ENTRY'])
    if per_entry <= 0:
        raise RuntimeError('VISITS_PER_RAFFLE_ENTRY must be a positive integer')

    conn = db_connect()
    c = conn.cursor()

    c.execute('''
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            name TEXT,
            phone TEXT,
            is_admin INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
    ''')

    c.execute('''
        CREATE TABLE IF NOT EXISTS restaurants (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            address TEXT,
            url TEXT,
            code TEXT NOT NULL UNIQUE COLLATE NOCASE,
            latitude REAL,
            longitude REAL,
            description TEXT,
            phone TEXT,
            specials TEXT,
            promotions TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    c.execute('''
        CREATE TABLE IF NOT EXISTS sponsors (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            address TEXT,
            latitude REAL DEFAULT 0,
            longitude REAL DEFAULT 0,
            phone TEXT,
            url TEXT,
            description TEXT,
            promo_offer TEXT,
            is_retail INTEGER NOT NULL DEFAULT 0,
            logo_file TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    c.execute('''
        CREATE TABLE IF NOT EXISTS visits (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            restaurant_id INTEGER NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY (restaurant_id) REFERENCES restaurants(id) ON DELETE CASCADE
        )
    ''')

    # Derived counters, maintained by the triggers below
    c.execute('''
        CREATE TABLE IF NOT EXISTS user_stats (
            user_id INTEGER PRIMARY KEY,
            visit_count INTEGER NOT NULL DEFAULT 0,
            raffle_entries INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        )
    ''')

    # Past seasons
    c.execute('''
        CREATE TABLE IF NOT EXISTS visits_archive (
            season_key TEXT NOT NULL,
            id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            restaurant_id INTEGER NOT NULL,
            created_at TEXT,
            PRIMARY KEY (season_key, id)
        )
    ''')
    c.execute('''
        CREATE TABLE IF NOT EXISTS user_stats_archive (
            season_key TEXT NOT NULL,
            user_id INTEGER NOT NULL,
            visit_count INTEGER NOT NULL,
            raffle_entries INTEGER NOT NULL,
            created_at TEXT,
            updated_at TEXT,
            PRIMARY KEY (season_key, user_id)
        )
    ''')

    # One visit per (user, restaurant)
    c.execute('CREATE UNIQUE INDEX IF NOT EXISTS idx_visits_user_restaurant ON visits(user_id, restaurant_id)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_visits_restaurant_id ON visits(restaurant_id)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_visits_created_at ON visits(created_at)')
    c.execute('CREATE INDEX IF NOT EXISTS idx_sponsors_name ON sponsors(name)')

    # Recreate triggers so a changed VISITS_PER_RAFFLE_ENTRY takes effect
    c.execute('DROP TRIGGER IF EXISTS trg_visits_insert_stats')
    c.execute('DROP TRIGGER IF EXISTS trg_visits_delete_stats')
    c.execute(STATS_TRIGGER_SQL.format(
        name='trg_visits_insert_stats',
        event='INSERT',
        ensure_row='INSERT OR IGNORE INTO user_stats (user_id) VALUES (NEW.user_id);',
        ref='NEW',
        per_entry=per_entry,
    ))
    c.execute(STATS_TRIGGER_SQL.format(
        name='trg_visits_delete_stats',
        event='DELETE',
        ensure_row='',
        ref='OLD',
        per_entry=per_entry,
    ))

    # Create default admin user if not exists
    c.execute('SELECT id FROM users WHERE email = ?', (app.config['ADMIN_EMAIL'],))
    if not c.fetchone():
        c.execute(
            '''INSERT INTO users (email, password_hash, name, is_admin, created_at)
               VALUES (?, ?, ?, 1, ?)''',
            (
                app.config['ADMIN_EMAIL'],
                generate_password_hash(app.config['ADMIN_PASSWORD']),
                'Administrator',
                datetime.now(timezone.utc).isoformat(),
            ),
        )
    c.execute('INSERT OR IGNORE INTO user_stats (user_id) SELECT id FROM users')

    conn.commit()
    conn.close()


@app.cli.command('init-db')
def init_db_command():
    """Create or migrate the database schema."""
    init_db()
    print(f"database_ready={app.config['DATABASE_PATH']}")

# ===== USER CLASS FOR FLASK-LOGIN =====


class User(UserMixin):
    def __init__(self, id, email, name=None, phone=None, is_admin=False):
        self.id = id
        self.email = email
        self.name = name
        self.phone = phone
        self.is_admin = bool(is_admin)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'isAdmin': self.is_admin,
        }

# ===== HELPERS =====


def get_check_in_window():
    return CheckInWindow.from_config(app.config)


def get_user_stats(conn, user_id, create=False):
    """(visit_count, raffle_entries) for a user, optionally creating a zero row."""
    c = conn.cursor()
    if create:
        c.execute('INSERT OR IGNORE INTO user_stats (user_id) VALUES (?)', (user_id,))
        conn.commit()
    c.execute('SELECT visit_count, raffle_entries FROM user_stats WHERE user_id = ?', (user_id,))
    return c.fetchone()


def is_admin_user(user_id):
    """Fresh database check; any failure denies access."""
    try:
        conn = db_connect()
        try:
            c = conn.cursor()
            c.execute('SELECT is_admin FROM users WHERE id = ?', (user_id,))
            row = c.fetchone()
        finally:
            conn.close()
    except sqlite3.Error:
        app.logger.exception('Admin verification failed for user %s', user_id)
        return False
    return bool(row and row[0])


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated or not is_admin_user(current_user.id):
            return jsonify({'error': 'Forbidden'}), 403
        return view(*args, **kwargs)

    return wrapped


def _restaurant_row_to_dict(row):
    return {
        'id': row[0],
        'name': row[1],
        'address': row[2],
        'url': row[3],
        'code': row[4],
        'latitude': row[5],
        'longitude': row[6],
        'description': row[7],
        'phone': row[8],
        'specials': row[9],
        'promotions': row[10],
    }


def _fetch_restaurants(conn):
    c = conn.cursor()
    c.execute(f"SELECT id, {', '.join(RESTAURANT_FIELDS)} FROM restaurants ORDER BY name COLLATE NOCASE")
    return [_restaurant_row_to_dict(row) for row in c.fetchall()]


def _parse_visit_time(value):
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _validate_restaurant(payload, partial=False):
    """Return (data, errors) for the restaurant fields present in payload."""
    data, errors = {}, {}
    for field in RESTAURANT_FIELDS:
        if field not in payload:
            continue
        value = payload.get(field)
        if field in ('latitude', 'longitude'):
            try:
                data[field] = float(value)
            except (TypeError, ValueError):
                errors[field] = f'{field.title()} must be a number.'
        elif field == 'code':
            code = (value or '').strip().upper() if isinstance(value, str) else ''
            if not code or len(code) > MAX_CODE_LENGTH:
                errors['code'] = f'Code is required (max {MAX_CODE_LENGTH} characters).'
            data['code'] = code
        elif field == 'name':
            name = clean_text(value, MAX_NAME_LENGTH)
            if not name:
                errors['name'] = 'Name is required.'
            data['name'] = name
        else:
            data[field] = clean_text(value)

    if not partial:
        for field in ('name', 'code', 'latitude', 'longitude'):
            if field not in payload:
                errors.setdefault(field, f'{field.title()} is required.')
    return data, errors

# ===== ACCOUNT ROUTES =====


@app.route('/api/csrf-token')
def csrf_token():
    return jsonify({'csrfToken': generate_csrf()})


@app.route('/register', methods=['POST'])
@limiter.limit('5 per hour')
def register():
    """Self-service player registration."""
    payload = request_payload()
    errors = {}
    email = (payload.get('email') or '').strip().lower()
    password = payload.get('password') or ''
    name = clean_text(payload.get('name'), MAX_NAME_LENGTH)
    raw_phone = payload.get('phone')
    phone = normalize_phone(raw_phone)

    if not is_valid_email(email):
        errors['email'] = 'Enter a valid email address.'
    ok_password, password_msg = validate_password_strength(password)
    if not ok_password:
        errors['password'] = password_msg
    if raw_phone and not phone:
        errors['phone'] = 'Please enter a valid 10-digit phone number'

    if errors:
        return jsonify({'error': 'Please correct the highlighted fields.', 'fields': errors}), 400

    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT id FROM users WHERE email = ?', (email,))
    if c.fetchone():
        conn.close()
        return jsonify({'error': 'An account with that email already exists. Please log in.'}), 409

    c.execute(
        '''
        INSERT INTO users (email, password_hash, name, phone, is_admin, created_at)
        VALUES (?, ?, ?, ?, 0, ?)
        ''',
        (email, generate_password_hash(password), name, phone, datetime.now(timezone.utc).isoformat()),
    )
    user_id = c.lastrowid
    c.execute('INSERT OR IGNORE INTO user_stats (user_id) VALUES (?)', (user_id,))
    conn.commit()
    conn.close()

    user = User(id=user_id, email=email, name=name, phone=phone, is_admin=False)
    login_user(user)
    app.logger.info('Registered player %s', user_id)
    return jsonify({'success': True, 'user': user.to_dict()}), 201


@app.route('/login', methods=['POST'])
@limiter.limit('5 per 15 minutes')
def login():
    payload = request_payload()
    # Identifier may come in as email or legacy username field
    identifier = (payload.get('email') or payload.get('username') or '').strip().lower()
    password = payload.get('password') or ''

    if not identifier or not password:
        return jsonify({'error': 'Email and password are required to sign in.'}), 400

    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT id, password_hash FROM users WHERE email = ?', (identifier,))
    user_data = c.fetchone()
    conn.close()

    if user_data and check_password_hash(user_data[1], password):
        user = load_user(user_data[0])
        if user:
            login_user(user)
            return jsonify({'success': True, 'user': user.to_dict()})

    return jsonify({'error': 'Sign-in failed. Check your email/password and try again.'}), 401


@app.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True})

# ===== PLAYER ROUTES =====


@app.route('/api/event-status')
def event_status():
    return jsonify(get_check_in_window().status())


@app.route('/api/check-in', methods=['POST'])
def check_in():
    """Redeem a restaurant code for a visit."""
    try:
        window = get_check_in_window()
        if not window.is_open():
            return jsonify({'error': window.closed_message(), 'eventStatus': window.status()}), 403

        if not current_user.is_authenticated:
            return jsonify({'error': 'Please sign in to check in'}), 401

        checkin_limiter.configure(app.config['CHECKIN_RATE_LIMIT'])
        limit = checkin_limiter.check(current_user.id)
        if not limit.allowed:
            resp = jsonify({
                'error': f'Too many attempts. Please wait {limit.reset_in} seconds.',
                'retryAfter': limit.reset_in,
            })
            resp.headers['Retry-After'] = str(limit.reset_in)
            return resp, 429

        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return jsonify({'error': 'Invalid request body'}), 400

        code = body.get('code')
        code = code.strip().upper() if isinstance(code, str) else ''
        if not code:
            return jsonify({'error': 'Please enter a restaurant code'}), 400

        conn = db_connect()
        try:
            c = conn.cursor()
            c.execute('SELECT id, name FROM restaurants WHERE code = ? COLLATE NOCASE', (code,))
            restaurant = c.fetchone()
            if not restaurant:
                return jsonify({'error': 'Invalid code. Please check and try again.'}), 404
            restaurant_id, restaurant_name = restaurant

            already_visited = jsonify({
                'error': f"You've already checked in at {restaurant_name}!",
                'restaurant': restaurant_name,
                'alreadyVisited': True,
            }), 409

            c.execute(
                'SELECT 1 FROM visits WHERE user_id = ? AND restaurant_id = ?',
                (current_user.id, restaurant_id),
            )
            if c.fetchone():
                return already_visited

            try:
                c.execute(
                    'INSERT INTO visits (user_id, restaurant_id, created_at) VALUES (?, ?, ?)',
                    (current_user.id, restaurant_id, datetime.now(timezone.utc).isoformat()),
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                conn.rollback()
                # a concurrent request recorded the same visit first
                if 'UNIQUE' in str(exc):
                    return already_visited
                raise

            stats = get_user_stats(conn, current_user.id)
        finally:
            conn.close()

        app.logger.info('Check-in: user=%s restaurant=%s', current_user.id, restaurant_id)
        return jsonify({
            'success': True,
            'restaurant': restaurant_name,
            'stats': {
                'visitCount': stats[0] if stats else 1,
                'raffleEntries': stats[1] if stats else 0,
            },
        })

    except Exception:
        app.logger.exception('Check-in error')
        return jsonify({'error': GENERIC_ERROR}), 500


@app.route('/api/restaurants')
def list_restaurants():
    """All restaurants (flagged when visited by the signed-in player) and sponsors."""
    conn = db_connect()
    c = conn.cursor()
    restaurants = _fetch_restaurants(conn)

    visited = set()
    if current_user.is_authenticated:
        c.execute('SELECT restaurant_id FROM visits WHERE user_id = ?', (current_user.id,))
        visited = {row[0] for row in c.fetchall()}

    c.execute(
        '''
        SELECT id, name, address, latitude, longitude, phone, url, description,
               promo_offer, is_retail, logo_file
        FROM sponsors
        ORDER BY name COLLATE NOCASE
        '''
    )
    sponsors = [
        {
            'id': row[0],
            'name': row[1],
            'address': row[2],
            'latitude': row[3],
            'longitude': row[4],
            'phone': row[5],
            'url': row[6],
            'description': row[7],
            'promo_offer': row[8],
            'is_retail': bool(row[9]),
            'logo_file': row[10],
        }
        for row in c.fetchall()
    ]
    conn.close()

    for restaurant in restaurants:
        # codes are redeemed in person; never ship them to players
        restaurant.pop('code')
        restaurant['visited'] = restaurant['id'] in visited

    return jsonify({'restaurants': restaurants, 'sponsors': sponsors})


@app.route('/api/me/stats')
@login_required
def my_stats():
    conn = db_connect()
    try:
        stats = get_user_stats(conn, current_user.id, create=True)
    except sqlite3.Error:
        app.logger.exception('Failed to load stats for user %s', current_user.id)
        return jsonify({'error': 'Failed to load stats'}), 500
    finally:
        conn.close()
    return jsonify({'visit_count': stats[0], 'raffle_entries': stats[1]})


@app.route('/api/me/contact')
@login_required
def my_contact():
    return jsonify({'name': current_user.name, 'phone': current_user.phone})


@app.route('/api/me/admin-status')
@login_required
def my_admin_status():
    return jsonify({'isAdmin': is_admin_user(current_user.id)})


@app.route('/api/profile', methods=['PUT'])
@login_required
def update_profile():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({'error': 'Invalid request body'}), 400

    raw_phone = body.get('phone')
    phone = normalize_phone(raw_phone) if raw_phone else None
    if raw_phone and not phone:
        return jsonify({'error': 'Please enter a valid 10-digit phone number'}), 400
    name = clean_text(body.get('name'), MAX_NAME_LENGTH)

    conn = db_connect()
    try:
        conn.execute('UPDATE users SET name = ?, phone = ? WHERE id = ?', (name, phone, current_user.id))
        conn.commit()
    except sqlite3.Error:
        app.logger.exception('Profile update error for user %s', current_user.id)
        return jsonify({'error': GENERIC_ERROR}), 500
    finally:
        conn.close()

    return jsonify({'success': True, 'message': 'Profile updated successfully'})


@app.route('/api/stats')
def public_stats():
    """Aggregate season stats for the public stats page."""
    tz = get_check_in_window().timezone
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT r.id, r.name, COUNT(v.id) AS visits
        FROM restaurants r
        LEFT JOIN visits v ON v.restaurant_id = r.id
        GROUP BY r.id
        ORDER BY visits DESC, r.name COLLATE NOCASE
        '''
    )
    restaurant_visits = [{'id': row[0], 'name': row[1], 'visits': row[2]} for row in c.fetchall()]

    c.execute('SELECT created_at FROM visits')
    hours = Counter(_parse_visit_time(row[0]).astimezone(tz).hour for row in c.fetchall())

    c.execute('SELECT visit_count, COUNT(*) FROM user_stats WHERE visit_count > 0 GROUP BY visit_count ORDER BY visit_count')
    engagement = [{'visits': row[0], 'players': row[1]} for row in c.fetchall()]

    c.execute('SELECT COALESCE(SUM(raffle_entries), 0) FROM user_stats')
    total_entries = c.fetchone()[0]
    conn.close()

    return jsonify({
        'totals': {
            'restaurants': len(restaurant_visits),
            'visits': sum(r['visits'] for r in restaurant_visits),
            'activePlayers': sum(e['players'] for e in engagement),
            'raffleEntries': total_entries,
        },
        'restaurantVisits': restaurant_visits,
        'visitsByHour': [{'hour': hour, 'visits': hours.get(hour, 0)} for hour in range(24)],
        'playerEngagement': engagement,
    })

# ===== ADMIN ROUTES =====


@app.route('/api/admin/stats')
@admin_required
def admin_stats():
    conn = db_connect()
    c = conn.cursor()
    totals = {}
    for key, table in (('totalRestaurants', 'restaurants'), ('totalUsers', 'users'), ('totalVisits', 'visits')):
        c.execute(f'SELECT COUNT(*) FROM {table}')
        totals[key] = c.fetchone()[0]
    conn.close()
    return jsonify(totals)


@app.route('/api/admin/users')
@admin_required
def admin_users():
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT u.id, u.email, u.name, u.phone, u.is_admin,
               COALESCE(s.visit_count, 0), COALESCE(s.raffle_entries, 0)
        FROM users u
        LEFT JOIN user_stats s ON s.user_id = u.id
        ORDER BY u.created_at DESC, u.id DESC
        '''
    )
    users = [
        {
            'id': row[0],
            'email': row[1],
            'name': row[2],
            'phone': row[3],
            'isAdmin': bool(row[4]),
            'visitCount': row[5],
            'raffleEntries': row[6],
        }
        for row in c.fetchall()
    ]
    conn.close()
    return jsonify({'users': users})


@app.route('/api/admin/user-visits')
@admin_required
def admin_user_visits():
    user_id = request.args.get('userId', type=int)
    if not user_id:
        return jsonify({'error': 'Missing userId'}), 400

    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT restaurant_id, created_at
        FROM visits
        WHERE user_id = ?
        ORDER BY created_at DESC
        ''',
        (user_id,),
    )
    visits = [{'restaurant_id': row[0], 'created_at': row[1]} for row in c.fetchall()]
    conn.close()
    return jsonify({'visits': visits})


@app.route('/api/admin/user-visits', methods=['PUT'])
@admin_required
def admin_update_user_visits():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({'error': 'Invalid request body'}), 400

    user_id = body.get('userId')
    changes = body.get('changes')
    if not user_id or not isinstance(changes, list):
        return jsonify({'error': 'Missing userId or changes'}), 400
    for change in changes:
        if not isinstance(change, dict) or not change.get('restaurantId') or not change.get('action'):
            return jsonify({'error': 'Invalid changes payload'}), 400
        if change['action'] not in ('add', 'remove'):
            return jsonify({'error': 'Invalid change action'}), 400

    conn = db_connect()
    try:
        with conn:
            for change in changes:
                if change['action'] == 'add':
                    conn.execute(
                        'INSERT OR IGNORE INTO visits (user_id, restaurant_id, created_at) VALUES (?, ?, ?)',
                        (user_id, change['restaurantId'], datetime.now(timezone.utc).isoformat()),
                    )
                else:
                    conn.execute(
                        'DELETE FROM visits WHERE user_id = ? AND restaurant_id = ?',
                        (user_id, change['restaurantId']),
                    )
        stats = get_user_stats(conn, user_id)
    except sqlite3.IntegrityError:
        return jsonify({'error': 'Unknown user or restaurant'}), 400
    except sqlite3.Error:
        app.logger.exception('Failed to update visits for user %s', user_id)
        return jsonify({'error': 'Failed to update visits'}), 500
    finally:
        conn.close()

    app.logger.info('Admin %s edited visits for user %s (%s change(s))', current_user.id, user_id, len(changes))
    return jsonify({
        'success': True,
        'stats': {
            'visitCount': stats[0] if stats else 0,
            'raffleEntries': stats[1] if stats else 0,
        },
    })


@app.route('/api/admin/restaurants')
@admin_required
def admin_list_restaurants():
    conn = db_connect()
    restaurants = _fetch_restaurants(conn)
    conn.close()
    return jsonify({'restaurants': restaurants})


@app.route('/api/admin/restaurants', methods=['POST'])
@admin_required
def admin_create_restaurant():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({'error': 'Invalid request body'}), 400
    data, errors = _validate_restaurant(payload)
    if errors:
        return jsonify({'error': 'Invalid restaurant data', 'fields': errors}), 400

    columns = list(data)
    conn = db_connect()
    try:
        c = conn.cursor()
        c.execute(
            f"INSERT INTO restaurants ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            [data[col] for col in columns],
        )
        restaurant_id = c.lastrowid
        conn.commit()
        c.execute(f"SELECT id, {', '.join(RESTAURANT_FIELDS)} FROM restaurants WHERE id = ?", (restaurant_id,))
        created = _restaurant_row_to_dict(c.fetchone())
    except sqlite3.IntegrityError:
        return jsonify({'error': f"A restaurant with code {data['code']} already exists"}), 409
    finally:
        conn.close()

    app.logger.info('Restaurant %s created by admin %s', restaurant_id, current_user.id)
    return jsonify(created), 201


@app.route('/api/admin/restaurants/<int:restaurant_id>', methods=['PUT'])
@admin_required
def admin_update_restaurant(restaurant_id):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({'error': 'Invalid request body'}), 400
    data, errors = _validate_restaurant(payload, partial=True)
    if errors:
        return jsonify({'error': 'Invalid restaurant data', 'fields': errors}), 400
    if not data:
        return jsonify({'error': 'No fields to update'}), 400

    assignments = ', '.join(f'{col} = ?' for col in data)
    conn = db_connect()
    try:
        c = conn.cursor()
        c.execute(
            f'UPDATE restaurants SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?',
            [*data.values(), restaurant_id],
        )
        if c.rowcount == 0:
            return jsonify({'error': 'Restaurant not found'}), 404
        conn.commit()
        c.execute(f"SELECT id, {', '.join(RESTAURANT_FIELDS)} FROM restaurants WHERE id = ?", (restaurant_id,))
        updated = _restaurant_row_to_dict(c.fetchone())
    except sqlite3.IntegrityError:
        return jsonify({'error': f"A restaurant with code {data.get('code')} already exists"}), 409
    finally:
        conn.close()
    return jsonify(updated)


@app.route('/api/admin/restaurants/<int:restaurant_id>', methods=['DELETE'])
@admin_required
def admin_delete_restaurant(restaurant_id):
    conn = db_connect()
    try:
        with conn:
            # Delete visits explicitly so the stats triggers run for each player
            conn.execute('DELETE FROM visits WHERE restaurant_id = ?', (restaurant_id,))
            deleted = conn.execute('DELETE FROM restaurants WHERE id = ?', (restaurant_id,)).rowcount
    finally:
        conn.close()
    if not deleted:
        return jsonify({'error': 'Restaurant not found'}), 404
    app.logger.info('Restaurant %s deleted by admin %s', restaurant_id, current_user.id)
    return jsonify({'success': True})


@app.route('/api/admin/restaurants/<int:restaurant_id>/qr.png')
@admin_required
def admin_restaurant_qr(restaurant_id):
    conn = db_connect()
    c = conn.cursor()
    c.execute('SELECT name, code FROM restaurants WHERE id = ?', (restaurant_id,))
    row = c.fetchone()
    conn.close()
    if not row:
        return jsonify({'error': 'Restaurant not found'}), 404

    png = generate_qr_png(qr_payload(row[1], app.config.get('PUBLIC_BASE_URL')))
    return send_file(
        BytesIO(png),
        mimetype='image/png',
        download_name=qr_filename(row[0]),
    )


@app.route('/api/admin/qr-sheet.pdf')
@admin_required
def admin_qr_sheet():
    conn = db_connect()
    restaurants = _fetch_restaurants(conn)
    conn.close()
    pdf_buffer = generate_qr_sheet(
        restaurants,
        event_name=app.config['EVENT_NAME'],
        base_url=app.config.get('PUBLIC_BASE_URL'),
    )
    return send_file(
        pdf_buffer,
        as_attachment=True,
        download_name=f'qr_codes_{datetime.now().strftime("%Y%m%d")}.pdf',
        mimetype='application/pdf',
    )


@app.route('/api/admin/export-visits')
@admin_required
@limiter.limit('10 per hour')
def admin_export_visits():
    conn = db_connect()
    c = conn.cursor()
    c.execute(
        '''
        SELECT v.created_at, u.email, u.name, r.name, r.code
        FROM visits v
        INNER JOIN users u ON u.id = v.user_id
        INNER JOIN restaurants r ON r.id = v.restaurant_id
        ORDER BY v.created_at
        '''
    )
    rows = c.fetchall()
    conn.close()

    csv_buffer = StringIO()
    writer = csv.writer(csv_buffer)
    writer.writerow(['visited_at', 'email', 'name', 'restaurant', 'code'])
    for row in rows:
        writer.writerow(row)

    out = BytesIO(csv_buffer.getvalue().encode('utf-8'))
    out.seek(0)
    return send_file(
        out,
        as_attachment=True,
        download_name=f'visits_export_{datetime.now().strftime("%Y%m%d")}.csv',
        mimetype='text/csv',
    )

# ===== HEALTH / METRICS =====


@app.route('/health')
def health():
    return jsonify({'status': 'ok', 'service': 'restaurant-week-bingo'}), 200


@app.route('/metrics')
def metrics():
    total = REQUEST_METRICS['requests_total']
    avg_latency = (REQUEST_METRICS['latency_ms_total'] / total) if total else 0.0
    return jsonify({
        'requests_total': total,
        'errors_total': REQUEST_METRICS['errors_total'],
        'avg_latency_ms': round(avg_latency, 2),
    }), 200


# ===== ERROR HANDLERS =====


@app.errorhandler(429)
def rate_limited(error):
    reset_ts = int((datetime.now(timezone.utc) + timedelta(minutes=15)).timestamp())
    resp = jsonify({'error': 'Too many requests. Please slow down and try again later.'})
    resp.status_code = 429
    resp.headers['X-RateLimit-Reset'] = str(reset_ts)
    return resp


@app.errorhandler(CSRFError)
def csrf_failed(error):
    return jsonify({'error': 'Missing or invalid CSRF token. Refresh and try again.'}), 400


@app.errorhandler(404)
def not_found(error):
    return jsonify({'error': 'Not found'}), 404


@app.errorhandler(405)
def method_not_allowed(error):
    return jsonify({'error': 'Method not allowed'}), 405


@app.errorhandler(500)
def internal_error(error):
    return jsonify({'error': GENERIC_ERROR}), 500


@app.errorhandler(RequestEntityTooLarge)
def request_too_large(error):
    return jsonify({'error': 'Request body is too large.'}), 413

# ===== APPLICATION ENTRY POINT =====

if __name__ == '__main__':
    init_db()
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=app.config['DEBUG'])
