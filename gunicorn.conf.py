import os

wsgi_app = 'app:app'
bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"
# memory:// rate limit counters are per worker; set RATELIMIT_STORAGE_URI to share them
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
threads = int(os.getenv('GUNICORN_THREADS', '4'))
worker_class = os.getenv('GUNICORN_WORKER_CLASS', 'gthread')
timeout = int(os.getenv('GUNICORN_TIMEOUT', '60'))
graceful_timeout = 30
keepalive = 5
max_requests = 2000
max_requests_jitter = 100
accesslog = '-'
errorlog = '-'
loglevel = os.getenv('GUNICORN_LOG_LEVEL', 'info')


def on_starting(server):
    from app import init_db

    init_db()
    server.log.info('Database schema ready')
