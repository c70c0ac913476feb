"""
Serverless entry point for Restaurant Week Bingo.

Serverless platforms only allow writes under /tmp, so point DATABASE_PATH at
/tmp/bingo.db there and expect the data to vanish on cold starts. Check-in
rate limit counters are per instance unless RATELIMIT_STORAGE_URI names a
shared store (for example redis://...).

For a real season run the app under gunicorn (gunicorn.conf.py) on a host
with a persistent disk.
"""

import sys
import os

# Make the project root importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import app, init_db

init_db()

__all__ = ['app']
