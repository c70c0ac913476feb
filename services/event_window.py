"""Check-in window for the current Restaurant Week season."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value).strip(), '%Y-%m-%d').date()


@dataclass
class CheckInWindow:
    start_date: Optional[date]
    end_date: Optional[date]
    timezone: ZoneInfo
    force_open: bool = False
    force_closed: bool = False
    event_name: str = 'Restaurant Week'

    @classmethod
    def from_config(cls, config) -> 'CheckInWindow':
        return cls(
            start_date=_parse_date(config.get('CHECKIN_START_DATE')),
            end_date=_parse_date(config.get('CHECKIN_END_DATE')),
            timezone=ZoneInfo(config.get('EVENT_TIMEZONE') or 'UTC'),
            force_open=bool(config.get('CHECKIN_FORCE_OPEN')),
            force_closed=bool(config.get('CHECKIN_FORCE_CLOSED')),
            event_name=config.get('EVENT_NAME') or 'Restaurant Week',
        )

    def _now(self, now: Optional[datetime]) -> datetime:
        if now is None:
            return datetime.now(self.timezone)
        if now.tzinfo is None:
            return now.replace(tzinfo=self.timezone)
        return now.astimezone(self.timezone)

    @property
    def starts_at(self) -> Optional[datetime]:
        if not self.start_date:
            return None
        return datetime.combine(self.start_date, time.min, tzinfo=self.timezone)

    @property
    def ends_at(self) -> Optional[datetime]:
        # end date is inclusive: check-ins close at the following midnight
        if not self.end_date:
            return None
        return datetime.combine(self.end_date + timedelta(days=1), time.min, tzinfo=self.timezone)

    def has_started(self, now: Optional[datetime] = None) -> bool:
        return self.starts_at is None or self._now(now) >= self.starts_at

    def has_ended(self, now: Optional[datetime] = None) -> bool:
        return self.ends_at is not None and self._now(now) >= self.ends_at

    def is_open(self, now: Optional[datetime] = None) -> bool:
        if self.force_closed:
            return False
        if self.force_open:
            return True
        return self.has_started(now) and not self.has_ended(now)

    def days_until_start(self, now: Optional[datetime] = None) -> int:
        """Whole days (rounded up) until check-ins open, 0 once started."""
        if self.has_started(now):
            return 0
        remaining = self.starts_at - self._now(now)
        return math.ceil(remaining.total_seconds() / 86400)

    def closed_message(self, now: Optional[datetime] = None) -> str:
        if self.force_closed:
            return f'{self.event_name} check-ins are currently closed.'
        if not self.has_started(now):
            return (
                f'{self.event_name} check-ins will be available starting '
                f'{self.start_date.strftime("%B %d, %Y").replace(" 0", " ")}.'
            )
        return f'{self.event_name} has ended. Thanks for playing!'

    def status(self, now: Optional[datetime] = None) -> dict:
        active = self.is_open(now)
        if active:
            message = f'{self.event_name} is active! Enter restaurant codes to check in and earn raffle entries.'
        else:
            message = self.closed_message(now)
        return {
            'active': active,
            'startDate': self.start_date.isoformat() if self.start_date else None,
            'endDate': self.end_date.isoformat() if self.end_date else None,
            'daysUntilStart': 0 if active else self.days_until_start(now),
            'message': message,
        }
