from datetime import date, datetime
from zoneinfo import ZoneInfo

from services.event_window import CheckInWindow

NY = ZoneInfo('America/New_York')


def make_window(**overrides):
    values = {
        'start_date': date(2025, 3, 3),
        'end_date': date(2025, 3, 10),
        'timezone': NY,
    }
    values.update(overrides)
    return CheckInWindow(**values)


def test_open_without_dates():
    window = make_window(start_date=None, end_date=None)
    assert window.is_open(datetime(2030, 1, 1, tzinfo=NY))
    assert window.status()['daysUntilStart'] == 0


def test_before_start():
    window = make_window()
    now = datetime(2025, 3, 1, 12, 0, tzinfo=NY)
    assert not window.is_open(now)
    assert window.days_until_start(now) == 2
    assert window.closed_message(now) == 'Restaurant Week check-ins will be available starting March 3, 2025.'


def test_end_date_is_inclusive():
    window = make_window()
    assert window.is_open(datetime(2025, 3, 3, 0, 0, tzinfo=NY))
    assert window.is_open(datetime(2025, 3, 10, 23, 59, tzinfo=NY))
    assert not window.is_open(datetime(2025, 3, 11, 0, 0, tzinfo=NY))
    assert window.closed_message(datetime(2025, 3, 11, 9, 0, tzinfo=NY)) == 'Restaurant Week has ended. Thanks for playing!'


def test_window_uses_event_timezone():
    window = make_window()
    # 03:30 UTC on March 11 is still March 10 in New York
    assert window.is_open(datetime(2025, 3, 11, 3, 30, tzinfo=ZoneInfo('UTC')))


def test_force_flags():
    now = datetime(2024, 1, 1, tzinfo=NY)
    assert make_window(force_open=True).is_open(now)
    assert not make_window(force_closed=True).is_open(datetime(2025, 3, 5, tzinfo=NY))
    both = make_window(force_open=True, force_closed=True)
    assert not both.is_open(now)
    assert both.closed_message(now) == 'Restaurant Week check-ins are currently closed.'


def test_status_payload():
    status = make_window().status(datetime(2025, 3, 5, 12, 0, tzinfo=NY))
    assert status['active'] is True
    assert status['startDate'] == '2025-03-03'
    assert status['endDate'] == '2025-03-10'
    assert status['daysUntilStart'] == 0
    assert 'is active' in status['message']


def test_from_config_mapping():
    window = CheckInWindow.from_config({
        'CHECKIN_START_DATE': '2025-03-03',
        'CHECKIN_END_DATE': '2025-03-10',
        'EVENT_TIMEZONE': 'America/Chicago',
        'CHECKIN_FORCE_OPEN': False,
        'EVENT_NAME': 'Burger Week',
    })
    assert window.start_date == date(2025, 3, 3)
    assert window.timezone == ZoneInfo('America/Chicago')
    assert window.event_name == 'Burger Week'
    assert not window.force_closed
