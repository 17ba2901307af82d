"""Unit tests for series detection."""
import pytest

from processor.models import SeriesDescriptor
from processor.series_detector import SeriesDetector, build_recurrence_rule


@pytest.fixture
def detector():
    """Create SeriesDetector instance."""
    return SeriesDetector()


def test_series_id_defaults(detector):
    """Test a bare series id yields a single-instance descriptor."""
    descriptor = detector.detect({'series_id': 'S1'})

    assert descriptor == SeriesDescriptor(series_id='S1', instance_number=1, total_instances=1)


def test_recurrence_rule_from_mapping():
    """Test rule tokens are built in a fixed order."""
    rule = build_recurrence_rule({'frequency': 'weekly', 'interval': 2, 'count': 5})

    assert rule == 'FREQ=WEEKLY;INTERVAL=2;COUNT=5'


def test_recurrence_rule_with_until_and_byday():
    rule = build_recurrence_rule({
        'byday': ['MO', 'WE'],
        'until': '20240601T000000Z',
        'frequency': 'Weekly'
    })

    assert rule == 'FREQ=WEEKLY;UNTIL=20240601T000000Z;BYDAY=MO,WE'


def test_detect_includes_recurrence_rule(detector):
    descriptor = detector.detect({
        'series_id': 'S1',
        'recurrence': {'frequency': 'weekly', 'interval': 2, 'count': 5}
    })

    assert descriptor.recurrence_rule == 'FREQ=WEEKLY;INTERVAL=2;COUNT=5'


def test_recurrence_without_identifier(detector):
    """Test recurrence data alone cannot produce a descriptor."""
    raw = {'recurrence': {'frequency': 'weekly', 'interval': 2, 'count': 5}}

    assert detector.is_series(raw) is True
    assert detector.detect(raw) is None


def test_empty_event_is_not_series(detector):
    assert detector.is_series({}) is False
    assert detector.detect({}) is None


def test_instance_number_without_identifier(detector):
    """Test indicators without an id-bearing field give no descriptor."""
    raw = {'instance_number': 3}

    assert detector.is_series(raw) is True
    assert detector.detect(raw) is None


def test_nested_series_id(detector):
    descriptor = detector.detect({
        'series': {'id': 'S9'},
        'instance_number': '2',
        'total_instances': 4
    })

    assert descriptor.series_id == 'S9'
    assert descriptor.instance_number == 2
    assert descriptor.total_instances == 4


def test_parent_event_id(detector):
    descriptor = detector.detect({'parent_event_id': 'evt-1', 'instance_number': 3})

    assert descriptor.series_id == ''
    assert descriptor.parent_event_id == 'evt-1'
    assert descriptor.instance_number == 3


def test_top_level_series_id_preferred(detector):
    descriptor = detector.detect({'series_id': 'S1', 'series': {'id': 'S2'},
                                  'parent_event_id': 'evt-1'})

    assert descriptor.series_id == 'S1'
    assert descriptor.parent_event_id == ''


@pytest.mark.parametrize('value', [0, -3, 'abc', None])
def test_invalid_counts_clamped(detector, value):
    descriptor = detector.detect({'series_id': 'S1', 'instance_number': value,
                                  'total_instances': value})

    assert descriptor.instance_number == 1
    assert descriptor.total_instances == 1


@pytest.mark.parametrize('raw', [
    {'recurring': False},
    {'recurring': 0},
    {'series_id': ''},
    {'instance_number': '0'},
    {'series': {}},
])
def test_falsy_indicators_ignored(detector, raw):
    assert detector.is_series(raw) is False
