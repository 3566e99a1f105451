from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests

from rinkside.services.game_status import (
    GameStatusCache,
    GameStatusProvider,
    find_game_in_schedule,
    is_game_finished,
    is_game_live,
    is_game_scheduled,
)

BASE = 'https://nhl.test/v1'
SCHEDULE_URL = f'{BASE}/schedule/now'


def landing_url(game_id):
    return f'{BASE}/gamecenter/{game_id}/landing'


def _response(payload=None, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.text = '' if payload is None else str(payload)
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f'{status} error', response=resp)
    return resp


def _schedule(*games, extra_days=()):
    return {'gameWeek': list(extra_days) + [{'date': '2024-10-09', 'games': list(games)}]}


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def nhl(session, clock):
    return GameStatusProvider(base_url=BASE, cache=GameStatusCache(ttl=30, clock=clock), session=session)


def _routes(session, mapping):
    """Route session.get by URL; values are responses or exceptions."""
    def get(url, **kwargs):
        outcome = mapping[url]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
    session.get.side_effect = get


class TestClassification:
    @pytest.mark.parametrize('state', ['LIVE', 'CRIT', 'PRE', 'live'])
    def test_live_states(self, state):
        assert is_game_live(state)
        assert not is_game_finished(state)
        assert not is_game_scheduled(state)

    @pytest.mark.parametrize('state', ['OFF', 'FINAL'])
    def test_finished_states(self, state):
        assert is_game_finished(state)
        assert not is_game_live(state)
        assert not is_game_scheduled(state)

    @pytest.mark.parametrize('state', ['FUT', 'SCHEDULED'])
    def test_scheduled_states(self, state):
        assert is_game_scheduled(state)
        assert not is_game_live(state)
        assert not is_game_finished(state)

    @pytest.mark.parametrize('state', ['PPD', 'SUSP', '', 'XYZ'])
    def test_unknown_states_match_nothing(self, state):
        assert not any([is_game_live(state), is_game_finished(state), is_game_scheduled(state)])


class TestScheduleLookup:
    def test_live_game_from_schedule(self, nhl, session):
        _routes(session, {SCHEDULE_URL: _response(_schedule(
            {'id': 2024020100, 'gameState': 'LIVE', 'gameScheduleState': 'OK', 'startTimeUTC': '2024-10-09T23:00:00Z'},
        ))})

        status = nhl.get_status('2024020100')

        assert status.game_id == '2024020100'
        assert status.is_live is True
        assert status.is_finished is False
        assert status.is_scheduled is False
        assert status.start_time_utc == '2024-10-09T23:00:00Z'
        session.get.assert_called_once()
        assert session.get.call_args.args[0] == SCHEDULE_URL
        assert session.get.call_args.kwargs['headers']['User-Agent']
        assert session.get.call_args.kwargs['timeout'] == 10.0

    def test_missing_fields_get_defaults(self, nhl, session):
        _routes(session, {SCHEDULE_URL: _response(_schedule({'id': 42, 'gameState': '', 'gameScheduleState': None}))})

        status = nhl.get_status(42)

        assert status.game_state == 'FUT'
        assert status.game_schedule_state == 'OK'
        assert status.is_scheduled is True
        assert status.start_time_utc.endswith('Z')

    def test_non_string_fields_are_treated_as_missing(self, nhl, session):
        _routes(session, {SCHEDULE_URL: _response(_schedule({'id': 7, 'gameState': 3, 'startTimeUTC': 1700000000}))})

        status = nhl.get_status('7')

        assert status.game_state == 'FUT'
        assert status.is_scheduled is True
        assert status.start_time_utc.endswith('Z')

    def test_non_dict_game_entries_are_skipped(self, nhl, session):
        _routes(session, {SCHEDULE_URL: _response(_schedule('junk', 7, None, {'id': 7, 'gameState': 'LIVE'}))})

        assert nhl.get_status('7').is_live is True

    def test_landing_body_with_non_string_state_is_defaulted(self, nhl, session):
        _routes(session, {
            SCHEDULE_URL: _response(_schedule()),
            landing_url('9'): _response({'gameState': ['LIVE'], 'gameScheduleState': {}}),
        })

        status = nhl.get_status('9')

        assert status.game_state == 'FUT'
        assert status.is_live is False
        assert status.detailed_state is None

    @pytest.mark.parametrize('state', [3, ['LIVE'], {'code': 'OFF'}])
    def test_classifiers_ignore_non_string_states(self, state):
        assert not is_game_live(state)
        assert not is_game_finished(state)
        assert not is_game_scheduled(state)

    def test_day_without_games_is_skipped(self):
        body = _schedule({'id': 7, 'gameState': 'OFF'}, extra_days=[{'date': '2024-10-08'}, 'junk', {'games': None}])
        assert find_game_in_schedule(body, '7')['gameState'] == 'OFF'

    @pytest.mark.parametrize('body', [None, [], {}, {'gameWeek': None}, {'gameWeek': 'nope'}])
    def test_malformed_schedule_finds_nothing(self, body):
        assert find_game_in_schedule(body, '7') is None


class TestFallback:
    def test_bucket_without_games_falls_back_to_landing(self, nhl, session):
        _routes(session, {
            SCHEDULE_URL: _response({'gameWeek': [{'date': '2024-10-09'}]}),
            landing_url('2024020100'): _response({'gameState': 'OFF', 'startTimeUTC': '2024-10-09T23:00:00Z'}),
        })

        status = nhl.get_status('2024020100')

        assert status.is_finished is True
        assert status.game_schedule_state == 'OK'
        assert [c.args[0] for c in session.get.call_args_list] == [SCHEDULE_URL, landing_url('2024020100')]

    def test_schedule_transport_error_falls_back(self, nhl, session):
        _routes(session, {
            SCHEDULE_URL: requests.Timeout('slow'),
            landing_url('5'): _response({'gameState': 'CRIT'}),
        })
        assert nhl.get_status('5').is_live is True

    def test_schedule_http_error_falls_back(self, nhl, session):
        _routes(session, {
            SCHEDULE_URL: _response({'message': 'busy'}, status=503),
            landing_url('5'): _response({'gameState': 'FINAL'}),
        })
        assert nhl.get_status('5').is_finished is True

    def test_empty_landing_body_returns_none(self, nhl, session):
        _routes(session, {SCHEDULE_URL: _response(_schedule()), landing_url('5'): _response(None)})
        assert nhl.get_status('5') is None

    def test_both_paths_failing_returns_none_and_is_not_cached(self, nhl, session):
        _routes(session, {
            SCHEDULE_URL: requests.ConnectionError('down'),
            landing_url('X'): _response({'error': 'nope'}, status=404),
        })

        assert nhl.get_status('X') is None
        assert nhl.get_status('X') is None
        assert session.get.call_count == 4
        assert len(nhl.cache) == 0

    def test_unexpected_exception_is_contained(self, nhl, session):
        session.get.side_effect = RuntimeError('boom')
        assert nhl.get_status('9') is None

    def test_invalid_json_is_contained(self, nhl, session):
        bad = _response({})
        bad.json.side_effect = ValueError('not json')
        session.get.return_value = bad
        assert nhl.get_status('9') is None


class TestCache:
    def _schedule_session(self, session, state='FUT'):
        _routes(session, {SCHEDULE_URL: _response(_schedule({'id': 11, 'gameState': state}))})

    def test_second_call_within_ttl_uses_cache(self, nhl, session, clock):
        self._schedule_session(session)
        first = nhl.get_status('11')
        clock.now += 29
        second = nhl.get_status('11')
        assert first is second
        assert session.get.call_count == 1

    def test_call_after_ttl_refetches(self, nhl, session, clock):
        self._schedule_session(session)
        nhl.get_status('11')
        clock.now += 30
        nhl.get_status('11')
        assert session.get.call_count == 2

    def test_invalidate_single_game(self, nhl, session):
        self._schedule_session(session)
        nhl.get_status('11')
        nhl.invalidate('11')
        nhl.get_status('11')
        assert session.get.call_count == 2

    def test_invalidate_all(self, nhl, session):
        self._schedule_session(session)
        nhl.get_status('11')
        nhl.invalidate()
        assert len(nhl.cache) == 0

    def test_refetch_replaces_entry(self, nhl, session, clock):
        self._schedule_session(session, state='FUT')
        assert nhl.get_status('11').is_scheduled
        clock.now += 31
        self._schedule_session(session, state='LIVE')
        assert nhl.get_status('11').is_live


class TestTimeUntilStart:
    def test_future_start_is_positive(self, nhl):
        start = (datetime.now(timezone.utc) + timedelta(hours=2)).strftime('%Y-%m-%dT%H:%M:%SZ')
        remaining = nhl.get_time_until_start(start)
        assert timedelta(hours=1, minutes=59) < remaining <= timedelta(hours=2)

    def test_past_start_is_negative(self, nhl):
        assert nhl.get_time_until_start('2024-10-09T23:00:00Z') < timedelta(0)
