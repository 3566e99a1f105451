"""NHL game status lookup with a short-lived per-game cache.

The provider resolves a single game's phase from the NHL web API. It first
scans the rolling ``/schedule/now`` window and falls back to the per-game
``/gamecenter/<id>/landing`` resource when the game is not in it. Upstream
failures never escape: an unresolved game is reported as ``None``.
"""

import logging
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

LIVE_STATES = frozenset({'LIVE', 'CRIT', 'PRE'})
FINISHED_STATES = frozenset({'OFF', 'FINAL'})
SCHEDULED_STATES = frozenset({'FUT', 'SCHEDULED'})

DEFAULT_GAME_STATE = 'FUT'
DEFAULT_SCHEDULE_STATE = 'OK'
DEFAULT_CACHE_TTL_SEC = 30.0


def _state_code(game_state) -> str:
    return game_state.upper() if isinstance(game_state, str) else ''


def is_game_live(game_state: str) -> bool:
    return _state_code(game_state) in LIVE_STATES


def is_game_finished(game_state: str) -> bool:
    return _state_code(game_state) in FINISHED_STATES


def is_game_scheduled(game_state: str) -> bool:
    return _state_code(game_state) in SCHEDULED_STATES


def _text(value) -> Optional[str]:
    """Upstream string field, or None when missing, blank or not a string."""
    if isinstance(value, str) and value.strip():
        return value
    return None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def parse_start_time(start_time_utc: str) -> datetime:
    """Parse an NHL ``startTimeUTC`` value (``2024-10-09T23:00:00Z``)."""
    value = start_time_utc.strip()
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class GameStatus:
    game_id: str
    game_state: str
    game_schedule_state: str
    start_time_utc: str
    detailed_state: Optional[str]
    is_live: bool
    is_finished: bool
    is_scheduled: bool
    fetched_at: float

    @classmethod
    def from_upstream(cls, game_id: str, data: Dict[str, Any], fetched_at: float) -> 'GameStatus':
        """Build a status from a schedule entry or landing body, filling blanks with defaults."""
        game_state = _text(data.get('gameState')) or DEFAULT_GAME_STATE
        schedule_state = _text(data.get('gameScheduleState'))
        return cls(
            game_id=str(game_id),
            game_state=game_state,
            game_schedule_state=schedule_state or DEFAULT_SCHEDULE_STATE,
            start_time_utc=_text(data.get('startTimeUTC')) or _utc_now_iso(),
            detailed_state=schedule_state,
            is_live=is_game_live(game_state),
            is_finished=is_game_finished(game_state),
            is_scheduled=is_game_scheduled(game_state),
            fetched_at=fetched_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        return {
            'gameId': d['game_id'],
            'gameState': d['game_state'],
            'gameScheduleState': d['game_schedule_state'],
            'startTimeUTC': d['start_time_utc'],
            'detailedState': d['detailed_state'],
            'isLive': d['is_live'],
            'isFinished': d['is_finished'],
            'isScheduled': d['is_scheduled'],
            'fetchedAt': d['fetched_at'],
        }


class GameStatusCache:
    """TTL cache of GameStatus keyed by game id.

    Entries are replaced whole under a lock, so concurrent readers see either
    the old or the new snapshot.
    """

    def __init__(self, ttl: float = DEFAULT_CACHE_TTL_SEC, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, GameStatus] = {}
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def get(self, game_id: str) -> Optional[GameStatus]:
        with self._lock:
            entry = self._entries.get(game_id)
            if entry is None:
                return None
            if self._clock() - entry.fetched_at >= self.ttl:
                del self._entries[game_id]
                return None
            return entry

    def put(self, status: GameStatus) -> None:
        with self._lock:
            self._entries[status.game_id] = status

    def invalidate(self, game_id: Optional[str] = None) -> None:
        with self._lock:
            if game_id is None:
                self._entries.clear()
            else:
                self._entries.pop(str(game_id), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class GameStatusProvider:
    """Resolves the phase of a single NHL game; knows nothing about challenges."""

    def __init__(
        self,
        base_url: str = 'https://api-web.nhle.com/v1',
        timeout: float = 10.0,
        user_agent: str = 'Hockey-Prediction-App/1.0',
        cache: Optional[GameStatusCache] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.cache = cache if cache is not None else GameStatusCache()
        self.session = session if session is not None else requests.Session()
        self.headers = {'User-Agent': user_agent}

    def get_status(self, game_id) -> Optional[GameStatus]:
        game_id = str(game_id)
        cached = self.cache.get(game_id)
        if cached is not None:
            logger.debug(f"[nhl-cache-hit] game={game_id}")
            return cached

        status = self._from_schedule(game_id)
        if status is None:
            status = self._from_landing(game_id)
        if status is None:
            return None

        self.cache.put(status)
        logger.info(
            f"[nhl-status] game={game_id} state={status.game_state} "
            f"live={status.is_live} finished={status.is_finished} scheduled={status.is_scheduled}"
        )
        return status

    def invalidate(self, game_id=None) -> None:
        self.cache.invalidate(None if game_id is None else str(game_id))
        logger.debug(f"[nhl-cache-clear] game={game_id if game_id is not None else '*'}")

    def get_time_until_start(self, start_time_utc: str) -> timedelta:
        """Signed time until puck drop; negative once the game has started."""
        return parse_start_time(start_time_utc) - datetime.now(timezone.utc)

    def _fetch_json(self, url: str, game_id: str) -> Any:
        try:
            response = self.session.get(url, headers=self.headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as exc:
            resp = exc.response
            logger.error(
                f"[nhl-error] game={game_id} url={url} status={resp.status_code if resp is not None else '?'} "
                f"body={resp.text[:200] if resp is not None else ''}"
            )
        except requests.RequestException as exc:
            logger.error(f"[nhl-error] game={game_id} url={url} error={exc}")
        except ValueError as exc:
            logger.error(f"[nhl-error] game={game_id} url={url} invalid json: {exc}")
        except Exception:
            logger.exception(f"[nhl-error] game={game_id} url={url} unexpected failure")
        return None

    def _from_schedule(self, game_id: str) -> Optional[GameStatus]:
        url = f"{self.base_url}/schedule/now"
        logger.debug(f"[nhl-fetch] schedule url={url}")
        data = self._fetch_json(url, game_id)
        game = find_game_in_schedule(data, game_id)
        if game is None:
            logger.warning(f"[nhl-miss] game={game_id} not in current schedule, trying landing endpoint")
            return None
        return self._build(game_id, game, 'schedule')

    def _from_landing(self, game_id: str) -> Optional[GameStatus]:
        url = f"{self.base_url}/gamecenter/{game_id}/landing"
        logger.debug(f"[nhl-fetch] landing url={url}")
        data = self._fetch_json(url, game_id)
        if not data or not isinstance(data, dict):
            logger.warning(f"[nhl-miss] game={game_id} no data from landing endpoint")
            return None
        return self._build(game_id, data, 'landing')

    def _build(self, game_id: str, data: Dict[str, Any], source: str) -> Optional[GameStatus]:
        try:
            return GameStatus.from_upstream(game_id, data, self.cache.now())
        except Exception:
            logger.exception(f"[nhl-error] game={game_id} source={source} malformed body")
            return None


def find_game_in_schedule(data: Any, game_id: str) -> Optional[Dict[str, Any]]:
    """Scan every day bucket of a schedule body; malformed buckets are skipped."""
    if not isinstance(data, dict):
        return None
    week = data.get('gameWeek')
    if not isinstance(week, list):
        return None
    for day in week:
        if not isinstance(day, dict):
            continue
        games = day.get('games')
        if not isinstance(games, list):
            continue
        for game in games:
            if isinstance(game, dict) and str(game.get('id')) == game_id:
                return game
    return None
