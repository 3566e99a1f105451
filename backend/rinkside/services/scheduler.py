import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from rinkside import db, socketio
from .lifecycle import MIN_MEMBERS_TO_ACTIVATE, next_status
from .realtime import STATUS_CHANGED


@dataclass(frozen=True)
class AppliedTransition:
    challenge_id: str
    game_id: str
    old_status: str
    new_status: str


@dataclass
class SyncCycleResult:
    applied: List[AppliedTransition] = field(default_factory=list)
    unresolved_game_ids: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    failed_game_ids: List[str] = field(default_factory=list)
    games_checked: int = 0
    aborted: bool = False


class SyncScheduler:
    """Periodically advance every open challenge from its game's live status.

    - One cycle at a time; a tick that fires mid-cycle is skipped
    - Each game is handled independently; an unresolved or failing game only holds back its own challenges
    - Writes are conditional on the status read; a lost race is re-evaluated next cycle
    - ``stop()`` lets an in-flight cycle finish before the loop exits
    """

    def __init__(
        self,
        app,
        store,
        provider,
        channel,
        interval: float = 60.0,
        min_members: int = MIN_MEMBERS_TO_ACTIVATE,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.app = app
        self.store = store
        self.provider = provider
        self.channel = channel
        self.interval = interval
        self.min_members = min_members
        self._sleep = sleep
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._started = False

    @property
    def running(self) -> bool:
        return self._cycle_lock.locked()

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._stop_event.clear()
        if self._sleep is None:
            self._sleep = socketio.sleep
        self.app.logger.info(f"[sync-start] interval={self.interval}s")
        socketio.start_background_task(self.run_forever)

    def stop(self) -> None:
        self._stop_event.set()
        self._started = False

    def run_forever(self) -> None:
        sleep = self._sleep
        if sleep is None:
            sleep = self._stop_event.wait
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                self.app.logger.exception("[sync-error] cycle failed, retrying next tick")
            if self._stop_event.is_set():
                break
            sleep(self.interval)
        self.app.logger.info("[sync-stop] scheduler loop exited")

    def tick(self) -> Optional[SyncCycleResult]:
        """Run one cycle unless one is already running; returns None when skipped."""
        if not self._cycle_lock.acquire(blocking=False):
            self.app.logger.info("[sync-skip] previous cycle still running")
            return None
        try:
            with self.app.app_context():
                return self.run_cycle()
        finally:
            self._cycle_lock.release()

    def run_cycle(self) -> SyncCycleResult:
        result = SyncCycleResult()
        try:
            game_ids = self.store.list_tracked_game_ids()
            for game_id in sorted(game_ids):
                try:
                    self._sync_game(game_id, result)
                except SQLAlchemyError:
                    raise
                except Exception:
                    result.failed_game_ids.append(game_id)
                    self.app.logger.exception(f"[sync-game-error] game={game_id} sync failed, retrying next tick")
        except SQLAlchemyError:
            db.session.rollback()
            result.aborted = True
            self.app.logger.exception("[sync-abort] challenge store unavailable, retrying next tick")
            return result

        self.app.logger.info(
            f"[sync-cycle] games={result.games_checked} applied={len(result.applied)} "
            f"unresolved={len(result.unresolved_game_ids)} conflicts={len(result.conflicts)} "
            f"failed={len(result.failed_game_ids)}"
        )
        return result

    def _sync_game(self, game_id: str, result: SyncCycleResult) -> None:
        result.games_checked += 1
        game = self.provider.get_status(game_id)
        if game is None:
            result.unresolved_game_ids.append(game_id)
            self.app.logger.warning(f"[sync-unresolved] game={game_id} status unavailable, leaving challenges as-is")
            return

        for challenge in self.store.list_challenges_for_game(game_id):
            current = challenge.status
            target = next_status(current, game, challenge.member_count, self.min_members)
            if target == current:
                continue
            challenge_id = challenge.id
            if not self.store.conditional_set_status(challenge_id, current, target):
                result.conflicts.append(challenge_id)
                self.app.logger.info(f"[sync-conflict] challenge={challenge_id} changed since read, skipping")
                continue
            result.applied.append(AppliedTransition(challenge_id, game_id, current, target))
            self.app.logger.info(f"[sync-apply] challenge={challenge_id} game={game_id} {current}->{target}")
            self.channel.publish(challenge_id, STATUS_CHANGED, f"Challenge is now {target}")
