"""
Playback Controller Module

Coordinates the highlight plan with the lifecycle of one narration audio
player at a time.

Lifecycle:
    IDLE -> STARTING -> PLAYING -> (ENDED | STOPPED | ERRORED) -> IDLE

The plan is armed only when the player reports that playback actually
started. Every exit from a session cancels all of that session's timers,
resets the highlight state and releases the player before anything else
can be armed.
"""

import asyncio
import itertools
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, List, Optional, Sequence

from storybridge.narration.scheduler import (
    Action,
    ClearAll,
    EnterSentence,
    EnterWord,
    ExitWord,
    ScheduledOp,
    build_schedule,
    schedule_duration_ms,
)
from storybridge.narration.segmenter import segment_sentences
from storybridge.narration.timing import DEFAULT_AVG_WORD_DURATION_MS, DEFAULT_SENTENCE_GAP_MS
from storybridge.utils import logger

DEFAULT_ERROR_MESSAGE = "Failed to play audio"


class PlaybackStartError(Exception):
    """Raised by a player that could not start playback at all."""


@dataclass(frozen=True)
class HighlightState:
    """What the reader currently shows as being narrated."""

    active_sentence_index: int = -1
    highlighted_word_keys: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def reset(cls) -> "HighlightState":
        return cls()

    @property
    def is_clear(self) -> bool:
        return self.active_sentence_index == -1 and not self.highlighted_word_keys


def apply_action(state: HighlightState, action: Action) -> HighlightState:
    """Return the highlight state that results from one scheduled action."""
    if isinstance(action, EnterSentence):
        return HighlightState(action.sentence_index, frozenset())
    if isinstance(action, EnterWord):
        return HighlightState(
            state.active_sentence_index,
            state.highlighted_word_keys | {action.key},
        )
    if isinstance(action, ExitWord):
        return HighlightState(
            state.active_sentence_index,
            state.highlighted_word_keys - {action.key},
        )
    if isinstance(action, ClearAll):
        return HighlightState.reset()
    raise TypeError(f"Unknown highlight action: {action!r}")


class PlaybackState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    PLAYING = "playing"
    ENDED = "ended"
    STOPPED = "stopped"
    ERRORED = "errored"


class Session:
    """
    One armed highlight plan.

    A session can be armed exactly once. Ops that share a fire time are
    armed as one timer and dispatched in plan order, so the event loop
    never reorders them. Cancelling the session cancels every timer it
    created, and a timer that still manages to fire afterwards is dropped
    instead of dispatched.
    """

    def __init__(self, session_id: int):
        self.id = session_id
        self._handles: List[asyncio.TimerHandle] = []
        self._armed = False
        self._cancelled = False
        self._fired = 0

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending_count(self) -> int:
        """Timers of this session that have neither fired nor been cancelled."""
        if self._cancelled:
            return 0
        return len(self._handles) - self._fired

    def arm(
        self,
        loop: asyncio.AbstractEventLoop,
        ops: Sequence[ScheduledOp],
        dispatch: Callable[["Session", Action], None],
    ) -> "Session":
        """
        Schedule every op relative to now, one timer per distinct fire time.

        Args:
            loop: Event loop providing call_later
            ops: Highlight plan from build_schedule, in plan order
            dispatch: Receives (session, action) when an op fires

        Returns:
            self for method chaining
        """
        if self._armed or self._cancelled:
            raise RuntimeError(f"Session {self.id} cannot be armed twice")
        self._armed = True

        # build_schedule never decreases fire times, so equal times are adjacent
        for fire_at_ms, group in itertools.groupby(ops, key=lambda op: op.fire_at_ms):
            actions = [op.action for op in group]
            handle = loop.call_later(fire_at_ms / 1000.0, self._fire, actions, dispatch)
            self._handles.append(handle)
        return self

    def _fire(self, actions: List[Action], dispatch: Callable[["Session", Action], None]) -> None:
        if self._cancelled:
            return
        self._fired += 1
        for action in actions:
            # A dispatched action may end playback and cancel this session
            if self._cancelled:
                return
            dispatch(self, action)

    def cancel(self) -> None:
        """Cancel every pending timer; safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()


class AudioPlayer(ABC):
    """
    Interface of a narration audio player.

    A player reports its signals back to the controller through
    on_started, on_ended and on_error.
    """

    @abstractmethod
    def play(self) -> None:
        """Request playback; raise PlaybackStartError if it is refused."""

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def seek(self, position: float) -> None:
        pass

    def release(self) -> None:
        """Free transient resources held for the audio bytes."""


class PlaybackController:
    """
    Owns the current narration player and its highlight session.

    Only the controller changes the highlight state. Observers get every
    new state through the on_change callback.
    """

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        avg_word_duration_ms: int = DEFAULT_AVG_WORD_DURATION_MS,
        sentence_gap_ms: int = DEFAULT_SENTENCE_GAP_MS,
        on_change: Optional[Callable[[HighlightState], None]] = None,
    ):
        """
        Initialize the controller.

        Args:
            loop: Event loop for highlight timers (default: running loop)
            avg_word_duration_ms: Fixed time given to every word
            sentence_gap_ms: Pause appended after each sentence
            on_change: Called with the new HighlightState after each change
        """
        self._loop = loop
        self.avg_word_duration_ms = avg_word_duration_ms
        self.sentence_gap_ms = sentence_gap_ms
        self.on_change = on_change

        self.state = PlaybackState.IDLE
        self.last_outcome: Optional[PlaybackState] = None
        self.highlight = HighlightState.reset()
        self.is_playing = False
        self.error_message: Optional[str] = None

        self._text: Optional[str] = None
        self._player: Optional[AudioPlayer] = None
        self._session: Optional[Session] = None
        self._session_ids = itertools.count(1)

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def player(self) -> Optional[AudioPlayer]:
        return self._player

    @property
    def pending_timer_count(self) -> int:
        return self._session.pending_count if self._session else 0

    def play(self, text: str, player: AudioPlayer) -> None:
        """
        Start narrating text with a new player.

        Any previous session is torn down first. The highlight plan is not
        armed here but in on_started, once audio is really playing.

        Args:
            text: Story text being narrated
            player: Player holding the narration audio
        """
        if not text or not text.strip():
            raise ValueError("Cannot narrate empty story text")

        if self._player is not None or self._session is not None:
            self._teardown(pause=True)

        self._text = text
        self._player = player
        self.is_playing = True
        self.error_message = None
        self._set_highlight(HighlightState.reset())
        self.state = PlaybackState.STARTING

        try:
            player.play()
        except PlaybackStartError as e:
            logger.error(f"Playback failed to start: {e}")
            self.on_error(str(e) or DEFAULT_ERROR_MESSAGE, player)
        except Exception as e:
            logger.error(f"Player error while starting: {e}")
            self.on_error(DEFAULT_ERROR_MESSAGE, player)

    def on_started(self, player: Optional[AudioPlayer] = None) -> None:
        """Player signal: audio is now audible. Arms a fresh plan."""
        if not self._is_current(player) or self.state is not PlaybackState.STARTING:
            return

        sentences = segment_sentences(self._text or "")
        ops = build_schedule(sentences, self.avg_word_duration_ms, self.sentence_gap_ms)

        session = Session(next(self._session_ids))
        self._session = session
        session.arm(self.loop, ops, self._dispatch)
        self.state = PlaybackState.PLAYING
        logger.info(
            f"Session {session.id}: {len(sentences)} sentences, "
            f"{len(ops)} highlight ops over {schedule_duration_ms(ops)} ms"
        )

    def on_ended(self, player: Optional[AudioPlayer] = None) -> None:
        """Player signal: natural end of the narration."""
        if self._is_current(player):
            self._finish(PlaybackState.ENDED)

    def on_error(self, message: Optional[str] = None, player: Optional[AudioPlayer] = None) -> None:
        """Player signal: playback failed; the message is shown to the reader."""
        if not self._is_current(player) or self.state is PlaybackState.IDLE:
            return
        self.error_message = message or DEFAULT_ERROR_MESSAGE
        self._finish(PlaybackState.ERRORED)

    def stop(self) -> None:
        """Reader asked to stop: pause, rewind and clean up."""
        if self._player is None:
            return
        self._player.pause()
        self._player.seek(0)
        self._finish(PlaybackState.STOPPED)

    def _is_current(self, player: Optional[AudioPlayer]) -> bool:
        return self._player is not None and (player is None or player is self._player)

    def _dispatch(self, session: Session, action: Action) -> None:
        if session is not self._session:
            return
        self._set_highlight(apply_action(self.highlight, action))

    def _set_highlight(self, state: HighlightState) -> None:
        if state == self.highlight:
            return
        self.highlight = state
        if self.on_change is not None:
            self.on_change(state)

    def _finish(self, outcome: PlaybackState) -> None:
        self.state = outcome
        self._teardown(pause=False)
        self.last_outcome = outcome
        self.state = PlaybackState.IDLE

    def _teardown(self, pause: bool) -> None:
        if self._session is not None:
            self._session.cancel()
            self._session = None

        player = self._player
        self._player = None
        self._text = None
        if player is not None:
            if pause:
                player.pause()
                player.seek(0)
            player.release()

        self.is_playing = False
        self._set_highlight(HighlightState.reset())


class SimulatedPlayer(AudioPlayer):
    """
    Player that pretends to play for a fixed duration on the event loop.

    The audio bytes, if any, are written to a temporary file while the
    player is in use and removed on release.
    """

    def __init__(
        self,
        controller: PlaybackController,
        duration_s: float,
        audio: Optional[bytes] = None,
        suffix: str = ".mp3",
    ):
        self.controller = controller
        self.duration_s = duration_s
        self.audio = audio
        self.suffix = suffix
        self.path: Optional[str] = None
        self.position = 0.0
        self._end_handle: Optional[asyncio.TimerHandle] = None

    def play(self) -> None:
        if self.audio is not None:
            fd, self.path = tempfile.mkstemp(suffix=self.suffix)
            with os.fdopen(fd, "wb") as f:
                f.write(self.audio)

        loop = self.controller.loop
        loop.call_soon(self.controller.on_started, self)
        self._end_handle = loop.call_later(self.duration_s, self.controller.on_ended, self)

    def pause(self) -> None:
        if self._end_handle is not None:
            self._end_handle.cancel()
            self._end_handle = None

    def seek(self, position: float) -> None:
        self.position = position

    def release(self) -> None:
        self.pause()
        if self.path is not None:
            try:
                os.unlink(self.path)
            except FileNotFoundError:
                pass
            self.path = None
