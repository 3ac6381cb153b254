from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional

import pytest

from storybridge.narration.playback import AudioPlayer, PlaybackStartError
from storybridge.storage.store import StoryStore


class FakeHandle:
    def __init__(self, when: float, seq: int, callback, args):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeLoop:
    """Manual clock implementing the slice of the event loop API we use."""

    def __init__(self):
        self.now = 0.0
        self.handles: List[FakeHandle] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback, *args) -> FakeHandle:
        handle = FakeHandle(self.now + delay, next(self._seq), callback, args)
        self.handles.append(handle)
        return handle

    def call_soon(self, callback, *args) -> FakeHandle:
        return self.call_later(0, callback, *args)

    @property
    def pending(self) -> List[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def advance_to(self, ms: float) -> None:
        target = ms / 1000.0
        while True:
            due = sorted(
                (h for h in self.handles if not h.cancelled and h.when <= target + 1e-9),
                key=lambda h: (h.when, h.seq),
            )
            if not due:
                break
            handle = due[0]
            self.handles.remove(handle)
            self.now = max(self.now, handle.when)
            handle.callback(*handle.args)
        self.now = max(self.now, target)


class FakePlayer(AudioPlayer):
    def __init__(self, fail_to_start: bool = False):
        self.fail_to_start = fail_to_start
        self.calls: List[Any] = []
        self.released = False

    def play(self) -> None:
        self.calls.append("play")
        if self.fail_to_start:
            raise PlaybackStartError("play() request was rejected by autoplay policy")

    def pause(self) -> None:
        self.calls.append("pause")

    def seek(self, position: float) -> None:
        self.calls.append(("seek", position))

    def release(self) -> None:
        self.released = True
        self.calls.append("release")


class FakeResponse:
    def __init__(self, status_code: int = 200, content: bytes = b"", reason: str = "OK",
                 json_data: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.content = content
        self.reason = reason
        self._json = json_data

    def json(self) -> Dict[str, Any]:
        return self._json


class FakeSession:
    """Stands in for requests.Session, replaying queued responses."""

    def __init__(self, *responses: FakeResponse):
        self.responses = list(responses)
        self.requests: List[Dict[str, Any]] = []

    def post(self, url: str, **kwargs) -> FakeResponse:
        self.requests.append({"url": url, **kwargs})
        return self.responses.pop(0)


def gemini_response(text: str) -> FakeResponse:
    return FakeResponse(json_data={"candidates": [{"content": {"parts": [{"text": text}]}}]})


@pytest.fixture
def loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def store(tmp_path):
    s = StoryStore(tmp_path / "stories.db")
    s.setup()
    yield s
    s.close()
