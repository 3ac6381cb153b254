from __future__ import annotations

import http.client
import json
import threading
import time
from urllib.parse import urlparse

import pytest
import requests
from jose import jwt

from storybridge.api.auth import TokenVerifier
from storybridge.api.server import AppContext, make_server, parse_range
from storybridge.services.story_generator import GeminiClient
from storybridge.services.tts import TTSError

from .conftest import FakeSession, gemini_response

SECRET = "storybridge-test-signing-secret-0123456789"
AUDIENCE = "https://storybridge.test/api/"
AUDIO = bytes(range(256)) * 4


class FakeTTS:
    def __init__(self, audio=AUDIO, error=None):
        self.audio = audio
        self.error = error
        self.calls = []

    def synthesize(self, text):
        self.calls.append(text)
        if self.error:
            raise TTSError(self.error)
        return self.audio


@pytest.fixture
def context(store):
    return AppContext(
        store=store,
        tts=FakeTTS(),
        verifier=TokenVerifier(audience=AUDIENCE, algorithms=("HS256",), key=SECRET),
        allowed_origin="http://localhost:3000",
    )


@pytest.fixture
def api(context):
    server = make_server(context, "127.0.0.1", 0)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


def auth_header(sub="auth0|parent"):
    token = jwt.encode({"sub": sub, "aud": AUDIENCE, "exp": int(time.time()) + 300}, SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def save(api, content="Run! Jump far. Stop.", user_id="user-1", **extra):
    res = requests.post(f"{api}/api/stories", json={"storyData": {"userId": user_id, "content": content, **extra}})
    assert res.status_code == 200
    return res.json()["data"]["id"]


def test_parse_range():
    assert parse_range("bytes=0-99", 1000) == (0, 99)
    assert parse_range("bytes=900-", 1000) == (900, 999)
    assert parse_range("bytes=-100", 1000) == (900, 999)
    assert parse_range("bytes=950-5000", 1000) == (950, 999)
    with pytest.raises(ValueError):
        parse_range("bytes=2000-", 1000)


def test_health_and_cors(api):
    res = requests.get(f"{api}/api/health")
    assert res.json()["status"] == "OK"
    assert res.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"

    res = requests.options(f"{api}/api/stories")
    assert res.status_code == 200
    assert "Authorization" in res.headers["Access-Control-Allow-Headers"]


def test_unknown_route_and_wrong_method(api):
    assert requests.get(f"{api}/api/nothing").status_code == 404
    res = requests.put(f"{api}/api/health")
    assert res.status_code == 405
    assert res.json() == {"error": "Method not allowed"}


def test_story_crud(api):
    story_id = save(api, title="Lake Day", vocabularyWords=["glimmering"])

    story = requests.get(f"{api}/api/story/{story_id}").json()["data"]
    assert story["title"] == "Lake Day"
    assert story["vocabularyWords"] == ["glimmering"]

    listed = requests.get(f"{api}/api/stories/user-1").json()["data"]
    assert [s["id"] for s in listed] == [story_id]

    assert requests.delete(f"{api}/api/story/{story_id}").status_code == 200
    res = requests.get(f"{api}/api/story/{story_id}")
    assert res.status_code == 404
    assert res.json() == {"error": "Story not found"}
    assert requests.delete(f"{api}/api/story/{story_id}").status_code == 404


def test_create_story_validates_body(api):
    res = requests.post(f"{api}/api/stories", json={"storyData": {"userId": "u"}})
    assert res.status_code == 400
    res = requests.post(f"{api}/api/stories", data="{not json", headers={"Content-Type": "application/json"})
    assert res.status_code == 400


def test_generate_and_stream_audio(api, context):
    story_id = save(api, content="The **brave** fox ran. It won!")

    assert requests.get(f"{api}/api/story/{story_id}/audio").status_code == 404

    res = requests.post(f"{api}/api/story/{story_id}/generate-audio")
    assert res.json()["sentenceCount"] == 2
    assert context.tts.calls == ["The **brave** fox ran. It won!"]

    # Existing audio is reused unless forced
    requests.post(f"{api}/api/story/{story_id}/generate-audio")
    assert len(context.tts.calls) == 1
    requests.post(f"{api}/api/story/{story_id}/generate-audio?force=true")
    assert len(context.tts.calls) == 2

    res = requests.get(f"{api}/api/story/{story_id}/audio")
    assert res.status_code == 200
    assert res.content == AUDIO
    assert res.headers["Content-Type"] == "audio/mpeg"
    assert res.headers["Accept-Ranges"] == "bytes"

    res = requests.get(f"{api}/api/story/{story_id}/audio", headers={"Range": "bytes=10-19"})
    assert res.status_code == 206
    assert res.content == AUDIO[10:20]
    assert res.headers["Content-Range"] == f"bytes 10-19/{len(AUDIO)}"

    res = requests.get(f"{api}/api/story/{story_id}/audio", headers={"Range": "bytes=99999-"})
    assert res.status_code == 416

    payload = requests.get(f"{api}/api/story/{story_id}/sentence-audio").json()["data"]
    assert payload["sentences"] == ["The **brave** fox ran.", " It won!"]

    requests.post(f"{api}/api/story/{story_id}/clear-sentence-audio")
    assert requests.get(f"{api}/api/story/{story_id}/sentence-audio").status_code == 404


def test_narration_failures(api, context):
    story_id = save(api)
    context.tts.error = "ElevenLabs API error: 401 Unauthorized"
    res = requests.post(f"{api}/api/story/{story_id}/generate-audio")
    assert res.status_code == 502
    assert "401" in res.json()["error"]

    context.tts = None
    assert requests.post(f"{api}/api/story/{story_id}/generate-audio").status_code == 503


def test_highlight_plan(api):
    story_id = save(api, content="Run! Jump far.\nStop.")
    plan = requests.get(f"{api}/api/story/{story_id}/highlight-plan").json()["data"]

    assert plan["sentences"] == ["Run!", " Jump far.", "\nStop."]
    assert plan["opCount"] == 12
    assert plan["durationMs"] == 2400
    assert plan["avgWordDurationMs"] == 300
    assert plan["ops"][-1] == {"fireAtMs": 2400, "action": "ClearAll"}


def test_profile_requires_token(api):
    res = requests.get(f"{api}/api/user/profile")
    assert res.status_code == 401
    res = requests.get(f"{api}/api/user/profile", headers={"Authorization": "Bearer nope"})
    assert res.status_code == 403

    profile = {"childName": "Maya", "childAge": "8", "childPronouns": "she/her",
               "interests": ["space"], "profileCompleted": True}
    res = requests.put(f"{api}/api/user/profile", json=profile, headers=auth_header())
    assert res.status_code == 200

    res = requests.get(f"{api}/api/user/profile", headers=auth_header())
    assert res.json()["data"] == profile
    assert requests.get(f"{api}/api/user/profile", headers=auth_header("auth0|other")).json()["data"]["childName"] == ""


def test_profile_without_auth_configured(api, context):
    context.verifier = None
    assert requests.get(f"{api}/api/user/profile").status_code == 501


def test_vocabulary_and_stats(api):
    story_id = save(api, vocabularyWords=["brave"], definitions={"brave": {"simple_definition": "not afraid"}})

    res = requests.post(f"{api}/api/user/user-1/vocabulary", json={"words": ["brave", "lake"], "storyId": story_id})
    assert res.status_code == 200
    assert requests.post(f"{api}/api/user/user-1/vocabulary", json={"words": []}).status_code == 400

    assert requests.get(f"{api}/api/user/user-1/vocabulary").json()["data"] == ["brave", "lake"]

    vocabulary = requests.get(f"{api}/api/user/user-1/vocabulary-with-definitions").json()["data"]
    assert vocabulary[0]["word"] == "brave"
    assert vocabulary[0]["definitions"] == {"simple_definition": "not afraid"}

    assert requests.get(f"{api}/api/user/user-1/stats").json()["data"] == {
        "wordsLearned": 2,
        "storiesGenerated": 1,
    }

    requests.delete(f"{api}/api/user/user-1/vocabulary/story/{story_id}")
    assert requests.get(f"{api}/api/user/user-1/vocabulary").json()["data"] == []


def test_generate_story_endpoint(api, context):
    session = FakeSession(
        gemini_response("Maya found a **glimmering** shell. She smiled!"),
        gemini_response("Maya's Shell"),
        gemini_response('{"glimmering": {"simple_definition": "shining softly"}}'),
    )
    context.generator = GeminiClient(api_key="k", model="m", base_url="https://ai.test", session=session)

    res = requests.post(f"{api}/api/generate-story", json={
        "childName": "Maya", "age": 8, "childPronouns": "she/her",
        "interests": ["beach"], "userId": "user-1",
    })

    assert res.status_code == 200
    data = res.json()["data"]
    assert data["title"] == "Maya's Shell"
    assert data["vocabularyWords"] == ["glimmering"]
    assert data["definitions"]["glimmering"]["simple_definition"] == "shining softly"
    saved = requests.get(f"{api}/api/story/{data['id']}").json()["data"]
    assert saved["content"] == data["story"]
    assert requests.get(f"{api}/api/user/user-1/vocabulary").json()["data"] == ["glimmering"]


def test_generate_story_validation(api, context):
    context.generator = GeminiClient(api_key="k", model="m", base_url="https://ai.test", session=FakeSession())
    res = requests.post(f"{api}/api/generate-story", json={"childName": "", "age": 3, "interests": []})
    assert res.status_code == 400
    assert "Child's name is required" in res.json()["error"]

    context.generator = None
    assert requests.post(f"{api}/api/generate-story", json={}).status_code == 503


def test_vocabulary_suggestions(api, context):
    words = [{"word": f"word{i}", "simple_definition": "a word"} for i in range(10)]
    session = FakeSession(gemini_response(json.dumps(words)))
    context.generator = GeminiClient(api_key="k", model="m", base_url="https://ai.test", session=session)

    res = requests.post(f"{api}/api/vocabulary/suggestions", json={
        "age": 7, "interests": "dinosaurs, space", "exclude": ["huge"],
    })

    assert res.status_code == 200
    assert [w["word"] for w in res.json()["data"]] == [f"word{i}" for i in range(8)]
    prompt = json.dumps(session.requests[0]["json"])
    assert "7-year-old child interested in: dinosaurs, space" in prompt
    assert "huge" in prompt


def test_vocabulary_suggestions_failures(api, context):
    context.generator = GeminiClient(
        api_key="k", model="m", base_url="https://ai.test",
        session=FakeSession(gemini_response("no words today")),
    )
    assert requests.post(f"{api}/api/vocabulary/suggestions", json={"interests": []}).status_code == 400
    res = requests.post(f"{api}/api/vocabulary/suggestions", json={"age": 7})
    assert res.status_code == 502

    context.generator = None
    assert requests.post(f"{api}/api/vocabulary/suggestions", json={"age": 7}).status_code == 503


def test_token_without_subject_is_rejected(api):
    token = jwt.encode({"aud": AUDIENCE, "exp": int(time.time()) + 300}, SECRET, algorithm="HS256")
    res = requests.get(f"{api}/api/user/profile", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 403
    assert res.json() == {"error": "Invalid token"}


@pytest.mark.parametrize("length", ["-1", "lots"])
def test_bad_content_length_is_rejected(api, length):
    conn = http.client.HTTPConnection(urlparse(api).netloc, timeout=5)
    try:
        conn.putrequest("POST", "/api/stories")
        conn.putheader("Content-Length", length)
        conn.endheaders()
        res = conn.getresponse()
        assert res.status == 400
        assert json.loads(res.read()) == {"error": "Invalid Content-Length"}
    finally:
        conn.close()
