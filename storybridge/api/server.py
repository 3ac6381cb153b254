"""
StoryBridge HTTP API

JSON handlers over the story store, narration and story generation
services. Narration audio is served with Range request support so the
web reader can seek.
"""

import json
import re
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlparse

from storybridge.api.auth import AuthError, TokenVerifier
from storybridge.narration.render import extract_vocabulary_markup
from storybridge.narration.scheduler import build_schedule, schedule_to_dict
from storybridge.narration.segmenter import segment_sentences
from storybridge.narration.timing import DEFAULT_AVG_WORD_DURATION_MS, DEFAULT_SENTENCE_GAP_MS
from storybridge.services.story_generator import (
    GeminiClient,
    StoryGenerationError,
    StoryRequest,
    generate_definitions,
    generate_story,
    generate_title,
    suggest_vocabulary_words,
)
from storybridge.services.tts import ElevenLabsClient, TTSError, build_sentence_audio_payload, encode_payload
from storybridge.storage.store import StoreError, StoryStore
from storybridge.utils import logger

MAX_BODY_BYTES = 50 * 1024 * 1024

CORS_HEADERS = {
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Methods": "GET,OPTIONS,PATCH,DELETE,POST,PUT",
    "Access-Control-Allow-Headers": (
        "X-CSRF-Token, X-Requested-With, Accept, Accept-Version, Content-Length, "
        "Content-MD5, Content-Type, Date, X-Api-Version, Authorization"
    ),
}


class ApiError(Exception):
    """An error with an HTTP status, reported to the client as JSON."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


@dataclass
class AppContext:
    """Collaborators shared by every request handler."""

    store: StoryStore
    tts: Optional[ElevenLabsClient] = None
    generator: Optional[GeminiClient] = None
    verifier: Optional[TokenVerifier] = None
    avg_word_duration_ms: int = DEFAULT_AVG_WORD_DURATION_MS
    sentence_gap_ms: int = DEFAULT_SENTENCE_GAP_MS
    allowed_origin: str = "*"


def parse_range(header: str, size: int) -> Tuple[int, int]:
    """
    Parse a single 'bytes=start-end' range.

    Returns:
        Inclusive (start, end) byte positions
    """
    byte_range = header.replace("bytes=", "")
    parts = byte_range.split("-")
    if len(parts) != 2:
        raise ValueError(f"Unsupported range: {header}")
    if parts[0]:
        start = int(parts[0])
        end = int(parts[1]) if parts[1] else size - 1
    else:
        # Suffix range: the last N bytes
        start = max(size - int(parts[1]), 0)
        end = size - 1
    end = min(end, size - 1)
    if start > end:
        raise ValueError(f"Unsatisfiable range: {header}")
    return start, end


class StoryBridgeHandler(BaseHTTPRequestHandler):
    """Routes API requests to handler methods."""

    context: AppContext
    server_version = "StoryBridge/1.0"

    ROUTES: List[Tuple[str, str, str]] = [
        ("GET", r"/api/health", "health"),
        ("POST", r"/api/stories", "create_story"),
        ("GET", r"/api/stories/(?P<user_id>[^/]+)", "list_stories"),
        ("GET", r"/api/story/(?P<story_id>[^/]+)", "get_story"),
        ("DELETE", r"/api/story/(?P<story_id>[^/]+)", "delete_story"),
        ("POST", r"/api/story/(?P<story_id>[^/]+)/generate-audio", "generate_audio"),
        ("GET", r"/api/story/(?P<story_id>[^/]+)/sentence-audio", "sentence_audio"),
        ("POST", r"/api/story/(?P<story_id>[^/]+)/clear-sentence-audio", "clear_sentence_audio"),
        ("GET", r"/api/story/(?P<story_id>[^/]+)/audio", "story_audio"),
        ("GET", r"/api/story/(?P<story_id>[^/]+)/highlight-plan", "highlight_plan"),
        ("GET", r"/api/user/profile", "get_profile"),
        ("PUT", r"/api/user/profile", "update_profile"),
        ("GET", r"/api/user/(?P<user_id>[^/]+)/vocabulary", "list_vocabulary"),
        ("POST", r"/api/user/(?P<user_id>[^/]+)/vocabulary", "add_vocabulary"),
        ("DELETE", r"/api/user/(?P<user_id>[^/]+)/vocabulary/story/(?P<story_id>[^/]+)", "remove_vocabulary"),
        ("GET", r"/api/user/(?P<user_id>[^/]+)/vocabulary-with-definitions", "vocabulary_with_definitions"),
        ("GET", r"/api/user/(?P<user_id>[^/]+)/stats", "user_stats"),
        ("POST", r"/api/generate-story", "create_generated_story"),
        ("POST", r"/api/vocabulary/suggestions", "vocabulary_suggestions"),
    ]
    _compiled = [(method, re.compile(f"^{pattern}$"), name) for method, pattern, name in ROUTES]

    def do_GET(self):
        self._dispatch("GET")

    def do_POST(self):
        self._dispatch("POST")

    def do_PUT(self):
        self._dispatch("PUT")

    def do_DELETE(self):
        self._dispatch("DELETE")

    def do_OPTIONS(self):
        self.send_response(200)
        self._send_cors()
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_request(self, code="-", size="-"):
        try:
            status = int(code)
        except (TypeError, ValueError):
            status = 0
        logger.request(self.address_string(), self.command, urlparse(self.path).path, status)

    def log_message(self, format, *args):
        logger.warning(f"{self.address_string()} {format % args}")

    # Plumbing

    def _dispatch(self, method: str) -> None:
        parsed = urlparse(self.path)
        self.query = {k: v[-1] for k, v in parse_qs(parsed.query).items()}

        handler, params = self._match(method, parsed.path)
        try:
            if handler is None:
                raise ApiError(params.pop("_status"), params.pop("_message"))
            handler(**{k: unquote(v) for k, v in params.items()})
        except ApiError as e:
            self._send_json(e.status, {"error": e.message})
        except AuthError as e:
            self._send_json(e.status, {"error": e.message})
        except StoreError as e:
            logger.error(f"Database error on {method} {parsed.path}: {e}")
            self._send_json(500, {"error": str(e)})
        except Exception as e:
            logger.error(f"Unhandled error on {method} {parsed.path}: {e}")
            self._send_json(500, {"error": str(e) or "Internal server error"})

    def _match(self, method: str, path: str) -> Tuple[Optional[Callable[..., None]], Dict[str, Any]]:
        path_known = False
        for route_method, pattern, name in self._compiled:
            match = pattern.match(path)
            if not match:
                continue
            path_known = True
            if route_method == method:
                return getattr(self, name), match.groupdict()
        if path_known:
            return None, {"_status": 405, "_message": "Method not allowed"}
        return None, {"_status": 404, "_message": "Not found"}

    def _send_cors(self) -> None:
        self.send_header("Access-Control-Allow-Origin", self.context.allowed_origin)
        for name, value in CORS_HEADERS.items():
            self.send_header(name, value)

    def _send_json(self, status: int, data: Any) -> None:
        body = json.dumps(data).encode("utf-8")
        self.send_response(status)
        self._send_cors()
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _read_json(self) -> Dict[str, Any]:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            raise ApiError(400, "Invalid Content-Length")
        if length < 0:
            raise ApiError(400, "Invalid Content-Length")
        if length > MAX_BODY_BYTES:
            raise ApiError(413, "Request body too large")
        if length == 0:
            return {}
        try:
            data = json.loads(self.rfile.read(length).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ApiError(400, "Request body must be valid JSON")
        if not isinstance(data, dict):
            raise ApiError(400, "Request body must be a JSON object")
        return data

    def _require_story(self, story_id: str) -> Dict[str, Any]:
        story = self.context.store.get_story(story_id)
        if story is None:
            raise ApiError(404, "Story not found")
        return story

    def _current_user(self) -> str:
        if self.context.verifier is None:
            raise ApiError(501, "Authentication is not configured")
        claims = self.context.verifier.verify(self.headers.get("Authorization"))
        user_id = claims.get("sub")
        if not user_id:
            raise AuthError(403, "Invalid token")
        return user_id

    # Handlers

    def health(self) -> None:
        self._send_json(200, {"status": "OK", "message": "StoryBridge API is running"})

    def create_story(self) -> None:
        story_data = self._read_json().get("storyData") or {}
        if not story_data.get("userId") or not story_data.get("content"):
            raise ApiError(400, "storyData.userId and storyData.content are required")

        story_id = self.context.store.save_story(
            story_data["userId"],
            story_data.get("title") or "",
            story_data["content"],
            story_data.get("vocabularyWords") or [],
            story_data.get("definitions") or {},
        )
        self._send_json(200, {"success": True, "data": {"id": story_id, "message": "Story saved successfully"}})

    def list_stories(self, user_id: str) -> None:
        self._send_json(200, {"success": True, "data": self.context.store.list_stories(user_id)})

    def get_story(self, story_id: str) -> None:
        self._send_json(200, {"success": True, "data": self._require_story(story_id)})

    def delete_story(self, story_id: str) -> None:
        if not self.context.store.delete_story(story_id):
            raise ApiError(404, "Story not found")
        self._send_json(200, {"success": True, "message": "Story deleted successfully"})

    def generate_audio(self, story_id: str) -> None:
        story = self._require_story(story_id)
        if self.context.tts is None:
            raise ApiError(503, "Narration is not configured")

        force = self.query.get("force") == "true"
        if not force and self.context.store.has_sentence_audio(story_id):
            self._send_json(200, {"success": True, "message": "Sentence audio already exists"})
            return

        logger.step(f"Generating narration for story {story_id}")
        try:
            audio = self.context.tts.synthesize(story["content"])
        except TTSError as e:
            raise ApiError(502, str(e))

        payload = build_sentence_audio_payload(story["content"], audio)
        self.context.store.set_sentence_audio(story_id, encode_payload(payload))
        self._send_json(200, {
            "success": True,
            "message": "Sentence audio generated and stored successfully",
            "sentenceCount": payload["sentenceCount"],
        })

    def sentence_audio(self, story_id: str) -> None:
        self._require_story(story_id)
        payload = self.context.store.get_sentence_audio(story_id)
        if payload is None:
            raise ApiError(404, "Sentence audio not found")
        self._send_json(200, {"success": True, "data": payload})

    def clear_sentence_audio(self, story_id: str) -> None:
        self._require_story(story_id)
        self.context.store.clear_sentence_audio(story_id)
        self._send_json(200, {"success": True, "message": "Sentence audio cleared"})

    def story_audio(self, story_id: str) -> None:
        self._require_story(story_id)
        audio = self.context.store.get_audio(story_id)
        if audio is None:
            raise ApiError(404, "Audio not found")

        size = len(audio)
        range_header = self.headers.get("Range")
        if range_header:
            try:
                start, end = parse_range(range_header, size)
            except ValueError:
                raise ApiError(416, "Invalid range")
            body = audio[start:end + 1]
            self.send_response(206)
            self.send_header("Content-Range", f"bytes {start}-{end}/{size}")
        else:
            body = audio
            self.send_response(200)

        self._send_cors()
        self.send_header("Content-Type", "audio/mpeg")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Accept-Ranges", "bytes")
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        self.end_headers()
        self.wfile.write(body)

    def highlight_plan(self, story_id: str) -> None:
        story = self._require_story(story_id)
        sentences = segment_sentences(story["content"])
        ops = build_schedule(
            sentences,
            self.context.avg_word_duration_ms,
            self.context.sentence_gap_ms,
        )
        plan = schedule_to_dict(ops)
        plan["sentences"] = sentences
        plan["avgWordDurationMs"] = self.context.avg_word_duration_ms
        plan["sentenceGapMs"] = self.context.sentence_gap_ms
        self._send_json(200, {"success": True, "data": plan})

    def get_profile(self) -> None:
        user_id = self._current_user()
        self._send_json(200, {"success": True, "data": self.context.store.get_profile(user_id)})

    def update_profile(self) -> None:
        user_id = self._current_user()
        self.context.store.upsert_profile(user_id, self._read_json())
        self._send_json(200, {"success": True, "message": "Profile updated successfully"})

    def list_vocabulary(self, user_id: str) -> None:
        self._send_json(200, {"success": True, "data": self.context.store.list_vocabulary(user_id)})

    def add_vocabulary(self, user_id: str) -> None:
        body = self._read_json()
        words = body.get("words")
        if not isinstance(words, list) or not words:
            raise ApiError(400, "Words array is required")
        self.context.store.add_vocabulary(user_id, [str(w) for w in words], body.get("storyId"))
        self._send_json(200, {"success": True, "message": "Vocabulary words added successfully"})

    def remove_vocabulary(self, user_id: str, story_id: str) -> None:
        self.context.store.remove_vocabulary(user_id, story_id)
        self._send_json(200, {"success": True, "message": "Vocabulary words removed successfully"})

    def vocabulary_with_definitions(self, user_id: str) -> None:
        self._send_json(200, {"success": True, "data": self.context.store.vocabulary_with_definitions(user_id)})

    def user_stats(self, user_id: str) -> None:
        self._send_json(200, {"success": True, "data": self.context.store.user_stats(user_id)})

    def create_generated_story(self) -> None:
        if self.context.generator is None:
            raise ApiError(503, "Story generation is not configured")

        body = self._read_json()
        request = StoryRequest.from_dict(body)
        errors = request.validate()
        if errors:
            raise ApiError(400, "; ".join(errors))

        try:
            text = generate_story(request, self.context.generator)
        except StoryGenerationError as e:
            raise ApiError(502, str(e))

        title = generate_title(text, self.context.generator)
        words = request.vocabulary_words or extract_vocabulary_markup(text)
        definitions = generate_definitions(words, request.age, self.context.generator)

        data: Dict[str, Any] = {
            "story": text,
            "title": title,
            "vocabularyWords": words,
            "definitions": definitions,
        }
        user_id = body.get("userId")
        if user_id:
            story_id = self.context.store.save_story(user_id, title, text, words, definitions)
            if words:
                self.context.store.add_vocabulary(user_id, words, story_id)
            data["id"] = story_id
        self._send_json(200, {"success": True, "data": data})

    def vocabulary_suggestions(self) -> None:
        if self.context.generator is None:
            raise ApiError(503, "Story generation is not configured")

        body = self._read_json()
        if not body.get("age"):
            raise ApiError(400, "Age is required")
        request = StoryRequest.from_dict(body)

        exclude = body.get("exclude") or []
        try:
            words = suggest_vocabulary_words(request.age, request.interests, self.context.generator, exclude)
        except StoryGenerationError as e:
            raise ApiError(502, str(e))
        self._send_json(200, {"success": True, "data": words})


def make_server(context: AppContext, host: str = "127.0.0.1", port: int = 5000) -> ThreadingHTTPServer:
    """Create an API server bound to host:port (port 0 picks a free one)."""
    handler = type("BoundStoryBridgeHandler", (StoryBridgeHandler,), {"context": context})
    return ThreadingHTTPServer((host, port), handler)


def build_context() -> AppContext:
    """Wire the API collaborators from configuration."""
    from storybridge.utils.config import config

    store = StoryStore(config.database_path)
    store.setup()

    tts = ElevenLabsClient() if config.elevenlabs_api_key else None
    if tts is None:
        logger.warning("ELEVENLABS_API_KEY not set: narration endpoints are disabled")

    generator = GeminiClient() if config.gemini_api_key else None
    if generator is None:
        logger.warning("GEMINI_API_KEY not set: story generation is disabled")

    verifier = None
    if config.auth_domain:
        verifier = TokenVerifier(config.auth_domain, audience=config.get("auth", "audience"))
    else:
        logger.warning("AUTH0_DOMAIN not set: profile endpoints are disabled")

    return AppContext(
        store=store,
        tts=tts,
        generator=generator,
        verifier=verifier,
        avg_word_duration_ms=config.avg_word_duration_ms,
        sentence_gap_ms=config.sentence_gap_ms,
        allowed_origin=config.get("server", "allowed_origin", default="*"),
    )


def run(host: str, port: int, context: Optional[AppContext] = None) -> None:
    """Serve the API until interrupted."""
    context = context or build_context()
    server = make_server(context, host, port)
    logger.success(f"Serving StoryBridge API at http://{host}:{port}")
    logger.info("Press Ctrl+C to stop")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Server stopped.")
    finally:
        server.server_close()
        context.store.close()
