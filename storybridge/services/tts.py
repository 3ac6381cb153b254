"""
Narration Audio Module

Synthesizes story narration through the ElevenLabs text-to-speech API and
packages the result for storage alongside the story.
"""

import base64
import binascii
import json
from typing import Any, Dict, List, Optional

import requests

from storybridge.narration.render import optimize_text_for_tts
from storybridge.narration.segmenter import segment_sentences
from storybridge.utils import logger
from storybridge.utils.config import config


class TTSError(Exception):
    """Raised when narration audio could not be produced."""


class ElevenLabsClient:
    """
    Thin client for the ElevenLabs text-to-speech endpoint.

    Returns raw MPEG audio bytes for a block of text.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        voice_id: Optional[str] = None,
        model_id: Optional[str] = None,
        base_url: Optional[str] = None,
        voice_settings: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: ElevenLabs API key (default: ELEVENLABS_API_KEY)
            voice_id: Voice to narrate with
            model_id: Synthesis model
            base_url: API root URL
            voice_settings: Stability/similarity settings sent with each request
            timeout: Request timeout in seconds
            session: requests session to reuse
        """
        self.api_key = api_key or config.elevenlabs_api_key
        self.voice_id = voice_id or config.get("tts", "voice_id")
        self.model_id = model_id or config.get("tts", "model_id")
        self.base_url = (base_url or config.get("tts", "base_url")).rstrip("/")
        self.voice_settings = voice_settings or config.get("tts", "voice_settings", default={})
        self.timeout = timeout or config.get("tts", "timeout", default=60)
        self.session = session or requests.Session()

    @property
    def url(self) -> str:
        return f"{self.base_url}/v1/text-to-speech/{self.voice_id}"

    def synthesize(self, text: str) -> bytes:
        """
        Convert text to narration audio.

        Args:
            text: Story text; markdown is stripped before synthesis

        Returns:
            MPEG audio bytes
        """
        if not self.api_key:
            raise TTSError("ElevenLabs API key not found")

        spoken = optimize_text_for_tts(text)
        if not spoken:
            raise TTSError("No text to synthesize")

        payload = {
            "text": spoken,
            "model_id": self.model_id,
            "voice_settings": self.voice_settings,
        }
        headers = {
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
            "xi-api-key": self.api_key,
        }

        try:
            res = self.session.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise TTSError(f"ElevenLabs API request error: {e}") from e

        if res.status_code != 200:
            raise TTSError(f"ElevenLabs API error: {res.status_code} {res.reason}")

        logger.success(f"Synthesized {len(spoken)} characters ({len(res.content)} bytes)")
        return res.content


def build_sentence_audio_payload(text: str, audio: bytes) -> Dict[str, Any]:
    """Bundle narration audio with the sentences it covers."""
    sentences: List[str] = segment_sentences(text)
    return {
        "combinedAudio": base64.b64encode(audio).decode("ascii"),
        "sentences": sentences,
        "sentenceCount": len(sentences),
        "totalDuration": None,
    }


def encode_payload(payload: Dict[str, Any]) -> str:
    """Encode a payload as base64 JSON for a text column."""
    raw = json.dumps(payload).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_payload(encoded: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode a stored payload; None when missing or unreadable."""
    if not encoded or len(encoded) < 10:
        return None
    try:
        decoded = base64.b64decode(encoded).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if len(decoded) < 10:
        return None
    try:
        return json.loads(decoded)
    except json.JSONDecodeError as e:
        logger.warning(f"Stored sentence audio is not valid JSON: {e}")
        return None


def payload_audio(payload: Optional[Dict[str, Any]]) -> Optional[bytes]:
    """Extract the combined MPEG bytes from a payload."""
    if not payload or not payload.get("combinedAudio"):
        return None
    try:
        return base64.b64decode(payload["combinedAudio"])
    except binascii.Error:
        return None
