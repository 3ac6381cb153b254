from __future__ import annotations

import json

from click.testing import CliRunner

from storybridge.main import cli, story_text
from storybridge.narration.playback import HighlightState
from storybridge.services.story_generator import GeminiClient

from .conftest import FakeSession, gemini_response


def write_story(tmp_path, text="Run! Jump far.\nStop."):
    path = tmp_path / "story.txt"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_plan_json(tmp_path):
    result = CliRunner().invoke(cli, ["plan", write_story(tmp_path), "--json", "--avg-word-ms", "300", "--gap-ms", "400"])
    assert result.exit_code == 0, result.output
    plan = json.loads(result.output)
    assert plan["opCount"] == 12
    assert plan["durationMs"] == 2400


def test_render_to_file(tmp_path):
    output = tmp_path / "story.html"
    result = CliRunner().invoke(cli, ["render", write_story(tmp_path, "Hi **there**."), "-o", str(output)])
    assert result.exit_code == 0, result.output
    assert output.read_text(encoding="utf-8") == (
        '<p><span data-key="0-0">Hi</span> <span data-key="0-1" class="vocabulary-word">there.</span></p>'
    )


def test_generate_rejects_bad_profile():
    result = CliRunner().invoke(cli, ["generate", "-n", "Maya", "-a", "30"])
    assert result.exit_code == 1


def test_story_text_styles_active_words():
    text = story_text("Run! Jump far.", HighlightState(1, frozenset({"1-0"})))
    assert text.plain == "Run! Jump far."
    styles = {text.plain[span.start:span.end]: span.style for span in text.spans}
    assert styles["Jump"] == "word.active"
    assert styles["far."] == "sentence.active"
    assert "Run!" not in styles


def test_plan_treats_a_title_line_as_part_of_the_first_sentence(tmp_path):
    story = write_story(tmp_path, "The Brave Fox\nOnce upon a time.")
    result = CliRunner().invoke(cli, ["plan", story, "--json", "--avg-word-ms", "300", "--gap-ms", "400"])
    assert result.exit_code == 0, result.output
    plan = json.loads(result.output)
    assert plan["opCount"] == 16
    assert plan["durationMs"] == 2500


def fake_gemini(monkeypatch, reply):
    session = FakeSession(gemini_response(reply))
    monkeypatch.setattr(
        "storybridge.main.GeminiClient",
        lambda: GeminiClient(api_key="k", model="m", base_url="https://ai.test", session=session),
    )
    return session


def test_suggest_lists_words(monkeypatch):
    session = fake_gemini(monkeypatch, json.dumps([
        {"word": "gigantic", "pronunciation": "jy-GAN-tik", "simple_definition": "very big"},
        {"word": "scurry", "pronunciation": "SKUR-ee", "simple_definition": "run quickly"},
    ]))

    result = CliRunner().invoke(cli, ["suggest", "-a", "7", "-i", "dinosaurs", "-x", "huge"])

    assert result.exit_code == 0, result.output
    assert "gigantic" in result.output
    assert "scurry" in result.output
    assert "huge" in session.requests[0]["json"]["contents"][0]["parts"][0]["text"]


def test_suggest_reports_unusable_reply(monkeypatch):
    fake_gemini(monkeypatch, "sorry, no words")
    result = CliRunner().invoke(cli, ["suggest", "-a", "7"])
    assert result.exit_code == 1
