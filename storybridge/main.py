#!/usr/bin/env python3
"""
StoryBridge - Main CLI

Personalized children's stories with narrated read-along highlighting.

Features:
- Story generation from a child's name, age, pronouns and interests
- Vocabulary challenge words with child-friendly definitions
- Narration through a text-to-speech API
- Sentence and word highlighting paced to the narration
- JSON API for the web reader
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.live import Live
from rich.text import Text

from storybridge.api.server import run as run_server
from storybridge.narration.playback import HighlightState, PlaybackController, SimulatedPlayer
from storybridge.narration.render import (
    SENTENCE_ACTIVE_CLASS,
    VOCAB_CLASS,
    WORD_ACTIVE_CLASS,
    render_html,
    tokenize_story,
    word_css_class,
)
from storybridge.narration.scheduler import build_schedule, schedule_duration_ms, schedule_to_dict
from storybridge.narration.segmenter import segment_sentences, segment_story
from storybridge.services.story_generator import (
    GeminiClient,
    StoryGenerationError,
    StoryRequest,
    generate_definitions,
    generate_story,
    generate_title,
    suggest_vocabulary_words,
)
from storybridge.services.tts import ElevenLabsClient, TTSError
from storybridge.storage.store import StoryStore
from storybridge.utils import logger
from storybridge.utils.config import config

RICH_STYLES = {
    VOCAB_CLASS: "vocab",
    WORD_ACTIVE_CLASS: "word.active",
    SENTENCE_ACTIVE_CLASS: "sentence.active",
}


def _read_story(input_file: str) -> str:
    return Path(input_file).read_text(encoding="utf-8")


def story_text(text: str, state: HighlightState) -> Text:
    """Render the story for the terminal with the current highlights."""
    rendered = Text()
    for para_index, paragraph in enumerate(tokenize_story(text)):
        if para_index:
            rendered.append("\n\n")
        for word_index, token in enumerate(paragraph):
            if word_index:
                rendered.append(" ")
            style = RICH_STYLES.get(word_css_class(token, state))
            rendered.append(token.display, style=style)
    return rendered


@click.group()
@click.version_option(version="1.0.0")
def cli():
    """
    StoryBridge

    Generate personalized stories for young readers and follow the
    narration word by word.
    """
    pass


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
def segment(input_file: str):
    """
    Show how a story is split into sentences and words.
    """
    spans = segment_story(_read_story(input_file))

    table = logger.create_table(f"{len(spans)} sentences", "#", "Paragraph", "Words", "Sentence")
    for span in spans:
        table.add_row(str(span.index), str(span.paragraph_index), str(len(span.words)), span.text.strip())
    logger.console.print(table)


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--avg-word-ms", type=int, default=None, help="Time per word in milliseconds")
@click.option("--gap-ms", type=int, default=None, help="Pause after each sentence in milliseconds")
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON")
def plan(input_file: str, avg_word_ms: Optional[int], gap_ms: Optional[int], as_json: bool):
    """
    Print the highlight plan for a story.
    """
    avg = avg_word_ms or config.avg_word_duration_ms
    gap = gap_ms or config.sentence_gap_ms
    ops = build_schedule(segment_sentences(_read_story(input_file)), avg, gap)

    if as_json:
        click.echo(json.dumps(schedule_to_dict(ops), indent=2))
        return

    table = logger.create_table(f"{len(ops)} ops, {schedule_duration_ms(ops)} ms", "At (ms)", "Action")
    for op in ops:
        details = op.to_dict()
        target = ", ".join(f"{k}={v}" for k, v in details.items() if k not in ("fireAtMs", "action"))
        table.add_row(str(op.fire_at_ms), f"{details['action']}({target})")
    logger.console.print(table)


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("-o", "--output", type=click.Path(), help="Write HTML here instead of stdout")
def render(input_file: str, output: Optional[str]):
    """
    Render a story as read-along HTML spans.
    """
    html = render_html(_read_story(input_file))
    if output:
        Path(output).write_text(html, encoding="utf-8")
        logger.success(f"Wrote {output}")
    else:
        click.echo(html)


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("--avg-word-ms", type=int, default=None, help="Time per word in milliseconds")
@click.option("--gap-ms", type=int, default=None, help="Pause after each sentence in milliseconds")
@click.option("--audio", type=click.Path(exists=True), help="Narration MP3 held while reading")
def readalong(input_file: str, avg_word_ms: Optional[int], gap_ms: Optional[int], audio: Optional[str]):
    """
    Follow a story in the terminal at narration pace.

    Highlights each sentence and word on the configured cadence, exactly
    as the web reader does while narration plays.
    """
    text = _read_story(input_file)
    avg = avg_word_ms or config.avg_word_duration_ms
    gap = gap_ms or config.sentence_gap_ms
    audio_bytes = Path(audio).read_bytes() if audio else None

    try:
        asyncio.run(_readalong(text, avg, gap, audio_bytes))
    except KeyboardInterrupt:
        logger.warning("Read-along interrupted")


async def _readalong(text: str, avg: int, gap: int, audio: Optional[bytes]) -> None:
    duration_ms = schedule_duration_ms(build_schedule(segment_sentences(text), avg, gap))

    with Live(story_text(text, HighlightState.reset()), console=logger.console, auto_refresh=False) as live:
        def refresh(state: HighlightState) -> None:
            live.update(story_text(text, state), refresh=True)

        controller = PlaybackController(
            asyncio.get_running_loop(),
            avg_word_duration_ms=avg,
            sentence_gap_ms=gap,
            on_change=refresh,
        )
        player = SimulatedPlayer(controller, duration_ms / 1000.0, audio=audio)
        controller.play(text, player)
        try:
            while controller.is_playing:
                await asyncio.sleep(0.05)
        finally:
            controller.stop()

    if controller.error_message:
        logger.error(controller.error_message)
    else:
        logger.success(f"Finished ({duration_ms / 1000.0:.1f}s)")


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("-o", "--output", type=click.Path(), help="Output MP3 path (default: <input>.mp3)")
@click.option("--plan", "with_plan", is_flag=True, help="Also write the highlight plan as JSON")
def narrate(input_file: str, output: Optional[str], with_plan: bool):
    """
    Synthesize narration audio for a story.
    """
    input_path = Path(input_file)
    output_path = Path(output) if output else input_path.with_suffix(".mp3")
    text = input_path.read_text(encoding="utf-8")

    logger.header(f"Narrating: {input_path.name}")
    try:
        audio = ElevenLabsClient().synthesize(text)
    except TTSError as e:
        logger.error(str(e))
        sys.exit(1)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(audio)
    logger.success(f"Saved narration: {output_path}")

    if with_plan:
        ops = build_schedule(
            segment_sentences(text),
            config.avg_word_duration_ms,
            config.sentence_gap_ms,
        )
        plan_path = output_path.with_suffix(".json")
        plan_path.write_text(json.dumps(schedule_to_dict(ops), indent=2), encoding="utf-8")
        logger.success(f"Saved highlight plan: {plan_path}")


@cli.command()
@click.option("-n", "--name", "child_name", required=True, help="Child's name")
@click.option("-a", "--age", required=True, help="Child's age (5-12)")
@click.option("-p", "--pronouns", default="they/them", type=click.Choice(["he/him", "she/her", "they/them"]))
@click.option("-i", "--interest", "interests", multiple=True, help="An interest (repeatable)")
@click.option("-w", "--word", "words", multiple=True, help="A vocabulary challenge word (repeatable)")
@click.option("-o", "--output", type=click.Path(), help="Save the story text here")
@click.option("--user", "user_id", default=None, help="Save the story to the database for this user")
def generate(
    child_name: str,
    age: str,
    pronouns: str,
    interests: Tuple[str, ...],
    words: Tuple[str, ...],
    output: Optional[str],
    user_id: Optional[str],
):
    """
    Generate a personalized story.
    """
    request = StoryRequest(child_name, age, pronouns, list(interests), list(words))
    errors = request.validate()
    if errors:
        for problem in errors:
            logger.error(problem)
        sys.exit(1)

    client = GeminiClient()
    try:
        text = generate_story(request, client)
    except StoryGenerationError as e:
        logger.error(str(e))
        sys.exit(1)

    title = generate_title(text, client)
    definitions = generate_definitions(list(words), age, client)

    logger.header(title)
    logger.console.print(story_text(text, HighlightState.reset()))

    if output:
        Path(output).write_text(text, encoding="utf-8")
        logger.success(f"Saved story: {output}")

    if user_id:
        store = StoryStore(config.database_path)
        store.setup()
        story_id = store.save_story(user_id, title, text, list(words), definitions)
        if words:
            store.add_vocabulary(user_id, list(words), story_id)
        store.close()
        logger.success(f"Saved to database as {story_id}")


@cli.command()
@click.option("-a", "--age", required=True, help="Child's age (5-12)")
@click.option("-i", "--interest", "interests", multiple=True, help="An interest (repeatable)")
@click.option("-x", "--exclude", multiple=True, help="A word the child already knows (repeatable)")
def suggest(age: str, interests: Tuple[str, ...], exclude: Tuple[str, ...]):
    """
    Suggest vocabulary challenge words for a child.
    """
    try:
        words = suggest_vocabulary_words(age, list(interests), GeminiClient(), list(exclude))
    except StoryGenerationError as e:
        logger.error(str(e))
        sys.exit(1)

    table = logger.create_table(f"{len(words)} words for age {age}", "Word", "Pronunciation", "Meaning")
    for entry in words:
        if isinstance(entry, dict):
            table.add_row(
                str(entry.get("word", "")),
                str(entry.get("pronunciation", "")),
                str(entry.get("simple_definition", "")),
            )
        else:
            table.add_row(str(entry), "", "")
    logger.console.print(table)


@cli.command()
@click.option("--host", default=None, help="Interface to bind")
@click.option("--port", type=int, default=None, help="Port to listen on")
def serve(host: Optional[str], port: Optional[int]):
    """
    Run the JSON API used by the web reader.
    """
    run_server(
        host or config.get("server", "host", default="127.0.0.1"),
        port or config.get("server", "port", default=5000),
    )


@cli.command("setup-db")
def setup_db():
    """
    Create the database tables.
    """
    store = StoryStore(config.database_path)
    store.setup()
    store.close()
    logger.info(f"Database: {config.database_path}")


@cli.command()
def info():
    """
    Show system information and configuration.
    """
    logger.header("StoryBridge")

    logger.console.print("[bold]Paths:[/bold]")
    logger.console.print(f"  Project root: {config.project_root}")
    logger.console.print(f"  Database:     {config.database_path}")

    logger.console.print("\n[bold]Highlighting:[/bold]")
    logger.console.print(f"  Word duration: {config.avg_word_duration_ms} ms")
    logger.console.print(f"  Sentence gap:  {config.sentence_gap_ms} ms")

    logger.console.print("\n[bold]Services:[/bold]")
    services = {
        "narration": config.elevenlabs_api_key,
        "stories": config.gemini_api_key,
        "auth": config.auth_domain,
    }
    for name, value in services.items():
        status = "[green]CONFIGURED[/green]" if value else "[red]NOT SET[/red]"
        logger.console.print(f"  {name:<12} {status}")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
