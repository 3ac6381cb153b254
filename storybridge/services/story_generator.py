"""
Story Generation Module

Builds personalized, dyslexia-friendly story prompts from a child's
profile and sends them to the Gemini generative-text API. Also produces
story titles, vocabulary suggestions and child-friendly definitions.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from storybridge.utils import logger
from storybridge.utils.config import config

PRONOUN_MAP = {
    "he/him": {"subject": "he", "object": "him", "possessive": "his", "reflexive": "himself"},
    "she/her": {"subject": "she", "object": "her", "possessive": "her", "reflexive": "herself"},
    "they/them": {"subject": "they", "object": "them", "possessive": "their", "reflexive": "themselves"},
}

DEFAULT_TITLE = "Adventure Story"
MIN_AGE = 5
MAX_AGE = 12

CODE_FENCE_RE = re.compile(r"```(?:json)?\n?")


class StoryGenerationError(Exception):
    """Raised when the generative-text API does not produce usable output."""


@dataclass
class StoryRequest:
    """Everything needed to personalize one story."""

    child_name: str
    age: str
    pronouns: str = ""
    interests: List[str] = field(default_factory=list)
    vocabulary_words: List[str] = field(default_factory=list)

    def validate(self) -> List[str]:
        """Return a list of problems; empty when the request is usable."""
        errors = []
        if not self.child_name or not self.child_name.strip():
            errors.append("Child's name is required")
        try:
            age = int(self.age)
        except (TypeError, ValueError):
            age = None
        if age is None or not MIN_AGE <= age <= MAX_AGE:
            errors.append(f"Age must be between {MIN_AGE} and {MAX_AGE}")
        if not self.interests:
            errors.append("At least one interest is required")
        return errors

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoryRequest":
        return cls(
            child_name=data.get("childName", ""),
            age=str(data.get("age", data.get("childAge", ""))),
            pronouns=data.get("childPronouns", ""),
            interests=_as_list(data.get("interests")),
            vocabulary_words=_as_list(data.get("vocabularyWords")),
        )


def _as_list(value: Any) -> List[str]:
    # Profile forms send interests either as a list or as "space, cats"
    if not value:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return list(value)


def build_story_prompt(request: StoryRequest) -> str:
    """Compose the story-writing prompt for a child's profile."""
    pronouns = PRONOUN_MAP.get(request.pronouns, PRONOUN_MAP["they/them"])
    pronoun_label = request.pronouns or "they/them"
    interests = ", ".join(request.interests) if request.interests else "general adventure"
    words = ", ".join(request.vocabulary_words)

    lines = [
        "You are a specialized children's story writer creating content for dyslexic learners aged 5-12.",
        "",
        "**STORY REQUIREMENTS:**",
        f"- Target reader: {request.child_name}, age {request.age}",
        f"- Pronouns: Use {pronoun_label} pronouns "
        f"({pronouns['subject']}/{pronouns['object']}/{pronouns['possessive']})",
        "- Word count: Exactly 450-500 words",
        f"- Reading level: Age-appropriate for {request.age}-year-olds",
        f"- Themes to weave naturally: {interests}",
    ]
    if request.vocabulary_words:
        lines.append(f"- Challenge vocabulary words to include naturally: {words}")

    lines += [
        "",
        "**CRITICAL FORMATTING FOR DYSLEXIA-FRIENDLY DISPLAY:**",
        "1. Use short sentences (maximum 15 words per sentence)",
        "2. Break content into short paragraphs (3-4 sentences maximum per paragraph)",
        "3. Use simple, active voice",
        "4. Avoid complex sentence structures",
        "5. Include dialogue to break up narrative text",
        "6. Use concrete, descriptive language",
        "",
        "**STORY STRUCTURE:**",
        f"- **Beginning (100-120 words):** Introduce {request.child_name} as the protagonist "
        f"in a relatable setting. Establish themes from: {interests}.",
        "- **Middle (200-250 words):** Present a gentle challenge or adventure that incorporates "
        "multiple interests naturally. Build excitement without fear or anxiety.",
        "- **End (150-180 words):** Resolve the adventure positively, weave in remaining interests, "
        "and end with a confidence-building message.",
        "",
        "**CONTENT GUIDELINES:**",
        f"- Make {request.child_name} brave, curious, and successful",
        f"- Use {pronouns['possessive']} correct pronouns throughout: "
        f"{pronouns['subject']}/{pronouns['object']}/{pronouns['possessive']}",
        "- Include sensory details (sounds, colors, textures)",
        "- Use repetition of key phrases for comprehension",
        "- Avoid idioms, sarcasm, or abstract concepts",
        "- Keep tone warm, encouraging, and empowering",
        "- No scary elements, conflicts, or sad themes",
        "",
    ]

    if request.vocabulary_words:
        lines += [
            "**VOCABULARY INTEGRATION:**",
            f"For each challenge word ({words}):",
            "- Use it naturally in context where meaning is clear from surrounding words",
            "- Place it in a sentence where the story context provides meaning clues",
            "- Use each word exactly once",
            "- Make the usage feel natural, not forced",
            f"- Ensure {request.child_name} or another character uses the word successfully",
            "- **CRITICAL: Wrap each vocabulary word with double asterisks like this: **word** "
            "so it can be highlighted for definitions**",
            "",
        ]

    lines += [
        "**OUTPUT FORMAT:**",
        "Provide ONLY the story text with proper paragraph breaks. Do not include:",
        "- Title or heading",
        '- "The End" or closing phrases',
        "- Author notes or meta-commentary",
        "- Explanations outside the story",
        "",
        "Begin the story directly with the narrative.",
    ]
    return "\n".join(lines)


def build_title_prompt(story_text: str) -> str:
    return (
        "Generate a short, engaging title for this children's story. The title should be:\n"
        "- Maximum 3 words\n"
        "- Child-friendly and exciting\n"
        "- Capture the main theme or adventure\n"
        "- Be simple and memorable\n\n"
        f"Story text:\n{story_text}\n\n"
        "Provide ONLY the title, no quotes, no explanations, no additional text."
    )


def build_definitions_prompt(words: List[str], age: str) -> str:
    words_list = '", "'.join(words)
    return (
        f'Provide child-friendly definitions for these words suitable for a {age}-year-old: "{words_list}"\n\n'
        "**REQUIREMENTS:**\n"
        "- Each word must have its own separate definition object\n"
        '- Pronunciation should be in simple phonetic spelling for kids (like "mag-NIF-ih-sent")\n'
        "- Definitions should be simple and age-appropriate\n"
        "- Example sentences should use the word naturally\n"
        "- Provide 2-3 relevant synonyms\n\n"
        "**OUTPUT FORMAT (JSON only, no other text):**\n"
        "{\n"
        '  "magnificent": {\n'
        '    "pronunciation": "mag-NIF-ih-sent",\n'
        '    "simple_definition": "extremely beautiful or impressive",\n'
        '    "example_sentence": "The sunset over the ocean was magnificent.",\n'
        '    "synonyms": ["amazing", "wonderful"]\n'
        "  }\n"
        "}\n\n"
        "Provide valid JSON only."
    )


def build_suggestions_prompt(age: str, interests: List[str], exclude: List[str]) -> str:
    interests_text = ", ".join(interests) if interests else "general learning and adventure"
    exclude_text = ""
    if exclude:
        exclude_text = f"\n- DO NOT suggest any of these already used words: {', '.join(exclude)}"
    return (
        "You are an educational vocabulary specialist. Suggest 8 age-appropriate challenge words "
        f"for a {age}-year-old child interested in: {interests_text}.\n\n"
        "**REQUIREMENTS:**\n"
        "- Words must be slightly above their current reading level (challenging but achievable)\n"
        "- Words should relate to their interests when possible\n"
        "- Include a mix of: adjectives, verbs, and nouns\n"
        f"- Avoid words that are too complex or abstract for age {age}{exclude_text}\n\n"
        "**OUTPUT FORMAT (JSON only, no other text):**\n"
        '[{"word": "magnificent", "pronunciation": "mag-NIF-ih-sent", '
        '"simple_definition": "extremely beautiful or impressive", "age_appropriate": true}]\n\n'
        "Provide exactly 8 words in valid JSON format."
    )


def default_definition(word: str) -> Dict[str, Any]:
    return {
        "word": word,
        "pronunciation": "",
        "simple_definition": word,
        "example_sentence": "",
        "synonyms": [],
    }


def parse_json_response(text: str) -> Any:
    """Parse model output that may be wrapped in markdown code fences."""
    cleaned = CODE_FENCE_RE.sub("", text.strip()).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise StoryGenerationError(f"Failed to parse model JSON: {e}") from e


class GeminiClient:
    """Minimal client for the Gemini generateContent REST endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key or config.gemini_api_key
        self.model = model or config.get("story", "model")
        self.base_url = (base_url or config.get("story", "base_url")).rstrip("/")
        self.timeout = timeout or config.get("story", "timeout", default=60)
        self.session = session or requests.Session()

    @property
    def url(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent"

    def generate(
        self,
        prompt: str,
        temperature: float = 0.9,
        max_output_tokens: int = 1024,
        top_k: Optional[int] = None,
        top_p: Optional[float] = None,
    ) -> str:
        """
        Generate text for a prompt.

        Args:
            prompt: Full prompt text
            temperature: Sampling temperature
            max_output_tokens: Output token cap
            top_k: Optional top-k sampling
            top_p: Optional nucleus sampling

        Returns:
            Generated text
        """
        if not self.api_key:
            raise StoryGenerationError("API key not found. Please set GEMINI_API_KEY")

        generation_config: Dict[str, Any] = {
            "temperature": temperature,
            "maxOutputTokens": max_output_tokens,
        }
        if top_k is not None:
            generation_config["topK"] = top_k
        if top_p is not None:
            generation_config["topP"] = top_p

        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }

        try:
            res = self.session.post(
                self.url,
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StoryGenerationError(
                "Network error. Please check your internet connection and try again."
            ) from e

        if res.status_code == 429:
            raise StoryGenerationError("API quota exceeded. Please try again later.")
        if res.status_code != 200:
            raise StoryGenerationError(f"Gemini API error: {res.status_code} {res.reason}")

        text = _candidate_text(res.json())
        if not text:
            raise StoryGenerationError("No story was generated. Please try again.")
        return text


def _candidate_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = candidates[0].get("content", {}).get("parts", [])
    return "".join(part.get("text", "") for part in parts).strip()


def generate_story(request: StoryRequest, client: GeminiClient) -> str:
    """Generate a story, validating the request first."""
    errors = request.validate()
    if errors:
        raise ValueError("; ".join(errors))

    logger.step(f"Generating story for {request.child_name} (age {request.age})")
    return client.generate(
        build_story_prompt(request),
        temperature=config.get("story", "temperature", default=0.9),
        max_output_tokens=config.get("story", "max_output_tokens", default=1024),
        top_k=config.get("story", "top_k"),
        top_p=config.get("story", "top_p"),
    )


def generate_title(story_text: str, client: GeminiClient) -> str:
    """Ask for a title of at most three words; fall back to a stock title."""
    try:
        title = client.generate(build_title_prompt(story_text), temperature=0.8, max_output_tokens=50)
    except StoryGenerationError as e:
        logger.warning(f"Title generation failed, using default: {e}")
        return DEFAULT_TITLE

    title = title.strip().strip("\"'").replace("\n", " ").strip()
    words = title.split()[:3]
    return " ".join(words) or DEFAULT_TITLE


def suggest_vocabulary_words(
    age: str,
    interests: List[str],
    client: GeminiClient,
    exclude: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """Suggest up to eight challenge words for a child."""
    text = client.generate(
        build_suggestions_prompt(age, interests, exclude or []),
        temperature=0.7,
        max_output_tokens=500,
    )
    words = parse_json_response(text)
    if not isinstance(words, list) or not words:
        raise StoryGenerationError("Invalid word suggestions format")
    return words[:8]


def generate_definitions(
    words: List[str],
    age: str,
    client: GeminiClient,
) -> Dict[str, Dict[str, Any]]:
    """
    Fetch definitions for vocabulary words in one request.

    Words the model leaves out, or every word when the model reply is
    unusable, get a placeholder definition so the reader still has a
    tooltip to show.

    Returns:
        Mapping of lowercase word to definition
    """
    if not words:
        return {}

    try:
        data = parse_json_response(
            client.generate(build_definitions_prompt(words, age), temperature=0.3, max_output_tokens=1000)
        )
    except StoryGenerationError as e:
        logger.warning(f"Definition lookup failed, using placeholders: {e}")
        data = {}

    if not isinstance(data, dict):
        data = {}
    lookup = {str(k).lower(): v for k, v in data.items() if isinstance(v, dict)}

    definitions = {}
    for word in words:
        entry = lookup.get(word.lower())
        definitions[word.lower()] = {**default_definition(word), **entry} if entry else default_definition(word)
    return definitions
