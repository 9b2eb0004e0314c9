"""
Prompt assembly and canned texts for the tutor.
"""

from __future__ import annotations

from cantor.storage.models import Message

UPSTREAM_FAILURE_MESSAGE = (
    "The language model failed to generate a response. If you are running locally, "
    "check the backend settings in config.yaml (account id and API token), "
    "or set MOCK_AI=true in .env for an offline mock."
)


def topic_line(topic: str | None) -> str:
    return f"The student is currently studying {topic}." if topic else ""


def build_system_prompt(persona: str, topic: str | None = None) -> str:
    return f"{persona}\n{topic_line(topic)}".strip()


def build_prompt(
    persona: str,
    context: list[Message],
    message: str,
    topic: str | None = None,
) -> list[dict]:
    """System instruction, then prior turns (role/content only), then the new question."""
    return [
        {"role": "system", "content": build_system_prompt(persona, topic)},
        *(m.to_prompt_format() for m in context),
        {"role": "user", "content": message},
    ]


def build_mock_reply(question: str, topic: str | None = None) -> str:
    """Deterministic offline reply; echoes the question and topic."""
    focus = f" while focusing on {topic}" if topic else ""
    return "\n\n".join([
        "🎻 *Mock Bach Reply*",
        f'You asked{focus}: "{question}"',
        "Imagine I referenced a related invention, pointed you to a chorale, "
        "and gave you two short keyboard drills.",
        "Configure a model backend (or unset MOCK_AI) to hear the full Baroque treatment.",
    ])
