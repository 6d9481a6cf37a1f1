"""Prompt templates sent to the text service, keyed by template id."""

from __future__ import annotations

from textwrap import dedent

from .models import ActionKind


SUMMARIZE = dedent(
    """\
    You are a world-class summarization engine. Your task is to create a concise,
    informative summary of the provided text. Follow these guidelines:

    1. Capture the main ideas and key points
    2. Maintain the original tone and intent
    3. Keep the summary to 2-3 sentences for short text, 1-2 paragraphs for longer text
    4. Use clear, accessible language
    5. Preserve important details like names, dates, and numbers

    Text to summarize:"""
)

CHECK_GRAMMAR = dedent(
    """\
    You are an expert grammar and style assistant. Analyze the provided text and:

    1. Identify and correct grammatical errors
    2. Suggest improvements for clarity and readability
    3. Fix spelling mistakes
    4. Improve sentence structure and flow
    5. Maintain the original meaning and tone

    Provide the corrected version followed by a brief explanation of major changes made.

    Text to review:"""
)

CHANGE_TONE_PROFESSIONAL = dedent(
    """\
    Rewrite the following text to have a more professional and formal tone while
    maintaining the original meaning. Make it suitable for business communication:

    1. Use formal language and business terminology
    2. Remove casual expressions and slang
    3. Ensure proper structure and formatting
    4. Maintain clarity and conciseness
    5. Keep the core message intact

    Text to rewrite:"""
)

EXPLAIN_SIMPLY = dedent(
    """\
    Explain the core concepts in the following text as if you were talking to a
    5-year-old child. Use:

    1. Simple, everyday words
    2. Short sentences
    3. Analogies and examples from daily life
    4. Enthusiastic and friendly tone
    5. Break down complex ideas into basic parts

    Text to explain:"""
)

CUSTOM_COMMAND = dedent(
    """\
    You are a helpful AI assistant. The user has provided some text from their screen
    and a specific command. Fulfill the command based on the provided text context.

    Be helpful, accurate, and concise in your response. If the command is unclear or
    cannot be completed with the given context, politely ask for clarification.

    User command: {command}

    Context text:"""
)

TEMPLATES: dict[str, str] = {
    "summarize": SUMMARIZE,
    "check_grammar": CHECK_GRAMMAR,
    "tone_professional": CHANGE_TONE_PROFESSIONAL,
    "explain_simply": EXPLAIN_SIMPLY,
    "custom_command": CUSTOM_COMMAND,
}

DEFAULT_TEMPLATE_IDS: dict[ActionKind, str] = {
    ActionKind.SUMMARIZE: "summarize",
    ActionKind.GRAMMAR: "check_grammar",
    ActionKind.TONE_PROFESSIONAL: "tone_professional",
    ActionKind.EXPLAIN_SIMPLY: "explain_simply",
    ActionKind.CUSTOM_COMMAND: "custom_command",
}


def render_prompt(template_id: str, command: str | None = None) -> str:
    """Return the prompt text for ``template_id``.

    Raises ``KeyError`` for an unknown template id.
    """
    template = TEMPLATES[template_id]
    if "{command}" in template:
        return template.format(command=(command or "").strip())
    return template


def build_full_prompt(prompt: str, context: str) -> str:
    """Combine a rendered prompt with the context snapshot."""
    return f"{prompt}\n\n{context}"
