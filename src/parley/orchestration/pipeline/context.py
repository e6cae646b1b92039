"""Context stage: budget fragments and assemble the system prompt.

Fragment order is fixed (persona, user profile, note, page, web, scraped)
and sets the model's attention priority.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Sequence

from ..types import ContextFragment, FragmentKind

if TYPE_CHECKING:  # pragma: no cover
    from ...services.settings import Settings

LOGGER = logging.getLogger(__name__)

__all__ = [
    "UNLIMITED_CONTEXT_SENTINEL",
    "FRAGMENT_ORDER",
    "truncate_context",
    "persona_fragment",
    "user_profile_fragment",
    "note_fragment",
    "page_fragment",
    "web_fragment",
    "scraped_fragment",
    "build_fragments",
    "assemble_system_prompt",
]

# A limit of exactly 128 (the slider's maximum) means "no truncation".
UNLIMITED_CONTEXT_SENTINEL = 128

_CHARS_PER_LIMIT_UNIT = 1000

FRAGMENT_ORDER: tuple[FragmentKind, ...] = ("persona", "user_profile", "note", "page", "web", "scraped")


def truncate_context(text: str | None, limit: int | None) -> str:
    """Cut ``text`` to ``limit * 1000`` characters.

    A missing or zero ``limit`` counts as 1; the sentinel disables truncation.
    """
    if not isinstance(text, str) or not text:
        return ""
    if limit == UNLIMITED_CONTEXT_SENTINEL:
        return text
    budget = _CHARS_PER_LIMIT_UNIT * (limit or 1)
    return text[:budget]


def persona_fragment(settings: Settings) -> ContextFragment:
    return ContextFragment("persona", settings.personas.get(settings.persona, "") or "")


def user_profile_fragment(settings: Settings) -> ContextFragment:
    user_name = (settings.user_name or "").strip()
    user_profile = (settings.user_profile or "").strip()

    statement = ""
    if user_name and user_name.lower() != "user":
        statement = f'You are interacting with a user named "{user_name}".'
        if user_profile:
            statement += f' Their provided profile information is: "{user_profile}".'
    elif user_profile:
        statement = f'You are interacting with a user. Their provided profile information is: "{user_profile}".'
    return ContextFragment("user_profile", statement)


def note_fragment(settings: Settings) -> ContextFragment:
    if settings.use_note and settings.note_content:
        return ContextFragment("note", f"Refer to this note for context: {settings.note_content}")
    return ContextFragment("note", "")


def page_fragment(page_content: str) -> ContextFragment:
    if not page_content:
        return ContextFragment("page", "")
    return ContextFragment("page", f"Use the following page content for context: {page_content}")


def web_fragment(web_content: str) -> ContextFragment:
    if not web_content:
        return ContextFragment("web", "")
    return ContextFragment("web", f"Refer to this web search summary: {web_content}")


def scraped_fragment(scraped_content: str) -> ContextFragment:
    if not scraped_content:
        return ContextFragment("scraped", "")
    return ContextFragment(
        "scraped",
        f"Use the following scraped content from URLs in the user's message:\n{scraped_content}",
    )


def build_fragments(
    settings: Settings,
    *,
    page_content: str = "",
    web_content: str = "",
    scraped_content: str = "",
) -> list[ContextFragment]:
    """Return the fragments for one send in priority order.

    Page and web content only contribute in their own chat mode.
    """
    chat_mode = settings.chat_mode
    return [
        persona_fragment(settings),
        user_profile_fragment(settings),
        note_fragment(settings),
        page_fragment(page_content if chat_mode == "page" else ""),
        web_fragment(web_content if chat_mode == "web" else ""),
        scraped_fragment(scraped_content),
    ]


def assemble_system_prompt(fragments: Iterable[ContextFragment]) -> str:
    """Join non-empty fragments in :data:`FRAGMENT_ORDER`, whatever order they arrive in."""
    by_kind: dict[str, list[str]] = {}
    for fragment in fragments:
        if fragment:
            by_kind.setdefault(fragment.kind, []).append(fragment.text)
    parts: Sequence[str] = [text for kind in FRAGMENT_ORDER for text in by_kind.get(kind, [])]
    return "\n\n".join(parts).strip()
