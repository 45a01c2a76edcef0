"""Helpers for turning raw chat text into commands and clean prompts."""

from __future__ import annotations

import re
from typing import List, NamedTuple, Optional

_ALT_PREFIXES = ("/", "!")


class ParsedCommand(NamedTuple):
    name: str
    args: List[str]
    arg_text: str  # everything after the command name, whitespace preserved inside


def is_command(body: str, prefix: str = "$") -> bool:
    body = (body or "").lstrip()
    return body.startswith(prefix) or body.startswith(_ALT_PREFIXES)


def parse_command(body: str, prefix: str = "$") -> Optional[ParsedCommand]:
    if not is_command(body, prefix):
        return None
    content = body.lstrip()
    content = content[len(prefix):] if content.startswith(prefix) else content[1:]
    content = content.strip()
    if not content:
        return None
    name, _, rest = content.partition(" ")
    rest = rest.strip()
    return ParsedCommand(name.lower(), rest.split(), rest)


def remove_bot_mention(body: str, bot_name: str = "bot", bot_number: str | None = None) -> str:
    """Strip leading ways of addressing the bot ("@bot", "hey bot", "ai:" ...)."""
    if not body:
        return body
    mentions = [f"@{bot_number}"] if bot_number else []
    mentions += [f"@{bot_name}", f"hey {bot_name}", f"{bot_name},", f"{bot_name}:",
                 "ai bot", "ai,", "ai:"]
    text = body
    for mention in mentions:
        text = re.sub(rf"^\s*{re.escape(mention)}\s*", "", text, flags=re.IGNORECASE)
    return text.strip()


def is_group_chat(chat_id: str) -> bool:
    return chat_id.endswith("@g.us")
