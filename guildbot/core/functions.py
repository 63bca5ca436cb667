"""
Utility Functions - Shared helpers for ally codes and Discord message delivery.
"""

import re
from typing import Iterable, List, Optional, Sequence

import discord

from .logger import ComponentLogger

_logger = ComponentLogger("functions")

DISCORD_MESSAGE_LIMIT = 2000
ALLY_CODE_LENGTH = 9

_SPLIT_SEPARATORS = ("\n\n", "\n", " ")
_CLOSING_RESERVE = 8

# #################################################################################### #
#                            Ally Codes
# #################################################################################### #
def normalize_ally_code(value: Optional[str]) -> Optional[str]:
    """
    Normalize a user-supplied ally code.

    Args:
        value: Raw input such as "123-456-789"

    Returns:
        The 9 digits, or None when the input is not a valid ally code
    """
    if not value:
        return None
    digits = re.sub(r"\D", "", value)
    return digits if len(digits) == ALLY_CODE_LENGTH else None


def sanitize_ally_code_list(codes: Optional[Iterable[str]]) -> List[str]:
    """Normalize a list of ally codes, dropping invalid ones."""
    result = []
    for code in codes or []:
        normalized = normalize_ally_code(code)
        if normalized:
            result.append(normalized)
    return result


# #################################################################################### #
#                            Long Message Splitting
# #################################################################################### #
def active_formatting(text: str) -> List[str]:
    """
    List the markdown markers left open at the end of text.

    Args:
        text: Markdown text

    Returns:
        Open markers in opening order among "```", "`", "**" and "*"
    """
    markers = []
    if text.count("```") % 2:
        markers.append("```")
    rest = text.replace("```", "")
    if rest.count("`") % 2:
        markers.append("`")
    if rest.count("**") % 2:
        markers.append("**")
    if rest.replace("**", "").count("*") % 2:
        markers.append("*")
    return markers


def _find_split(window: str, floor: int):
    """Return (index, separator length) of the best split point in window."""
    half = len(window) // 2
    for minimum in (half, floor + 1):
        for separator in _SPLIT_SEPARATORS:
            index = window.rfind(separator)
            if index >= minimum:
                return index, len(separator)
    return len(window), 0


def split_message(
    content: str,
    limit: int = DISCORD_MESSAGE_LIMIT,
    preserve_formatting: bool = True,
) -> List[str]:
    """
    Split content into chunks no longer than limit.

    Blank lines are preferred as split points, then single newlines, then
    spaces. Markdown left open at a split is closed at the end of the chunk
    and reopened at the start of the next one.

    Args:
        content: Text to split
        limit: Maximum chunk length
        preserve_formatting: Whether to carry open markdown across splits

    Returns:
        List of chunks, a single element when content already fits
    """
    if len(content) <= limit:
        return [content]

    chunks = []
    carry = ""
    remaining = content
    budget = limit - _CLOSING_RESERVE
    while remaining:
        text = carry + remaining
        if len(text) <= limit:
            chunks.append(text)
            break

        index, separator_length = _find_split(text[:budget], len(carry))
        head = text[:index].rstrip(" ")
        markers = active_formatting(head) if preserve_formatting else []
        chunks.append(head + "".join(reversed(markers)))

        carry = "".join(markers)
        remaining = text[index + separator_length:]
        if separator_length:
            remaining = remaining.lstrip("\n")
    return chunks


async def send_long_message(
    channel: discord.abc.Messageable,
    content: str,
    preserve_formatting: bool = True,
) -> List[discord.Message]:
    """
    Send content to a channel, split into Discord-sized messages.

    Args:
        channel: Destination channel
        content: Message body of any length
        preserve_formatting: Whether to carry open markdown across splits

    Returns:
        The sent messages
    """
    chunks = split_message(content, preserve_formatting=preserve_formatting)
    messages = []
    for chunk in chunks:
        if chunk.strip():
            messages.append(await channel.send(chunk))
    if len(chunks) > 1:
        _logger.debug("long_message_split", chunk_count=len(chunks), length=len(content))
    return messages


# #################################################################################### #
#                            Channel Resolution and Embed Delivery
# #################################################################################### #
async def resolve_text_channel(
    bot: discord.Client, channel_id: int
) -> Optional[discord.abc.Messageable]:
    """
    Resolve a channel id to a channel that can receive messages.

    Args:
        bot: Discord client
        channel_id: Channel snowflake

    Returns:
        The channel, or None if it is missing, forbidden or not text-based
    """
    try:
        channel_id = int(channel_id)
    except (TypeError, ValueError):
        _logger.warning("invalid_channel_id", channel_id=channel_id)
        return None

    channel = bot.get_channel(channel_id)
    if channel is None:
        try:
            channel = await bot.fetch_channel(channel_id)
        except discord.NotFound:
            _logger.warning("channel_not_found", channel_id=channel_id)
            return None
        except discord.Forbidden:
            _logger.warning("channel_access_forbidden", channel_id=channel_id)
            return None
        except discord.HTTPException as e:
            _logger.error("channel_fetch_failed", channel_id=channel_id, error=str(e))
            return None

    if not isinstance(channel, discord.abc.Messageable):
        _logger.warning("channel_not_text_based",
            channel_id=channel_id,
            channel_type=type(channel).__name__,
        )
        return None
    return channel


def embed_to_text(embed: discord.Embed) -> str:
    """Render an embed as plain markdown text."""
    lines = []
    if embed.title:
        lines.append(f"**{embed.title}**")
    if embed.description:
        lines.append(embed.description)
    for field in embed.fields:
        lines.append("")
        lines.append(f"**{field.name}**")
        lines.append(str(field.value))
    return "\n".join(lines)


async def send_embeds(
    channel: discord.abc.Messageable, embeds: Sequence[discord.Embed]
) -> None:
    """
    Send embeds one by one, falling back to plain text without Embed Links.

    Args:
        channel: Destination channel
        embeds: Embeds to deliver in order
    """
    for position, embed in enumerate(embeds):
        try:
            await channel.send(embed=embed)
        except discord.Forbidden:
            _logger.warning("embed_delivery_forbidden_fallback_text",
                remaining_embeds=len(embeds) - position,
            )
            text = "\n\n".join(embed_to_text(item) for item in embeds[position:])
            await send_long_message(channel, text)
            return
