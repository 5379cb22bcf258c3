"""Discord channel implementation using discord.py."""

import re
from typing import Any, Callable

import discord
from loguru import logger

from turnstream.arbitration.arbiter import TurnArbiter
from turnstream.bus.events import ChatEvent, TypingEvent
from turnstream.channels.base import BaseChannel
from turnstream.config.schema import DiscordConfig
from turnstream.delivery.transport import TransportError

_USER_MENTION = re.compile(r"<@!?(\d+)>")
_ROLE_MENTION = re.compile(r"<@&(\d+)>")
_CHANNEL_MENTION = re.compile(r"<#(\d+)>")

NameLookup = Callable[[str], str | None]


def resolve_mentions(
    content: str,
    *,
    user_name: NameLookup,
    role_name: NameLookup,
    channel_name: NameLookup,
) -> str:
    """Render raw ``<@id>``, ``<@&id>`` and ``<#id>`` tokens as readable names."""
    content = _ROLE_MENTION.sub(lambda m: f"@{role_name(m.group(1)) or 'unknown-role'}", content)
    content = _USER_MENTION.sub(lambda m: f"@{user_name(m.group(1)) or 'unknown'}", content)
    return _CHANNEL_MENTION.sub(lambda m: f"#{channel_name(m.group(1)) or 'unknown-channel'}", content)


def strip_self_mention(content: str, self_id: Any) -> str:
    return content.replace(f"<@!{self_id}>", "").replace(f"<@{self_id}>", "").strip()


class DiscordTransport:
    """Outbound operations for one Discord channel; API errors become ``TransportError``."""

    def __init__(self, channel: Any, client: discord.Client | None = None):
        self.channel = channel
        self.client = client

    async def send(self, content: str) -> Any:
        try:
            return await self.channel.send(content)
        except discord.DiscordException as e:
            raise TransportError(f"send failed: {e}") from e

    async def reply(self, parent: Any, content: str) -> Any:
        try:
            return await parent.reply(content)
        except discord.DiscordException as e:
            raise TransportError(f"reply failed: {e}") from e

    async def edit(self, handle: Any, content: str) -> None:
        try:
            await handle.edit(content=content)
        except discord.DiscordException as e:
            raise TransportError(f"edit failed: {e}") from e

    async def react(self, handle: Any, emoji: str) -> None:
        try:
            await handle.add_reaction(emoji)
        except discord.DiscordException as e:
            raise TransportError(f"reaction failed: {e}") from e

    async def remove_reaction(self, handle: Any, emoji: str) -> None:
        if self.client is None or self.client.user is None:
            return
        try:
            await handle.remove_reaction(emoji, self.client.user)
        except discord.DiscordException as e:
            raise TransportError(f"reaction removal failed: {e}") from e


class DiscordChannel(BaseChannel):
    """
    Discord channel over the gateway websocket.

    Every message the bot can see is buffered as context. Humans get an
    immediate reply when they mention the bot or DM it; other bots that
    mention it are queued behind the turn arbiter's cooldown.
    """

    name = "discord"

    def __init__(self, config: DiscordConfig, arbiter: TurnArbiter, client: discord.Client | None = None):
        super().__init__(config, arbiter)
        self.config: DiscordConfig = config
        self._client = client
        self._transports: dict[str, DiscordTransport] = {}

    async def start(self) -> None:
        """Connect to Discord and dispatch events until stopped."""
        if not self.config.token:
            logger.error("Discord bot token not configured")
            return

        intents = discord.Intents.default()
        intents.message_content = True
        intents.typing = True
        client = discord.Client(intents=intents)
        self._client = client

        @client.event
        async def on_ready() -> None:
            logger.info(f"Discord connected as {client.user}")

        @client.event
        async def on_message(message: discord.Message) -> None:
            await self.on_message(message)

        @client.event
        async def on_typing(channel: Any, user: Any, when: Any) -> None:
            self.on_typing(channel, user)

        self._running = True
        logger.info("Starting Discord bot...")
        await client.start(self.config.token)

    async def stop(self) -> None:
        """Stop the Discord client."""
        self._running = False
        if self._client is not None and not self._client.is_closed():
            await self._client.close()
        self._transports.clear()

    async def on_message(self, message: Any) -> None:
        client = self._client
        if client is None or client.user is None:
            return
        if message.author.id == client.user.id:
            return
        if not self._in_scope(message.channel, getattr(message, "guild", None)):
            return

        event = self._to_event(message)
        if not event.content:
            return
        routing = await self._handle_event(event)
        logger.debug(f"Discord message {event.message_id} in {event.channel_id}: {routing.value}")

    def on_typing(self, channel: Any, user: Any) -> None:
        client = self._client
        if client is None or client.user is None or user.id == client.user.id:
            return
        if not self._in_scope(channel, getattr(channel, "guild", None)):
            return
        self._handle_typing(
            TypingEvent(
                channel=self.name,
                channel_id=str(channel.id),
                user_id=str(user.id),
                is_agent=bool(getattr(user, "bot", False)),
            )
        )

    def _in_scope(self, channel: Any, guild: Any) -> bool:
        if not self.config.guild_id or self._is_direct(channel):
            return True
        return guild is not None and str(guild.id) == self.config.guild_id

    @staticmethod
    def _is_direct(channel: Any) -> bool:
        return getattr(channel, "type", None) == discord.ChannelType.private

    def _to_event(self, message: Any) -> ChatEvent:
        self_user = self._client.user
        mentions_self = any(user.id == self_user.id for user in message.mentions)

        content = message.content or ""
        if mentions_self:
            content = strip_self_mention(content, self_user.id)
        content = resolve_mentions(
            content,
            user_name=self._user_lookup(message),
            role_name=self._role_lookup(message),
            channel_name=self._channel_lookup(message),
        ).strip()

        author = message.author
        return ChatEvent(
            channel=self.name,
            channel_id=str(message.channel.id),
            sender_id=str(author.id),
            sender_name=getattr(author, "display_name", None) or author.name,
            content=content,
            is_agent=bool(author.bot),
            mentions_self=mentions_self,
            is_direct=self._is_direct(message.channel),
            message_id=str(message.id),
            message=message,
            transport=self._transport_for(message.channel),
        )

    def _transport_for(self, channel: Any) -> DiscordTransport:
        key = str(channel.id)
        transport = self._transports.get(key)
        if transport is None or transport.channel is not channel:
            transport = DiscordTransport(channel, self._client)
            self._transports[key] = transport
        return transport

    def _user_lookup(self, message: Any) -> NameLookup:
        names = {str(u.id): getattr(u, "display_name", None) or u.name for u in message.mentions}

        def lookup(user_id: str) -> str | None:
            if user_id in names:
                return names[user_id]
            user = self._client.get_user(int(user_id))
            return user.name if user is not None else None

        return lookup

    def _role_lookup(self, message: Any) -> NameLookup:
        names = {str(r.id): r.name for r in getattr(message, "role_mentions", [])}
        guild = getattr(message, "guild", None)

        def lookup(role_id: str) -> str | None:
            if role_id in names:
                return names[role_id]
            role = guild.get_role(int(role_id)) if guild is not None else None
            return role.name if role is not None else None

        return lookup

    def _channel_lookup(self, message: Any) -> NameLookup:
        names = {str(c.id): c.name for c in getattr(message, "channel_mentions", [])}

        def lookup(channel_id: str) -> str | None:
            if channel_id in names:
                return names[channel_id]
            channel = self._client.get_channel(int(channel_id))
            return getattr(channel, "name", None)

        return lookup
