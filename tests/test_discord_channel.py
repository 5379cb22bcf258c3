from types import SimpleNamespace

import discord
import pytest

from turnstream.arbitration.arbiter import Routing
from turnstream.channels.discord import DiscordChannel, DiscordTransport, resolve_mentions, strip_self_mention
from turnstream.config.schema import DiscordConfig
from turnstream.delivery.transport import TransportError

SELF_ID = 999


class _FakeArbiter:
    def __init__(self) -> None:
        self.events: list[tuple[object, bool]] = []
        self.typing: list[object] = []

    async def handle_event(self, event, *, allowed: bool = True) -> Routing:
        self.events.append((event, allowed))
        return Routing.BUFFERED

    def note_typing(self, event) -> None:
        self.typing.append(event)


def _client() -> SimpleNamespace:
    users = {42: SimpleNamespace(id=42, name="carol")}
    channels = {77: SimpleNamespace(id=77, name="general")}
    return SimpleNamespace(
        user=SimpleNamespace(id=SELF_ID, name="turnstream"),
        get_user=users.get,
        get_channel=channels.get,
    )


def _guild(guild_id: int = 555) -> SimpleNamespace:
    roles = {7: SimpleNamespace(id=7, name="mods")}
    return SimpleNamespace(id=guild_id, get_role=roles.get)


def _author(user_id: int = 1, name: str = "alice", bot: bool = False) -> SimpleNamespace:
    return SimpleNamespace(id=user_id, name=name, display_name=name.title(), bot=bot)


def _message(
    content: str,
    *,
    author=None,
    mentions=(),
    direct: bool = False,
    guild=None,
    message_id: int = 1000,
    channel_id: int = 10,
) -> SimpleNamespace:
    channel = SimpleNamespace(
        id=channel_id,
        type=discord.ChannelType.private if direct else discord.ChannelType.text,
    )
    return SimpleNamespace(
        id=message_id,
        content=content,
        author=author or _author(),
        channel=channel,
        guild=None if direct else (guild or _guild()),
        mentions=list(mentions),
        role_mentions=[],
        channel_mentions=[],
    )


def _channel(**config) -> tuple[DiscordChannel, _FakeArbiter]:
    arbiter = _FakeArbiter()
    options = {"enabled": True, "token": "x"}
    options.update(config)
    return DiscordChannel(DiscordConfig(**options), arbiter, client=_client()), arbiter


def test_resolve_mentions_renders_names_and_fallbacks() -> None:
    names = {"1": "alice"}
    rendered = resolve_mentions(
        "<@1> <@!1> <@2> <@&7> <@&8> <#77> <#78>",
        user_name=names.get,
        role_name={"7": "mods"}.get,
        channel_name={"77": "general"}.get,
    )

    assert rendered == "@alice @alice @unknown @mods @unknown-role #general #unknown-channel"


def test_strip_self_mention_handles_both_forms() -> None:
    assert strip_self_mention(f"<@{SELF_ID}> hi", SELF_ID) == "hi"
    assert strip_self_mention(f"hi <@!{SELF_ID}>", SELF_ID) == "hi"
    assert strip_self_mention("hi <@1>", SELF_ID) == "hi <@1>"


async def test_human_mention_becomes_classified_event() -> None:
    channel, arbiter = _channel()
    mentioned = [SimpleNamespace(id=SELF_ID, name="turnstream", display_name="turnstream")]

    await channel.on_message(_message(f"<@{SELF_ID}> ask <@42> in <#77>", mentions=mentioned))

    [(event, allowed)] = arbiter.events
    assert allowed
    assert event.mentions_self
    assert not event.is_agent
    assert not event.is_direct
    assert event.content == "ask @carol in #general"
    assert event.sender_name == "Alice"
    assert event.channel_id == "10"
    assert event.message_id == "1000"
    assert event.session_key == "discord-10"
    assert isinstance(event.transport, DiscordTransport)


async def test_bot_author_and_direct_channel_are_flagged() -> None:
    channel, arbiter = _channel()

    await channel.on_message(_message("status", author=_author(5, "helper", bot=True), message_id=1))
    await channel.on_message(_message("hello", direct=True, message_id=2, channel_id=11))

    agent_event, direct_event = (event for event, _ in arbiter.events)
    assert agent_event.is_agent and not agent_event.mentions_self
    assert direct_event.is_direct and not direct_event.is_agent


async def test_own_and_empty_messages_are_ignored() -> None:
    channel, arbiter = _channel()
    mentioned = [SimpleNamespace(id=SELF_ID, name="turnstream", display_name="turnstream")]

    await channel.on_message(_message("echo", author=_author(SELF_ID, "turnstream", bot=True)))
    await channel.on_message(_message(f"<@{SELF_ID}>", mentions=mentioned))

    assert arbiter.events == []


async def test_guild_filter_applies_to_guild_messages_only() -> None:
    channel, arbiter = _channel(guild_id="555")

    await channel.on_message(_message("elsewhere", guild=_guild(556), message_id=1))
    await channel.on_message(_message("here", message_id=2))
    await channel.on_message(_message("private", direct=True, message_id=3))

    assert [event.content for event, _ in arbiter.events] == ["here", "private"]


async def test_allow_list_gates_humans_but_not_agents() -> None:
    channel, arbiter = _channel(allow_from=["1"])

    await channel.on_message(_message("hi", author=_author(1, "alice")))
    await channel.on_message(_message("hi", author=_author(2, "mallory")))
    await channel.on_message(_message("hi", author=_author(3, "helper", bot=True)))

    assert [allowed for _, allowed in arbiter.events] == [True, False, True]


def test_empty_allow_list_denies_everyone() -> None:
    channel, _ = _channel(allow_from=[])

    assert not channel.is_allowed("1")


def test_typing_is_forwarded_except_our_own() -> None:
    channel, arbiter = _channel()
    text_channel = SimpleNamespace(id=10, type=discord.ChannelType.text, guild=_guild())

    channel.on_typing(text_channel, _author(1, "alice"))
    channel.on_typing(text_channel, _author(5, "helper", bot=True))
    channel.on_typing(text_channel, _author(SELF_ID, "turnstream", bot=True))

    assert [(e.channel_id, e.user_id, e.is_agent) for e in arbiter.typing] == [
        ("10", "1", False),
        ("10", "5", True),
    ]


def test_transport_is_cached_per_channel() -> None:
    channel, _ = _channel()
    first = _message("a", message_id=1)
    second = _message("b", message_id=2)
    second.channel = first.channel

    assert channel._to_event(first).transport is channel._to_event(second).transport
    assert channel._to_event(_message("c", channel_id=12)).transport.channel.id == 12


async def test_transport_wraps_discord_errors() -> None:
    class _BrokenChannel:
        async def send(self, content):
            raise discord.DiscordException("missing permissions")

    transport = DiscordTransport(_BrokenChannel())

    with pytest.raises(TransportError) as exc_info:
        await transport.send("hello")
    assert isinstance(exc_info.value.__cause__, discord.DiscordException)


async def test_transport_edits_and_reacts_on_handles() -> None:
    calls: list[tuple] = []

    class _Handle:
        async def edit(self, *, content):
            calls.append(("edit", content))

        async def add_reaction(self, emoji):
            calls.append(("react", emoji))

        async def remove_reaction(self, emoji, member):
            calls.append(("unreact", emoji, member.id))

        async def reply(self, content):
            calls.append(("reply", content))
            return self

    handle = _Handle()
    transport = DiscordTransport(SimpleNamespace(), _client())

    assert await transport.reply(handle, "hi") is handle
    await transport.edit(handle, "hi there")
    await transport.react(handle, "👀")
    await transport.remove_reaction(handle, "👀")
    await DiscordTransport(SimpleNamespace()).remove_reaction(handle, "👀")

    assert calls == [("reply", "hi"), ("edit", "hi there"), ("react", "👀"), ("unreact", "👀", SELF_ID)]
