"""Channel turn arbitration between humans and other agents."""

from turnstream.arbitration.arbiter import AGENT_COOLDOWN_S, TYPING_WINDOW_S, Routing, TurnArbiter
from turnstream.arbitration.queue import BUFFER_SIZE, ChannelQueue, ChannelQueueRegistry, PendingAgentReply
from turnstream.arbitration.ticker import TurnTicker

__all__ = [
    "AGENT_COOLDOWN_S",
    "BUFFER_SIZE",
    "ChannelQueue",
    "ChannelQueueRegistry",
    "PendingAgentReply",
    "Routing",
    "TYPING_WINDOW_S",
    "TurnArbiter",
    "TurnTicker",
]
