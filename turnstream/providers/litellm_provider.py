"""LiteLLM-backed injector that streams completions into chat replies."""

from collections import deque
from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from turnstream.agent.injection import InjectionCancelled, OnStream
from turnstream.bus.events import StreamChunk

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant taking part in a group chat. "
    "Keep replies conversational and to the point."
)


class LiteLLMInjector:
    """
    Injector using LiteLLM for multi-provider support.

    Keeps a short in-memory history per session (lost on restart) and stops a
    running generation when ``cancel_inject`` is called for its session.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        model: str = "anthropic/claude-sonnet-4-5",
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_tokens: int = 1024,
        temperature: float = 0.7,
        history_limit: int = 20,
        extra_headers: dict[str, str] | None = None,
    ):
        self.api_key = api_key
        self.api_base = api_base
        self.model = model
        self.system_prompt = system_prompt
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.history_limit = history_limit
        self.extra_headers = extra_headers or {}
        self._history: dict[str, deque[dict[str, str]]] = {}
        self._cancelled: dict[str, bool] = {}

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True

    async def inject(
        self,
        session_key: str,
        text: str,
        *,
        on_stream: OnStream,
        sender: str | None = None,
        channel_id: str | None = None,
    ) -> str:
        """Stream a completion for ``text``, reporting each delta to ``on_stream``."""
        self._cancelled[session_key] = False
        user_content = f"{sender}: {text}" if sender else text
        kwargs = self._build_completion_kwargs(self._build_messages(session_key, user_content))

        parts: list[str] = []
        try:
            stream = await acompletion(**kwargs)
            async for chunk in stream:
                if self._cancelled.get(session_key):
                    raise InjectionCancelled(f"Generation for {session_key} cancelled")
                choice = self._get_first_choice(chunk)
                if choice is None:
                    continue
                delta = self._extract_delta_text(self._obj_get(choice, "delta"))
                if delta:
                    parts.append(delta)
                    on_stream(StreamChunk(type="text", content=delta))
        except InjectionCancelled:
            raise
        except Exception as e:
            on_stream(StreamChunk(type="error", content=str(e)))
            raise
        finally:
            self._cancelled.pop(session_key, None)

        reply = "".join(parts)
        self._remember(session_key, user_content, reply)
        on_stream(StreamChunk(type="complete", content=reply))
        logger.debug(f"Completion for {session_key} finished ({len(reply)} chars)")
        return reply

    def cancel_inject(self, session_key: str) -> bool:
        """Ask the generation running for ``session_key`` to stop."""
        if session_key not in self._cancelled:
            return False
        self._cancelled[session_key] = True
        return True

    def history(self, session_key: str) -> list[dict[str, str]]:
        return list(self._history.get(session_key, ()))

    def _build_messages(self, session_key: str, user_content: str) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": self.system_prompt}]
        messages.extend(self._history.get(session_key, ()))
        messages.append({"role": "user", "content": user_content})
        return messages

    def _remember(self, session_key: str, user_content: str, reply: str) -> None:
        if self.history_limit <= 0:
            return
        history = self._history.setdefault(session_key, deque(maxlen=self.history_limit * 2))
        history.append({"role": "user", "content": user_content})
        history.append({"role": "assistant", "content": reply})

    def _build_completion_kwargs(self, messages: list[dict[str, str]]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stream": True,
        }
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        return kwargs

    @staticmethod
    def _obj_get(obj: Any, key: str, default: Any = None) -> Any:
        if obj is None:
            return default
        if isinstance(obj, dict):
            return obj.get(key, default)
        return getattr(obj, key, default)

    def _get_first_choice(self, chunk: Any) -> Any:
        choices = self._obj_get(chunk, "choices", [])
        if isinstance(choices, list) and choices:
            return choices[0]
        return None

    def _extract_delta_text(self, delta: Any) -> str:
        content = self._obj_get(delta, "content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            out: list[str] = []
            for part in content:
                text = self._obj_get(part, "text")
                if isinstance(text, str):
                    out.append(text)
            return "".join(out)
        return ""
