"""Reply generation backends for turnstream."""

from turnstream.providers.litellm_provider import LiteLLMInjector

__all__ = ["LiteLLMInjector"]
