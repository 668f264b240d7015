import os
from typing import Callable, Dict, List, Optional

import structlog
from langchain.chat_models import init_chat_model
from langchain_core.language_models.chat_models import BaseChatModel

from gateway.config import ProviderConfig
from gateway.domain.errors import ProviderNotConfiguredError
from .client import LangChainModelClient, ModelClient

logger = structlog.get_logger(__name__)

ChatModelFactory = Callable[[str], BaseChatModel]

DEFAULT_PROVIDER = "anthropic"


class ProviderRegistry:
    """Resolves 'provider:model' strings to model clients"""

    def __init__(
        self,
        providers: Optional[Dict[str, ProviderConfig]] = None,
        default_provider: str = DEFAULT_PROVIDER,
    ):
        self.provider_configs: Dict[str, ProviderConfig] = dict(providers or {})
        self.default_provider = default_provider
        self._factories: Dict[str, ChatModelFactory] = {}
        self._clients: Dict[str, ModelClient] = {}

    def register(self, provider: str, factory: ChatModelFactory) -> None:
        """Register an explicit chat model factory for a provider"""
        self._factories[provider] = factory
        # Drop cached clients built by a previous factory
        self._clients = {
            model_id: client
            for model_id, client in self._clients.items()
            if not model_id.startswith(f"{provider}:")
        }
        logger.info("Provider registered", provider=provider)

    def register_client(self, model_id: str, client: ModelClient) -> None:
        """Pin a ready-made client for a fully qualified model id"""
        model_id = self.resolve_model_id(model_id)
        provider, _, _ = model_id.partition(":")
        self._clients[model_id] = client
        if provider not in self._factories and provider not in self.provider_configs:
            self.provider_configs[provider] = ProviderConfig()

    def resolve_model_id(self, model: str) -> str:
        """Qualify a bare model id with the default provider"""
        if ":" in model:
            return model
        return f"{self.default_provider}:{model}"

    def is_provider_available(self, provider: str) -> bool:
        if provider in self._factories:
            return True
        config = self.provider_configs.get(provider)
        if config is None or not config.enabled:
            return False
        if config.api_key_env:
            return bool(os.getenv(config.api_key_env))
        return True

    def get_available_providers(self) -> List[str]:
        names = set(self._factories) | set(self.provider_configs)
        return sorted(name for name in names if self.is_provider_available(name))

    def get_client(self, model: str) -> ModelClient:
        model_id = self.resolve_model_id(model)
        if model_id in self._clients:
            return self._clients[model_id]

        provider, _, model_name = model_id.partition(":")
        if not self.is_provider_available(provider):
            raise ProviderNotConfiguredError(provider, self.get_available_providers())

        factory = self._factories.get(provider)
        if factory is not None:
            chat_model = factory(model_name)
        else:
            config = self.provider_configs[provider]
            chat_model = init_chat_model(
                model_name,
                model_provider=config.model_provider or provider,
            )

        client = LangChainModelClient(model_id, chat_model)
        self._clients[model_id] = client
        logger.debug("Model client created", model=model_id)
        return client
