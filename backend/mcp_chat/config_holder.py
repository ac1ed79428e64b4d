"""Mutable model configuration shared by the API and the orchestrator."""

from __future__ import annotations

import logging
from typing import Callable

from .errors import ConfigError
from .model import ModelClient, build_model_client
from .settings import ModelProvider, ModelSettings

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ModelProvider, str, str | None], ModelClient]


class ModelConfigHolder:
    """Credentials, endpoint and model id that can change at runtime.

    The model client is built lazily and rebuilt after any change.
    """

    def __init__(
        self,
        settings: ModelSettings,
        *,
        client_factory: ClientFactory = build_model_client,
    ) -> None:
        self.provider: ModelProvider = settings.provider
        self.max_tokens = settings.max_tokens
        self._api_key = settings.api_key
        self._base_url = settings.base_url
        self._model_name = settings.model_name
        self._client_factory = client_factory
        self._client: ModelClient | None = None

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def base_url(self) -> str | None:
        return self._base_url

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def set_api_key(self, api_key: str | None) -> None:
        """Replace the API key. An empty key resets the client."""
        self._api_key = api_key or None
        self._client = None
        logger.info(
            "model api key %s", "updated" if self._api_key else "cleared", extra={"run_id": "system"}
        )

    def set_base_url(self, base_url: str | None) -> None:
        if not base_url:
            return
        self._base_url = base_url
        self._client = None
        logger.info("model base url updated base_url=%s", base_url, extra={"run_id": "system"})

    def set_model(self, model_name: str | None) -> None:
        if not model_name:
            return
        self._model_name = model_name
        logger.info("model updated model=%s", model_name, extra={"run_id": "system"})

    def client(self) -> ModelClient:
        """Return the cached model client, building it on first use."""
        if not self._api_key:
            raise ConfigError("model API key is not set")
        if self._client is None:
            self._client = self._client_factory(self.provider, self._api_key, self._base_url)
        return self._client
