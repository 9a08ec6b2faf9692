"""Ollama embedding client."""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from .errors import MalformedResponse, ServiceUnavailable
from .settings import settings

logger = logging.getLogger(__name__)


class OllamaEmbedder:
    """Generates embeddings through the Ollama HTTP API."""

    def __init__(
        self,
        url: Optional[str] = None,
        model: Optional[str] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        self.url = (url or settings.ollama_url).rstrip("/")
        self.model = model or settings.embed_model
        self.max_attempts = max(1, int(settings.embed_max_attempts))
        self.client = http or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.embed_timeout_seconds),
            limits=httpx.Limits(max_connections=10),
        )

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

    async def health_check(self) -> bool:
        """Check if Ollama is reachable."""
        try:
            response = await self.client.get(f"{self.url}/api/tags")
            return response.status_code == 200
        except Exception:
            return False

    async def ensure_model(self) -> bool:
        """
        Make sure the embedding model is available, pulling it if needed.

        Returns:
            True if the model is present or was pulled successfully
        """
        try:
            response = await self.client.get(f"{self.url}/api/tags")
            if response.status_code != 200:
                return False

            models = response.json().get("models") or []
            names = [m.get("name", "") for m in models if isinstance(m, dict)]
            if any(
                name == self.model or name.startswith(f"{self.model}:")
                for name in names
            ):
                return True

            logger.warning(f"Pulling Ollama model {self.model}...")
            pull = await self.client.post(
                f"{self.url}/api/pull",
                json={"name": self.model, "stream": False},
                timeout=settings.pull_timeout_seconds,
            )
            if pull.status_code != 200:
                logger.warning(
                    f"Ollama pull failed: {pull.status_code} {pull.text}"
                )
                return False
            return pull.json().get("status") == "success"
        except Exception as e:
            logger.warning(f"Ollama model check failed: {e}")
            return False

    async def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        data = await self._post_embed(text)
        embeddings = data.get("embeddings")
        if not isinstance(embeddings, list) or not embeddings:
            raise MalformedResponse("Ollama returned no embeddings")

        vector = embeddings[0]
        if not isinstance(vector, list):
            raise MalformedResponse("Ollama embedding is not a list")
        if not vector:
            raise MalformedResponse("Ollama returned empty embedding")
        return vector

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed multiple texts in one request.

        Args:
            texts: Texts to embed

        Returns:
            Vectors in the same order as ``texts``
        """
        if not texts:
            return []

        data = await self._post_embed(texts)
        embeddings = data.get("embeddings")
        if not isinstance(embeddings, list):
            raise MalformedResponse("Ollama response has no embeddings list")

        if len(embeddings) != len(texts):
            logger.warning(
                "Ollama returned %d embeddings for %d texts",
                len(embeddings),
                len(texts),
            )

        logger.debug(f"Embedded {len(texts)} texts with {self.model}")
        return embeddings

    async def _post_embed(self, input_value: Union[str, List[str]]) -> Dict[str, Any]:
        payload = {"model": self.model, "input": input_value}

        # Retry with exponential backoff
        for attempt in range(self.max_attempts):
            try:
                response = await self.client.post(f"{self.url}/api/embed", json=payload)
                break
            except httpx.TransportError as e:
                logger.warning(f"Ollama embed request failed (attempt {attempt + 1}): {e}")
                if attempt < self.max_attempts - 1:
                    wait_time = (settings.backoff_base_ms * (2**attempt)) / 1000
                    await asyncio.sleep(wait_time)
                else:
                    raise ServiceUnavailable(f"Ollama unreachable: {e}") from e

        if response.status_code != 200:
            raise ServiceUnavailable(
                f"Ollama embed failed: {response.status_code} {response.text}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse(f"Ollama returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise MalformedResponse("Ollama response is not an object")
        return data
