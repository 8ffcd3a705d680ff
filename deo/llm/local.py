"""Local LLM integration via the Ollama generate API."""

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterator

import httpx

from config.settings import settings
from deo.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """Result from LLM generation."""

    content: str
    model: str
    streamed: bool
    fragments: int = 0
    skipped_fragments: int = 0
    prompt_tokens: int | None = None
    output_tokens: int | None = None


class LocalLLM:
    """Ollama-based local LLM interface."""

    def __init__(
        self,
        model: str | None = None,
        base_url: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the local LLM.

        Args:
            model: Model name to use. Defaults to settings.ollama_model, then
                to the first model the endpoint lists.
            base_url: Endpoint URL. Defaults to settings.ollama_base_url.
            client: HTTP client to use, mainly for tests.
        """
        self._model = model or settings.ollama_model
        self._base_url = (base_url or settings.ollama_base_url).rstrip("/")
        self._client = client or httpx.Client(timeout=settings.ollama_timeout)

    def close(self) -> None:
        self._client.close()

    def set_model(self, model_name: str) -> None:
        """Switch to a different Ollama model."""
        logger.info(f"Switching model from {self._model} to {model_name}")
        self._model = model_name

    def get_model(self) -> str:
        """Get the current model name, resolving it on first use."""
        if not self._model:
            self._model = self._resolve_model()
        return self._model

    def _resolve_model(self) -> str:
        models = self.list_available_models()
        if models:
            logger.info(f"No model configured, using first available: {models[0]}")
            return models[0]
        logger.warning(f"No models listed, falling back to {settings.ollama_default_model}")
        return settings.ollama_default_model

    def list_available_models(self) -> list[str]:
        """List all available Ollama models.

        Returns:
            Model names installed in Ollama, or an empty list if listing fails.
        """
        try:
            response = self._client.get(f"{self._base_url}/api/tags", timeout=5.0)
            if response.status_code != 200:
                logger.warning(f"Failed to list models: HTTP {response.status_code}")
                return []
            data = response.json()
            return [m["name"] for m in data.get("models", []) if m.get("name")]
        except (httpx.HTTPError, ValueError, KeyError, AttributeError) as e:
            logger.warning(f"Failed to list Ollama models: {e}")
            return []

    def check_availability(self) -> bool:
        """Check if the endpoint answers the model listing call."""
        try:
            response = self._client.get(f"{self._base_url}/api/tags", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Ollama availability check failed: {e}")
            return False

    def _build_payload(
        self,
        prompt: str,
        stream: bool,
        temperature: float | None,
        response_format: str | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.get_model(),
            "prompt": prompt,
            "stream": stream,
            "options": {
                "num_ctx": settings.ollama_num_ctx,
                "temperature": temperature if temperature is not None else settings.ollama_temperature,
            },
        }
        if response_format:
            payload["format"] = response_format
        return payload

    def generate(
        self,
        prompt: str,
        stream: bool | None = None,
        temperature: float | None = None,
        response_format: str | None = "json",
    ) -> GenerationResult:
        """
        Generate a complete response from the local LLM.

        Args:
            prompt: Full prompt text
            stream: Use the streaming protocol. Defaults to settings.ollama_stream.
            temperature: Optional temperature override
            response_format: Ollama "format" value; None for free text

        Returns:
            GenerationResult with the assembled response text

        Raises:
            TransportError: if the endpoint is unreachable or answers with an error
        """
        use_stream = settings.ollama_stream if stream is None else stream
        payload = self._build_payload(prompt, use_stream, temperature, response_format)
        if use_stream:
            return self._generate_streaming(payload)
        return self._generate_buffered(payload)

    def _generate_buffered(self, payload: dict[str, Any]) -> GenerationResult:
        url = f"{self._base_url}/api/generate"
        try:
            response = self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Local LLM generation failed: {e}")
            raise TransportError(f"Cannot reach inference endpoint at {self._base_url}: {e}") from e

        if not response.is_success:
            raise TransportError(
                f"Inference endpoint returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"Inference endpoint returned a non-JSON body: {e}") from e
        if data.get("error"):
            raise TransportError(f"Inference endpoint error: {data['error']}")

        content = data.get("response", "")
        logger.debug(f"Local LLM generated {len(content)} chars with {payload['model']}")
        return GenerationResult(
            content=content,
            model=payload["model"],
            streamed=False,
            fragments=1,
            prompt_tokens=data.get("prompt_eval_count"),
            output_tokens=data.get("eval_count"),
        )

    def _generate_streaming(self, payload: dict[str, Any]) -> GenerationResult:
        tokens: list[str] = []
        result = GenerationResult(content="", model=payload["model"], streamed=True)
        for fragment in self._iter_fragments(payload, result):
            token = fragment.get("response")
            if token:
                tokens.append(token)
            if fragment.get("done"):
                result.prompt_tokens = fragment.get("prompt_eval_count")
                result.output_tokens = fragment.get("eval_count")
                break
        result.content = "".join(tokens)
        logger.debug(
            f"Local LLM streamed {len(result.content)} chars in {result.fragments} fragments "
            f"({result.skipped_fragments} skipped)"
        )
        return result

    def stream(
        self,
        prompt: str,
        temperature: float | None = None,
        response_format: str | None = "json",
    ) -> Iterator[str]:
        """
        Stream a response from the local LLM.

        Yields:
            Response tokens in arrival order
        """
        payload = self._build_payload(prompt, True, temperature, response_format)
        result = GenerationResult(content="", model=payload["model"], streamed=True)
        for fragment in self._iter_fragments(payload, result):
            token = fragment.get("response")
            if token:
                yield token
            if fragment.get("done"):
                return

    def _iter_fragments(
        self,
        payload: dict[str, Any],
        result: GenerationResult,
    ) -> Iterator[dict[str, Any]]:
        url = f"{self._base_url}/api/generate"
        try:
            with self._client.stream("POST", url, json=payload) as response:
                if not response.is_success:
                    response.read()
                    raise TransportError(
                        f"Inference endpoint returned HTTP {response.status_code}: {response.text[:200]}",
                        status_code=response.status_code,
                    )
                for line in response.iter_lines():
                    if not line.strip():
                        continue
                    try:
                        fragment = json.loads(line)
                    except json.JSONDecodeError:
                        result.skipped_fragments += 1
                        logger.warning(f"Skipping malformed stream fragment: {line[:80]!r}")
                        continue
                    if not isinstance(fragment, dict):
                        result.skipped_fragments += 1
                        logger.warning(f"Skipping non-object stream fragment: {line[:80]!r}")
                        continue
                    if fragment.get("error"):
                        raise TransportError(f"Inference endpoint error: {fragment['error']}")
                    result.fragments += 1
                    yield fragment
        except httpx.HTTPError as e:
            logger.error(f"Local LLM streaming failed: {e}")
            raise TransportError(f"Cannot reach inference endpoint at {self._base_url}: {e}") from e
