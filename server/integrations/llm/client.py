"""LLM client: local Ollama or OpenAI-compatible cloud APIs, with robust JSON extraction."""
import httpx
import json
import re
from typing import Optional, Type, TypeVar
from pydantic import BaseModel
from config.settings import settings
import logging

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Pre-compiled regex for stripping markdown fences from LLM output
_MD_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)


def _extract_json_object(text: str) -> str:
    """
    Robustly extract a JSON object from LLM output.

    Handles:
    - Markdown code fences (```json ... ```)
    - Leading/trailing prose around the JSON
    - Multiple JSON objects (takes the first complete one)

    Raises ValueError if no valid JSON object is found.
    """
    fence_match = _MD_FENCE_RE.search(text)
    if fence_match:
        candidate = fence_match.group(1).strip()
        try:
            json.loads(candidate)
            return candidate
        except json.JSONDecodeError:
            pass  # fall through to brace-matching

    # Brace-matching with depth tracking; braces inside strings are skipped
    depth = 0
    start = None
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and start is not None:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start is not None:
                candidate = text[start : i + 1]
                try:
                    json.loads(candidate)
                    return candidate
                except json.JSONDecodeError:
                    start = None  # reset and keep scanning

    raise ValueError("No valid JSON object found in LLM response")


class LLMClient:
    """Wrapper for the LLM API used for intent parsing, planning, explanations and embeddings."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        model: Optional[str] = None,
        embedding_model: Optional[str] = None,
    ):
        self.endpoint = endpoint or settings.OLLAMA_ENDPOINT
        self.model = model or settings.OLLAMA_MODEL
        self.embedding_model = embedding_model or settings.EMBEDDING_MODEL
        self.api_key = settings.LLM_API_KEY
        self.use_cloud = settings.USE_CLOUD_LLM

        headers: dict[str, str] = {}
        if self.use_cloud and self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        # Default timeout — callers override per phase via timeout_s
        self.client = httpx.AsyncClient(timeout=60.0, headers=headers)

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        timeout_s: Optional[int] = None,
        json_mode: bool = False,
    ) -> str:
        """Generate text completion."""
        effective_timeout = timeout_s or 60

        try:
            if self.use_cloud:
                messages = []
                if system_prompt:
                    messages.append({"role": "system", "content": system_prompt})
                messages.append({"role": "user", "content": prompt})

                payload: dict = {
                    "model": self.model,
                    "messages": messages,
                    "temperature": temperature,
                    "max_tokens": 1000,
                }
                if json_mode:
                    payload["response_format"] = {"type": "json_object"}

                response = await self.client.post(
                    f"{self.endpoint}/v1/chat/completions",
                    json=payload,
                    timeout=effective_timeout,
                )
                response.raise_for_status()
                result = response.json()
                return result["choices"][0]["message"]["content"]

            full_prompt = prompt
            if system_prompt:
                full_prompt = f"{system_prompt}\n\n{prompt}"

            payload = {
                "model": self.model,
                "prompt": full_prompt,
                "stream": False,
                "options": {"temperature": temperature},
            }
            if json_mode:
                payload["format"] = "json"

            response = await self.client.post(
                f"{self.endpoint}/api/generate",
                json=payload,
                timeout=effective_timeout,
            )
            response.raise_for_status()
            result = response.json()
            return result.get("response", "")

        except httpx.TimeoutException:
            logger.error(f"LLM request timed out after {effective_timeout}s")
            raise TimeoutError(f"LLM request timed out after {effective_timeout}s")
        except httpx.TransportError as e:
            logger.error(f"LLM transport error: {e}")
            raise ConnectionError(f"LLM endpoint unreachable: {e}") from e
        except Exception as e:
            logger.error(f"LLM generation error: {e}")
            raise

    async def generate_structured(
        self,
        prompt: str,
        schema: Type[ModelT],
        system_prompt: Optional[str] = None,
        timeout_s: Optional[int] = None,
        temperature: float = 0.1,
    ) -> ModelT:
        """
        Generate structured output validated against a Pydantic model.

        Raises ValueError (or pydantic.ValidationError) when the output
        cannot be parsed; infrastructure errors propagate unchanged.
        """
        response_text = await self.generate(
            prompt=prompt,
            system_prompt=system_prompt,
            temperature=temperature,
            timeout_s=timeout_s,
            json_mode=True,
        )

        try:
            json_str = _extract_json_object(response_text)
            parsed = json.loads(json_str)
            return schema(**parsed)
        except (ValueError, json.JSONDecodeError) as e:
            logger.error(f"Failed to parse structured LLM output for {schema.__name__}: {e}")
            logger.debug(f"Raw response: {response_text[:500]}")
            raise

    async def embed(self, text: str, timeout_s: Optional[int] = None) -> list[float]:
        """Return an embedding vector for ``text``."""
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        effective_timeout = timeout_s or settings.LLM_EMBEDDING_TIMEOUT
        try:
            if self.use_cloud:
                response = await self.client.post(
                    f"{self.endpoint}/v1/embeddings",
                    json={"model": self.embedding_model, "input": text.strip()},
                    timeout=effective_timeout,
                )
                response.raise_for_status()
                vector = response.json()["data"][0]["embedding"]
            else:
                response = await self.client.post(
                    f"{self.endpoint}/api/embeddings",
                    json={"model": self.embedding_model, "prompt": text.strip()},
                    timeout=effective_timeout,
                )
                response.raise_for_status()
                vector = response.json().get("embedding") or []
        except httpx.TimeoutException:
            logger.error(f"Embedding request timed out after {effective_timeout}s")
            raise TimeoutError(f"Embedding request timed out after {effective_timeout}s")
        except httpx.TransportError as e:
            logger.error(f"Embedding transport error: {e}")
            raise ConnectionError(f"LLM endpoint unreachable: {e}") from e

        if not vector:
            raise ValueError("Embedding response contained no vector")
        return vector

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
