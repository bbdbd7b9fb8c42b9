"""
ExamForge - Unified LLM Client
Chat completions and embeddings behind one object, with telemetry.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

from langchain_core.messages import HumanMessage, SystemMessage

from examforge.core.config import Settings
from examforge.core.errors import ProviderError
from examforge.core.telemetry import get_tracer, trace_llm_call

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Standardized response from LLM client."""
    content: str
    model: str
    tokens_prompt: int = 0
    tokens_completion: int = 0
    tokens_total: int = 0


def normalize_base_url(url: str) -> Optional[str]:
    """
    OpenAI-compatible providers serve under ``/v1``; a base URL with no
    path gets it appended. Empty means the SDK default.
    """
    url = (url or "").strip()
    if not url:
        return None
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url.rstrip("/")
    path = parts.path if parts.path not in ("", "/") else "/v1"
    return urlunsplit((parts.scheme, parts.netloc, path.rstrip("/"), parts.query, parts.fragment))


def extract_json_object(text: str) -> dict:
    """Parse the outermost ``{...}`` in model output (tolerates code fences and prose)."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise ProviderError("No JSON object found in model output")
    try:
        parsed = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise ProviderError(f"Model output is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ProviderError("Model output is not a JSON object")
    return parsed


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    # Anthropic-style content blocks
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and isinstance(block.get("text"), str):
            parts.append(block["text"])
    return "\n".join(parts)


class LLMClient:
    """
    Unified LLM client for generation and grading.

    Features:
    - Multi-provider support (OpenAI or any OpenAI-compatible endpoint, Anthropic)
    - Built-in telemetry (OpenTelemetry)
    - Embeddings through OpenAI
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.provider = settings.LLM_PROVIDER
        self.model = (
            settings.OPENAI_MODEL if self.provider == "openai"
            else settings.ANTHROPIC_MODEL
        )
        self.embedding_model = settings.OPENAI_EMBEDDING_MODEL
        self._chat_models: dict[float, Any] = {}
        self._embeddings = None

    @property
    def has_credentials(self) -> bool:
        """Whether the configured chat provider has an API key."""
        if self.provider == "openai":
            return bool(self.settings.OPENAI_API_KEY)
        return bool(self.settings.ANTHROPIC_API_KEY)

    @property
    def missing_credentials_message(self) -> str:
        key = "OPENAI_API_KEY" if self.provider == "openai" else "ANTHROPIC_API_KEY"
        return f"{key} is not set"

    @property
    def supports_embeddings(self) -> bool:
        return bool(self.settings.OPENAI_API_KEY)

    def _chat_model(self, temperature: float):
        """Lazy-load one chat model per temperature."""
        if temperature not in self._chat_models:
            if self.provider == "openai":
                from langchain_openai import ChatOpenAI
                self._chat_models[temperature] = ChatOpenAI(
                    model=self.model,
                    api_key=self.settings.OPENAI_API_KEY,
                    base_url=normalize_base_url(self.settings.OPENAI_BASE_URL),
                    temperature=temperature,
                    timeout=self.settings.LLM_TIMEOUT_SECONDS,
                    max_retries=self.settings.LLM_MAX_RETRIES,
                )
            else:
                from langchain_anthropic import ChatAnthropic
                self._chat_models[temperature] = ChatAnthropic(
                    model=self.model,
                    api_key=self.settings.ANTHROPIC_API_KEY,
                    temperature=temperature,
                    timeout=self.settings.LLM_TIMEOUT_SECONDS,
                    max_retries=self.settings.LLM_MAX_RETRIES,
                )
        return self._chat_models[temperature]

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        agent_name: str = "LLMClient",
    ) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            prompt: The user prompt.
            system_prompt: Optional system prompt.
            temperature: Sampling temperature.
            agent_name: Name of the caller (for telemetry).

        Returns:
            LLMResponse with content and metadata.
        """
        if not self.has_credentials:
            raise ProviderError(self.missing_credentials_message)

        tracer = get_tracer()
        with tracer.start_as_current_span("llm.generate") as span:
            span.set_attribute("llm.model", self.model)
            span.set_attribute("llm.provider", self.provider)
            span.set_attribute("agent.name", agent_name)
            span.set_attribute("llm.prompt_length", len(prompt))

            messages = []
            if system_prompt:
                messages.append(SystemMessage(content=system_prompt))
            messages.append(HumanMessage(content=prompt))

            try:
                response = await self._chat_model(temperature).ainvoke(messages)
            except Exception as e:
                span.record_exception(e)
                raise ProviderError(f"{self.provider} request failed: {e}") from e

            content = _content_text(response.content).strip()
            if not content:
                raise ProviderError("LLM returned empty output")

            usage = getattr(response, "usage_metadata", None) or {}
            tokens_prompt = usage.get("input_tokens", 0)
            tokens_completion = usage.get("output_tokens", 0)
            tokens_total = usage.get("total_tokens", tokens_prompt + tokens_completion)

            trace_llm_call(
                model=self.model,
                prompt_tokens=tokens_prompt,
                completion_tokens=tokens_completion,
                total_tokens=tokens_total,
            )
            span.set_attribute("llm.response_length", len(content))

            return LLMResponse(
                content=content,
                model=self.model,
                tokens_prompt=tokens_prompt,
                tokens_completion=tokens_completion,
                tokens_total=tokens_total,
            )

    async def generate_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        agent_name: str = "LLMClient",
    ) -> dict:
        """
        Generate a JSON response from the LLM.
        Parses the response and returns a dictionary.
        """
        response = await self.generate(
            prompt=prompt,
            system_prompt=system_prompt,
            temperature=temperature,
            agent_name=agent_name,
        )
        return extract_json_object(response.content)

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts with the configured OpenAI embedding model."""
        if not self.supports_embeddings:
            raise ProviderError("OPENAI_API_KEY is not set; embeddings unavailable")

        if self._embeddings is None:
            from langchain_openai import OpenAIEmbeddings
            self._embeddings = OpenAIEmbeddings(
                model=self.embedding_model,
                api_key=self.settings.OPENAI_API_KEY,
                base_url=normalize_base_url(self.settings.OPENAI_BASE_URL),
                timeout=self.settings.LLM_TIMEOUT_SECONDS,
                max_retries=self.settings.LLM_MAX_RETRIES,
            )

        tracer = get_tracer()
        with tracer.start_as_current_span("llm.embed") as span:
            span.set_attribute("llm.model", self.embedding_model)
            span.set_attribute("embedding.batch_size", len(texts))
            try:
                return await self._embeddings.aembed_documents(texts)
            except Exception as e:
                span.record_exception(e)
                raise ProviderError(f"Embedding request failed: {e}") from e
