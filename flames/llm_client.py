import logging
import time
import traceback
from typing import Any, Callable, Dict, List, Optional, TypeVar

from openai import OpenAI
from langchain_google_vertexai import ChatVertexAI, VertexAIEmbeddings
from langchain_core.messages import BaseMessage, HumanMessage, AIMessage, SystemMessage

from flames.model_props import parse_model_name, is_openai_model

T = TypeVar("T")

logger = logging.getLogger("flames_backend")


class ProviderOverloadedError(Exception):
    """The provider said it is temporarily overloaded (HTTP 503/529). Worth retrying."""
    pass


class MaxRetryErrorsException(Exception):
    pass


GENERATION_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0


def is_overload_error(e: Exception) -> bool:
    if isinstance(e, ProviderOverloadedError):
        return True
    code = getattr(e, "status_code", None)
    if code is None:
        code = getattr(e, "code", None)
    try:
        if int(code) in (503, 529):
            return True
    except (TypeError, ValueError):
        pass
    msg = str(e)
    return "503" in msg and ("UNAVAILABLE" in msg or "overloaded" in msg.lower() or "Service Unavailable" in msg)


def call_with_backoff_sync(
    fn: Callable[[], T],
    *,
    retries: int = GENERATION_RETRIES,
    initial_delay: float = INITIAL_BACKOFF_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, float, Exception], None] | None = None,
) -> T:
    """
    Run a provider call, retrying ONLY on the overload signal.

    Delays double from `initial_delay` (1s, 2s, 4s for the defaults). Any other
    error propagates immediately. When the overload persists past `retries`
    retries, MaxRetryErrorsException is raised from the last overload.
    """
    delay = initial_delay
    for attempt in range(retries + 1):
        try:
            return fn()
        except Exception as e:
            if not is_overload_error(e):
                raise
            if attempt >= retries:
                raise MaxRetryErrorsException(
                    f"AI model is still overloaded after {retries} retries."
                ) from e
            logger.warning(
                f"[LLM-RETRY] AI model is overloaded. Retrying in {delay:g}s... "
                f"({retries - attempt} retries left)"
            )
            if on_retry:
                on_retry(attempt + 1, delay, e)
            sleep(delay)
            delay *= 2

    raise AssertionError("unreachable")


class ChatLlmClient:
    """
    Minimal wrapper for chat-style use:

        text = chat_llm.generate([SystemMessage(...), HumanMessage(...)], want_structured=True)

    Under the hood:
    - Vertex: ChatVertexAI.invoke(messages), JSON mime type when structured
    - OpenAI: Responses API with input=[{role, content}, ...]

    Single HTTP call per generate(); retries belong to the caller. An overload
    answer is re-raised as ProviderOverloadedError so callers can tell it
    apart from terminal errors.
    """

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str,
        vertex_region: str,
        timeout: float | None = None,
        temperature: float = 0.5,
        max_output_tokens: int = 32768,
    ):
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        self.model_name = model_name
        self._timeout = timeout
        self._openai_params: Dict[str, Any] = {}

        if self.provider == "vertex":
            common = dict(
                project=vertex_project,
                location=vertex_region,
                model_name=model_name,
                timeout=timeout,
                temperature=temperature,
                max_output_tokens=max_output_tokens,
                max_retries=0,
            )
            self._vertex_text = ChatVertexAI(**common)
            self._vertex_json = ChatVertexAI(response_mime_type="application/json", **common)
            self._client = None
        elif self.provider == "openai":
            self._vertex_text = self._vertex_json = None
            self.model_name, self._openai_params = parse_model_name(self.model_name)
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if timeout is not None:
                client_kwargs["timeout"] = timeout
            self._client = OpenAI(**client_kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider}")

    def _to_openai_messages(self, messages: List[BaseMessage]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        for m in messages:
            if isinstance(m, SystemMessage):
                role = "developer"
            elif isinstance(m, AIMessage):
                role = "assistant"
            else:
                role = "user"
            out.append({"role": role, "content": str(m.content)})
        return out

    def _invoke_once(self, messages: List[BaseMessage], want_structured: bool) -> str:
        if self.provider == "vertex":
            llm = self._vertex_json if want_structured else self._vertex_text
            resp = llm.invoke(messages)
            if isinstance(resp, str):
                return resp
            return getattr(resp, "content", str(resp))

        kwargs = dict(self._openai_params)
        if want_structured:
            kwargs["text"] = {"format": {"type": "json_object"}}
        resp = self._client.responses.create(
            model=self.model_name,
            input=self._to_openai_messages(messages),
            **kwargs,
        )
        text = getattr(resp, "output_text", "") or ""
        return text.strip()

    def generate(self, messages: List[BaseMessage] | str, want_structured: bool = False) -> str:
        if isinstance(messages, str):
            messages = [HumanMessage(content=messages)]
        try:
            return self._invoke_once(messages, want_structured)
        except Exception as e:
            if is_overload_error(e):
                raise ProviderOverloadedError(str(e)) from e
            logger.debug(f"[LLM] {self.model_name} call failed: {e}\n{traceback.format_exc()}")
            raise


class EmbeddingClient:
    """
    embed(texts) -> one vector per input, same order.

    - Vertex: VertexAIEmbeddings.embed_documents
    - OpenAI: embeddings.create
    """

    def __init__(self, model_name: str, *, vertex_project: str, vertex_region: str,
                 timeout: float | None = None):
        self.model_name = model_name
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        if self.provider == "vertex":
            self._vertex = VertexAIEmbeddings(
                model_name=model_name,
                project=vertex_project,
                location=vertex_region,
            )
            self._client = None
        else:
            self._vertex = None
            client_kwargs: Dict[str, Any] = {"max_retries": 2}
            if timeout is not None:
                client_kwargs["timeout"] = timeout
            self._client = OpenAI(**client_kwargs)

    def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        if self.provider == "vertex":
            vectors = self._vertex.embed_documents(list(texts))
        else:
            resp = self._client.embeddings.create(model=self.model_name, input=list(texts))
            vectors = [d.embedding for d in sorted(resp.data, key=lambda d: d.index)]

        if len(vectors) != len(texts):
            raise RuntimeError(f"Embedding provider returned {len(vectors)} vectors for {len(texts)} inputs")
        return [list(map(float, v)) for v in vectors]


def build_generation_llm(model_name: str, project: str, region: str,
                         timeout: float | None = None) -> Optional[ChatLlmClient]:
    """
    Build a client for `model_name`, or None when the provider can't be
    initialised (missing credentials in a dev shell, typically).
    """
    try:
        return ChatLlmClient(model_name, vertex_project=project, vertex_region=region, timeout=timeout)
    except Exception as e:
        logger.warning(f"Could not initialize LLM '{model_name}': {e}")
        return None


def build_embedding_client(model_name: str, project: str, region: str,
                           timeout: float | None = None) -> Optional[EmbeddingClient]:
    try:
        return EmbeddingClient(model_name, vertex_project=project, vertex_region=region, timeout=timeout)
    except Exception as e:
        logger.warning(f"Could not initialize embedding model '{model_name}': {e}")
        return None
