"""Completion services: ``complete(messages, options) -> text``.

Two backends share the same call shape:

- :class:`OpenAICompatModel` posts to an OpenAI-compatible
  ``/chat/completions`` endpoint (DashScope compatible mode serves qwen-plus).
- :class:`GGUFModel` runs a local GGUF model through llama.cpp.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .config import env_secret, section

logger = logging.getLogger(__name__)

ChatMessages = List[Dict[str, str]]


# -----------------------------
# Types & defaults
# -----------------------------

@dataclass
class GenerationOptions:
    temperature: float = 0.7
    max_new_tokens: int = 512
    top_p: Optional[float] = None
    stop: Optional[List[str]] = None

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], **defaults: Any) -> "GenerationOptions":
        merged = {**defaults, **{k: v for k, v in (cfg or {}).items() if v is not None}}
        return cls(
            temperature=float(merged.get("temperature", cls.temperature)),
            max_new_tokens=int(merged.get("max_new_tokens", cls.max_new_tokens)),
            top_p=None if merged.get("top_p") is None else float(merged["top_p"]),
            stop=list(merged["stop"]) if merged.get("stop") else None,
        )


class CompletionService(Protocol):
    def complete(self, messages: ChatMessages, options: GenerationOptions) -> str: ...


def _content_text(content: Any) -> str:
    """Flatten message content that may arrive as a list of typed parts."""
    if content is None:
        return ""
    if isinstance(content, list):
        return "".join(
            str(part.get("text") or "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return str(content)


# -----------------------------
# OpenAI-compatible HTTP
# -----------------------------

class OpenAICompatModel:
    """Chat completions over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        *,
        timeout: float = 60.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.url = base_url.rstrip("/") + "/chat/completions"
        self.model = model
        self._headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        self._client = client or httpx.Client(timeout=timeout)

    def complete(self, messages: ChatMessages, options: GenerationOptions) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": options.temperature,
            "max_tokens": options.max_new_tokens,
        }
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.stop:
            payload["stop"] = options.stop

        resp = self._client.post(self.url, json=payload, headers=self._headers)
        resp.raise_for_status()
        data = resp.json()
        return _content_text(data["choices"][0]["message"].get("content"))


# -----------------------------
# GGUF wrapper
# -----------------------------

class GGUFModel:
    """Thin wrapper around :mod:`llama_cpp` for chat completion."""

    def __init__(self, model_path: str, **kwargs: Any) -> None:
        """
        Parameters
        ----------
        model_path : str
            Path to .gguf weights.
        kwargs : Any
            Passed to llama_cpp.Llama with some smart defaults:
              - n_threads: defaults to os.cpu_count()
              - n_gpu_layers: auto if gpu offload supported; else 0
              - use_mmap: default True, with fallback retry if OSError
        """
        # Lazy import so unit tests pass without the dep.
        from llama_cpp import Llama, llama_supports_gpu_offload  # type: ignore

        threads = kwargs.get("n_threads")
        if threads is None or int(threads) <= 0:
            kwargs["n_threads"] = os.cpu_count() or 1

        if kwargs.get("n_gpu_layers") is None:
            kwargs["n_gpu_layers"] = -1 if llama_supports_gpu_offload() else 0

        use_mmap = bool(kwargs.get("use_mmap", True))
        kwargs["use_mmap"] = use_mmap
        kwargs.setdefault("verbose", False)

        try:
            self._llama = Llama(model_path=model_path, **kwargs)
        except OSError as e:
            if not use_mmap:
                raise
            # Retry without mmap on network filesystems / Windows oddities.
            logger.warning("mmap load failed, retrying without mmap: %s", e)
            kwargs["use_mmap"] = False
            self._llama = Llama(model_path=model_path, **kwargs)

    def complete(self, messages: ChatMessages, options: GenerationOptions) -> str:
        result = self._llama.create_chat_completion(
            messages=messages,
            temperature=options.temperature,
            max_tokens=options.max_new_tokens,
            top_p=options.top_p if options.top_p is not None else 0.95,
            stop=options.stop,
        )
        return _content_text(result["choices"][0]["message"].get("content"))


# -----------------------------
# Convenience factory
# -----------------------------

def create_completion(cfg: Dict[str, Any]) -> CompletionService:
    """Create the completion service selected by ``model.provider``."""
    model_cfg = section(cfg, "model")
    provider = str(model_cfg.get("provider", "openai_compat")).lower()

    if provider == "openai_compat":
        api_key = env_secret(model_cfg.get("api_key_env", "DASHSCOPE_API_KEY"))
        if not api_key:
            raise ValueError(f"Model API key not set (env {model_cfg.get('api_key_env')!r})")
        return OpenAICompatModel(
            model_cfg.get("base_url", ""),
            api_key,
            model_cfg.get("model", "qwen-plus"),
        )

    if provider == "gguf":
        model_dir = model_cfg.get("model_dir")
        model_path = model_cfg.get("model_path")
        if model_dir and model_path and not os.path.isabs(model_path):
            model_path = os.path.join(model_dir, model_path)
        if not model_path or not os.path.exists(model_path):
            raise FileNotFoundError(f"Model not found at: {model_path!r}")
        params = {
            "n_ctx": model_cfg.get("n_ctx", 4096),
            "n_threads": model_cfg.get("n_threads"),
            "n_gpu_layers": model_cfg.get("n_gpu_layers"),
            "use_mmap": model_cfg.get("use_mmap", True),
        }
        # Remove None entries (llama.cpp is picky)
        params = {k: v for k, v in params.items() if v is not None}
        return GGUFModel(model_path=model_path, **params)

    raise ValueError(f"Unknown model provider: {provider!r}")
