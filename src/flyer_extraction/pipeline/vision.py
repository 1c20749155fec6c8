"""Vision-model capability: send one PNG tile plus a prompt, get text back."""

from __future__ import annotations

import base64
import json
import re
import time
from typing import Any, Optional

import httpx
from openai import OpenAI

from ..config import VisionConfig
from ..errors import ModelOutputError
from ..logging import get_logger

LOG = get_logger("vision")

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


def _png_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def parse_model_json(text: str) -> Any:
    """Parse model output that should be JSON but may carry prose or fences.

    Strict parse first, then the fenced block, then the outermost ``{...}``.
    """
    if not text or not text.strip():
        raise ModelOutputError("empty model response")
    try:
        return json.loads(text)
    except ValueError:
        pass

    fenced = _FENCE_RE.search(text)
    candidate = fenced.group(1) if fenced else text
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        raise ModelOutputError(f"no JSON object found: {text[:200]}")
    try:
        return json.loads(candidate[start : end + 1])
    except ValueError as exc:
        raise ModelOutputError(f"{exc}: {text[:200]}") from exc


class VisionClient:
    """OpenAI-compatible chat client over an explicit httpx pool.

    Works against Gemini's OpenAI endpoint by default; ``max_retries=0`` so the
    batch loop alone decides what happens after a failure.
    """

    def __init__(self, config: VisionConfig, *, http_client: Optional[httpx.Client] = None) -> None:
        if not config.api_key:
            raise ValueError("vision API key is not configured")
        self.config = config
        self._http = http_client or httpx.Client(
            timeout=httpx.Timeout(connect=10.0, read=float(config.timeout_seconds), write=30.0, pool=10.0),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )
        self._client = OpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            http_client=self._http,
            max_retries=0,
        )

    @property
    def model_name(self) -> str:
        return self.config.model_name

    def extract(
        self,
        png: bytes,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        json_only: bool = True,
    ) -> str:
        kwargs = {}
        if json_only:
            kwargs["response_format"] = {"type": "json_object"}
        t0 = time.perf_counter()
        completion = self._client.chat.completions.create(
            model=self.config.model_name,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": _png_data_url(png)}},
                    ],
                }
            ],
            temperature=self.config.temperature if temperature is None else temperature,
            max_tokens=max_output_tokens or self.config.max_output_tokens,
            timeout=float(self.config.timeout_seconds),
            **kwargs,
        )
        choice = completion.choices[0] if getattr(completion, "choices", None) else None
        text = choice.message.content if choice and getattr(choice, "message", None) else None
        usage = getattr(completion, "usage", None)
        usage_dict = {k: getattr(usage, k, None) if usage else None for k in ("prompt_tokens", "completion_tokens", "total_tokens")}
        LOG.debug(
            "Chat completion finished in %.2fs id=%s usage=%s",
            time.perf_counter() - t0,
            getattr(completion, "id", None),
            usage_dict,
        )
        if not text:
            raise ModelOutputError("model returned no content")
        return text

    def close(self) -> None:
        self._http.close()
