"""
Client helpers for the hosted vision model that decides "Hot Dog" or not.

Requests go straight to the OpenAI-compatible Chat Completions REST endpoint
with ``requests``; the image travels inline as a base64 ``data:`` URL.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from api.labels import normalise_label

logger = logging.getLogger(__name__)

CLASSIFY_PROMPT = (
  "Look at this image and decide whether it shows a hot dog. "
  "Reply with exactly one of these two phrases and nothing else: "
  "\"Hot Dog\" or \"Not Hot Dog\"."
)


class ClassifierError(RuntimeError):
  """Raised when the vision API cannot produce a usable reply."""


@dataclass
class Classification:
  label: str
  is_hot_dog: bool
  model: str
  raw_reply: str
  usage: Dict[str, Any]


@dataclass
class ChatCompletion:
  content: Optional[str]
  model: str
  usage: Dict[str, Any]


def encode_data_url(image_bytes: bytes, mime_type: str) -> str:
  encoded = base64.b64encode(image_bytes).decode("utf-8")
  return f"data:{mime_type};base64,{encoded}"


def create_chat_completion(
  messages: List[Dict[str, Any]],
  *,
  api_key: str,
  model: str,
  base_url: str,
  max_tokens: int,
  timeout: int = 30,
  temperature: Optional[float] = None,
) -> ChatCompletion:
  """
  POST ``messages`` to ``{base_url}/chat/completions`` and return the first choice.

  Parameters
  ----------
  messages:
      Chat messages in the OpenAI wire format.
  api_key:
      Bearer token sent in the ``Authorization`` header.
  model:
      Model name requested; the response's own ``model`` field wins when present.
  base_url:
      API root, e.g. ``https://api.openai.com/v1``.
  max_tokens:
      Upper bound on the generated reply.
  timeout:
      Request timeout in seconds.
  """
  if not api_key:
    raise ClassifierError("OpenAI API key is not configured")

  payload: Dict[str, Any] = {
    "model": model,
    "messages": messages,
    "max_tokens": max_tokens,
  }
  if temperature is not None:
    payload["temperature"] = temperature
  headers = {
    "Authorization": f"Bearer {api_key}",
    "Content-Type": "application/json",
  }

  try:
    response = requests.post(
      f"{base_url.rstrip('/')}/chat/completions",
      headers=headers,
      json=payload,
      timeout=timeout,
    )
  except requests.RequestException as exc:
    raise ClassifierError(f"Vision API request failed: {exc}") from exc

  if not response.ok:
    error_body = response.text[:200] if response.text else response.reason
    raise ClassifierError(f"Vision API returned {response.status_code}: {error_body}")

  try:
    parsed = response.json()
  except ValueError as exc:
    raise ClassifierError("Vision API response was not JSON.") from exc

  if not isinstance(parsed, dict):
    raise ClassifierError("Vision API response was not a JSON object.")

  # An empty choice list is a reply without content, not a failure.
  choices = parsed.get("choices")
  first_choice = choices[0] if isinstance(choices, list) and choices else None
  message = first_choice.get("message") if isinstance(first_choice, dict) else None
  content = message.get("content") if isinstance(message, dict) else None
  return ChatCompletion(
    content=content if isinstance(content, str) else None,
    model=str(parsed.get("model") or model),
    usage=parsed.get("usage") or {},
  )


def classify_image(
  image_bytes: bytes,
  mime_type: str,
  *,
  api_key: str,
  model: str,
  base_url: str,
  timeout: int = 30,
) -> Classification:
  """Ask the vision model whether ``image_bytes`` shows a hot dog."""
  messages = [
    {
      "role": "user",
      "content": [
        {"type": "text", "text": CLASSIFY_PROMPT},
        {
          "type": "image_url",
          "image_url": {"url": encode_data_url(image_bytes, mime_type), "detail": "low"},
        },
      ],
    }
  ]
  completion = create_chat_completion(
    messages,
    api_key=api_key,
    model=model,
    base_url=base_url,
    max_tokens=10,
    timeout=timeout,
    temperature=0,
  )
  if not completion.content or not completion.content.strip():
    raise ClassifierError("Vision API reply contained no text.")

  label, is_hot_dog = normalise_label(completion.content)
  logger.info("Classified upload as %s (raw reply %r)", label, completion.content)
  return Classification(
    label=label,
    is_hot_dog=is_hot_dog,
    model=completion.model,
    raw_reply=completion.content.strip(),
    usage=completion.usage,
  )


__all__ = [
  "ChatCompletion",
  "Classification",
  "ClassifierError",
  "classify_image",
  "create_chat_completion",
  "encode_data_url",
]
