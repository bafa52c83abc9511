"""Map free-form classifier replies onto the two labels the service emits."""

from __future__ import annotations

import re
from typing import Tuple

HOT_DOG = "Hot Dog"
NOT_HOT_DOG = "Not Hot Dog"

# "isn't" cleans to "isn t", so a lone "t" marks a contracted negation.
_NEGATED = re.compile(r"\b(?:not|no|never|t)\s+(?:[a-z]+\s+){0,3}?hot\s*dogs?\b")
_MENTIONED = re.compile(r"\bhot\s*dogs?\b")


def _clean(text: str) -> str:
  lowered = text.lower().replace("-", " ")
  lowered = re.sub(r"[^a-z\s]", " ", lowered)
  return " ".join(lowered.split())


def normalise_label(text: str | None) -> Tuple[str, bool]:
  """
  Return ``(label, is_hot_dog)`` for a classifier reply.

  Negations win over mentions, so "Not Hot Dog" never reads as a hot dog.
  Anything unrecognised is treated as not a hot dog.
  """
  cleaned = _clean(text or "")
  if not cleaned:
    return NOT_HOT_DOG, False

  first_word = cleaned.split(" ", 1)[0]
  if _NEGATED.search(cleaned) or first_word == "no":
    return NOT_HOT_DOG, False
  if _MENTIONED.search(cleaned) or first_word == "yes":
    return HOT_DOG, True
  return NOT_HOT_DOG, False


def label_for(is_hot_dog: bool) -> str:
  return HOT_DOG if is_hot_dog else NOT_HOT_DOG


__all__ = ["HOT_DOG", "NOT_HOT_DOG", "normalise_label", "label_for"]
