"""Structured-output vision LLM backends."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Protocol

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from PIL import Image

from shelfimport.config import AppSettings, IdentificationSettings, require_env
from shelfimport.errors import InferenceUnavailable, PredictionFailed, ShelfImportError
from shelfimport.inference.replicate import PredictionClient, image_data_uri

logger = logging.getLogger(__name__)


class LLMResponseError(ShelfImportError):
    """Raised when model output cannot be parsed as a JSON object."""


class StructuredLLM(Protocol):
    def generate_json(
        self,
        prompt: str,
        images: list[Path],
        *,
        max_output_tokens: int | None = None,
    ) -> dict[str, Any]:
        ...


def extract_json(raw_text: str) -> dict[str, Any]:
    """Parse a JSON object out of model text, tolerating code fences and chatter."""
    text = (raw_text or "").strip()
    if not text:
        raise LLMResponseError("empty model response")
    if text.startswith("```"):
        lines = text.splitlines()
        if lines:
            lines = lines[1:]
        if lines and lines[-1].strip().startswith("```"):
            lines = lines[:-1]
        text = "\n".join(lines).strip()
        if text.lower().startswith("json"):
            text = text[4:].strip()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if match is None:
            raise LLMResponseError(f"no JSON object in response: {text[:120]!r}") from None
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise LLMResponseError(f"malformed JSON in response: {exc}") from exc
    if not isinstance(payload, dict):
        raise LLMResponseError("response JSON is not an object")
    return payload


def _output_text(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, list):
        pieces: list[str] = []
        for part in output:
            if isinstance(part, dict):
                pieces.append(str(part.get("text", "")))
            else:
                pieces.append(str(part))
        return "".join(pieces)
    return str(output)


class ReplicateLLM:
    """Gemini hosted behind the prediction gateway."""

    def __init__(
        self,
        predictions: PredictionClient,
        *,
        model_version: str,
        temperature: float = 0.1,
        max_output_tokens: int = 500,
        timeout: float = 300.0,
    ) -> None:
        self.predictions = predictions
        self.model_version = model_version
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout

    def generate_json(
        self,
        prompt: str,
        images: list[Path],
        *,
        max_output_tokens: int | None = None,
    ) -> dict[str, Any]:
        inputs: dict[str, Any] = {
            "prompt": prompt,
            "max_output_tokens": max_output_tokens or self.max_output_tokens,
            "temperature": self.temperature,
        }
        if images:
            inputs["images"] = [image_data_uri(path) for path in images]
        prediction = self.predictions.run(self.model_version, inputs, timeout=self.timeout)
        return extract_json(_output_text(prediction.output))


_UNAVAILABLE_EXC = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.Unauthenticated,
    google_exceptions.PermissionDenied,
    google_exceptions.ResourceExhausted,
)


class GeminiLLM:
    """Gemini API called directly through google-generativeai."""

    def __init__(
        self,
        *,
        api_key: str,
        model_name: str,
        temperature: float = 0.1,
        max_output_tokens: int = 500,
        timeout: float = 300.0,
    ) -> None:
        genai.configure(api_key=api_key)
        self.model = genai.GenerativeModel(model_name)
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout

    def generate_json(
        self,
        prompt: str,
        images: list[Path],
        *,
        max_output_tokens: int | None = None,
    ) -> dict[str, Any]:
        parts: list[Any] = [prompt]
        for path in images:
            with Image.open(path) as img:
                parts.append(img.convert("RGB"))
        try:
            response = self.model.generate_content(
                parts,
                generation_config={
                    "temperature": self.temperature,
                    "max_output_tokens": max_output_tokens or self.max_output_tokens,
                    "response_mime_type": "application/json",
                },
                request_options={"timeout": self.timeout},
            )
        except _UNAVAILABLE_EXC as exc:
            raise InferenceUnavailable(f"Gemini unavailable: {exc}") from exc
        except google_exceptions.GoogleAPIError as exc:
            raise PredictionFailed(f"Gemini request failed: {exc}") from exc
        try:
            text = response.text
        except ValueError as exc:
            # Raised when the candidate was blocked and carries no text part.
            raise LLMResponseError(f"Gemini returned no text: {exc}") from exc
        return extract_json(text)


def build_llm(
    settings: AppSettings,
    predictions: PredictionClient | None = None,
) -> StructuredLLM:
    """Pick the configured identification backend."""
    ident: IdentificationSettings = settings.identification
    if ident.backend == "gemini":
        logger.info("Using Gemini API backend (%s)", ident.gemini_model)
        return GeminiLLM(
            api_key=require_env(ident.gemini_api_key_env),
            model_name=ident.gemini_model,
            temperature=ident.temperature,
            max_output_tokens=ident.max_output_tokens,
            timeout=ident.timeout_seconds,
        )
    if predictions is None:
        predictions = PredictionClient.from_settings(settings.replicate)
    logger.info("Using hosted Gemini backend (version %s)", ident.replicate_model_version[:12])
    return ReplicateLLM(
        predictions,
        model_version=ident.replicate_model_version,
        temperature=ident.temperature,
        max_output_tokens=ident.max_output_tokens,
        timeout=ident.timeout_seconds,
    )
