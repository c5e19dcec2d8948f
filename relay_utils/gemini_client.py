import copy
import logging

import requests

from relay_utils.errors import NoCandidatesError, RelayError, UpstreamError

DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def build_url(model=DEFAULT_MODEL, base_url=DEFAULT_BASE_URL):
    return f"{base_url.rstrip('/')}/models/{model}:generateContent"


def generate(payload, api_key, *, model=DEFAULT_MODEL, base_url=DEFAULT_BASE_URL, timeout=60, attempt=None):
    """Отправляет payload в Google API и возвращает разобранный JSON-ответ.

    attempt попадает в текст ошибки, например "Google API (retry) responded with status 503".
    """

    api_name = f"Google API ({attempt})" if attempt else "Google API"

    try:
        response = requests.post(
            build_url(model, base_url),
            params={"key": api_key},
            json=payload,
            timeout=timeout,
        )
    except requests.RequestException as e:
        logging.error(f"[ERROR] Ошибка запроса к Google API: {e.__class__.__name__}")
        raise UpstreamError(f"Could not reach the {api_name}: {e.__class__.__name__}") from e

    if not response.ok:
        logging.error("[ERROR] Google API вернул ошибку %s: %s", response.status_code, response.text[:300])
        raise UpstreamError(f"{api_name} responded with status {response.status_code}")

    try:
        return response.json()
    except ValueError as e:
        logging.error("[ERROR] Google API вернул ответ не в формате JSON")
        raise UpstreamError(f"{api_name} returned a non-JSON body.") from e


def reply_text(data):
    """Достаёт текст первого кандидата из ответа generateContent."""

    candidates = data.get("candidates") if isinstance(data, dict) else None
    if not isinstance(candidates, list) or not candidates:
        raise NoCandidatesError("AI did not provide a valid response after two attempts.")

    candidate = candidates[0] if isinstance(candidates[0], dict) else {}
    content = candidate.get("content") or {}
    parts = content.get("parts") if isinstance(content, dict) else None
    texts = [
        part["text"] for part in (parts or [])
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    ]
    if not texts:
        reason = candidate.get("finishReason", "unknown")
        logging.warning(f"Кандидат без текста (finishReason={reason})")
        raise NoCandidatesError("AI did not provide a valid response after two attempts.")

    return "".join(texts)


def _first_text_part(payload):
    try:
        parts = payload["contents"][0]["parts"]
    except (KeyError, IndexError, TypeError):
        parts = None

    for part in parts or []:
        if isinstance(part, dict) and isinstance(part.get("text"), str):
            return part
    raise RelayError("Request payload has no text prompt.")


def first_prompt(payload):
    return _first_text_part(payload)["text"]


def with_prompt(payload, text):
    """Копия payload, в которой текст первого промпта заменён на text."""

    patched = copy.deepcopy(payload)
    _first_text_part(patched)["text"] = text
    return patched


def image_parts(payload):
    try:
        parts = payload["contents"][0]["parts"]
    except (KeyError, IndexError, TypeError):
        return []
    return [
        copy.deepcopy(part) for part in parts
        if isinstance(part, dict) and "text" not in part
    ]
