import base64
import io
import logging
import os
from dataclasses import dataclass, field

from PIL import Image

from relay_utils.errors import MalformedReplyError, RelayError
from relay_utils.gemini_client import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    first_prompt,
    generate,
    image_parts,
    reply_text,
    with_prompt,
)
from relay_utils.json_extract import extract_json, merge_records, missing_fields

STRATEGIES = ("none", "smart", "field")

FIELD_LABELS = {
    "client_name": "Client name",
    "phone": "Phone#",
    "price": "Price",
    "model": "Model",
    "imei": "IMEI#",
}

FIELD_HINTS = {
    "imei": "The IMEI# is a long numeric string.",
    "price": "The Price is a number, write it without currency symbols.",
    "phone": "The Phone# is a telephone number.",
}

DEFAULT_PROMPT = (
    "Look at this receipt image and extract the 'Client name', 'Phone#', 'Price', 'Model' and 'IMEI#'. "
    "Return them as a JSON object with the keys client_name, phone, price, model and imei. "
    "Use null for anything you cannot read. Provide ONLY the JSON object."
)


def _split_fields(raw):
    return tuple(f.strip() for f in (raw or "").split(",") if f.strip())


@dataclass
class Settings:
    api_key: str = ""
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 60
    retry_strategy: str = "smart"
    required_fields: tuple = ("imei",)
    fallback_fields: tuple = ("imei", "price")
    cors_origins: list = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls):
        strategy = os.getenv("RETRY_STRATEGY", "smart").strip().lower()
        if strategy not in STRATEGIES:
            logging.warning(f"Неизвестная стратегия RETRY_STRATEGY={strategy!r}, используется smart")
            strategy = "smart"

        return cls(
            api_key=os.getenv("GEMINI_API_KEY", "").strip(),
            model=os.getenv("GEMINI_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL,
            base_url=os.getenv("GEMINI_API_BASE", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL,
            timeout=float(os.getenv("GEMINI_TIMEOUT_SECONDS", "60")),
            retry_strategy=strategy,
            required_fields=_split_fields(os.getenv("REQUIRED_FIELDS", "imei")),
            fallback_fields=_split_fields(os.getenv("FALLBACK_FIELDS", "imei,price")),
            cors_origins=list(_split_fields(os.getenv("CORS_ORIGINS", "*"))) or ["*"],
        )


def _label(name):
    return FIELD_LABELS.get(name, name)


def reinforced_prompt(original_prompt, required_fields=("imei",)):
    """Промпт для повторной попытки: перечисляет нужные поля и цитирует исходный запрос."""

    wanted = [name for name in FIELD_LABELS if name not in required_fields]
    fields_text = ", ".join(f"'{_label(name)}'" for name in wanted)
    especially = [f"'{_label(name)}'" for name in required_fields]
    if especially:
        fields_text += ", and especially the " + " and ".join(especially)
    hints = " ".join(FIELD_HINTS[name] for name in required_fields if name in FIELD_HINTS)

    return (
        "Your previous response was incomplete or not valid JSON. Please try again. "
        f"Look at the image carefully. Extract the {fields_text}. "
        + (f"{hints} " if hints else "")
        + "Provide ONLY the valid JSON object as requested. Do not include any extra text or explanations. "
        f'The original request was: "{original_prompt}"'
    )


def field_prompt(name):
    hint = FIELD_HINTS.get(name, "")
    return (
        f"Look at the image carefully and find only the '{_label(name)}'. "
        + (f"{hint} " if hint else "")
        + f'Respond with ONLY a JSON object of the form {{"{name}": <value>}}. '
        "Use null if it is not visible."
    )


def field_payload(payload, name):
    """Узкий запрос за одним полем: только изображения и короткий промпт."""

    narrow = {key: value for key, value in payload.items() if key != "contents"}
    narrow["contents"] = [{"parts": [{"text": field_prompt(name)}] + image_parts(payload)}]
    return narrow


def ask(payload, settings, attempt=None):
    data = generate(
        payload,
        settings.api_key,
        model=settings.model,
        base_url=settings.base_url,
        timeout=settings.timeout,
        attempt=attempt,
    )
    return reply_text(data)


def _first_attempt(payload, settings):
    """Первая попытка. Возвращает (запись, None) или (None, причина повтора)."""

    logging.info("Запрос к Google API: первая попытка")
    text = ask(payload, settings)
    try:
        return extract_json(text), None
    except MalformedReplyError:
        return None, "некорректный JSON"


def _retry(payload, settings):
    prompt = reinforced_prompt(first_prompt(payload), settings.required_fields)
    logging.info("Запрос к Google API: повторная попытка с усиленным промптом")
    return extract_json(ask(with_prompt(payload, prompt), settings, attempt="retry"))


def _run_smart(payload, settings):
    record, reason = _first_attempt(payload, settings)
    if record is not None:
        missing = missing_fields(record, settings.required_fields)
        if not missing:
            return record
        reason = "нет полей " + ", ".join(missing)

    logging.warning(f"Первая попытка неполная ({reason}), запускаю повторную попытку...")
    return _retry(payload, settings)


def _run_field(payload, settings):
    record, reason = _first_attempt(payload, settings)
    if record is None:
        logging.warning(f"Первая попытка неудачная ({reason}), запускаю повторную попытку...")
        record = _retry(payload, settings)

    for name in missing_fields(record, settings.fallback_fields):
        logging.warning(f"Поле {name} не найдено, отправляю отдельный запрос")
        try:
            extra = extract_json(ask(field_payload(payload, name), settings, attempt=f"{name} fallback"))
        except RelayError as e:
            logging.warning(f"Отдельный запрос за полем {name} не удался: {e}")
            continue
        record = merge_records(record, extra, (name,))

    return record


def process_payload(payload, settings):
    """Пересылает payload в Google API и возвращает JSON-запись из ответа модели."""

    if not settings.api_key:
        raise RelayError("API key not configured on the server.")

    if settings.retry_strategy == "none":
        logging.info("Запрос к Google API без повторных попыток")
        return extract_json(ask(payload, settings))
    if settings.retry_strategy == "field":
        return _run_field(payload, settings)
    return _run_smart(payload, settings)


def build_image_payload(image: Image.Image, prompt=DEFAULT_PROMPT):
    with io.BytesIO() as output:
        image.convert("RGB").save(output, format="JPEG")
        encoded = base64.b64encode(output.getvalue()).decode("ascii")

    return {
        "contents": [{
            "parts": [
                {"text": prompt},
                {"inline_data": {"mime_type": "image/jpeg", "data": encoded}},
            ]
        }]
    }
