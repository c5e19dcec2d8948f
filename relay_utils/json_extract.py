import json
import logging

from relay_utils.errors import MalformedReplyError


def reject_constant(name):
    raise ValueError(f"недопустимая константа JSON: {name}")


def extract_json(text):
    """Находит JSON-объект внутри ответа модели: от первой '{' до последней '}'."""

    if not isinstance(text, str):
        raise MalformedReplyError("Malformed JSON response from AI.")

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        logging.error("[ERROR] В ответе модели не найден JSON-объект")
        raise MalformedReplyError("Malformed JSON response from AI.")

    try:
        return json.loads(text[start:end + 1], parse_constant=reject_constant)
    except ValueError as e:
        logging.error(f"[ERROR] Ошибка при разборе JSON из ответа модели: {e}")
        raise MalformedReplyError("Malformed JSON response from AI.") from e


def missing_fields(record, fields):
    """Возвращает поля, которых нет в записи или которые пустые."""

    if not isinstance(record, dict):
        return list(fields)
    return [field for field in fields if not record.get(field)]


def merge_records(base, extra, fields):
    merged = dict(base)
    if not isinstance(extra, dict):
        return merged

    for field in fields:
        if not merged.get(field) and extra.get(field):
            merged[field] = extra[field]
    return merged
