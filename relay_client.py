import argparse
import io
import json
import logging
import os
import sys

import requests
from dotenv import load_dotenv
from PIL import Image, UnidentifiedImageError

from relay_service.pipeline import DEFAULT_PROMPT

DEFAULT_RELAY_URL = "http://localhost:3001/process/"


def send_image_to_relay(image: Image.Image, prompt=DEFAULT_PROMPT, url=DEFAULT_RELAY_URL, timeout=180):
    """Отправляет изображение в прокси и возвращает извлечённую запись."""

    with io.BytesIO() as output:
        image.convert("RGB").save(output, format="JPEG")
        output.seek(0)
        files = {"file": ("image.jpg", output, "image/jpeg")}
        try:
            response = requests.post(url, files=files, data={"prompt": prompt}, timeout=timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logging.error(f"[ERROR] Ошибка запроса к прокси: {e}")
            raise


def main(argv=None):
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )

    parser = argparse.ArgumentParser(prog="relay-client", description="Extract receipt fields from an image")
    parser.add_argument("image")
    parser.add_argument("--prompt", default=DEFAULT_PROMPT)
    parser.add_argument("--url", default=os.getenv("RELAY_URL", DEFAULT_RELAY_URL))
    args = parser.parse_args(argv)

    try:
        image = Image.open(args.image).convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        logging.error(f"[ERROR] Не удалось открыть изображение {args.image}: {e}")
        return 1

    try:
        record = send_image_to_relay(image, args.prompt, args.url)
    except requests.RequestException:
        return 1

    print(json.dumps(record, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
