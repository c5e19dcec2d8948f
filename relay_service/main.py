import json
import logging
import os
from io import BytesIO

from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from PIL import Image, UnidentifiedImageError

from relay_service.pipeline import DEFAULT_PROMPT, Settings, build_image_payload, process_payload
from relay_utils.errors import RelayError
from relay_utils.json_extract import reject_constant

MAX_BODY_BYTES = 10 * 1024 * 1024

load_dotenv()

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings.from_env().cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status, message):
    return JSONResponse(status_code=status, content={"error": message})


def relay(payload):
    settings = Settings.from_env()
    try:
        return process_payload(payload, settings)
    except RelayError as e:
        logging.error(f"[ERROR] Итоговая ошибка прокси: {e}")
        return error_response(500, str(e))


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/gemini-proxy")
async def gemini_proxy(request: Request):
    length = request.headers.get("content-length")
    if length and length.isdigit() and int(length) > MAX_BODY_BYTES:
        return error_response(413, "Request body is too large.")

    body = await request.body()
    if len(body) > MAX_BODY_BYTES:
        return error_response(413, "Request body is too large.")

    try:
        payload = json.loads(body, parse_constant=reject_constant)
    except ValueError:
        return error_response(400, "Request body must be valid JSON.")
    if not isinstance(payload, dict):
        return error_response(400, "Request body must be a JSON object.")

    return await run_in_threadpool(relay, payload)


@app.post("/process/")
async def process_image(file: UploadFile = File(...), prompt: str = Form(DEFAULT_PROMPT)):
    contents = await file.read()
    if len(contents) > MAX_BODY_BYTES:
        return error_response(413, "Request body is too large.")

    try:
        image = Image.open(BytesIO(contents)).convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError):
        logging.warning(f"Не удалось открыть изображение {file.filename!r}")
        return error_response(400, "Uploaded file is not a readable image.")

    return await run_in_threadpool(relay, build_image_payload(image, prompt))


def run():
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3001"))
    logging.info(f"Прокси-сервер запущен на порту {port} (стратегия {Settings.from_env().retry_strategy})")
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run()
