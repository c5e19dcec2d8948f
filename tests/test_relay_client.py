import json

import pytest
import requests
from PIL import Image

import relay_client

from conftest import FakeResponse


@pytest.fixture
def fake_relay(monkeypatch):
    calls = []
    replies = []

    def post(url, files=None, data=None, timeout=None):
        calls.append({"url": url, "files": files, "data": data})
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(relay_client.requests, "post", post)
    return calls, replies


def test_send_image_to_relay(fake_relay):
    calls, replies = fake_relay
    replies.append(FakeResponse(200, {"imei": "356938035643809"}))

    record = relay_client.send_image_to_relay(Image.new("RGB", (4, 4)), "prompt", "http://relay.test/process/")

    assert record == {"imei": "356938035643809"}
    assert calls[0]["url"] == "http://relay.test/process/"
    assert calls[0]["data"] == {"prompt": "prompt"}
    name, _, mime = calls[0]["files"]["file"]
    assert (name, mime) == ("image.jpg", "image/jpeg")


def test_send_image_to_relay_raises_on_server_error(fake_relay):
    _, replies = fake_relay
    replies.append(FakeResponse(500, {"error": "Malformed JSON response from AI."}))

    with pytest.raises(requests.HTTPError):
        relay_client.send_image_to_relay(Image.new("RGB", (4, 4)))


def test_main_prints_record(fake_relay, tmp_path, capsys):
    _, replies = fake_relay
    replies.append(FakeResponse(200, {"model": "Pixel 7"}))
    image_path = tmp_path / "receipt.png"
    Image.new("RGB", (4, 4)).save(image_path)

    assert relay_client.main([str(image_path), "--url", "http://relay.test/process/"]) == 0
    assert json.loads(capsys.readouterr().out) == {"model": "Pixel 7"}


def test_main_fails_on_unreachable_relay(fake_relay, tmp_path):
    _, replies = fake_relay
    replies.append(requests.ConnectionError("refused"))
    image_path = tmp_path / "receipt.png"
    Image.new("RGB", (4, 4)).save(image_path)

    assert relay_client.main([str(image_path)]) == 1


def test_main_fails_on_missing_image(tmp_path):
    assert relay_client.main([str(tmp_path / "missing.jpg")]) == 1


def test_main_fails_on_decompression_bomb(fake_relay, tmp_path, monkeypatch):
    calls, _ = fake_relay
    image_path = tmp_path / "huge.png"
    Image.new("RGB", (4, 4)).save(image_path)
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1)

    assert relay_client.main([str(image_path)]) == 1
    assert calls == []
