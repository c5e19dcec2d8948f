import json

import pytest
import requests


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self.ok = 200 <= status_code < 400
        self._body = body
        self.text = text if text is not None else json.dumps(body)

    def json(self):
        if self._body is None:
            raise ValueError("not json")
        return self._body

    def raise_for_status(self):
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} error")


def gemini_reply(*texts):
    return {"candidates": [{"content": {"parts": [{"text": t} for t in texts], "role": "model"}}]}


class FakeGoogle:
    """Replaces requests.post and answers with queued responses in order."""

    def __init__(self):
        self.replies = []
        self.calls = []

    def reply(self, text):
        self.replies.append(FakeResponse(200, gemini_reply(text)))

    def respond(self, response):
        self.replies.append(response)

    def __call__(self, url, params=None, json=None, timeout=None, **kwargs):
        self.calls.append({"url": url, "params": params, "json": json, "timeout": timeout})
        if not self.replies:
            raise AssertionError("unexpected call to the Google API")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def prompt(self, index):
        return self.calls[index]["json"]["contents"][0]["parts"][0]["text"]


@pytest.fixture
def fake_google(monkeypatch):
    fake = FakeGoogle()
    monkeypatch.setattr("relay_utils.gemini_client.requests.post", fake)
    return fake


@pytest.fixture
def receipt_payload():
    return {
        "contents": [{
            "parts": [
                {"text": "Extract the receipt fields as JSON."},
                {"inline_data": {"mime_type": "image/jpeg", "data": "aGVsbG8="}},
            ]
        }],
        "generationConfig": {"temperature": 0.1},
    }
