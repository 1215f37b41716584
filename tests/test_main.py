import asyncio

import pytest
from fastapi.testclient import TestClient

from modgate.config import GatewayConfig
from modgate.errors import PublishError
from modgate.main import app
from modgate.schemas import ItemVerdict, ModerationResult

SAFE = ModerationResult(
    is_safe=True,
    reason="All content is safe",
    confidence=0.97,
    flags=[],
    text_verdict=ItemVerdict(is_safe=True, reason="Content is safe", confidence=0.97),
)
UNSAFE = ModerationResult(
    is_safe=False,
    reason="Content flagged for: hate",
    confidence=0.95,
    flags=["hate"],
    text_verdict=ItemVerdict(is_safe=False, reason="Content flagged for: hate", confidence=0.95, flags=["hate"]),
)


class StubService:
    def __init__(self, result=SAFE, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def moderate(self, text, images, videos):
        self.calls.append((text, list(images), list(videos)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class StubPoster:
    def __init__(self, post_id="123", error=None):
        self.post_id = post_id
        self.error = error
        self.calls = []

    async def post(self, text, reply_to=None, quote_tweet=None):
        self.calls.append((text, reply_to, quote_tweet))
        if self.error is not None:
            raise self.error
        return self.post_id


@pytest.fixture
def client():
    # Lifespan is not run; state is injected per test
    app.state.config = GatewayConfig(openai_api_key="sk-test")
    app.state.moderation_service = StubService()
    app.state.x_client = None
    return TestClient(app)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_moderate_ok(client):
    response = client.post("/moderate", json={"text": "Hello, how are you today?"})
    assert response.status_code == 200
    body = response.json()
    assert body["result"] == "ok"
    assert body["confidence"] == 0.97
    assert body["text_result"]["is_safe"] is True
    assert app.state.moderation_service.calls[0][0] == "Hello, how are you today?"


def test_moderate_rejected(client):
    app.state.moderation_service = StubService(result=UNSAFE)
    body = client.post("/moderate", json={"text": "hateful"}).json()
    assert body["result"] == "rejected"
    assert body["flags"] == ["hate"]
    assert body["reason"] == "Content flagged for: hate"


def test_moderate_passes_media(client):
    payload = {
        "images": [{"url": "https://cdn.example.com/a.jpg"}],
        "videos": [{"url": "https://cdn.example.com/v.mp4", "duration": 10}],
    }
    assert client.post("/moderate", json=payload).status_code == 200
    _, images, videos = app.state.moderation_service.calls[0]
    assert images[0].url == "https://cdn.example.com/a.jpg"
    assert videos[0].duration == 10


@pytest.mark.parametrize("payload", [
    {"images": [{"url": "https://a/b.jpg", "base64": "YWJj"}]},
    {"images": [{}]},
    {"images": [{"url": f"https://a/{i}.jpg"} for i in range(5)]},
    {"text": "x" * 10001},
])
def test_moderate_validation(client, payload):
    assert client.post("/moderate", json=payload).status_code == 422


def test_moderate_timeout(client):
    app.state.config = GatewayConfig(openai_api_key="sk-test", request_timeout_seconds=0.05)
    app.state.moderation_service = StubService(delay=2.0)
    response = client.post("/moderate", json={"text": "slow"})
    assert response.status_code == 504
    assert response.json()["result"] == "rejected"


def test_moderate_unexpected_error(client):
    app.state.moderation_service = StubService(error=RuntimeError("boom"))
    response = client.post("/moderate", json={"text": "hi"})
    assert response.status_code == 500
    assert response.json() == {"result": "rejected", "reason": "Failed to process moderation request"}


def test_x_post_not_configured(client):
    response = client.post("/x-post", json={"text": "hi"})
    assert response.status_code == 503
    assert response.json()["success"] is False
    assert app.state.moderation_service.calls == []


def test_x_post_success(client):
    poster = StubPoster(post_id="999")
    app.state.x_client = poster
    response = client.post("/x-post", json={"text": "hi", "reply_to": "5"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["post_id"] == "999"
    assert body["moderation_result"]["result"] == "ok"
    assert poster.calls == [("hi", "5", None)]


def test_x_post_rejected_by_moderation(client):
    poster = StubPoster()
    app.state.x_client = poster
    app.state.moderation_service = StubService(result=UNSAFE)
    response = client.post("/x-post", json={"text": "hateful"})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["moderation_result"]["result"] == "rejected"
    assert poster.calls == []


def test_x_post_publish_failure(client):
    app.state.x_client = StubPoster(error=PublishError("X API error: 403", status_code=403))
    response = client.post("/x-post", json={"text": "hi"})
    assert response.status_code == 502
    assert response.json()["error"] == "X API error: 403"


def test_x_post_text_limits(client):
    app.state.x_client = StubPoster()
    assert client.post("/x-post", json={"text": ""}).status_code == 422
    assert client.post("/x-post", json={"text": "x" * 281}).status_code == 422


def test_x_post_with_images_is_refused(client):
    poster = StubPoster()
    app.state.x_client = poster
    response = client.post("/x-post", json={"text": "hi", "images": [{"url": "https://cdn.example.com/a.jpg"}]})
    assert response.status_code == 422
    assert response.json()["success"] is False
    assert response.json()["error"] == "Posting images is not supported"
    assert poster.calls == []
    assert app.state.moderation_service.calls == []
