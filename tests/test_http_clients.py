"""
Test the HTTP detector and collaborator clients against httpx.MockTransport.
"""
import asyncio
import json

import httpx
import pytest

from safeguard.clients.http import HttpAccountService, HttpAuthorityReportingGateway, HttpSafetyAlertChannel
from safeguard.core.config import Settings
from safeguard.detectors.http import ModelServiceClient, build_http_detectors
from safeguard.moderation.errors import CriticalPathFailure, RetriableReportError
from safeguard.moderation.models import ImageRef
from safeguard.moderation.records import AuthorityReport


def transport(handler):
    requests = []

    def record(request: httpx.Request):
        requests.append(request)
        return handler(request)

    return httpx.MockTransport(record), requests


def report():
    return AuthorityReport(
        type="csam",
        user_id="user-1",
        content_id="content-1",
        review_id="mod_1_abc",
        violations=[],
        preserved_evidence=True,
    )


def test_model_service_csam_request():
    mock, requests = transport(lambda r: httpx.Response(200, json={
        "csam_confidence": 0.02, "estimated_age": 31, "age_confidence": 0.9,
    }))
    client = ModelServiceClient("http://models", token="secret", transport=mock)
    detection = asyncio.run(client.detect_csam(ImageRef(url="https://cdn/x.jpg")))

    assert detection.csam_confidence == 0.02
    assert detection.estimated_age == 31
    assert requests[0].url.path == "/v1/csam/detect"
    assert requests[0].headers["Authorization"] == "Bearer secret"
    assert json.loads(requests[0].content) == {"image_url": "https://cdn/x.jpg"}


def test_model_service_inline_image_and_text():
    def handler(request):
        if request.url.path == "/v1/adult/classify":
            return httpx.Response(200, json={"explicit_nudity": 0.3})
        return httpx.Response(200, json={"score": 0.8})

    mock, requests = transport(handler)
    client = ModelServiceClient("http://models", token="", transport=mock)

    async def calls():
        try:
            return (
                await client.classify_adult(ImageRef(data_base64="aGk=")),
                await client.score_text("harassment", "hello"),
            )
        finally:
            await client.close()

    scores, score = asyncio.run(calls())

    assert scores.explicit_nudity == 0.3
    assert score == 0.8
    assert json.loads(requests[0].content) == {"image_b64": "aGk="}
    assert requests[1].url.path == "/v1/text/harassment"
    assert "Authorization" not in requests[0].headers


def test_model_service_malformed_response_raises():
    mock, _ = transport(lambda r: httpx.Response(200, json={"score": 3.5}))
    client = ModelServiceClient("http://models", token="", transport=mock)
    with pytest.raises(Exception):
        asyncio.run(client.score_text("spam", "hello"))


def test_model_service_http_error_raises():
    mock, _ = transport(lambda r: httpx.Response(500))
    client = ModelServiceClient("http://models", token="", transport=mock)
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(client.detect_csam(ImageRef(url="https://cdn/x.jpg")))


def test_build_http_detectors():
    detectors = build_http_detectors(Settings(model_service_url="http://models"))
    assert [c.category for c in detectors["text_classifiers"]] == ["hate_speech", "harassment", "spam"]
    assert detectors["csam_detector"].client is detectors["client"]


def test_suspend_treats_conflict_as_success():
    mock, requests = transport(lambda r: httpx.Response(409))
    service = HttpAccountService("http://accounts", token="t", transport=mock)
    asyncio.run(service.suspend("user-1", "csam_detected"))
    assert requests[0].url.path == "/v1/accounts/user-1/suspend"
    assert json.loads(requests[0].content) == {"reason": "csam_detected"}


def test_suspend_raises_on_server_error():
    mock, _ = transport(lambda r: httpx.Response(503))
    service = HttpAccountService("http://accounts", token="t", transport=mock)
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(service.suspend("user-1", "csam_detected"))


@pytest.mark.parametrize("status", [429, 500, 503])
def test_gateway_retriable_statuses(status):
    mock, _ = transport(lambda r: httpx.Response(status, text="busy"))
    gateway = HttpAuthorityReportingGateway("http://gw", token="t", transport=mock)
    with pytest.raises(RetriableReportError):
        asyncio.run(gateway.report(report()))


def test_gateway_transport_error_is_retriable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    mock, _ = transport(handler)
    gateway = HttpAuthorityReportingGateway("http://gw", token="t", transport=mock)
    with pytest.raises(RetriableReportError):
        asyncio.run(gateway.report(report()))


def test_gateway_rejection_is_not_retriable():
    mock, _ = transport(lambda r: httpx.Response(400, text="bad payload"))
    gateway = HttpAuthorityReportingGateway("http://gw", token="t", transport=mock)
    with pytest.raises(CriticalPathFailure) as exc:
        asyncio.run(gateway.report(report()))
    assert not isinstance(exc.value, RetriableReportError)


def test_gateway_sends_json_report():
    mock, requests = transport(lambda r: httpx.Response(202))
    gateway = HttpAuthorityReportingGateway("http://gw", token="t", transport=mock)
    asyncio.run(gateway.report(report()))
    body = json.loads(requests[0].content)
    assert body["review_id"] == "mod_1_abc"
    assert body["preserved_evidence"] is True
    assert "timestamp" in body


def test_alert_channel_posts_priority():
    mock, requests = transport(lambda r: httpx.Response(200))
    alerts = HttpSafetyAlertChannel("http://alerts", token="t", transport=mock)
    asyncio.run(alerts.alert("critical", {"type": "csam_detected"}))
    assert json.loads(requests[0].content) == {"priority": "critical", "payload": {"type": "csam_detected"}}
