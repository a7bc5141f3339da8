"""Tests for the TensorFlow Serving REST client."""

import asyncio
import threading

import httpx
import numpy as np
import orjson
import pytest
from conftest import make_image_bytes

from leafdx.clients.http_client import RetryableHttpClient
from leafdx.clients.model_serving import tensorflow_http
from leafdx.clients.model_serving.tensorflow_http import TensorFlowServingClient
from leafdx.core.exceptions import IntegrationError, ValidationError


BASE_URL = 'http://tf-serving:8501/'
SIZE = 16


def prediction_body(leaf: np.ndarray, lesion: np.ndarray) -> dict:
    return {'predictions': [{'output_0': leaf.tolist(), 'output_1': lesion.tolist()}]}


def make_client(handler, concurrency_limit: int = 10) -> TensorFlowServingClient:
    return TensorFlowServingClient(
        base_url=BASE_URL,
        model_name='leaf_segmentation',
        image_size=SIZE,
        concurrency_limit=concurrency_limit,
        http_client=RetryableHttpClient(
            max_retries=3, base_delay=0.0, transport=httpx.MockTransport(handler)
        ),
    )


@pytest.mark.anyio
async def test_predict_posts_instances_and_parses_outputs():
    seen = {}
    leaf = np.full((SIZE, SIZE, 1), 0.9)
    lesion = np.zeros((SIZE, SIZE, 1))
    lesion[: SIZE // 4] = 0.7

    def handler(request: httpx.Request) -> httpx.Response:
        seen['method'] = request.method
        seen['path'] = request.url.path
        seen['body'] = orjson.loads(request.content)
        return httpx.Response(200, json=prediction_body(leaf, lesion))

    client = make_client(handler)
    result = await client.predict(make_image_bytes())

    assert seen['method'] == 'POST'
    assert seen['path'] == '/v1/models/leaf_segmentation:predict'
    instances = np.asarray(seen['body']['instances'])
    assert instances.shape == (1, SIZE, SIZE, 3)
    assert 0.0 <= instances.min() and instances.max() <= 1.0

    assert result.severity == pytest.approx(25.0)
    assert result.leaf_confidence == pytest.approx(0.9)
    assert result.lesion_confidence == pytest.approx(0.7)
    assert result.image[:2] == b'\xff\xd8'
    await client.close()


@pytest.mark.anyio
async def test_health_check_gets_model_status():
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append((request.method, request.url.path))
        return httpx.Response(200, json={'model_version_status': []})

    client = make_client(handler)
    await client.health_check()

    assert paths == [('GET', '/v1/models/leaf_segmentation')]


@pytest.mark.anyio
async def test_health_check_fails_on_missing_model():
    client = make_client(lambda request: httpx.Response(404))

    with pytest.raises(IntegrationError):
        await client.health_check()


@pytest.mark.anyio
@pytest.mark.parametrize(
    'body',
    [
        b'not json',
        b'{"error": "model not ready"}',
        b'{"predictions": []}',
        b'{"predictions": [{"output_0": [[[0.1]]]}]}',
        b'{"predictions": {"a": 1}}',
        b'{"predictions": 5}',
    ],
)
async def test_malformed_response_is_integration_error(body):
    client = make_client(lambda request: httpx.Response(200, content=body))

    with pytest.raises(IntegrationError) as exc_info:
        await client.predict(make_image_bytes())

    assert exc_info.value.integration == 'tensorflow_serving'


@pytest.mark.anyio
async def test_undecodable_image_never_reaches_backend():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200)

    client = make_client(handler)

    with pytest.raises(ValidationError):
        await client.predict(b'garbage')

    assert calls == []


@pytest.mark.anyio
async def test_concurrency_limit_holds_extra_call_until_permit_frees():
    limit = 2
    gate = asyncio.Event()
    state = {'started': 0, 'in_flight': 0, 'peak': 0}
    zeros = np.zeros((SIZE, SIZE, 1))

    async def handler(request: httpx.Request) -> httpx.Response:
        state['started'] += 1
        state['in_flight'] += 1
        state['peak'] = max(state['peak'], state['in_flight'])
        await gate.wait()
        state['in_flight'] -= 1
        return httpx.Response(200, json=prediction_body(zeros, zeros))

    client = make_client(handler, concurrency_limit=limit)
    image = make_image_bytes()
    tasks = [asyncio.ensure_future(client.predict(image)) for _ in range(limit + 1)]

    for _ in range(500):
        if state['started'] == limit:
            break
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.05)

    assert state['started'] == limit
    assert state['in_flight'] == limit

    gate.set()
    results = await asyncio.gather(*tasks)

    assert len(results) == limit + 1
    assert state['started'] == limit + 1
    assert state['peak'] == limit
    stats = client.get_stats()
    assert stats['peak_active_requests'] == limit
    assert stats['successful_requests'] == limit + 1
    assert stats['active_requests'] == 0


@pytest.mark.anyio
async def test_permit_released_after_failure():
    client = make_client(lambda request: httpx.Response(500), concurrency_limit=1)

    for _ in range(3):
        with pytest.raises(IntegrationError):
            await client.predict(make_image_bytes())

    assert client.get_stats()['failed_requests'] == 3
    assert client.get_stats()['active_requests'] == 0


@pytest.mark.anyio
async def test_image_work_runs_off_the_event_loop(monkeypatch):
    loop_thread = threading.get_ident()
    threads = {}
    real_preprocess = tensorflow_http.preprocess
    real_build = tensorflow_http.build_inference_result

    def recording_preprocess(*args):
        threads['preprocess'] = threading.get_ident()
        return real_preprocess(*args)

    def recording_build(*args):
        threads['build'] = threading.get_ident()
        return real_build(*args)

    monkeypatch.setattr(tensorflow_http, 'preprocess', recording_preprocess)
    monkeypatch.setattr(tensorflow_http, 'build_inference_result', recording_build)

    zeros = np.zeros((SIZE, SIZE, 1))
    client = make_client(lambda request: httpx.Response(200, json=prediction_body(zeros, zeros)))
    await client.predict(make_image_bytes())

    assert threads['preprocess'] != loop_thread
    assert threads['build'] != loop_thread
