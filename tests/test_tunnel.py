from __future__ import annotations

import asyncio
import base64

import httpx
import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from config import ServerConfig

from conftest import FakeBeam, make_context

AUTH = ("whoever", "s3cret")


@pytest.fixture
def beam():
    return FakeBeam()


@pytest.fixture
def app(beam):
    return create_app(make_context(beam), ServerConfig(api_key="s3cret"))


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def test_tunnels_body_to_destination(client, beam):
    response = client.post(
        "/send/b.proxy2",
        auth=AUTH,
        content=b"file body",
        headers={"filename": "report.pdf", "metadata": '{"k": 1}'},
    )

    assert response.status_code == 200
    (destination, metadata), = beam.opened
    assert str(destination) == "b.proxy2.brokerX"
    assert metadata == {"suggested_name": "report.pdf", "meta": {"k": 1}}
    stream, = beam.streams
    assert bytes(stream.written) == b"file body"
    assert stream.closed


def test_proxy_only_destination(client, beam):
    assert client.post("/send/proxy9", auth=AUTH, content=b"x").status_code == 200
    assert str(beam.opened[0][0]) == "a.proxy9.brokerX"


@pytest.mark.parametrize("auth", [None, ("whoever", "wrong"), ("s3cret", "")])
def test_bad_credentials_have_no_side_effects(client, beam, auth):
    response = client.post("/send/b.proxy2", auth=auth, content=b"x")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Basic"
    assert beam.opened == []


def test_bad_metadata_header_is_ignored(client, beam):
    response = client.post(
        "/send/b.proxy2", auth=AUTH, content=b"x", headers={"metadata": "{oops"},
    )
    assert response.status_code == 200
    assert beam.opened[0][1] == {"suggested_name": None, "meta": None}


def test_open_failure_is_server_error(app):
    app.state.context.beam.fail_open = True
    with TestClient(app) as client:
        response = client.post("/send/b.proxy2", auth=AUTH, content=b"x")
    assert response.status_code == 500
    assert app.state.transfers.in_flight == {}


def test_malformed_destination(client, beam):
    response = client.post("/send/x.y.z", auth=AUTH, content=b"x")
    assert response.status_code == 400
    assert beam.opened == []


def test_refuses_when_at_capacity(app, beam):
    app.state.transfers.max_transfers = 0
    with TestClient(app) as client:
        response = client.post("/send/b.proxy2", auth=AUTH, content=b"x")
    assert response.status_code == 503
    assert beam.opened == []


@pytest.mark.parametrize("path", [
    "/send/b.p%0D%0AX-Injected:%20yes",
    "/send/b.p%20q",
    "/send/b.p%00",
])
def test_destination_with_unsafe_characters(client, beam, path):
    response = client.post(path, auth=AUTH, content=b"x")
    assert response.status_code == 400
    assert beam.opened == []


def test_cap_holds_for_concurrent_requests():
    beam = FakeBeam(open_delay=0.1)
    app = create_app(make_context(beam), ServerConfig(api_key="s3cret", max_transfers=1))

    async def run():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://tunnel") as client:
            responses = await asyncio.gather(*(
                client.post("/send/b.proxy2", auth=AUTH, content=b"x") for _ in range(2)
            ))
        return sorted(r.status_code for r in responses)

    assert asyncio.run(run()) == [200, 503]
    assert len(beam.opened) == 1


def test_failed_open_frees_its_slot():
    beam = FakeBeam(fail_open=True)
    app = create_app(make_context(beam), ServerConfig(api_key="s3cret", max_transfers=1))
    with TestClient(app) as client:
        assert client.post("/send/b.proxy2", auth=AUTH, content=b"x").status_code == 500
        beam.fail_open = False
        assert client.post("/send/b.proxy2", auth=AUTH, content=b"x").status_code == 200


def test_accepts_before_body_arrives(app, beam):
    credentials = base64.b64encode(b"whoever:s3cret")
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/send/b.proxy2",
        "raw_path": b"/send/b.proxy2",
        "root_path": "",
        "query_string": b"",
        "headers": [
            (b"host", b"tunnel"),
            (b"authorization", b"Basic " + credentials),
            (b"content-length", b"9"),
        ],
        "client": ("127.0.0.1", 50000),
        "server": ("tunnel", 80),
    }

    async def run():
        body_ready = asyncio.Event()
        started = asyncio.Event()
        sent = []

        async def receive():
            await body_ready.wait()
            return {"type": "http.request", "body": b"late body", "more_body": False}

        async def send(message):
            sent.append(message)
            if message["type"] == "http.response.start":
                started.set()

        handler = asyncio.create_task(app(scope, receive, send))
        await asyncio.wait_for(started.wait(), 5)
        stream, = beam.streams
        before_body = (sent[0]["status"], bytes(stream.written), stream.closed)

        body_ready.set()
        await asyncio.wait_for(handler, 5)
        return before_body, stream, sent

    before_body, stream, sent = asyncio.run(run())
    assert before_body == (200, b"", False)
    assert bytes(stream.written) == b"late body"
    assert stream.closed
    assert sent[-1] == {"type": "http.response.body", "body": b""}
