import hashlib
import threading
import time

import httpx

from rtm_fakes import FakeRTM, fail, ok
from rtm_mcp.ratelimit import RateLimiter
from rtm_mcp.rtm_client import (
    WRITE_METHODS,
    Failure,
    RawResponse,
    RTMClient,
    failure_message,
    requires_timeline,
    sign_params,
)
from rtm_mcp.session import Session


def _client(fake: FakeRTM, auth_token: str | None = "token") -> RTMClient:
    return RTMClient(
        "key",
        "secret",
        session=Session(auth_token=auth_token),
        rate_limiter=RateLimiter(sleep=lambda _: None),
        transport=fake.transport(),
    )


def test_signature_matches_documented_scheme():
    params = {"yxz": "foo", "feg": "bar", "abc": "baz"}
    expected = hashlib.md5(b"BANANASabcbazfegbaryxzfoo").hexdigest()
    assert sign_params("BANANAS", params) == expected


def test_signature_ignores_insertion_order_and_existing_sig():
    first = {"method": "rtm.test.echo", "api_key": "key", "format": "json"}
    second = {"format": "json", "api_key": "key", "method": "rtm.test.echo", "api_sig": "stale"}
    assert sign_params("secret", first) == sign_params("secret", second)


def test_read_call_is_signed_and_authenticated(fake_rtm, rtm_client):
    fake_rtm.on("rtm.lists.getList", ok(lists={"list": []}))

    result = rtm_client.call("rtm.lists.getList")

    assert isinstance(result, RawResponse)
    assert result.ok
    sent = fake_rtm.calls_to("rtm.lists.getList")[0]
    assert sent["auth_token"] == "token"
    assert sent["format"] == "json"
    assert "timeline" not in sent
    assert sent["api_sig"] == sign_params("secret", {k: v for k, v in sent.items() if k != "api_sig"})
    assert "rtm.timelines.create" not in fake_rtm.methods


def test_echo_and_auth_methods_skip_auth_token(fake_rtm, rtm_client):
    fake_rtm.on("rtm.test.echo", ok(test="hello"))
    fake_rtm.on("rtm.auth.getFrob", ok(frob="f00"))

    rtm_client.call("rtm.test.echo", {"test": "hello"})
    rtm_client.call("rtm.auth.getFrob")

    assert all("auth_token" not in call for call in fake_rtm.calls)


def test_timeline_minted_once_for_writes(fake_rtm, rtm_client):
    fake_rtm.on("rtm.tasks.complete", ok())

    rtm_client.call("rtm.tasks.complete", {"list_id": "1", "taskseries_id": "2", "task_id": "3"})
    rtm_client.call("rtm.tasks.complete", {"list_id": "1", "taskseries_id": "2", "task_id": "4"})

    assert fake_rtm.methods.count("rtm.timelines.create") == 1
    assert [call["timeline"] for call in fake_rtm.calls_to("rtm.tasks.complete")] == ["42", "42"]
    assert rtm_client.session.timeline == "42"


def test_timeline_failure_fails_closed():
    fake = FakeRTM().on("rtm.timelines.create", fail("Invalid auth token", "98"))
    fake.on("rtm.tasks.add", ok())
    client = _client(fake)

    first = client.call("rtm.tasks.add", {"name": "x"})
    second = client.call("rtm.tasks.add", {"name": "y"})

    assert isinstance(first, Failure)
    assert "No timeline available for rtm.tasks.add" in first.message
    assert "Invalid auth token" in first.message
    assert isinstance(second, Failure)
    assert fake.methods == ["rtm.timelines.create"]


def test_none_params_are_dropped_and_bools_encoded(fake_rtm, rtm_client):
    fake_rtm.on("rtm.tasks.getList", ok(tasks={}))

    rtm_client.call("rtm.tasks.getList", {"list_id": None, "filter": "status:incomplete", "v": 2, "flag": True})

    sent = fake_rtm.calls_to("rtm.tasks.getList")[0]
    assert "list_id" not in sent
    assert sent["v"] == "2"
    assert sent["flag"] == "1"


def test_api_failure_is_raw_response_with_message(fake_rtm, rtm_client):
    fake_rtm.on("rtm.lists.getList", fail("Login failed / Invalid auth token", "98"))

    result = rtm_client.call("rtm.lists.getList")

    assert isinstance(result, RawResponse)
    assert not result.ok
    assert failure_message(result) == "Login failed / Invalid auth token"


def test_http_error_status_becomes_failure(fake_rtm, rtm_client):
    fake_rtm.on("rtm.lists.getList", httpx.Response(500))

    result = rtm_client.call("rtm.lists.getList")

    assert isinstance(result, Failure)
    assert result.http_status == 500
    assert result.message == "HTTP 500: Internal Server Error"


def test_transport_error_becomes_failure():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = RTMClient(
        "key",
        "secret",
        rate_limiter=RateLimiter(sleep=lambda _: None),
        transport=httpx.MockTransport(refuse),
    )

    result = client.call("rtm.test.echo")

    assert isinstance(result, Failure)
    assert result.message.startswith("Request failed:")


def test_non_json_body_becomes_failure(fake_rtm, rtm_client):
    fake_rtm.on("rtm.lists.getList", httpx.Response(200, text="<html>maintenance</html>"))

    result = rtm_client.call("rtm.lists.getList")

    assert isinstance(result, Failure)
    assert "Invalid JSON" in result.message


def test_write_methods_are_a_closed_set():
    assert requires_timeline("rtm.tasks.add")
    assert requires_timeline("rtm.tasks.notes.edit")
    assert not requires_timeline("rtm.tasks.getList")
    assert not requires_timeline("rtm.timelines.create")
    assert all(method.startswith(("rtm.tasks.", "rtm.lists.")) for method in WRITE_METHODS)


def test_auth_url_is_signed():
    client = RTMClient("key", "secret")
    url = httpx.URL(client.auth_url("f00"))
    client.close()

    params = dict(url.params)
    assert url.host == "www.rememberthemilk.com"
    assert params["perms"] == "delete"
    assert params["api_sig"] == sign_params("secret", {"api_key": "key", "perms": "delete", "frob": "f00"})


def test_concurrent_writers_share_one_timeline():
    mints = []

    def slow_mint(params):
        mints.append(params)
        time.sleep(0.05)
        return ok(timeline="77")

    fake = FakeRTM().on("rtm.timelines.create", slow_mint).on("rtm.tasks.complete", ok())
    client = _client(fake)
    barrier = threading.Barrier(10)

    def write(index):
        barrier.wait()
        client.call("rtm.tasks.complete", {"list_id": "1", "taskseries_id": "2", "task_id": str(index)})

    threads = [threading.Thread(target=write, args=(index,)) for index in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    client.close()

    assert len(mints) == 1
    writes = fake.calls_to("rtm.tasks.complete")
    assert len(writes) == 10
    assert {call["timeline"] for call in writes} == {"77"}
