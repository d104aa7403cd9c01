import pytest

from rtm_fakes import FakeRTM, ok
from rtm_mcp.ratelimit import RateLimiter
from rtm_mcp.rtm_client import RTMClient
from rtm_mcp.session import Session
from rtm_mcp.tools import RtmTools


@pytest.fixture
def fake_rtm():
    return FakeRTM().on("rtm.timelines.create", ok(timeline="42"))


@pytest.fixture
def rtm_client(fake_rtm):
    client = RTMClient(
        "key",
        "secret",
        session=Session(auth_token="token"),
        rate_limiter=RateLimiter(sleep=lambda _: None),
        transport=fake_rtm.transport(),
    )
    yield client
    client.close()


@pytest.fixture
def rtm_tools(rtm_client):
    return RtmTools(rtm_client, follow_up_delay=0)
