import pytest

from sessionauth.service.context import MAX_USER_AGENT_LENGTH, RequestContext, device_label


@pytest.mark.parametrize(
    "user_agent,label",
    [
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)", "iOS Device"),
        ("Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X)", "iOS Device"),
        ("Mozilla/5.0 (Linux; Android 14; Pixel 8)", "Android Device"),
        ("Mozilla/5.0 (Windows NT 10.0; Win64; x64)", "Windows PC"),
        ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0)", "Mac"),
        ("Mozilla/5.0 (X11; Linux x86_64)", "Linux PC"),
        ("curl/8.4.0", "Unknown Device"),
        (None, "Unknown"),
        ("", "Unknown"),
    ],
)
def test_device_label(user_agent, label):
    assert device_label(user_agent) == label


def test_forwarded_for_wins():
    context = RequestContext.from_headers(
        {"X-Forwarded-For": "203.0.113.9, 10.0.0.1", "X-Real-IP": "10.0.0.2"},
        remote_addr="127.0.0.1",
    )
    assert context.ip_address == "203.0.113.9"


def test_real_ip_before_remote_address():
    context = RequestContext.from_headers({"X-Real-IP": "10.0.0.2"}, remote_addr="127.0.0.1")
    assert context.ip_address == "10.0.0.2"


def test_remote_address_fallback():
    context = RequestContext.from_headers({"X-Forwarded-For": "  "}, remote_addr="127.0.0.1")
    assert context.ip_address == "127.0.0.1"


def test_user_agent_is_truncated():
    context = RequestContext.from_headers({"user-agent": "Windows " + "x" * 1000})
    assert len(context.user_agent) == MAX_USER_AGENT_LENGTH
    assert context.device_name == "Windows PC"


def test_empty_context():
    context = RequestContext.empty()
    assert context.ip_address is None
    assert context.user_agent is None
    assert context.device_name == "Unknown"
