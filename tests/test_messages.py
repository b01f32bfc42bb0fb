from logcache.messages import (
    Counter,
    Envelope,
    EnvelopeType,
    Gauge,
    GaugeValue,
    Log,
    LogType,
    MetaResponse,
    ReadRequest,
    SendRequest,
)


def _gauge_envelope():
    return Envelope(
        source_id="test-app-id",
        instance_id="1",
        timestamp=12345000,
        tags={"key": "value"},
        message=Gauge(metrics={"cpu": GaugeValue(unit="percentage", value=0.23)}),
    )


def test_copy_is_equal_to_original():
    env = _gauge_envelope()
    assert env.copy() == env


def test_copy_does_not_share_tags():
    env = _gauge_envelope()
    dup = env.copy()
    dup.tags["other"] = "x"
    assert "other" not in env.tags


def test_copy_does_not_share_message():
    env = _gauge_envelope()
    dup = env.copy()
    dup.message.metrics["cpu"].value = 1.0
    assert env.message.metrics["cpu"].value == 0.23


def test_default_envelopes_do_not_share_tags():
    a = Envelope()
    b = Envelope()
    a.tags["k"] = "v"
    assert b.tags == {}


def test_envelopes_with_different_messages_differ():
    a = Envelope(message=Counter(name="metric", total=99))
    b = Envelope(message=Counter(name="metric", total=101))
    assert not a == b


def test_log_defaults_to_out_stream():
    assert Log(payload=b"just a test").type is LogType.OUT


def test_read_request_default_has_no_envelope_types():
    req = ReadRequest(source_id="some-source")
    assert req.envelope_types == []
    req.envelope_types.append(EnvelopeType.LOG)
    assert ReadRequest().envelope_types == []


def test_send_request_is_not_local_by_default():
    assert SendRequest().local_only is False


def test_meta_response_defaults_to_empty_meta():
    assert MetaResponse().meta == {}