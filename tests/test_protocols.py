import pytest

from udd.errors import InvalidProtocolCommand
from udd.protocols import UqttParser
from udd.uqtt import (
    ConnAck,
    Connect,
    ConnectReturnCode,
    Disconnect,
    PingReq,
    PingResp,
    PubAck,
    Publish,
    QoS,
    SubAck,
    SubAckReturnCode,
    Subscribe,
    SubscribeFilter,
    UdpFrame,
)


def test_uqtt_parser_client_commands():
    assert UqttParser.parse("connect id1 keepalive=30").packet == Connect("id1", keep_alive=30)
    assert UqttParser.parse("connect").packet == Connect("id1")
    assert UqttParser.parse("CONNECT dev ka=5 user=bob pass=pw clean=false").packet == Connect(
        "dev", keep_alive=5, clean_session=False, username="bob", password=b"pw"
    )
    assert UqttParser.parse("publish a/b hello world qos=1 retain").packet == Publish(
        "a/b", b"hello world", qos=QoS.AT_LEAST_ONCE, retain=True
    )
    assert UqttParser.parse("pub t x=1").packet == Publish("t", b"x=1")
    assert UqttParser.parse("subscribe a,b c qos=2").packet == Subscribe([
        SubscribeFilter("a", QoS.EXACTLY_ONCE),
        SubscribeFilter("b", QoS.EXACTLY_ONCE),
        SubscribeFilter("c", QoS.EXACTLY_ONCE),
    ])
    assert UqttParser.parse("disconnect").packet == Disconnect()
    assert UqttParser.parse("disc").packet == Disconnect()
    assert UqttParser.parse("ping").packet == PingReq()


def test_uqtt_parser_broker_replies():
    assert UqttParser.parse("connack rejected session=true").packet == ConnAck(
        True, ConnectReturnCode.NOT_AUTHORIZED
    )
    assert UqttParser.parse("suback 0 2 fail").packet == SubAck([
        SubAckReturnCode.SUCCESS_QOS0, SubAckReturnCode.SUCCESS_QOS2, SubAckReturnCode.FAILURE
    ])
    assert UqttParser.parse("puback").packet == PubAck()
    assert UqttParser.parse("pong").packet == PingResp()


def test_uqtt_parser_msg_id():
    assert UqttParser.parse("ping", msg_id=77).msg_id == 77
    assert UqttParser.encode("ping", msg_id=0x1234) == bytes([0x07, 0x04, 0x12, 0x34])


@pytest.mark.parametrize("line, token", [
    ("bogus foo", "bogus"),
    ("", ""),
    ("connect id1 keepalive=abc", "keepalive=abc"),
    ("connect id1 keepalive=70000", "keepalive=70000"),
    ("connect id1 color=red", "color=red"),
    ("connect id1 extra", "extra"),
    ("publish onlytopic", "onlytopic"),
    ("publish t x qos=3", "qos=3"),
    ("subscribe qos=1", "subscribe"),
    ("ping now", "now"),
    ("suback 7", "7"),
])
def test_uqtt_parser_rejects(line, token):
    with pytest.raises(InvalidProtocolCommand) as exc:
        UqttParser.parse(line)
    assert exc.value.token == token


def test_uqtt_parser_frame_too_large():
    with pytest.raises(InvalidProtocolCommand):
        UqttParser.encode("publish t " + "x" * 300)


def test_uqtt_describe():
    assert UqttParser.describe(UqttParser.encode("connect id1 keepalive=30", 3)) == "#3 CONNECT client=id1 ka=30"
    assert UqttParser.describe(UqttParser.encode("publish s/t 21.5 qos=1", 4)) == '#4 PUBLISH s/t qos=1 "21.5"'
    assert UqttParser.describe(UqttParser.encode("subscribe a,b", 5)) == "#5 SUBSCRIBE [a:0, b:0]"
    assert UqttParser.describe(UqttParser.encode("connack", 6)) == "#6 CONNACK ACCEPTED session=false"
    assert UqttParser.describe(UqttParser.encode("suback 1 fail", 7)) == "#7 SUBACK [SUCCESS_QOS1, FAILURE]"
    assert UqttParser.describe(UqttParser.encode("ping", 8)) == "#8 PINGREQ"


def test_uqtt_describe_truncates_payload_preview():
    data = UdpFrame(1, Publish("t", b"a" * 40)).encode()
    assert UqttParser.describe(data) == '#1 PUBLISH t qos=0 "' + "a" * 27 + '..."'


def test_uqtt_describe_non_frames():
    assert UqttParser.describe(b"") is None
    assert UqttParser.describe(b"hello world") is None
    assert UqttParser.describe(bytes([0xde, 0xad, 0xbe, 0xef])) is None


@pytest.mark.parametrize("line", [
    "subscribe " + ",".join(["a"] * 256),
    "suback" + " 0" * 256,
    "publish " + "t" * 70000 + " x",
])
def test_uqtt_parser_oversized_fields(line):
    with pytest.raises(InvalidProtocolCommand) as exc:
        UqttParser.encode(line)
    assert exc.value.token == line.split()[0]
