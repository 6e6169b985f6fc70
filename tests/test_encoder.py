import json
import math
import os
from datetime import datetime, timedelta, timezone

import pytest

from yylog.encoder import (
    Caller,
    EncoderConfig,
    Entry,
    Field,
    JSONEncoder,
    Level,
    YYEncoder,
    datetime_time_encoder,
    epoch_time_encoder,
    full_name_caller_encoder,
    json_escape,
    lowercase_level_encoder,
    seconds_duration_encoder,
    set_process_name,
)

EPOCH_PLUS_ONE = datetime.fromtimestamp(1, tz=timezone.utc)


class Loggable:
    def __init__(self, ok):
        self.ok = ok

    def marshal_log_object(self, enc):
        if not self.ok:
            raise ValueError("can't marshal")
        enc.add_string("loggable", "yes")

    def marshal_log_array(self, enc):
        if not self.ok:
            raise ValueError("can't marshal")
        enc.append_bool(True)


class Turducken:
    def marshal_log_object(self, enc):
        def ducks(arr):
            for _ in range(2):
                arr.append_object(lambda inner: inner.add_string("in", "chicken"))

        enc.add_array("ducks", ducks)


class Turduckens:
    def __init__(self, count):
        self.count = count

    def marshal_log_array(self, enc):
        for _ in range(self.count):
            enc.append_object(Turducken())


class NoJSON:
    pass


def make_encoder():
    return YYEncoder(
        EncoderConfig(encode_time=epoch_time_encoder, encode_duration=seconds_duration_encoder)
    )


def assert_output(expected, f):
    enc = make_encoder()
    f(enc)
    assert enc.getvalue() == expected

    enc.reset()
    enc.add_string("foo", "bar")
    f(enc)
    prefix = '"foo":"bar"' + ("," if expected else "")
    assert enc.getvalue() == prefix + expected


@pytest.fixture
def process_name():
    previous = set_process_name("svc")
    yield "svc"
    set_process_name(previous)


def test_clone_is_independent():
    parent = YYEncoder()
    clone = parent.clone()
    parent.add_string("foo", "bar")
    clone.add_string("baz", "bing")
    assert parent.getvalue() == '"foo":"bar"'
    assert clone.getvalue() == '"baz":"bing"'


def test_clone_copies_context():
    parent = YYEncoder()
    parent.add_int("a", 1)
    clone = parent.clone()
    clone.add_int("b", 2)
    assert clone.getvalue() == '"a":1,"b":2'
    assert parent.getvalue() == '"a":1'


ESCAPE_CASES = [
    (b"foo", "foo"),
    (b'"', '\\"'),
    (b"\\", "\\\\"),
    (b'foo"foo', 'foo\\"foo'),
    (b"foo\n", "foo\\n"),
    (b"\n", "\\n"),
    (b"\r", "\\r"),
    (b"\t", "\\t"),
    (b"\b", "\\u0008"),
    (b"\f", "\\u000c"),
    (b"<", "<"),
    (b">", ">"),
    (b"&", "&"),
    (b"\x07", "\\u0007"),
    ("☃".encode(), "☃"),
    (b"\xed\xa0\x80", "\\ufffd\\ufffd\\ufffd"),
    (b"foo\xed\xa0\x80", "foo\\ufffd\\ufffd\\ufffd"),
]


@pytest.mark.parametrize("raw, expected", ESCAPE_CASES)
def test_escaping_string(raw, expected):
    assert json_escape(raw.decode("utf-8", "surrogatepass")) == expected


@pytest.mark.parametrize("raw, expected", ESCAPE_CASES)
def test_escaping_byte_string(raw, expected):
    assert json_escape(raw) == expected


def test_escaping_truncated_sequence_replaces_each_byte():
    assert json_escape(b"a\xe2\x82") == "a\\ufffd\\ufffd"


def _object_error(e):
    with pytest.raises(ValueError):
        e.add_object("k", Loggable(False))


def _array_error(e):
    with pytest.raises(ValueError):
        e.add_array("k", Loggable(False))


def _reflect_failure(e):
    with pytest.raises(TypeError):
        e.add_reflected("k", NoJSON())


def _namespace(e):
    e.open_namespace("outermost")
    e.open_namespace("outer")
    e.add_int("foo", 1)
    e.open_namespace("inner")
    e.add_int("foo", 2)
    e.open_namespace("innermost")


OBJECT_FIELD_CASES = [
    ('"k":"YWIxMg=="', lambda e: e.add_binary("k", b"ab12")),
    ('"k\\\\":true', lambda e: e.add_bool("k\\", True)),
    ('"k":true', lambda e: e.add_bool("k", True)),
    ('"k":false', lambda e: e.add_bool("k", False)),
    ('"k":"v\\\\"', lambda e: e.add_byte_string("k", b"v\\")),
    ('"k":"v"', lambda e: e.add_byte_string("k", b"v")),
    ('"k":""', lambda e: e.add_byte_string("k", b"")),
    ('"k":""', lambda e: e.add_byte_string("k", None)),
    ('"k":"1+2i"', lambda e: e.add_complex("k", 1 + 2j)),
    ('"k":0.000000001', lambda e: e.add_duration("k", 1)),
    ('"k":1', lambda e: e.add_float("k", 1.0)),
    ('"k":10000000000', lambda e: e.add_float("k", 1e10)),
    ('"k":"NaN"', lambda e: e.add_float("k", math.nan)),
    ('"k":"+Inf"', lambda e: e.add_float("k", math.inf)),
    ('"k":"-Inf"', lambda e: e.add_float("k", -math.inf)),
    ('"k":1', lambda e: e.add_float32("k", 1.0)),
    ('"k":10000000000', lambda e: e.add_float32("k", 1e10)),
    ('"k":"NaN"', lambda e: e.add_float32("k", math.nan)),
    ('"k":"+Inf"', lambda e: e.add_float32("k", math.inf)),
    ('"k":"-Inf"', lambda e: e.add_float32("k", -math.inf)),
    ('"k":42', lambda e: e.add_int("k", 42)),
    ('"k":"v\\\\"', lambda e: e.add_string("k", "v\\")),
    ('"k":"v"', lambda e: e.add_string("k", "v")),
    ('"k":""', lambda e: e.add_string("k", "")),
    ('"k":1', lambda e: e.add_time("k", EPOCH_PLUS_ONE)),
    ('"k":42', lambda e: e.add_uint("k", 42)),
    ('"k":{"loggable":"yes"}', lambda e: e.add_object("k", Loggable(True))),
    ('"k":{}', _object_error),
    (
        '"turducken":{"ducks":[{"in":"chicken"},{"in":"chicken"}]}',
        lambda e: e.add_object("turducken", Turducken()),
    ),
    (
        '"turduckens":[{"ducks":[{"in":"chicken"},{"in":"chicken"}]},'
        '{"ducks":[{"in":"chicken"},{"in":"chicken"}]}]',
        lambda e: e.add_array("turduckens", Turduckens(2)),
    ),
    ('"k":[true]', lambda e: e.add_array("k", Loggable(True))),
    ('"k":[]', _array_error),
    ('"k":{"loggable":"yes"}', lambda e: e.add_reflected("k", {"loggable": "yes"})),
    ("", _reflect_failure),
    ('"outermost":{"outer":{"foo":1,"inner":{"foo":2,"innermost":{', _namespace),
]


@pytest.mark.parametrize("expected, f", OBJECT_FIELD_CASES)
def test_object_fields(expected, f):
    assert_output(expected, f)


def _inner_array_error(arr):
    def failing(inner):
        inner.append_bool(True)
        raise RuntimeError("fail")

    with pytest.raises(RuntimeError):
        arr.append_array(failing)


def _inner_object_error(arr):
    with pytest.raises(ValueError):
        arr.append_object(Loggable(False))


def _inner_reflect_error(arr):
    with pytest.raises(TypeError):
        arr.append_reflected(NoJSON())


ARRAY_CASES = [
    ("[true,true]", lambda e: e.append_bool(True)),
    ('["k","k"]', lambda e: e.append_byte_string(b"k")),
    ('["k\\\\","k\\\\"]', lambda e: e.append_byte_string(b"k\\")),
    ('["1+2i","1+2i"]', lambda e: e.append_complex(1 + 2j)),
    ("[0.000000002,0.000000002]", lambda e: e.append_duration(2)),
    ("[3.14,3.14]", lambda e: e.append_float(3.14)),
    ("[3.14,3.14]", lambda e: e.append_float32(3.14)),
    ("[42,42]", lambda e: e.append_int(42)),
    ('["k","k"]', lambda e: e.append_string("k")),
    ('["k\\\\","k\\\\"]', lambda e: e.append_string("k\\")),
    ("[1,1]", lambda e: e.append_time(EPOCH_PLUS_ONE)),
    ("[42,42]", lambda e: e.append_uint(42)),
    ("[[true],[true]]", lambda e: e.append_array(lambda inner: inner.append_bool(True))),
    ("[[true],[true]]", _inner_array_error),
    ('[{"loggable":"yes"},{"loggable":"yes"}]', lambda e: e.append_object(Loggable(True))),
    ("[{},{}]", _inner_object_error),
    ('[{"foo":5},{"foo":5}]', lambda e: e.append_reflected({"foo": 5})),
    ("[]", _inner_reflect_error),
]


@pytest.mark.parametrize("expected, f", ARRAY_CASES)
def test_arrays(expected, f):
    def add(enc):
        def twice(arr):
            f(arr)
            f(arr)

        enc.add_array("array", twice)

    assert_output('"array":' + expected, add)


def test_duration_from_timedelta():
    enc = make_encoder()
    enc.add_duration("d", timedelta(microseconds=2))
    assert enc.getvalue() == '"d":0.000002'


def test_duration_without_encoder_falls_back_to_nanoseconds():
    enc = YYEncoder()
    enc.add_duration("d", timedelta(seconds=1))
    assert enc.getvalue() == '"d":1000000000'


def test_time_without_encoder_falls_back_to_nanoseconds():
    enc = YYEncoder()
    enc.add_time("t", EPOCH_PLUS_ONE)
    assert enc.getvalue() == '"t":1000000000'


def test_uint_rejects_negative():
    with pytest.raises(ValueError):
        YYEncoder().add_uint("k", -1)


def test_reflect_rejects_nan():
    enc = YYEncoder()
    with pytest.raises(ValueError):
        enc.add_reflected("k", [math.nan])
    assert enc.getvalue() == ""


def test_spaced_output():
    enc = YYEncoder(spaced=True)
    enc.add_string("a", "b")
    enc.add_int("c", 1)
    assert enc.getvalue() == '"a": "b", "c": 1'


def test_field_add_to_dispatches_by_type():
    enc = make_encoder()
    for item in [
        Field("b", True),
        Field("i", 7),
        Field("f", 1.5),
        Field("s", "x"),
        Field("bin", b"ab12"),
        Field("err", ValueError("boom")),
        Field("list", [1, "a"]),
        Field("map", {"z": 1}),
    ]:
        item.add_to(enc)
    assert enc.getvalue() == (
        '"b":true,"i":7,"f":1.5,"s":"x","bin":"YWIxMg==","err":"boom",'
        '"list":[1,"a"],"map":{"z":1}'
    )


def test_field_equality_by_key_and_value():
    assert Field("k", "v") == Field("k", "v")
    assert Field("k", 1) != Field("k", "1")


def test_level_names():
    enc = YYEncoder()
    enc.add_array("levels", lambda arr: [lowercase_level_encoder(level, arr) for level in Level])
    assert enc.getvalue() == (
        '"levels":["debug","info","warn","error","dpanic","panic","fatal"]'
    )


def test_lowercase_level_encoder():
    enc = YYEncoder()
    lowercase_level_encoder(Level.WARN, enc)
    assert enc.getvalue() == '"warn"'


def test_datetime_time_encoder():
    enc = YYEncoder()
    datetime_time_encoder(datetime(2020, 1, 2, 3, 4, 5), enc)
    assert enc.getvalue() == '"2020-01-02 03:04:05"'


def test_full_name_caller_encoder_undefined():
    enc = YYEncoder()
    full_name_caller_encoder(Caller(), enc)
    assert enc.getvalue() == '"undefined"'


def test_full_name_caller_encoder_defined():
    enc = YYEncoder()
    full_name_caller_encoder(Caller(True, "/srv/app/pkg/handler.py", 42, "Handler.serve"), enc)
    assert enc.getvalue() == '"pkg/handler.py:serve:42"'


def _production_entry():
    return Entry(
        level=Level.INFO,
        time=EPOCH_PLUS_ONE,
        message="hi",
        caller=Caller(True, "/a/b/c/file.py", 10, "mod.func"),
    )


def test_encode_entry(process_name):
    enc = YYEncoder(EncoderConfig.production())
    enc.add_string("ctx", "1")
    line = enc.encode_entry(_production_entry(), [Field("k", "v")])
    assert line == (
        '{"level":"info","ts":1,"pid":%d,"procname":"svc",'
        '"caller":"c/file.py:func:10","msg":"hi","ctx":"1","k":"v"}\n' % os.getpid()
    )
    assert enc.getvalue() == '"ctx":"1"'


def test_encode_entry_closes_namespaces_and_adds_stack(process_name):
    enc = YYEncoder(EncoderConfig(message_key="msg", stacktrace_key="stack"))
    enc.open_namespace("ns")
    entry = Entry(message="m", stack="trace")
    line = enc.encode_entry(entry, [Field("a", 1)])
    decoded = json.loads(line)
    assert decoded["ns"] == {"a": 1}
    assert decoded["stack"] == "trace"
    assert decoded["procname"] == "svc"
    assert line.endswith("}\n")


def test_json_encoder_has_no_pid():
    enc = JSONEncoder(EncoderConfig.production())
    line = enc.encode_entry(_production_entry(), [Field("k", 2)])
    assert line == '{"level":"info","ts":1,"caller":"c/file.py:10","msg":"hi","k":2}\n'


def test_json_encoder_clone_keeps_class():
    enc = JSONEncoder(EncoderConfig(message_key="msg"))
    enc.add_int("x", 1)
    clone = enc.clone()
    line = clone.encode_entry(Entry(message="m"), [])
    assert line == '{"msg":"m","x":1}\n'
    assert isinstance(clone, JSONEncoder)


def test_logger_name_is_encoded(process_name):
    enc = YYEncoder(EncoderConfig(name_key="logger", line_ending="\r\n"))
    line = enc.encode_entry(Entry(logger_name="svc.sub"), [])
    assert line.startswith('{"logger":"svc.sub","pid":')
    assert line.endswith("\r\n")