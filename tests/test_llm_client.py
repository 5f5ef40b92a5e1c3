import pytest

from flames.base_utils import BaseUtils
from flames.errors import ContractViolationError
from flames.llm_client import (
    MaxRetryErrorsException,
    ProviderOverloadedError,
    call_with_backoff_sync,
    is_overload_error,
)
from flames.model_props import is_openai_model, parse_model_name


class Coded(Exception):
    def __init__(self, code):
        super().__init__(f"status {code}")
        self.status_code = code


def _flaky(failures):
    calls = {"n": 0}

    def fn():
        calls["n"] += 1
        if failures:
            raise failures.pop(0)
        return "ok"

    return fn, calls


@pytest.mark.parametrize(
    "error,expected",
    [
        (Coded(503), True),
        (Coded(529), True),
        (Coded(429), False),
        (Coded(500), False),
        (ProviderOverloadedError("busy"), True),
        (RuntimeError("503 UNAVAILABLE: The model is overloaded."), True),
        (RuntimeError("bad request"), False),
    ],
)
def test_is_overload_error(error, expected):
    assert is_overload_error(error) is expected


def test_backoff_doubles_then_succeeds():
    sleeps = []
    fn, calls = _flaky([Coded(503), Coded(529)])

    assert call_with_backoff_sync(fn, sleep=sleeps.append) == "ok"
    assert sleeps == [1.0, 2.0]
    assert calls["n"] == 3


def test_backoff_exhausted():
    sleeps = []
    retries_seen = []
    fn, calls = _flaky([Coded(503)] * 10)

    with pytest.raises(MaxRetryErrorsException):
        call_with_backoff_sync(fn, sleep=sleeps.append, on_retry=lambda n, d, e: retries_seen.append((n, d)))

    assert sleeps == [1.0, 2.0, 4.0]
    assert retries_seen == [(1, 1.0), (2, 2.0), (3, 4.0)]
    assert calls["n"] == 4


def test_other_errors_are_not_retried():
    sleeps = []
    fn, calls = _flaky([ValueError("invalid argument")])

    with pytest.raises(ValueError):
        call_with_backoff_sync(fn, sleep=sleeps.append)

    assert sleeps == []
    assert calls["n"] == 1


@pytest.mark.parametrize(
    "raw",
    [
        '{"a": 1}',
        '```json\n{"a": 1}\n```',
        '```\n{"a": 1}\n```',
        'Sure! Here it is:\n```json\n{"a": 1}\n```\nAnything else?',
        '{\n  // provider comment\n  "a": 1\n}',
    ],
)
def test_load_json_response_variants(raw):
    assert BaseUtils().load_json_response(raw) == {"a": 1}


@pytest.mark.parametrize("raw", ["", "   ", None, "not json", "```json\n{broken\n```"])
def test_load_json_response_rejects(raw):
    with pytest.raises(ContractViolationError):
        BaseUtils().load_json_response(raw)


def test_fence_inside_payload_survives():
    raw = '{"content": "# Readme\\n```bash\\nnpm i\\n```"}'
    assert BaseUtils().load_json_response(raw)["content"].startswith("# Readme")


def test_unsafe_string_format_keeps_unknown_braces():
    out = BaseUtils().unsafe_string_format('{"filePath": "{file_path}"} {other}', file_path="src/App.jsx")
    assert out == '{"filePath": "src/App.jsx"} {other}'


def test_model_routing():
    assert is_openai_model("gpt-5.1_low")
    assert is_openai_model("text-embedding-3-small")
    assert not is_openai_model("gemini-2.5-pro")
    assert not is_openai_model("text-embedding-005")


def test_parse_model_name():
    assert parse_model_name("gpt-5.1") == ("gpt-5.1", {})
    assert parse_model_name("gpt-5.1_high_flex") == ("gpt-5.1", {"reasoning": {"effort": "high"}, "service_tier": "flex"})
    with pytest.raises(ValueError):
        parse_model_name("gpt-5.1_turbo")
