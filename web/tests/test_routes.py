import json

import pytest

from services import upstream
from services.config import Settings
from services.errors import TokenAcquisitionError, UpstreamFetchError, UpstreamReadError
from services.rules import Rule, RuleKind


def _import_app():
    try:
        import flask  # noqa: F401
    except Exception as e:
        pytest.skip(f"Flask not available in this environment: {e}")

    import app as app_module  # type: ignore

    return app_module


SETTINGS = Settings(base_url="https://upstream.example/")
RULES = (Rule(RuleKind.LITERAL, "spam"), Rule(RuleKind.PATTERN, "("))


def _rows(*texts):
    return [[float(i), 1, 16777215, "u", t] for i, t in enumerate(texts)]


@pytest.fixture
def client():
    app_module = _import_app()
    flask_app = app_module.create_app(SETTINGS, (Rule(RuleKind.LITERAL, "spam"),))
    flask_app.testing = True
    return flask_app.test_client()


@pytest.fixture
def fake_upstream(monkeypatch):
    state = {"body": json.dumps({"code": 0, "data": []}).encode(), "token_error": None, "fetch_error": None}

    def fake_acquire(base_url, cookie_name, **kwargs):
        if state["token_error"] is not None:
            raise state["token_error"]
        return "tok"

    def fake_fetch(url, cookie_name, token, **kwargs):
        if state["fetch_error"] is not None:
            raise state["fetch_error"]
        return state["body"]

    monkeypatch.setattr(upstream, "acquire_token", fake_acquire)
    monkeypatch.setattr(upstream, "fetch_payload", fake_fetch)
    return state


def test_ping_get_and_post(client):
    for method in (client.get, client.post):
        r = method("/ping")
        assert r.status_code == 200
        assert r.data == b"pong"


def test_health_reports_rule_count(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.get_json() == {"ok": True, "rules": 1}


def test_filter_drops_matching_rows(client, fake_upstream):
    fake_upstream["body"] = json.dumps({"code": 0, "data": _rows("hello", "spam alert", "clean")}).encode()

    r = client.get("/filter", query_string={"id": "https://upstream.example/danmaku/1"})

    assert r.status_code == 200
    payload = r.get_json()
    assert payload["code"] == 0
    assert [row[4] for row in payload["data"]] == ["hello", "clean"]


def test_filter_keeps_code_and_returns_empty_list(client, fake_upstream):
    fake_upstream["body"] = json.dumps({"code": 3, "data": _rows("spam")}).encode()
    r = client.get("/filter?id=https://upstream.example/x")
    assert r.status_code == 200
    assert r.get_json() == {"code": 3, "data": []}


@pytest.mark.parametrize(
    "key,error,body",
    [
        ("token_error", TokenAcquisitionError("no cookie"), b"failed to authenticate"),
        ("fetch_error", UpstreamFetchError("refused"), b"failed to fetch"),
        ("fetch_error", UpstreamReadError("reset"), b"failed to read"),
    ],
)
def test_filter_failures_are_plain_text_200(client, fake_upstream, key, error, body):
    fake_upstream[key] = error
    r = client.get("/filter?id=https://upstream.example/x")
    assert r.status_code == 200
    assert r.data == body
    assert r.mimetype == "text/plain"


def test_filter_parse_failure(client, fake_upstream):
    fake_upstream["body"] = b"not json"
    r = client.get("/filter?id=https://upstream.example/x")
    assert r.status_code == 200
    assert r.data == b"failed to parse"


def test_filter_without_id_is_fetch_failure(client, fake_upstream):
    r = client.get("/filter")
    assert r.status_code == 200
    assert r.data == b"failed to fetch"


def test_service_keeps_serving_after_auth_failure(client, fake_upstream):
    fake_upstream["token_error"] = TokenAcquisitionError("down")
    assert client.get("/filter?id=https://upstream.example/x").data == b"failed to authenticate"

    fake_upstream["token_error"] = None
    r = client.get("/filter?id=https://upstream.example/x")
    assert r.get_json() == {"code": 0, "data": []}


def test_malformed_pattern_drops_every_comment(fake_upstream):
    app_module = _import_app()
    c = app_module.create_app(SETTINGS, RULES).test_client()
    fake_upstream["body"] = json.dumps({"code": 0, "data": _rows("a", "b")}).encode()
    assert c.get("/filter?id=https://upstream.example/x").get_json() == {"code": 0, "data": []}


def test_create_app_loads_rules_from_directory(tmp_path):
    app_module = _import_app()
    (tmp_path / "a.txt").write_text("one\ntwo\n", encoding="utf-8")
    settings = Settings(base_url="https://upstream.example/", rules_dir=str(tmp_path))

    c = app_module.create_app(settings).test_client()

    assert c.get("/health").get_json()["rules"] == 2


def test_main_exits_nonzero_without_baseurl(monkeypatch):
    app_module = _import_app()
    monkeypatch.delenv("BASEURL", raising=False)
    assert app_module.main() == 1


def test_main_exits_nonzero_when_rules_unreadable(monkeypatch, tmp_path):
    app_module = _import_app()
    monkeypatch.setenv("BASEURL", "https://upstream.example/")
    monkeypatch.setenv("RULES", str(tmp_path / "missing"))
    assert app_module.main() == 1


def test_filter_unparsable_id_is_fetch_failure(client, fake_upstream):
    r = client.get("/filter", query_string={"id": "http://[::1/x"})
    assert r.status_code == 200
    assert r.data == b"failed to fetch"


def test_filter_schemeless_base_url_is_auth_failure():
    app_module = _import_app()
    c = app_module.create_app(Settings(base_url="upstream.example"), ()).test_client()
    r = c.get("/filter", query_string={"id": "http://127.0.0.1:9/x"})
    assert r.status_code == 200
    assert r.data == b"failed to authenticate"
