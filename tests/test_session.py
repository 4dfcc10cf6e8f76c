"""Tests for Session authorization, version check and request helpers."""

from __future__ import annotations

import io

import pytest

from labbcat.config import LabbcatConfig
from labbcat.exceptions import (
    AuthorizationError,
    MalformedURLError,
    RequestCancelled,
    ResponseException,
    StoreException,
)
from labbcat.session import MIN_SERVER_VERSION, USER_AGENT, Session, basic_authorization
from tests.conftest import make_session
from tests.fixtures.fake_labbcat_server import BASE_URL, FakeLabbcatServer, envelope


@pytest.mark.parametrize("url", ["not a url", "ftp://example.org/labbcat", "http://"])
def test_invalid_base_url_rejected(url: str) -> None:
    with pytest.raises(MalformedURLError):
        Session(url)


def test_base_url_gets_trailing_slash() -> None:
    with Session("https://example.org/labbcat") as s:
        assert s.base_url == "https://example.org/labbcat/"
        assert s.store_url("getId") == "https://example.org/labbcat/api/store/getId"
        assert s.edit_url("deleteTranscript").endswith("/api/edit/store/deleteTranscript")
        assert s.admin_url("newLayer").endswith("/api/admin/store/newLayer")


def test_open_server_needs_no_authorization(server: FakeLabbcatServer) -> None:
    with make_session(server) as s:
        assert s.get_required_http_authorization() is None
        assert s.server_version == server.version
    assert "Authorization" not in server.requests[0].headers
    assert server.requests[0].headers["User-Agent"] == USER_AGENT


def test_authorization_is_probed_once(server: FakeLabbcatServer) -> None:
    server.route("GET", "api/store/getId", envelope("store"))
    with make_session(server) as s:
        s.get(s.store_url("getId"))
        s.get(s.store_url("getId"))
    assert len(server.requests_to("api/store/")) == 1


def test_batch_credentials_used_after_401() -> None:
    server = FakeLabbcatServer(credentials=("ann", "secret"))
    with make_session(server, "ann", "secret") as s:
        authorization = s.get_required_http_authorization()
    assert authorization == basic_authorization("ann", "secret")
    probes = server.requests_to("api/store/")
    assert len(probes) == 2
    assert "Authorization" not in probes[0].headers
    assert probes[1].headers["Authorization"] == authorization


def test_batch_missing_credentials() -> None:
    server = FakeLabbcatServer(credentials=("ann", "secret"))
    with make_session(server) as s, pytest.raises(AuthorizationError, match="required"):
        s.get_required_http_authorization()


def test_batch_wrong_password_tried_once() -> None:
    server = FakeLabbcatServer(credentials=("ann", "secret"))
    with make_session(server, "ann", "wrong") as s:
        with pytest.raises(AuthorizationError, match="Username/password invalid"):
            s.get_required_http_authorization()
        assert s.username is None
        assert s.password is None
    assert len(server.requests_to("api/store/")) == 2


def test_interactive_prompts_until_accepted() -> None:
    server = FakeLabbcatServer(credentials=("ann", "secret"))
    usernames = iter(["bob", "ann"])
    passwords = iter(["nope", "secret"])
    with make_session(
        server,
        batch_mode=False,
        prompt=lambda _msg: next(usernames),
        prompt_password=lambda _msg: next(passwords),
    ) as s:
        authorization = s.get_required_http_authorization()
        assert s.username == "ann"
    assert authorization == basic_authorization("ann", "secret")
    assert len(server.requests_to("api/store/")) == 3


def test_interactive_empty_username_cancels() -> None:
    server = FakeLabbcatServer(credentials=("ann", "secret"))
    with make_session(server, batch_mode=False, prompt=lambda _msg: "  ") as s:
        with pytest.raises(AuthorizationError, match="Cancelled"):
            s.get_required_http_authorization()


def test_old_server_rejected() -> None:
    server = FakeLabbcatServer(version="20200101.0000")
    with make_session(server) as s:
        with pytest.raises(StoreException, match=MIN_SERVER_VERSION):
            s.get_required_http_authorization()
        assert s.server_version == "20200101.0000"


def test_session_cookie_reused_after_login() -> None:
    server = FakeLabbcatServer(credentials=("ann", "secret"))
    server.route("GET", "api/store/getId", envelope("store"))
    with make_session(server, "ann", "secret") as s:
        s.get(s.store_url("getId"))
        assert s.http.cookies.get("JSESSIONID") == server.session_cookie
    request = server.requests_to("api/store/getId")[0]
    assert f"JSESSIONID={server.session_cookie}" in request.headers["Cookie"]


def test_login_with_cookie() -> None:
    server = FakeLabbcatServer(credentials=("ann", "secret"))
    server.route("GET", "api/store/getId", envelope("store"))
    with make_session(server) as s:
        s.login_with_cookie(f"JSESSIONID={server.session_cookie}")
        assert s.get(s.store_url("getId")) == "store"
    request = server.requests_to("api/store/getId")[0]
    assert request.headers["Cookie"] == f"JSESSIONID={server.session_cookie}"
    assert "Authorization" not in request.headers


def test_language_header(server: FakeLabbcatServer) -> None:
    with make_session(server, language="es") as s:
        s.get_required_http_authorization()
        s.language = "en-NZ"
        s.get(s.url("api/store/"))
    assert server.requests[0].headers["Accept-Language"] == "es"
    assert server.requests[-1].headers["Accept-Language"] == "en-NZ"


def test_get_raises_envelope_errors(server: FakeLabbcatServer, session: Session) -> None:
    server.route(
        "GET", "api/store/getLayer", envelope(None, status=404, code=1, errors=["Invalid layer: x"])
    )
    with pytest.raises(ResponseException, match="Invalid layer: x") as exc_info:
        session.get(session.store_url("getLayer"), {"id": "x"})
    assert exc_info.value.http_status == 404


def test_put_and_delete_use_method(server: FakeLabbcatServer, session: Session) -> None:
    server.route("PUT", "thing", envelope({"ok": 1}))
    server.route("DELETE", "thing", envelope(None))
    assert session.put(session.url("thing"), {"a": 1}) == {"ok": 1}
    session.delete(session.url("thing"))
    assert [r.method for r in server.requests[-2:]] == ["PUT", "DELETE"]
    assert server.requests[-2].form() == [("a", "1")]


def test_post_json(server: FakeLabbcatServer, session: Session) -> None:
    server.route("POST", "api/admin/corpora", envelope({"corpus_name": "QB"}))
    session.post_json(session.url("api/admin/corpora"), {"corpus_name": "QB"})
    request = server.requests_to("api/admin/corpora")[0]
    assert request.headers["Content-Type"] == "application/json"
    assert request.json() == {"corpus_name": "QB"}


def test_cancel_interrupts_multipart_upload(
    server: FakeLabbcatServer, session: Session
) -> None:
    session.get_required_http_authorization()

    class CancellingReader(io.BytesIO):
        reads = 0

        def read(self, size: int | None = -1) -> bytes:
            self.reads += 1
            if self.reads == 2:
                session.cancel()
            return super().read(size)

    reader = CancellingReader(b"\0" * 10_000)
    server.route("POST", "upload", envelope(None))
    with pytest.raises(RequestCancelled):
        session.post_multipart(session.url("upload"), {"file": reader})
    assert session.cancelling
    session.begin_operation()
    assert not session.cancelling


def test_from_config_requires_url() -> None:
    with pytest.raises(MalformedURLError):
        Session.from_config(LabbcatConfig())
    with Session.from_config(LabbcatConfig(url=BASE_URL, username="u", language="fr")) as s:
        assert s.username == "u"
        assert s.language == "fr"
