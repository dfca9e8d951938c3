import pytest

from flowtriggers import cors
from flowtriggers.cors import (
    Cors,
    get_cors_allow_credentials,
    get_cors_allow_headers,
    get_cors_allow_methods,
    get_cors_allow_origin,
    get_cors_expose_headers,
    get_cors_max_age,
    has_origin_header,
    is_valid_access_control_headers,
    is_valid_access_control_method,
)

PREFIX = "FOO_"

ALL_KEYS = [
    cors.CORS_ALLOW_ORIGIN_KEY,
    cors.CORS_ALLOW_METHODS_KEY,
    cors.CORS_ALLOW_HEADERS_KEY,
    cors.CORS_EXPOSE_HEADERS_KEY,
    cors.CORS_ALLOW_CREDENTIALS_KEY,
    cors.CORS_MAX_AGE_KEY,
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ALL_KEYS:
        monkeypatch.delenv(PREFIX + key, raising=False)


def test_has_origin_header_ok():
    assert has_origin_header({"Origin": "http://foo.com"}) is True


def test_has_origin_header_case_insensitive():
    assert has_origin_header({"origin": "http://foo.com"}) is True


def test_has_origin_header_false():
    assert has_origin_header({}) is False


def test_preflight_no_origin():
    status, headers = Cors(PREFIX).handle_preflight({})
    assert status == 200
    assert headers == {"Content-Type": "application/json"}


def test_preflight_no_access_control_method():
    status, headers = Cors(PREFIX).handle_preflight({"Origin": "http://foo.com"})
    assert status == 200
    assert headers == {"Content-Type": "application/json"}


def test_preflight_invalid_access_control_method():
    request = {"Origin": "http://foo.com", "Access-Control-Request-Method": "foo"}
    status, headers = Cors(PREFIX).handle_preflight(request)
    assert status == 200
    assert headers == {"Content-Type": "application/json"}


def test_preflight_invalid_access_control_header():
    request = {
        "Origin": "http://foo.com",
        "Access-Control-Request-Method": "GET",
        "Access-Control-Request-Headers": "foo",
    }
    status, headers = Cors(PREFIX).handle_preflight(request)
    assert status == 200
    assert headers == {"Content-Type": "application/json"}


def test_preflight_ok_no_credentials_nor_max_age():
    request = {
        "Origin": "http://foo.com",
        "Access-Control-Request-Method": "GET",
        "Access-Control-Request-Headers": "Content-Type , Content-Length",
    }
    status, headers = Cors(PREFIX).handle_preflight(request)
    assert status == 200
    assert headers[cors.HEADER_ACCESS_CONTROL_ALLOW_ORIGIN] == "*"
    assert headers[cors.HEADER_ACCESS_CONTROL_ALLOW_METHODS] == cors.CORS_ALLOW_METHODS_DEFAULT
    assert headers[cors.HEADER_ACCESS_CONTROL_ALLOW_HEADERS] == cors.CORS_ALLOW_HEADERS_DEFAULT
    assert headers[cors.HEADER_ACCESS_CONTROL_EXPOSE_HEADERS] == cors.CORS_EXPOSE_HEADERS_DEFAULT
    assert headers.get(cors.HEADER_ACCESS_CONTROL_ALLOW_CREDENTIALS, "") == ""
    assert headers.get(cors.HEADER_ACCESS_CONTROL_MAX_AGE, "") == ""


@pytest.mark.parametrize(
    "method, requested",
    [("get", "content-type , content-length"), ("GET", "Content-Type , Content-Length")],
)
def test_preflight_ok_with_credentials_and_max_age(monkeypatch, method, requested):
    monkeypatch.setenv(PREFIX + cors.CORS_ALLOW_CREDENTIALS_KEY, "true")
    monkeypatch.setenv(PREFIX + cors.CORS_MAX_AGE_KEY, "20")
    request = {
        "Origin": "http://foo.com",
        "Access-Control-Request-Method": method,
        "Access-Control-Request-Headers": requested,
    }
    status, headers = Cors(PREFIX).handle_preflight(request)
    assert status == 200
    assert headers[cors.HEADER_ACCESS_CONTROL_ALLOW_ORIGIN] == "*"
    assert headers[cors.HEADER_ACCESS_CONTROL_ALLOW_METHODS] == cors.CORS_ALLOW_METHODS_DEFAULT
    assert headers[cors.HEADER_ACCESS_CONTROL_ALLOW_HEADERS] == cors.CORS_ALLOW_HEADERS_DEFAULT
    assert headers[cors.HEADER_ACCESS_CONTROL_EXPOSE_HEADERS] == cors.CORS_EXPOSE_HEADERS_DEFAULT
    assert headers[cors.HEADER_ACCESS_CONTROL_ALLOW_CREDENTIALS] == "true"
    assert headers[cors.HEADER_ACCESS_CONTROL_MAX_AGE] == "20"
    assert headers["Content-Type"] == "application/json"


def test_actual_request_headers_default():
    assert Cors(PREFIX).actual_request_headers() == {"Access-Control-Allow-Origin": "*"}


def test_actual_request_headers_with_credentials(monkeypatch):
    monkeypatch.setenv(PREFIX + cors.CORS_ALLOW_CREDENTIALS_KEY, " true ")
    monkeypatch.setenv(PREFIX + cors.CORS_ALLOW_ORIGIN_KEY, "http://example.com")
    assert Cors(PREFIX).actual_request_headers() == {
        "Access-Control-Allow-Origin": "http://example.com",
        "Access-Control-Allow-Credentials": "true",
    }


def test_valid_method_ok():
    assert is_valid_access_control_method("GET", PREFIX) is True


def test_valid_method_fail():
    assert is_valid_access_control_method("foo", PREFIX) is False


def test_valid_method_fail_empty():
    assert is_valid_access_control_method("", PREFIX) is False


@pytest.mark.parametrize(
    "requested",
    [
        "Content-Type, Content-Length, Accept-Encoding, X-CSRF-Token, x-requested-with, Accept",
        "Content-Type",
        "Content-Type , Content-Length",
        "",
    ],
)
def test_valid_headers_ok(requested):
    assert is_valid_access_control_headers(requested, PREFIX) is True


@pytest.mark.parametrize("requested", [" ", "foo"])
def test_valid_headers_fail(requested):
    assert is_valid_access_control_headers(requested, PREFIX) is False


def test_allow_origin_default():
    assert get_cors_allow_origin(PREFIX) == cors.CORS_ALLOW_ORIGIN_DEFAULT


def test_allow_origin_modified(monkeypatch):
    monkeypatch.setenv(PREFIX + cors.CORS_ALLOW_ORIGIN_KEY, "fooAllowedOrigin")
    assert get_cors_allow_origin(PREFIX) == "fooAllowedOrigin"


def test_allow_methods_default():
    assert get_cors_allow_methods(PREFIX) == cors.CORS_ALLOW_METHODS_DEFAULT


def test_allow_methods_modified(monkeypatch):
    monkeypatch.setenv(PREFIX + cors.CORS_ALLOW_METHODS_KEY, "fooAllowedMethods")
    assert get_cors_allow_methods(PREFIX) == "fooAllowedMethods"


def test_allow_headers_default():
    assert get_cors_allow_headers(PREFIX) == cors.CORS_ALLOW_HEADERS_DEFAULT


def test_allow_headers_modified(monkeypatch):
    monkeypatch.setenv(PREFIX + cors.CORS_ALLOW_HEADERS_KEY, "fooAllowedHeaders")
    assert get_cors_allow_headers(PREFIX) == "fooAllowedHeaders"


def test_expose_headers_default():
    assert get_cors_expose_headers(PREFIX) == ""


def test_expose_headers_modified(monkeypatch):
    monkeypatch.setenv(PREFIX + cors.CORS_EXPOSE_HEADERS_KEY, "X-Custom")
    assert get_cors_expose_headers(PREFIX) == "X-Custom"


def test_allow_credentials_default():
    assert get_cors_allow_credentials(PREFIX) == cors.CORS_ALLOW_CREDENTIALS_DEFAULT


def test_allow_credentials_modified(monkeypatch):
    monkeypatch.setenv(PREFIX + cors.CORS_ALLOW_CREDENTIALS_KEY, "true")
    assert get_cors_allow_credentials(PREFIX) == "true"


def test_max_age_default():
    assert get_cors_max_age(PREFIX) == cors.CORS_MAX_AGE_DEFAULT


def test_max_age_modified(monkeypatch):
    monkeypatch.setenv(PREFIX + cors.CORS_MAX_AGE_KEY, "21")
    assert get_cors_max_age(PREFIX) == "21"


def test_empty_env_value_falls_back_to_default(monkeypatch):
    monkeypatch.setenv(PREFIX + cors.CORS_ALLOW_ORIGIN_KEY, "")
    assert get_cors_allow_origin(PREFIX) == "*"