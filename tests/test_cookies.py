from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from hookhttp.cookies import (
    CookieJar,
    CookieJarMiddleware,
    CookieRecord,
    default_cookie_jar,
    default_path,
    domain_matches,
    parse_set_cookie,
)
from hookhttp.errors import ConfigurationError
from hookhttp.types import HeaderMap, IncomingResponse, ResponseHeader

URL = "http://www.example.com/app/login"


class _Client:
    def __init__(self, url: str) -> None:
        self.url = url


def test_parse_uses_url_defaults():
    record = parse_set_cookie("session=abc", URL)

    assert record.name == "session"
    assert record.value == "abc"
    assert record.domain == "www.example.com"
    assert record.path == "/app"
    assert record.expires is None
    assert record.secure is False
    assert str(record) == "session=abc"


def test_parse_attributes_case_insensitively():
    record = parse_set_cookie(
        "id=1; DOMAIN=.example.com; pAtH=/; EXPIRES=Wed, 09 Jun 2100 10:18:14 GMT; Secure; HttpOnly",
        URL,
    )

    assert record.domain == "example.com"
    assert record.path == "/"
    assert record.expires == datetime(2100, 6, 9, 10, 18, 14, tzinfo=timezone.utc)
    assert record.secure is True
    assert record.http_only is True


def test_parse_ignores_bad_attributes_only():
    record = parse_set_cookie("id=1; expires=someday; domain=other.org; path=relative; max-age=soon", URL)

    assert record.value == "1"
    assert record.expires is None
    assert record.domain == "www.example.com"
    assert record.path == "/app"


def test_parse_max_age_overrides_expires():
    now = datetime(2030, 1, 1, tzinfo=timezone.utc)
    record = parse_set_cookie("id=1; expires=Wed, 09 Jun 2100 10:18:14 GMT; max-age=60", URL, now=now)

    assert record.expires == now + timedelta(seconds=60)


@pytest.mark.parametrize("header", ["novalue", "=orphan", ""])
def test_parse_rejects_cookies_without_a_name(header):
    assert parse_set_cookie(header, URL) is None


def test_value_may_contain_equals_signs():
    record = parse_set_cookie("token=a=b=c; path=/", URL)

    assert record.value == "a=b=c"


def test_domain_and_path_helpers():
    assert domain_matches("www.example.com", "example.com")
    assert domain_matches("example.com", ".example.com")
    assert not domain_matches("badexample.com", "example.com")
    assert default_path("/a/b/c") == "/a/b"
    assert default_path("/top") == "/"
    assert default_path("") == "/"


def test_newer_cookie_replaces_same_triple():
    jar = CookieJar()
    jar.set_cookie(URL, "id=1; path=/")
    jar.set_cookie(URL, "id=2; path=/")

    assert len(jar) == 1
    assert [str(c) for c in jar.get_cookies(URL)] == ["id=2"]


def test_same_name_on_different_paths_is_kept_apart():
    jar = CookieJar()
    jar.set_cookie(URL, "id=root; path=/")
    jar.set_cookie(URL, "id=app; path=/app")

    assert len(jar) == 2
    assert jar.cookie_header(URL) == "id=app; id=root"


def test_get_cookies_applies_domain_path_and_secure_rules():
    jar = CookieJar()
    jar.set_cookie(URL, "shared=1; domain=example.com; path=/")
    jar.set_cookie(URL, "scoped=1; path=/app")
    jar.set_cookie(URL, "secret=1; path=/; secure")

    assert {c.name for c in jar.get_cookies("http://api.example.com/")} == {"shared"}
    assert {c.name for c in jar.get_cookies("http://www.example.com/other")} == {"shared"}
    assert {c.name for c in jar.get_cookies("https://www.example.com/app/x")} == {
        "shared",
        "scoped",
        "secret",
    }
    assert jar.get_cookies("http://unrelated.org/") == []


def test_expired_cookie_deletes_stored_record():
    jar = CookieJar()
    jar.set_cookie(URL, "id=1; path=/")
    jar.set_cookie(URL, "id=gone; path=/; expires=Thu, 01 Jan 1970 00:00:00 GMT")

    assert len(jar) == 0
    assert jar.cookie_header(URL) is None


def test_expired_records_are_not_returned():
    jar = CookieJar()
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    jar._store["www.example.com"] = {
        "/": {"old": CookieRecord(name="old", value="1", domain="www.example.com", expires=past)}
    }

    assert jar.get_cookies(URL) == []


def test_naive_expiry_is_treated_as_utc():
    record = CookieRecord(name="a", domain="example.com", expires=datetime(2100, 1, 1))

    assert record.expires.tzinfo is timezone.utc


def test_middleware_injects_cookie_header():
    jar = CookieJar()
    jar.set_cookie(URL, "a=1; path=/")
    jar.set_cookie(URL, "b=2; path=/")
    middleware = CookieJarMiddleware(jar)

    head, body = middleware.request(_Client(URL), HeaderMap(), "payload")

    assert head["Cookie"] == "a=1; b=2"
    assert body == "payload"


def test_middleware_leaves_head_alone_without_cookies():
    middleware = CookieJarMiddleware(CookieJar())

    head, _ = middleware.request(_Client(URL), HeaderMap({"Accept": "*/*"}), None)

    assert "cookie" not in head


def test_middleware_rejects_explicit_cookie_header():
    middleware = CookieJarMiddleware(CookieJar())

    with pytest.raises(ConfigurationError):
        middleware.request(_Client(URL), HeaderMap({"Cookie": "id=2;"}), None)


def test_middleware_stores_every_set_cookie_header():
    jar = CookieJar()
    header = ResponseHeader([("Set-Cookie", "a=1; path=/"), ("set-cookie", "b=2; path=/")], status=200)
    resp = IncomingResponse(status=200, response_header=header, url=URL)

    CookieJarMiddleware(jar).response(resp)

    assert sorted(str(c) for c in jar) == ["a=1", "b=2"]


def test_middleware_defaults_to_process_jar():
    middleware = CookieJarMiddleware()
    middleware.set_cookie(URL, "shared=1")

    assert middleware.jar is default_cookie_jar()
    assert [str(c) for c in default_cookie_jar().get_cookies(URL)] == ["shared=1"]
    assert [str(c) for c in middleware.get_cookies(URL)] == ["shared=1"]


def test_clear_empties_the_jar():
    jar = CookieJar()
    jar.set_cookie(URL, "a=1")
    jar.clear()

    assert len(jar) == 0


def test_jar_shared_across_threads_keeps_one_record_per_triple():
    jar = CookieJar()

    def worker(index: int) -> int:
        seen = 0
        for n in range(50):
            jar.set_cookie(URL, f"t{index}-{n}={n}")
            jar.set_cookie(URL, f"shared={index}-{n}")
            seen = max(seen, len(jar.get_cookies(URL)))
        return seen

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(worker, range(8)))

    assert len(jar) == 8 * 50 + 1
    assert [c.name for c in jar.get_cookies(URL)].count("shared") == 1
    assert all(count >= 51 for count in results)
