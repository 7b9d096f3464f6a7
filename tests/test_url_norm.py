import pytest

from keepmarks.url_norm import canonicalize, host_of, is_valid


@pytest.mark.parametrize("url", ["http://a.com", "https://a.com/path?q=1", "HTTPS://Example.org/x"])
def test_is_valid_accepts_http_and_https(url):
    assert is_valid(url)


@pytest.mark.parametrize(
    "url",
    ["ftp://x", "mailto:a@b.com", "https:///nohost", "", "not a url", "javascript:alert(1)", " http://a.com"],
)
def test_is_valid_rejects_other_schemes_and_hostless(url):
    assert not is_valid(url)


def test_canonicalize_lowercases_scheme_and_host_only():
    assert canonicalize("  HTTPS://Example.COM/Path/To?Q=A#Frag  ") == "https://example.com/Path/To?Q=A#Frag"


def test_canonicalize_drops_bare_root_slash():
    assert canonicalize("https://example.com/") == "https://example.com"
    assert canonicalize("https://example.com/a/") == "https://example.com/a/"


def test_canonicalize_keeps_root_slash_before_query():
    assert canonicalize("https://example.com/?q=1") == "https://example.com/?q=1"


def test_canonicalize_keeps_userinfo_case_and_port():
    assert canonicalize("http://User:Pw@Host.Example:8080/") == "http://User:Pw@host.example:8080"


@pytest.mark.parametrize(
    "url",
    [
        "https://Example.com/",
        "HTTP://A.COM",
        "https:///nohost",
        "mailto:A@B.com",
        "http:/",
        "::::",
        "",
        "   ",
        "http://[::1]:80/",
        "https://a.com/?",
    ],
)
def test_canonicalize_is_idempotent(url):
    once = canonicalize(url)
    assert canonicalize(once) == once


def test_canonicalize_returns_trimmed_input_when_unparsable():
    assert canonicalize("  http://[broken  ") == "http://[broken"


def test_host_of():
    assert host_of("https://Sub.Example.com/x") == "sub.example.com"
    assert host_of("mailto:a@b.com") is None
