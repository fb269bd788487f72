"""Tests for utils: slugs, version comparison, timestamps, short_path."""

from pathlib import Path

from exthost.core.utils import (
    is_valid_slug,
    parse_constraint,
    short_path,
    slug_identifier,
    utcnow,
    version_satisfies,
    version_tuple,
)


class TestSlugs:
    def test_valid(self):
        for slug in ("notify", "mail-digest", "a_b", "X1"):
            assert is_valid_slug(slug) is True

    def test_invalid(self):
        for slug in ("", "a b", "../etc", "a/b", "a.b", "é"):
            assert is_valid_slug(slug) is False

    def test_identifier(self):
        assert slug_identifier("mail-digest") == "mail_digest"
        assert slug_identifier("plain") == "plain"


class TestVersionTuple:
    def test_basic(self):
        assert version_tuple("1.2.3") == (1, 2, 3)

    def test_prefix_and_suffix(self):
        assert version_tuple("v2.10.1-rc1") == (2, 10, 1)

    def test_garbage(self):
        assert version_tuple("latest") == ()


class TestVersionSatisfies:
    def test_bare_is_minimum(self):
        assert version_satisfies("2.0.0", "1.9") is True
        assert version_satisfies("1.8", "1.9") is False

    def test_operators(self):
        assert version_satisfies("1.2", ">=1.2.0") is True
        assert version_satisfies("1.2", ">1.2") is False
        assert version_satisfies("1.2", "<=1.2") is True
        assert version_satisfies("1.2", "<2") is True
        assert version_satisfies("1.2", "==1.2.0") is True
        assert version_satisfies("1.2.1", "==1.2") is False

    def test_numeric_not_lexicographic(self):
        assert version_satisfies("1.10", ">=1.9") is True

    def test_unparseable_never_satisfied(self):
        for requirement in ("^3.0", "~=2", "!=1.0", "latest", ">=x"):
            assert parse_constraint(requirement) is None
            assert version_satisfies("99.0", requirement) is False

    def test_parse_constraint(self):
        assert parse_constraint(">= 1.2") == (">=", (1, 2))
        assert parse_constraint("2") == (">=", (2,))


class TestUtcnow:
    def test_format(self):
        now = utcnow()
        assert now.endswith("+00:00")
        assert "." not in now


class TestShortPath:
    def test_home_relative(self):
        assert short_path(Path.home() / "projects") == "~/projects"

    def test_home_itself(self):
        assert short_path(Path.home()) == "~"

    def test_outside_home(self):
        outside = Path("/definitely-not-home-xyz")
        assert short_path(outside) == str(outside)
