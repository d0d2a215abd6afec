from datetime import UTC, datetime, timedelta, timezone

import pytest

from beans.errors import ValidationError
from beans.models import (
    ID_ALPHABET,
    Bean,
    Link,
    build_filename,
    format_timestamp,
    new_bean_id,
    parse_filename,
    parse_timestamp,
    slugify,
)


def test_new_bean_id_uses_prefix_and_alphabet():
    bean_id = new_bean_id("app-", 6)
    assert bean_id.startswith("app-")
    assert len(bean_id) == 10
    assert all(ch in ID_ALPHABET for ch in bean_id[4:])


@pytest.mark.parametrize(
    ("title", "slug"),
    [
        ("Fix Login Redirect", "fix-login-redirect"),
        ("  snake_case  and   spaces ", "snake-case-and-spaces"),
        ("What?! (really)", "what-really"),
        ("---", ""),
    ],
)
def test_slugify(title, slug):
    assert slugify(title) == slug


def test_slugify_truncates():
    slug = slugify("word " * 30)
    assert len(slug) <= 50
    assert not slug.endswith("-")


def test_filename_roundtrip():
    assert build_filename("ab12", "fix-login") == "ab12-fix-login.md"
    assert build_filename("ab12") == "ab12.md"
    assert parse_filename("ab12-fix-login.md") == ("ab12", "fix-login")
    assert parse_filename("ab12.md") == ("ab12", "")


def test_parse_filename_with_dashed_prefix():
    assert parse_filename("app-ab12-fix-login.md", "app-") == ("app-ab12", "fix-login")
    assert parse_filename("app-ab12.md", "app-") == ("app-ab12", "")
    # files that do not carry the prefix fall back to the first dash
    assert parse_filename("ab12-fix.md", "app-") == ("ab12", "fix")


def test_link_parse():
    assert Link.parse("blocks:ab12") == Link("blocks", "ab12")
    assert str(Link("parent", "x")) == "parent:x"
    for bad in ("blocks", ":ab12", "blocks:"):
        with pytest.raises(ValidationError):
            Link.parse(bad)


def test_tags_are_normalized_and_validated():
    bean = Bean()
    bean.add_tag("  Backend ")
    bean.add_tag("backend")
    assert bean.tags == ["backend"]
    assert bean.has_tag("BACKEND")
    with pytest.raises(ValidationError):
        bean.add_tag("two words")
    bean.remove_tag("Backend")
    assert bean.tags == []


def test_links_dedupe_and_remove():
    bean = Bean(id="a")
    bean.add_link("blocks", "b")
    bean.add_link("blocks", "b")
    bean.add_link("related", "b")
    bean.add_link("blocks", "c")
    assert bean.has_link("blocks")
    assert bean.has_link("blocks", "c")
    assert not bean.has_link("parent")
    assert bean.link_targets("blocks") == ["b", "c"]

    bean.remove_link("blocks", "c")
    assert bean.link_targets("blocks") == ["b"]
    assert bean.remove_links_to("b") == 2
    assert bean.links == []


def test_copy_does_not_share_lists():
    bean = Bean(id="a", tags=["x"], links=[Link("blocks", "b")])
    dup = bean.copy()
    dup.tags.append("y")
    dup.add_link("parent", "c")
    assert bean.tags == ["x"]
    assert bean.links == [Link("blocks", "b")]


def test_timestamps():
    assert format_timestamp(None) is None
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None

    dt = parse_timestamp("2024-01-15T10:30:00Z")
    assert dt == datetime(2024, 1, 15, 10, 30, tzinfo=UTC)
    assert format_timestamp(dt) == "2024-01-15T10:30:00Z"

    # naive values are taken as UTC; offsets are converted
    assert parse_timestamp(datetime(2024, 1, 15, 10, 30)) == dt
    plus_two = datetime(2024, 1, 15, 12, 30, tzinfo=timezone(timedelta(hours=2)))
    assert format_timestamp(plus_two) == "2024-01-15T10:30:00Z"

    with pytest.raises(ValueError):
        parse_timestamp(42)
    with pytest.raises(ValueError):
        parse_timestamp("yesterday")


def test_to_dict():
    bean = Bean(id="a", title="T", status="open", body="text", links=[Link("blocks", "b")])
    d = bean.to_dict()
    assert d["links"] == [{"blocks": "b"}]
    assert d["body"] == "text"
    assert "body" not in bean.to_dict(include_body=False)
