"""
Sanitization Layer Tests
Every public value is cleaned here; rejection is "" and never an exception.
"""
import pytest

from core.sanitize import (
    BASELINE_THEME,
    clamp_text,
    clean_id,
    is_allowed_image_url,
    is_valid_email,
    is_valid_slug,
    normalize_theme_value,
    sanitize_href_link,
    sanitize_href_price,
    sanitize_image_src,
    sanitize_links,
    sanitize_social_object,
)


# ============================================================================
# LINKS
# ============================================================================

class TestHrefLink:
    def test_bare_domain_gets_https(self):
        assert sanitize_href_link("example.com") == "https://example.com"

    def test_javascript_scheme_rejected(self):
        assert sanitize_href_link("javascript:alert(1)") == ""

    @pytest.mark.parametrize("value", [
        "data:text/html,<b>x</b>",
        "vbscript:msgbox",
        "/relative/path",
        "noscheme",
        "https://exa mple.com",
        None,
        42,
    ])
    def test_rejected(self, value):
        assert sanitize_href_link(value) == ""

    @pytest.mark.parametrize("value", [
        "https://shop.example.com/a?b=1",
        "http://example.com",
        "mailto:hi@example.com",
        "tel:+15555550100",
    ])
    def test_accepted_unchanged(self, value):
        assert sanitize_href_link(value) == value

    def test_host_with_port_is_not_a_scheme(self):
        assert sanitize_href_link("example.com:8080/shop") == "https://example.com:8080/shop"

    def test_trimmed(self):
        assert sanitize_href_link("  https://example.com  ") == "https://example.com"

    def test_idempotent(self):
        once = sanitize_href_link("example.com/path")
        assert sanitize_href_link(once) == once

    def test_price_uses_same_rules(self):
        assert sanitize_href_price("buy.stripe.com/abc") == "https://buy.stripe.com/abc"
        assert sanitize_href_price("javascript:void(0)") == ""


# ============================================================================
# IMAGES
# ============================================================================

class TestImageSrc:
    @pytest.mark.parametrize("value", [
        "https://cdn.example.com/a.png",
        "/uploads/a.jpg",
        "data:image/png;base64,iVBORw0KGgo=",
    ])
    def test_accepted(self, value):
        assert sanitize_image_src(value) == value

    @pytest.mark.parametrize("value", [
        "//evil.example.com/a.png",
        "javascript:alert(1)",
        "data:text/html;base64,PGI+",
        "data:image/svg+xml;base64,PHN2Zz4=",
        "ftp://example.com/a.png",
        "https://",
        "relative.png",
        "",
        None,
    ])
    def test_rejected(self, value):
        assert sanitize_image_src(value) == ""

    @pytest.mark.parametrize("value", [
        "  https://cdn.example.com/a.png ",
        "/x.webp",
        "javascript:1",
        "data:image/gif;base64,R0lGODlh",
    ])
    def test_idempotent(self, value):
        once = sanitize_image_src(value)
        assert sanitize_image_src(once) == once

    def test_allowed_image_url_checks_extension(self):
        assert is_allowed_image_url("https://cdn.example.com/a.WEBP")
        assert not is_allowed_image_url("https://cdn.example.com/a.gif")
        assert not is_allowed_image_url("/local.png")


# ============================================================================
# THEME / SOCIAL / LINK LISTS
# ============================================================================

class TestTheme:
    def test_legacy_object_with_dark_resolves_to_baseline(self):
        assert normalize_theme_value({"theme": "dark"}) == BASELINE_THEME

    def test_unknown_value_resolves_to_baseline(self):
        assert normalize_theme_value("bogus") == BASELINE_THEME

    def test_known_value_case_insensitive(self):
        assert normalize_theme_value("  Modern ") == "modern"

    def test_legacy_key_and_preset_objects(self):
        assert normalize_theme_value({"key": "pastel"}) == "pastel"
        assert normalize_theme_value({"preset": "modern"}) == "modern"

    def test_first_known_candidate_wins(self):
        assert normalize_theme_value({"key": "bogus", "theme": "pastel"}) == "pastel"
        assert normalize_theme_value({"key": "Modern", "preset": "pastel"}) == "modern"

    @pytest.mark.parametrize("value", [None, 3, [], {}])
    def test_non_string_resolves_to_baseline(self, value):
        assert normalize_theme_value(value) == BASELINE_THEME


class TestCollections:
    def test_social_keeps_allow_listed_keys(self):
        social = sanitize_social_object({
            "instagram": " @jane ",
            "myspace": "jane",
            "tiktok": "",
            "x": 5,
        })
        assert social == {"instagram": "@jane"}

    def test_social_non_dict(self):
        assert sanitize_social_object("instagram") == {}

    def test_social_urls_pass_the_href_gate(self):
        social = sanitize_social_object({
            "instagram": "javascript:alert(1)",
            "youtube": "youtube.com/@jane",
            "website": "https://jane.example.com",
            "x": "data:text/html,hi",
        })
        assert social == {
            "youtube": "https://youtube.com/@jane",
            "website": "https://jane.example.com",
        }

    def test_links_drop_unusable_entries(self):
        links = sanitize_links([
            {"label": "Shop", "url": "shop.example.com"},
            {"label": "Bad", "url": "javascript:alert(1)"},
            "not-a-dict",
            {"label": "<b>Blog</b>", "url": "https://blog.example.com"},
        ])
        assert links == [
            {"label": "Shop", "url": "https://shop.example.com"},
            {"label": "bBlog/b", "url": "https://blog.example.com"},
        ]

    def test_links_capped(self):
        raw = [{"label": str(i), "url": f"https://example.com/{i}"} for i in range(8)]
        assert len(sanitize_links(raw, max_items=5)) == 5


# ============================================================================
# TEXT / IDENTIFIERS
# ============================================================================

class TestText:
    def test_clamp_strips_control_and_angle_brackets(self):
        assert clamp_text("  hi\x00<there>\n ", 100) == "hithere"

    def test_clamp_truncates(self):
        assert clamp_text("abcdef", 3) == "abc"

    def test_clamp_none(self):
        assert clamp_text(None, 10) == ""

    def test_clean_id(self):
        assert clean_id("  p1\x07 ") == "p1"
        assert clean_id(None) == ""

    @pytest.mark.parametrize("slug,ok", [
        ("jane", True),
        ("jane-doe-42", True),
        ("ab", False),
        ("Jane", False),
        ("jane_doe", False),
        ("a" * 41, False),
        (None, False),
    ])
    def test_slug(self, slug, ok):
        assert is_valid_slug(slug) is ok

    @pytest.mark.parametrize("email,ok", [
        ("a@b.co", True),
        ("jane.doe@example.com", True),
        ("@example.com", False),
        ("jane@.com", False),
        ("jane@example.", False),
        ("jane @example.com", False),
        ("jane", False),
        (None, False),
    ])
    def test_email(self, email, ok):
        assert is_valid_email(email) is ok
