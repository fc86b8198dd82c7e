"""
Test 2: Upload policies (policy.py)

Tests FieldRule / ParserLimits / UploadPolicy construction and resolution.
"""

import pytest

from stowage.config import ConfigError
from stowage.policy import (
    FieldRule,
    MimetypeMatch,
    ParserLimits,
    ResolvedPolicy,
    UploadPolicy,
)


# ============================================================================
# FieldRule
# ============================================================================

class TestFieldRule:

    def test_defaults(self):
        rule = FieldRule("avatar")
        assert rule.mimetypes == ()
        assert rule.file_limit == 1

    def test_zero_limit_falls_back_to_one(self):
        assert FieldRule("avatar", file_limit=0).file_limit == 1

    def test_mimetypes_become_tuple(self):
        rule = FieldRule("docs", mimetypes=["application/pdf"])
        assert rule.mimetypes == ("application/pdf",)

    def test_requires_name(self):
        with pytest.raises(ConfigError):
            FieldRule("")

    def test_negative_limit(self):
        with pytest.raises(ConfigError, match="negative"):
            FieldRule("avatar", file_limit=-2)

    def test_from_dict_nested_limits(self):
        rule = FieldRule.from_dict({"field": "docs", "mimetypes": ["application/pdf"], "limits": {"files": 3}})
        assert rule == FieldRule("docs", ("application/pdf",), 3)

    def test_from_dict_snake_case(self):
        rule = FieldRule.from_dict({"field_name": "docs", "file_limit": 2})
        assert rule.field_name == "docs"
        assert rule.file_limit == 2


# ============================================================================
# ParserLimits
# ============================================================================

class TestParserLimits:

    def test_unlimited_by_default(self):
        limits = ParserLimits()
        assert limits.max_file_size is None
        assert limits.max_parts is None

    def test_from_dict_accepts_short_names(self):
        limits = ParserLimits.from_dict({"fileSize": 1024, "files": 2, "max_fields": 5})
        assert limits == ParserLimits(max_file_size=1024, max_files=2, max_fields=5)

    def test_unknown_limit(self):
        with pytest.raises(ConfigError, match="Unknown parser limit"):
            ParserLimits.from_dict({"headerPairs": 10})

    def test_negative_limit(self):
        with pytest.raises(ConfigError):
            ParserLimits(max_parts=-1)


# ============================================================================
# UploadPolicy.resolve
# ============================================================================

class TestResolve:

    def test_empty_policy(self):
        resolved = UploadPolicy().resolve()
        assert isinstance(resolved, ResolvedPolicy)
        assert not resolved.has_rules
        assert resolved.default_file_limit is None
        assert resolved.default_mimetypes == ()
        assert resolved.mimetype_match is MimetypeMatch.CONTAINS
        assert resolved.json_enabled is False
        assert resolved.body_field_name == "base64"
        assert resolved.body_url_field_name == "urls"
        assert resolved.parser_limits == ParserLimits()

    def test_rules_are_keyed_by_field(self, avatar_policy):
        assert set(avatar_policy.rules) == {"avatar", "docs"}
        assert avatar_policy.rule_for("docs").file_limit == 2
        assert avatar_policy.rule_for("other") is None

    def test_rules_are_read_only(self, avatar_policy):
        with pytest.raises(TypeError):
            avatar_policy.rules["new"] = FieldRule("new")

    def test_resolved_is_frozen(self, avatar_policy):
        with pytest.raises(Exception):
            avatar_policy.json_enabled = True

    def test_duplicate_field(self):
        policy = UploadPolicy(enabled_fields=[FieldRule("a"), {"field": "a"}])
        with pytest.raises(ConfigError, match="more than once"):
            policy.resolve()

    def test_json_marker_enables_json_mode(self):
        resolved = UploadPolicy(mimetypes=["image/png", "application/json"]).resolve()
        assert resolved.json_enabled
        assert resolved.content_mimetypes == ("image/png",)
        assert resolved.default_mimetypes == ("image/png", "application/json")

    def test_zero_global_limit_means_unlimited(self):
        assert UploadPolicy(limits={"files": 0}).resolve().default_file_limit is None

    def test_negative_global_limit(self):
        with pytest.raises(ConfigError):
            UploadPolicy(limits={"files": -1}).resolve()

    def test_unknown_match_policy(self):
        with pytest.raises(ConfigError, match="mimetype match"):
            UploadPolicy(mimetype_match="prefix").resolve()

    def test_parser_limits_from_mapping(self):
        resolved = UploadPolicy(parser={"fileSize": 10}).resolve()
        assert resolved.parser_limits.max_file_size == 10


class TestFromDict:

    def test_camel_case_keys(self):
        policy = UploadPolicy.from_dict({
            "enabledFields": [{"field": "avatar", "mimetypes": ["image/"]}],
            "enabledAdditionalFields": True,
            "limits": {"files": 4},
            "mimetypes": ["image/", "application/json"],
            "mimetypeMatch": "exact",
            "bodyBase64FieldName": "files",
            "bodyUrlFieldName": "links",
            "streamToStore": True,
        })
        resolved = policy.resolve()
        assert resolved.allow_undeclared_fields
        assert resolved.default_file_limit == 4
        assert resolved.mimetype_match is MimetypeMatch.EXACT
        assert resolved.body_field_name == "files"
        assert resolved.body_url_field_name == "links"
        assert resolved.stream_to_store
        assert resolved.json_enabled

    def test_busboy_style_limits(self):
        policy = UploadPolicy.from_dict({"busboy": {"limits": {"fileSize": 2048, "parts": 3}}})
        limits = policy.resolve().parser_limits
        assert limits.max_file_size == 2048
        assert limits.max_parts == 3

    def test_unknown_option(self):
        with pytest.raises(ConfigError, match="Unknown upload policy option"):
            UploadPolicy.from_dict({"maxSize": 10})


class TestMimetypeMatch:

    def test_contains(self):
        assert MimetypeMatch.CONTAINS.matches("image/png", "image/")
        assert MimetypeMatch.CONTAINS.matches("image/png", "png")
        assert not MimetypeMatch.CONTAINS.matches("application/pdf", "image/")

    def test_exact(self):
        assert MimetypeMatch.EXACT.matches("image/png", "image/png")
        assert not MimetypeMatch.EXACT.matches("image/png", "image/")
