"""
Test 3: Field policy validator (validator.py)

Tests field admission, mimetype allow-lists and file-count limits.
"""

import pytest

from stowage.faults import TooManyFiles, UnexpectedField, UnsupportedMimetype
from stowage.pipeline import AcceptedFile
from stowage.policy import FieldRule, UploadPolicy
from stowage.validator import FieldPolicyValidator


def accepted(field, n=1):
    return [
        AcceptedFile(
            key=f"{field}-{i}",
            field_name=field,
            original_name=f"{field}-{i}.bin",
            encoding="7bit",
            mime_type="application/octet-stream",
            extension=None,
            size_bytes=1,
        )
        for i in range(n)
    ]


def validator(**kwargs):
    return FieldPolicyValidator(UploadPolicy(**kwargs).resolve())


# ============================================================================
# check_field_allowed
# ============================================================================

class TestFieldAllowed:

    def test_no_rules_admits_everything(self):
        assert validator().check_field_allowed("anything") is None

    def test_declared_field_returns_rule(self, avatar_policy):
        rule = FieldPolicyValidator(avatar_policy).check_field_allowed("avatar")
        assert rule.field_name == "avatar"

    def test_undeclared_field_rejected(self, avatar_policy):
        with pytest.raises(UnexpectedField) as exc:
            FieldPolicyValidator(avatar_policy).check_field_allowed("banner")
        assert exc.value.message == "The field banner is not expected"
        assert exc.value.status == 422

    def test_undeclared_field_admitted_when_enabled(self):
        v = validator(enabled_fields=[FieldRule("avatar")], enabled_additional_fields=True)
        assert v.check_field_allowed("banner") is None


# ============================================================================
# check_mimetype
# ============================================================================

class TestMimetype:

    def test_per_field_list_wins(self):
        v = validator(enabled_fields=[FieldRule("avatar", ("image/",))], mimetypes=["application/pdf"])
        v.check_mimetype("avatar", "image/png")
        with pytest.raises(UnsupportedMimetype) as exc:
            v.check_mimetype("avatar", "application/pdf")
        assert exc.value.message == "The field avatar expected one of the following mimetypes: image/"

    def test_global_list_when_field_has_none(self):
        v = validator(enabled_fields=[FieldRule("any")], mimetypes=["image/png", "image/gif"])
        v.check_mimetype("any", "image/gif")
        with pytest.raises(UnsupportedMimetype) as exc:
            v.check_mimetype("any", "text/plain")
        assert exc.value.message == "Expected one of the following mimetypes: image/png,image/gif"
        assert exc.value.metadata["expected"] == ["image/png", "image/gif"]

    def test_empty_lists_admit_everything(self):
        validator().check_mimetype("x", "application/x-whatever")

    def test_unknown_mimetype_rejected_by_non_empty_list(self):
        with pytest.raises(UnsupportedMimetype):
            validator(mimetypes=["image/"]).check_mimetype("x", "")

    def test_contains_is_substring(self):
        v = validator(mimetypes=["pdf"])
        v.check_mimetype("x", "application/pdf")

    def test_exact_match(self):
        v = validator(mimetypes=["image/png"], mimetype_match="exact")
        v.check_mimetype("x", "image/png")
        with pytest.raises(UnsupportedMimetype):
            v.check_mimetype("x", "image/pngx")


# ============================================================================
# check_file_count
# ============================================================================

class TestFileCount:

    def test_field_limit_is_exclusive(self, avatar_policy):
        v = FieldPolicyValidator(avatar_policy)
        v.check_file_count([], "avatar")
        with pytest.raises(TooManyFiles) as exc:
            v.check_file_count(accepted("avatar"), "avatar")
        assert exc.value.message == "The field avatar accepts a maximum of 1 files"

    def test_field_limit_counts_only_same_field(self, avatar_policy):
        v = FieldPolicyValidator(avatar_policy)
        v.check_file_count(accepted("avatar") + accepted("docs"), "docs")
        with pytest.raises(TooManyFiles):
            v.check_file_count(accepted("docs", 2), "docs")

    def test_global_limit_counts_everything(self):
        v = validator(limits={"files": 2})
        v.check_file_count(accepted("a"), "b")
        with pytest.raises(TooManyFiles) as exc:
            v.check_file_count(accepted("a") + accepted("b"), "c")
        assert exc.value.message == "Accepts a maximum of 2 files"

    def test_global_limit_applies_to_undeclared_fields(self):
        v = validator(
            enabled_fields=[FieldRule("avatar", file_limit=5)],
            enabled_additional_fields=True,
            limits={"files": 1},
        )
        with pytest.raises(TooManyFiles):
            v.check_file_count(accepted("extra"), "other")
        v.check_file_count(accepted("extra") + accepted("avatar"), "avatar")

    def test_no_limit(self):
        validator().check_file_count(accepted("a", 100), "a")
