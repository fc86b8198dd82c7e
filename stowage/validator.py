"""
Field policy validator.

Pure decision logic over a ResolvedPolicy. Each check either admits or
raises a typed PolicyRejection. Callers run them in order: field first
(it selects the rule), then mimetype, then file count.
"""

from __future__ import annotations

from typing import Optional, Sequence, TYPE_CHECKING

from .faults import TooManyFiles, UnexpectedField, UnsupportedMimetype
from .policy import FieldRule, ResolvedPolicy

if TYPE_CHECKING:
    from .pipeline import AcceptedFile


class FieldPolicyValidator:
    """Applies one resolved policy to fields and files of a request."""

    __slots__ = ("policy",)

    def __init__(self, policy: ResolvedPolicy):
        self.policy = policy

    def check_field_allowed(self, field: str) -> Optional[FieldRule]:
        """
        Check that a field may carry files.

        Returns:
            The field's rule, or None when the field is admitted without one

        Raises:
            UnexpectedField: Rules exist, none matches and undeclared
                fields are refused
        """
        policy = self.policy
        if not policy.has_rules:
            return None

        rule = policy.rule_for(field)
        if rule is not None:
            return rule

        if policy.allow_undeclared_fields:
            return None

        raise UnexpectedField(field)

    def check_mimetype(self, field: str, mimetype: str) -> None:
        """
        Check a detected mimetype against the applicable allow-list.

        The field rule's list applies when it is non-empty, otherwise the
        global list. An empty allow-list admits everything.

        Raises:
            UnsupportedMimetype: No allow-list entry matches
        """
        rule = self.policy.rule_for(field)
        per_field = rule is not None and bool(rule.mimetypes)
        expected = rule.mimetypes if per_field else self.policy.default_mimetypes

        if not expected:
            return

        match = self.policy.mimetype_match
        if any(match.matches(mimetype or "", candidate) for candidate in expected):
            return

        raise UnsupportedMimetype(field, mimetype, expected, per_field=per_field)

    def check_file_count(self, accepted: Sequence["AcceptedFile"], field: str) -> None:
        """
        Check that one more file may be accepted under ``field``.

        Counts files of the same field against the rule's limit, or all
        accepted files against the global limit when the field has no rule.
        The limit is exclusive: a limit of 1 rejects the second file.

        Raises:
            TooManyFiles: The count is at or above the limit
        """
        rule = self.policy.rule_for(field)

        if rule is not None:
            limit = rule.file_limit
            count = sum(1 for f in accepted if f.field_name == field)
        elif self.policy.default_file_limit:
            limit = self.policy.default_file_limit
            count = len(accepted)
        else:
            return

        if count < limit:
            return

        raise TooManyFiles(limit, field if rule is not None else None)
