"""
Upload policies.

``UploadPolicy`` is the declarative form callers write (or load from
config). ``UploadPolicy.resolve()`` turns it into a ``ResolvedPolicy``: every
fallback decided up front, read-only, and safe to share between concurrent
requests.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .config import ConfigError

JSON_MIMETYPE = "application/json"


class MimetypeMatch(str, Enum):
    """How a detected mimetype is compared with an allow-list entry."""
    CONTAINS = "contains"  # "image/" admits "image/png"
    EXACT = "exact"

    def matches(self, mimetype: str, expected: str) -> bool:
        if self is MimetypeMatch.EXACT:
            return mimetype == expected
        return expected in mimetype


@dataclass(frozen=True)
class FieldRule:
    """Binds a field name to its allowed mimetypes and file-count ceiling."""

    field_name: str
    mimetypes: Tuple[str, ...] = ()
    file_limit: int = 1

    def __post_init__(self):
        if not self.field_name:
            raise ConfigError("Field rule requires a field name")
        object.__setattr__(self, "mimetypes", tuple(self.mimetypes))
        if not self.file_limit:
            object.__setattr__(self, "file_limit", 1)
        if self.file_limit < 0:
            raise ConfigError(f"Field '{self.field_name}' has a negative file limit")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldRule":
        """
        Build a rule from a mapping.

        Accepts ``{"field": "doc", "mimetypes": [...], "limits": {"files": 2}}``
        as well as ``field_name`` / ``file_limit`` keys.
        """
        name = data.get("field_name", data.get("field"))
        limits = data.get("limits") or {}
        limit = data.get("file_limit", limits.get("files"))
        return cls(
            field_name=name,
            mimetypes=tuple(data.get("mimetypes") or ()),
            file_limit=limit or 1,
        )


@dataclass(frozen=True)
class ParserLimits:
    """Parser-level hard caps. ``None`` means unlimited."""

    max_file_size: Optional[int] = None
    max_field_size: Optional[int] = None
    max_parts: Optional[int] = None
    max_fields: Optional[int] = None
    max_files: Optional[int] = None

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None and value < 0:
                raise ConfigError(f"Parser limit '{f.name}' must not be negative")

    _ALIASES = {
        "fileSize": "max_file_size",
        "fieldSize": "max_field_size",
        "parts": "max_parts",
        "fields": "max_fields",
        "files": "max_files",
    }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ParserLimits":
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = cls._ALIASES.get(key, key)
            if name not in known:
                raise ConfigError(f"Unknown parser limit '{key}'")
            kwargs[name] = value
        return cls(**kwargs)


@dataclass
class UploadPolicy:
    """
    Declarative upload policy.

    Attributes:
        enabled_fields: Ordered field rules
        enabled_additional_fields: Admit fields that match no rule
        limits: Global limits, e.g. ``{"files": 3}``
        mimetypes: Global mimetype allow-list; listing ``application/json``
            also enables JSON ingestion
        mimetype_match: ``"contains"`` (substring) or ``"exact"``
        body_field_name: JSON key holding base64 input
        body_url_field_name: JSON key holding URL input
        parser: Parser-level hard caps
        stream_to_store: Append file chunks to the store as they arrive
    """

    enabled_fields: List[Union[FieldRule, Mapping[str, Any]]] = field(default_factory=list)
    enabled_additional_fields: bool = False
    limits: Mapping[str, Any] = field(default_factory=dict)
    mimetypes: List[str] = field(default_factory=list)
    mimetype_match: Union[str, MimetypeMatch] = MimetypeMatch.CONTAINS
    body_field_name: str = "base64"
    body_url_field_name: str = "urls"
    parser: Union[ParserLimits, Mapping[str, Any], None] = None
    stream_to_store: bool = False

    _CAMEL_KEYS = {
        "enabledFields": "enabled_fields",
        "enabledAdditionalFields": "enabled_additional_fields",
        "mimetypeMatch": "mimetype_match",
        "bodyBase64FieldName": "body_field_name",
        "bodyFieldName": "body_field_name",
        "bodyUrlFieldName": "body_url_field_name",
        "streamToStore": "stream_to_store",
        "busboy": "parser",
    }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UploadPolicy":
        """Build a policy from a config mapping (camelCase or snake_case keys)."""
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = cls._CAMEL_KEYS.get(key, key)
            if name not in known:
                raise ConfigError(f"Unknown upload policy option '{key}'")
            kwargs[name] = value
        if isinstance(kwargs.get("parser"), Mapping) and "limits" in kwargs["parser"]:
            # busboy-style {"limits": {...}} nesting
            kwargs["parser"] = kwargs["parser"]["limits"]
        return cls(**kwargs)

    def resolve(self) -> "ResolvedPolicy":
        """Resolve every fallback once; the result is immutable."""
        rules: Dict[str, FieldRule] = {}
        for entry in self.enabled_fields:
            rule = entry if isinstance(entry, FieldRule) else FieldRule.from_dict(entry)
            if rule.field_name in rules:
                raise ConfigError(f"Field '{rule.field_name}' is declared more than once")
            rules[rule.field_name] = rule

        default_limit = (self.limits or {}).get("files")
        if default_limit is not None and default_limit < 0:
            raise ConfigError("Global file limit must not be negative")

        if isinstance(self.parser, ParserLimits):
            parser_limits = self.parser
        elif self.parser:
            parser_limits = ParserLimits.from_dict(self.parser)
        else:
            parser_limits = ParserLimits()

        try:
            match = MimetypeMatch(self.mimetype_match)
        except ValueError:
            raise ConfigError(f"Unknown mimetype match policy '{self.mimetype_match}'")

        mimetypes = tuple(self.mimetypes or ())

        return ResolvedPolicy(
            rules=MappingProxyType(rules),
            allow_undeclared_fields=bool(self.enabled_additional_fields),
            default_file_limit=default_limit or None,
            default_mimetypes=mimetypes,
            mimetype_match=match,
            json_enabled=JSON_MIMETYPE in mimetypes,
            body_field_name=self.body_field_name,
            body_url_field_name=self.body_url_field_name,
            parser_limits=parser_limits,
            stream_to_store=bool(self.stream_to_store),
        )


@dataclass(frozen=True)
class ResolvedPolicy:
    """Fully-resolved, read-only policy consulted by the validator and pipeline."""

    rules: Mapping[str, FieldRule]
    allow_undeclared_fields: bool
    default_file_limit: Optional[int]
    default_mimetypes: Tuple[str, ...]
    mimetype_match: MimetypeMatch
    json_enabled: bool
    body_field_name: str
    body_url_field_name: str
    parser_limits: ParserLimits
    stream_to_store: bool

    @property
    def has_rules(self) -> bool:
        return bool(self.rules)

    @property
    def content_mimetypes(self) -> Tuple[str, ...]:
        """Global allow-list without the JSON marker, for files carried in JSON bodies."""
        return tuple(m for m in self.default_mimetypes if m != JSON_MIMETYPE)

    def rule_for(self, field_name: str) -> Optional[FieldRule]:
        return self.rules.get(field_name)
