"""
Webmention extensions: typed payloads carried alongside source and target.

A sender may add two optional form fields to a webmention:

    definition={extension-uri}&payload={json}

The definition URI identifies the extension (e.g. a "like") and the payload
is validated against that extension's JSON schema. Each registered extension
also has a small integer ``ExtensionKind`` used for compact storage.

Data flow:
    raw form fields --parse()--> ParsedWebmention (kind + payload, stored)
    ParsedWebmention --reparse()--> NormalisedWebmention (definition + payload)

WARNING: ExtensionKind ordinals are persisted. Never renumber or remove a
member; append new extensions at the end. Retired extensions keep their
ordinal forever.

Usage:
    >>> from indieweb.extensions import parse_extension, reparse_extension
    >>> mention = parse_extension(
    ...     "https://a.example/post", "https://b.example/post",
    ...     definition=LIKE.definition, payload="{}",
    ... )
    >>> mention.kind
    <ExtensionKind.LIKE: 2>
    >>> reparse_extension(mention).definition
    'https://webmention.feathers.studio/like/1.0/'
"""

import json
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional, Union

from jsonschema import Draft7Validator

from schema import EMPTY_PAYLOAD_SCHEMA
from indieweb.results import Err, ErrorKind


logger = logging.getLogger(__name__)


class ExtensionKind(IntEnum):
    """Stable storage ordinal of a webmention's extension. Append only."""

    UNKNOWN = 0
    BASIC = 1
    LIKE = 2
    COMMENT = 3
    MENTION = 4


@dataclass(frozen=True)
class ExtensionDefinition:
    """A registered extension.

    Attributes:
        kind: Stable storage ordinal
        definition: Stable URI identifying the extension and its version
        schema: JSON schema (Draft 7) the payload must satisfy
    """
    kind: ExtensionKind
    definition: str
    schema: Dict[str, Any]


@dataclass
class ParsedWebmention:
    """A validated webmention in its storage form.

    For ``UNKNOWN`` kinds the payload is ``{"definition": uri, "payload": raw}``
    so the unrecognised extension survives a round-trip through storage.
    """
    source: str
    target: str
    kind: ExtensionKind = ExtensionKind.BASIC
    payload: Any = None


@dataclass
class NormalisedWebmention:
    """A webmention in its serialisation form: definition URI plus payload.

    ``definition`` is None for a basic webmention.
    """
    source: str
    target: str
    definition: Optional[str] = None
    payload: Any = None


LIKE = ExtensionDefinition(
    kind=ExtensionKind.LIKE,
    definition="https://webmention.feathers.studio/like/1.0/",
    schema=EMPTY_PAYLOAD_SCHEMA,
)

COMMENT = ExtensionDefinition(
    kind=ExtensionKind.COMMENT,
    definition="https://webmention.feathers.studio/comment/1.0/",
    schema=EMPTY_PAYLOAD_SCHEMA,
)

MENTION = ExtensionDefinition(
    kind=ExtensionKind.MENTION,
    definition="https://webmention.feathers.studio/mention/1.0/",
    schema=EMPTY_PAYLOAD_SCHEMA,
)


def _reject_constant(value: str):
    # json.loads otherwise accepts NaN, Infinity and -Infinity
    raise ValueError(f"Invalid JSON constant: {value}")


class ExtensionRegistry:
    """Maps extension definition URIs to schemas and storage ordinals.

    The registry is append-only: a definition URI or an ordinal can be
    registered once. ``UNKNOWN`` and ``BASIC`` are reserved for
    webmentions without a registered extension.

    Example:
        >>> registry = ExtensionRegistry([LIKE, COMMENT])
        >>> registry.lookup(LIKE.definition).kind
        <ExtensionKind.LIKE: 2>
        >>> registry.lookup("https://example.com/unknown/") is None
        True
    """

    RESERVED_KINDS = (ExtensionKind.UNKNOWN, ExtensionKind.BASIC)

    def __init__(self, definitions: Optional[List[ExtensionDefinition]] = None):
        self._by_definition: Dict[str, ExtensionDefinition] = {}
        self._by_kind: Dict[int, ExtensionDefinition] = {}
        self._validators: Dict[str, Draft7Validator] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, extension: ExtensionDefinition) -> None:
        """Register an extension.

        Raises:
            ValueError: If the ordinal is reserved or either the ordinal or
                the definition URI is already registered.
        """
        if extension.kind in self.RESERVED_KINDS:
            raise ValueError(f"Extension kind {extension.kind!r} is reserved")
        if int(extension.kind) in self._by_kind:
            raise ValueError(
                f"Extension kind {int(extension.kind)} is already assigned to "
                f"{self._by_kind[int(extension.kind)].definition}"
            )
        if extension.definition in self._by_definition:
            raise ValueError(f"Extension {extension.definition} is already registered")

        self._by_definition[extension.definition] = extension
        self._by_kind[int(extension.kind)] = extension
        self._validators[extension.definition] = Draft7Validator(extension.schema)
        logger.debug(f"Registered webmention extension {extension.definition} as kind {int(extension.kind)}")

    def lookup(self, definition: str) -> Optional[ExtensionDefinition]:
        """Find a registered extension by definition URI."""
        return self._by_definition.get(definition)

    def lookup_kind(self, kind: int) -> Optional[ExtensionDefinition]:
        """Find a registered extension by storage ordinal."""
        return self._by_kind.get(int(kind))

    @property
    def definitions(self) -> List[ExtensionDefinition]:
        return sorted(self._by_kind.values(), key=lambda d: int(d.kind))

    def parse(
        self,
        source: str,
        target: str,
        definition: Optional[str] = None,
        payload: Optional[str] = None,
        ban_unknown: bool = False,
    ) -> Union[ParsedWebmention, Err]:
        """Classify a webmention by its extension fields.

        Args:
            source: Source URL
            target: Target URL
            definition: Raw ``definition`` form field, if any
            payload: Raw ``payload`` form field (JSON text), if any
            ban_unknown: Reject definitions that are not registered instead
                of preserving them verbatim

        Returns:
            ParsedWebmention, or Err with one of INVALID_PAYLOAD_JSON,
            INVALID_PAYLOAD, UNSUPPORTED_EXTENSION, PAYLOAD_WITHOUT_DEFINITION
        """
        parsed = None
        if payload is not None:
            try:
                parsed = json.loads(payload, parse_constant=_reject_constant)
            except ValueError:
                return Err(ErrorKind.INVALID_PAYLOAD_JSON, "Payload is not valid JSON", 400)

        if definition:
            extension = self.lookup(definition)
            if extension is not None:
                errors = list(self._validators[definition].iter_errors(parsed))
                if errors:
                    logger.debug(f"Payload for {definition} failed validation: {errors[0].message}")
                    return Err(ErrorKind.INVALID_PAYLOAD, "Payload is not valid", 400)
                return ParsedWebmention(source=source, target=target, kind=extension.kind, payload=parsed)

            if ban_unknown:
                return Err(
                    ErrorKind.UNSUPPORTED_EXTENSION,
                    f"Webmention extension {definition} is not supported by this receiver",
                    400,
                )
            return ParsedWebmention(
                source=source,
                target=target,
                kind=ExtensionKind.UNKNOWN,
                payload={"definition": definition, "payload": parsed},
            )

        if payload is not None:
            return Err(
                ErrorKind.PAYLOAD_WITHOUT_DEFINITION,
                "Payload is not allowed without a definition field",
                400,
            )
        return ParsedWebmention(source=source, target=target, kind=ExtensionKind.BASIC, payload=None)

    def reparse(self, webmention: ParsedWebmention) -> Union[NormalisedWebmention, Err]:
        """Map a stored webmention's kind back to its definition URI.

        Returns:
            NormalisedWebmention, or Err(INVALID_KIND) for an ordinal this
            registry does not know
        """
        kind = webmention.kind

        if kind == ExtensionKind.BASIC:
            return NormalisedWebmention(source=webmention.source, target=webmention.target)

        if kind == ExtensionKind.UNKNOWN:
            preserved = webmention.payload if isinstance(webmention.payload, dict) else {}
            if not preserved.get("definition"):
                return Err(ErrorKind.INVALID_KIND, "Unknown extension webmention has no definition", 400)
            return NormalisedWebmention(
                source=webmention.source,
                target=webmention.target,
                definition=preserved["definition"],
                payload=preserved.get("payload"),
            )

        extension = self.lookup_kind(kind)
        if extension is None:
            return Err(ErrorKind.INVALID_KIND, f"Invalid webmention kind: {kind!r}", 400)

        return NormalisedWebmention(
            source=webmention.source,
            target=webmention.target,
            definition=extension.definition,
            payload=webmention.payload,
        )


DEFAULT_REGISTRY = ExtensionRegistry([LIKE, COMMENT, MENTION])


def parse_extension(
    source: str,
    target: str,
    definition: Optional[str] = None,
    payload: Optional[str] = None,
    ban_unknown: bool = False,
) -> Union[ParsedWebmention, Err]:
    """Parse extension fields with the default registry."""
    return DEFAULT_REGISTRY.parse(source, target, definition, payload, ban_unknown=ban_unknown)


def reparse_extension(webmention: ParsedWebmention) -> Union[NormalisedWebmention, Err]:
    """Reparse a stored webmention with the default registry."""
    return DEFAULT_REGISTRY.reparse(webmention)
