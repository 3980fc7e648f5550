"""YAML configuration of a transplant run.

Example::

    source_path: ../upstream
    since_ref: v1.2.0
    until_ref: main
    filters:
      - pattern: ^WIP
      - pattern: ^vendor/
        field: path
    author_map:
      old@example.com: New Name <new@example.com>
    message_filters:
      - ^Signed-off-by:

Relative paths are resolved against the directory holding the file.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any
from typing import Final
from typing import Mapping

import yaml

from graft.exception import ConfigError
from graft.exception import InvalidFilterPattern
from graft.transplant.filter import AuthorMap
from graft.transplant.filter import FilterEngine
from graft.transplant.filter import FilterRule
from graft.transplant.filter import compile_pattern

_KEYS: Final = frozenset(
    {
        "source_path",
        "target_path",
        "since_ref",
        "until_ref",
        "filters",
        "author_map",
        "state_file_path",
        "message_filters",
        "trailer",
    }
)

_FILTER_KEYS: Final = frozenset({"pattern", "field", "polarity"})


# public
@dataclass(frozen=True)
class TransplantConfig:
    """Validated configuration of a transplant run.

    :param source_path:
        Repository commits are read from.
    :param target_path:
        Repository commits are written to.
    :param since_ref:
        Exclusive lower bound of the range, ``None`` for the root commit.
    :param until_ref:
        Inclusive upper bound of the range.
    :param filters:
        Ordered keep/drop rules.
    :param author_map:
        Identity translation table.
    :param state_file_path:
        Explicit progress file location, ``None`` for the default inside
        the target git directory.
    :param message_filters:
        Expressions whose matching message lines are removed.
    :param trailer:
        Whether transplanted messages record their source commit.
    """

    source_path: Path
    target_path: Path
    since_ref: str | None = None
    until_ref: str = "HEAD"
    filters: tuple[FilterRule, ...] = ()
    author_map: AuthorMap = field(default_factory=AuthorMap)
    state_file_path: Path | None = None
    message_filters: tuple[re.Pattern, ...] = ()
    trailer: bool = True

    @classmethod
    def from_file(cls, path: str | os.PathLike) -> TransplantConfig:
        """Load and validate a YAML configuration file.

        :raises ConfigError:
            If the file is unreadable, is not valid YAML or holds invalid
            values.
        :raises InvalidFilterPattern:
            If a pattern does not compile.
        """
        path = Path(path)
        try:
            with path.open(encoding="utf-8") as file:
                data = yaml.safe_load(file)
        except OSError as e:
            raise ConfigError(
                f"cannot read configuration: {e}", source=str(path)
            ) from e
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML: {e}", source=str(path)) from e
        if data is None:
            data = {}
        return cls.from_mapping(data, path.resolve().parent, source=str(path))

    @classmethod
    def from_mapping(
        cls,
        data: Any,
        base: str | os.PathLike,
        *,
        source: str | None = None,
    ) -> TransplantConfig:
        """Validate an already parsed configuration document.

        :param data:
            The parsed document.
        :param base:
            Directory relative paths are resolved against; it is also the
            default target repository.
        :param source:
            Name of the document used in error messages.
        """

        def fail(message: str):
            return ConfigError(message, source=source)

        if not isinstance(data, Mapping):
            raise fail("expected a mapping at the top level")
        if unknown := sorted(set(data) - _KEYS):
            raise fail(f"unknown key(s): {', '.join(map(str, unknown))}")
        if "source_path" not in data:
            raise fail("missing required key 'source_path'")

        base = Path(base)

        def path(key: str) -> Path | None:
            value = data.get(key)
            if value is None:
                return None
            if not isinstance(value, str) or not value:
                raise fail(f"'{key}' must be a non-empty string")
            return base / os.path.expanduser(value)

        def ref(key: str) -> str | None:
            value = data.get(key)
            if value is not None and (not isinstance(value, str) or not value):
                raise fail(f"'{key}' must be a non-empty string")
            return value

        try:
            filters = tuple(
                _filter(entry, fail) for entry in _list(data, "filters", fail)
            )
            message_filters = tuple(
                compile_pattern(_string(entry, "message_filters", fail))
                for entry in _list(data, "message_filters", fail)
            )
        except InvalidFilterPattern as e:
            raise InvalidFilterPattern(e.pattern, e.__cause__, source=source) from e

        author_map = data.get("author_map") or {}
        if not isinstance(author_map, Mapping) or not all(
            isinstance(key, str) and isinstance(value, str)
            for key, value in author_map.items()
        ):
            raise fail("'author_map' must map strings to strings")
        try:
            author_map = AuthorMap(author_map)
        except ValueError as e:
            raise fail(f"invalid 'author_map': {e}") from e

        trailer = data.get("trailer", True)
        if not isinstance(trailer, bool):
            raise fail("'trailer' must be a boolean")

        return cls(
            source_path=path("source_path"),
            target_path=path("target_path") or base,
            since_ref=ref("since_ref"),
            until_ref=ref("until_ref") or "HEAD",
            filters=filters,
            author_map=author_map,
            state_file_path=path("state_file_path"),
            message_filters=message_filters,
            trailer=trailer,
        )

    def filter_engine(self) -> FilterEngine:
        return FilterEngine(
            self.filters,
            self.author_map,
            self.message_filters,
            trailer=self.trailer,
        )


def _list(data: Mapping, key: str, fail) -> list:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise fail(f"'{key}' must be a list")
    return value


def _string(value: Any, key: str, fail) -> str:
    if not isinstance(value, str):
        raise fail(f"'{key}' entries must be strings, got {value!r}")
    return value


def _filter(entry: Any, fail) -> FilterRule:
    if isinstance(entry, str):
        entry = {"pattern": entry}
    if not isinstance(entry, Mapping):
        raise fail(f"filter entries must be mappings, got {entry!r}")
    if unknown := sorted(set(entry) - _FILTER_KEYS):
        raise fail(f"unknown filter key(s): {', '.join(map(str, unknown))}")
    if "pattern" not in entry:
        raise fail("filter entry lacks a 'pattern'")
    pattern = _string(entry["pattern"], "filters", fail)
    try:
        return FilterRule.compile(
            pattern,
            field=entry.get("field", "message"),
            polarity=entry.get("polarity", "exclude"),
        )
    except ValueError as e:
        raise fail(str(e)) from e
