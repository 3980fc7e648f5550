"""Keep/drop decisions for candidate commits.

Rules are evaluated with a fixed precedence:

1. When at least one ``include`` rule is configured, a commit must match one
   of them to be considered at all.
2. The first matching ``exclude`` rule, in configuration order, drops the
   commit. Exclusions always override inclusions.
3. Any other commit is kept.

Decisions depend on nothing but the commit and the configured rules, so the
same decision is recomputed on resume without replaying earlier commits.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final
from typing import Iterable
from typing import Literal
from typing import Mapping
from typing import TypeAlias

from graft.exception import InvalidFilterPattern
from graft.repository.base import CommitRecord
from graft.repository.base import Identity

TRAILER: Final = "graft-source"

_TRAILER_LINE: Final = re.compile(rf"^{TRAILER}: ([0-9a-f]{{40}})$", re.MULTILINE)

# public
FilterField: TypeAlias = Literal["message", "path"]

# public
Polarity: TypeAlias = Literal["include", "exclude"]


def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a user supplied regular expression.

    :raises InvalidFilterPattern:
        If the expression does not compile.
    """
    try:
        return re.compile(pattern)
    except re.error as e:
        raise InvalidFilterPattern(pattern, e) from e


def parse_trailer(message: str) -> str | None:
    """Return the source commit recorded in a transplanted message, if any."""
    matches = _TRAILER_LINE.findall(message)
    return matches[-1] if matches else None


# public
@dataclass(frozen=True)
class FilterRule:
    """One inclusion or exclusion predicate.

    :param pattern:
        Compiled expression, applied with :meth:`re.Pattern.search`.
    :param field:
        ``message`` tests the full commit message; ``path`` tests every
        changed path and matches if any of them matches.
    :param polarity:
        Whether a match includes or excludes the commit.
    """

    pattern: re.Pattern
    field: FilterField = "message"
    polarity: Polarity = "exclude"

    @classmethod
    def compile(
        cls,
        pattern: str,
        field: FilterField = "message",
        polarity: Polarity = "exclude",
    ) -> FilterRule:
        if field not in ("message", "path"):
            raise ValueError(f"Unknown filter field {field!r}")
        if polarity not in ("include", "exclude"):
            raise ValueError(f"Unknown filter polarity {polarity!r}")
        return cls(compile_pattern(pattern), field, polarity)

    def matches(self, commit: CommitRecord) -> bool:
        if self.field == "message":
            return self.pattern.search(commit.message) is not None
        return any(self.pattern.search(path) for path in sorted(commit.paths))

    def __str__(self) -> str:
        return f"{self.polarity} {self.field} /{self.pattern.pattern}/"


# public
class AuthorMap:
    """Translation table from source identities to target identities.

    Keys are either ``Name <email>`` strings, matching that exact identity,
    or bare email addresses, matching any name. Exact keys win over email
    keys. Values are ``Name <email>`` strings.

    :param entries:
        Raw mapping as found in the configuration.
    :raises ValueError:
        If a key or value is not a valid identity.
    """

    def __init__(self, entries: Mapping[str, str] | None = None):
        self._exact: dict[tuple[str, str], Identity] = {}
        self._by_email: dict[str, Identity] = {}
        for key, value in (entries or {}).items():
            source, target = Identity.parse(key), Identity.parse(value)
            if not target.name:
                raise ValueError(f"Author map value {value!r} lacks a name")
            if source.name:
                self._exact[(source.name, source.email.lower())] = target
            else:
                self._by_email[source.email.lower()] = target

    def __len__(self) -> int:
        return len(self._exact) + len(self._by_email)

    def remap(self, identity: Identity) -> Identity:
        """Return *identity* translated through the table, timestamps kept."""
        email = identity.email.lower()
        target = self._exact.get((identity.name, email)) or self._by_email.get(email)
        return identity.renamed(target) if target else identity


# public
@dataclass(frozen=True)
class Keep:
    """Decision to transplant a commit with the given metadata."""

    author: Identity
    committer: Identity
    message: str


# public
@dataclass(frozen=True)
class Drop:
    """Decision to skip a commit."""

    reason: str


# public
Decision: TypeAlias = Keep | Drop


# public
class FilterEngine:
    """Evaluate commits against the configured rules.

    :param rules:
        Ordered filter rules.
    :param author_map:
        Identity translation applied to kept commits.
    :param message_filters:
        Expressions whose matching lines are removed from kept messages.
    :param trailer:
        Whether to append a ``graft-source: <id>`` line to kept messages.
    """

    def __init__(
        self,
        rules: Iterable[FilterRule] = (),
        author_map: AuthorMap | None = None,
        message_filters: Iterable[re.Pattern] = (),
        *,
        trailer: bool = True,
    ):
        self.rules = tuple(rules)
        self.author_map = author_map or AuthorMap()
        self.message_filters = tuple(message_filters)
        self.trailer = trailer

    def evaluate(self, commit: CommitRecord) -> Decision:
        includes = [rule for rule in self.rules if rule.polarity == "include"]
        if includes and not any(rule.matches(commit) for rule in includes):
            return Drop("no include rule matched")
        for rule in self.rules:
            if rule.polarity == "exclude" and rule.matches(commit):
                return Drop(f"matched {rule}")
        return self.stamp(commit)

    def stamp(self, commit: CommitRecord) -> Keep:
        """Metadata for the target commit replaying *commit*, regardless of
        the rules.
        """
        return Keep(
            author=self.author_map.remap(commit.author),
            committer=self.author_map.remap(commit.committer),
            message=self.rewrite_message(commit),
        )

    def rewrite_message(self, commit: CommitRecord) -> str:
        lines = [
            line
            for line in commit.message.splitlines()
            if not any(pattern.search(line) for pattern in self.message_filters)
        ]
        while lines and not lines[-1].strip():
            lines.pop()
        message = "\n".join(lines)
        if self.trailer:
            trailer = f"{TRAILER}: {commit.id}"
            message = f"{message}\n\n{trailer}" if message else trailer
        return f"{message}\n"
