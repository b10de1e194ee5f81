# Copyright 2025 Lars Marowsky-Brée <lars@marowsky-bree.eu>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Data models for rule trees, row context and processing results."""

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal, Union

Operator = Literal["EQ", "NEQ", "IN"]
OPERATORS: frozenset[str] = frozenset({"EQ", "NEQ", "IN"})


@dataclass(frozen=True)
class LiteralRule:
    """Fixed text, ignores the cell value."""

    text: str = ""


@dataclass(frozen=True)
class NoneRule:
    """Identity: the cell value is kept as is."""


@dataclass(frozen=True)
class RandomIntRule:
    """Uniform integer from the closed interval [minimum, maximum]."""

    minimum: int
    maximum: int


@dataclass(frozen=True)
class PickRule:
    """Uniform choice among options."""

    options: tuple[str, ...] = ()


@dataclass(frozen=True)
class RegexRule:
    """Global substitution of pattern; replacement is itself a rule tree."""

    pattern: re.Pattern[str]
    replacement: "RuleNode"


@dataclass(frozen=True)
class HashRule:
    """Deterministic salted digest of the cell value."""

    salt: int


@dataclass(frozen=True)
class MatchesRule:
    """'true'/'false' depending on whether a column's original value matches."""

    column: str
    pattern: re.Pattern[str]


@dataclass(frozen=True)
class ConditionalRule:
    """Branch on the result of a condition subtree."""

    condition: "RuleNode"
    operator: Operator
    value: str
    when_true: "RuleNode"
    when_false: "RuleNode"


@dataclass(frozen=True)
class CompositeRule:
    """Concatenation of child rule outputs."""

    children: tuple["RuleNode", ...] = ()


RuleNode = Union[
    LiteralRule,
    NoneRule,
    RandomIntRule,
    PickRule,
    RegexRule,
    HashRule,
    MatchesRule,
    ConditionalRule,
    CompositeRule,
]

# {qualified_table: {column: rule}}
Catalog = dict[str, dict[str, RuleNode]]
RawCatalog = dict[str, dict[str, str]]


@dataclass(frozen=True)
class RowContext:
    """Read-only view of one data row's original values."""

    columns: Sequence[str]
    values: Sequence[str]

    def get(self, column: str) -> str:
        """Return the original value of column, or "" if unknown."""
        try:
            index = self.columns.index(column)
        except ValueError:
            return ""
        if index < len(self.values):
            return self.values[index]
        return ""


EMPTY_CONTEXT = RowContext(columns=(), values=())


@dataclass
class DumpStats:
    """Counters collected while transforming a dump stream."""

    lines: int = 0
    blocks: int = 0
    rows: int = 0
    rewritten_rows: int = 0
    tables: dict[str, int] = field(default_factory=dict)
