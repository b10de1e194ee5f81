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

"""Single-pass transformation of COPY data blocks in a plain SQL dump."""

import random
import re
from collections.abc import Iterable
from enum import Enum
from pathlib import Path
from typing import TextIO

from .evaluator import evaluate
from .models import Catalog, DumpStats, RowContext, RuleNode

FIELD_DELIMITER = "\t"
ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"

COPY_PATTERN = re.compile(
    r"^\s*COPY\s+([\w.]+)\s*(\([^;]+\))?\s+FROM\s+stdin\s*;\s*$", re.IGNORECASE
)
END_PATTERN = re.compile(r"^\s*\\\.\s*$")


class ParserState(Enum):
    SEARCHING_FOR_BLOCK = "searching"
    IN_BLOCK = "in_block"


def parse_column_list(raw: str) -> list[str]:
    """Parse '(a, "b", c)' into column names, stripping quotes and spaces."""
    start = raw.find("(")
    end = raw.rfind(")")
    if start == -1 or end <= start:
        return []
    names = (part.strip(' \t"') for part in raw[start + 1 : end].split(","))
    return [name for name in names if name]


def _split_terminator(line: str) -> tuple[str, str]:
    """Split a line into its content and trailing newline sequence."""
    if line.endswith("\r\n"):
        return line[:-2], "\r\n"
    if line.endswith("\n"):
        return line[:-1], "\n"
    return line, ""


class DumpTransducer:
    """Scans dump lines, rewriting cells of COPY blocks with catalog rules."""

    def __init__(self, catalog: Catalog, rng: random.Random | None = None) -> None:
        self.catalog = catalog
        self.rng = rng
        self.state = ParserState.SEARCHING_FOR_BLOCK
        self.table: str | None = None
        self.columns: list[str] = []
        self.stats = DumpStats()

    def feed(self, line: str) -> str:
        """Transform one line (with or without its newline) and return it."""
        self.stats.lines += 1
        content, terminator = _split_terminator(line)

        if self.state is ParserState.SEARCHING_FOR_BLOCK:
            m = COPY_PATTERN.match(content)
            if m:
                self.table = m.group(1)
                self.columns = parse_column_list(m.group(2)) if m.group(2) else []
                self.state = ParserState.IN_BLOCK
                self.stats.blocks += 1
                self.stats.tables[self.table] = self.stats.tables.get(self.table, 0) + 1
            return line

        if END_PATTERN.match(content):
            self.state = ParserState.SEARCHING_FOR_BLOCK
            self.table = None
            self.columns = []
            return line

        self.stats.rows += 1
        table_rules = self.catalog.get(self.table or "")
        if not table_rules or not self.columns:
            return line

        self.stats.rewritten_rows += 1
        return self._transform_row(content, table_rules) + terminator

    def _transform_row(self, content: str, table_rules: dict[str, RuleNode]) -> str:
        original = tuple(content.split(FIELD_DELIMITER))
        working = list(original)
        ctx = RowContext(self.columns, original)
        for index, column in enumerate(self.columns[: len(working)]):
            rule = table_rules.get(column)
            if rule is not None:
                working[index] = evaluate(rule, working[index], ctx, self.rng)
        return FIELD_DELIMITER.join(working)

    def process(self, lines: Iterable[str], out: TextIO) -> DumpStats:
        """Transform every line of a stream, writing results in input order."""
        for line in lines:
            out.write(self.feed(line))
        return self.stats


def open_dump(path: Path, mode: str = "r") -> TextIO:
    """Open a dump so that untouched lines round-trip byte for byte."""
    return path.open(mode, encoding=ENCODING, errors=ENCODING_ERRORS, newline="")


def process_file(
    input_path: Path, output_path: Path, catalog: Catalog, rng: random.Random | None = None
) -> DumpStats:
    """Transform a dump file into output_path. OSError propagates to the caller."""
    with open_dump(input_path) as src, open_dump(output_path, "w") as dst:
        return DumpTransducer(catalog, rng).process(src, dst)
