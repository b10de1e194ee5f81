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

"""Template parser turning ``{{VERB(args)}}`` strings into rule trees."""

import re

from .evaluator import salt_from_text
from .models import (
    OPERATORS,
    CompositeRule,
    ConditionalRule,
    HashRule,
    LiteralRule,
    MatchesRule,
    NoneRule,
    PickRule,
    RandomIntRule,
    RegexRule,
    RuleNode,
)

START_TOKEN = "{{"
_BLANKS = " \t"
_INT_RE = re.compile(r"[+-]?\d+")


def split_args(text: str) -> list[str]:
    """Split on top-level commas, ignoring commas nested in {} or ().

    Each argument is trimmed of spaces and tabs. An empty string yields no
    arguments.
    """
    if not text.strip(_BLANKS):
        return []
    args: list[str] = []
    current: list[str] = []
    nesting = 0
    for c in text:
        if c in "{(":
            nesting += 1
        elif c in "})":
            nesting -= 1
        if c == "," and nesting == 0:
            args.append("".join(current).strip(_BLANKS))
            current = []
        else:
            current.append(c)
    args.append("".join(current).strip(_BLANKS))
    return args


class TemplateParser:
    """Compiles template strings into rule trees.

    Problems never raise: they are appended to ``diagnostics`` and the
    offending tag degrades to an empty literal.
    """

    def __init__(self, diagnostics: list[str] | None = None) -> None:
        self.diagnostics = diagnostics if diagnostics is not None else []

    def _warn(self, message: str) -> LiteralRule:
        self.diagnostics.append(message)
        return LiteralRule("")

    def parse(self, raw: str) -> CompositeRule:
        """Parse a template into a composite of literal and function rules."""
        children: list[RuleNode] = []
        length = len(raw)
        i = 0
        last_pos = 0

        while i < length:
            if not raw.startswith(START_TOKEN, i):
                i += 1
                continue

            if i > last_pos:
                children.append(LiteralRule(raw[last_pos:i]))

            # The opening token counts for two; each brace moves the depth
            depth = 2
            j = i + 2
            while j < length:
                if raw[j] == "{":
                    depth += 1
                elif raw[j] == "}":
                    depth -= 1
                if depth == 0:
                    break
                j += 1

            if depth != 0:
                self.diagnostics.append(f"Unterminated tag in template: {raw[i:]!r}")
                last_pos = i
                break

            children.append(self._build_function(raw[i + 2 : j - 1]))
            i = j + 1
            last_pos = i

        if last_pos < length:
            children.append(LiteralRule(raw[last_pos:]))

        return CompositeRule(tuple(children))

    def _build_function(self, definition: str) -> RuleNode:
        """Build the rule for the text between ``{{`` and ``}}``."""
        paren_start = definition.find("(")
        if paren_start == -1:
            name, args_text = definition, ""
        else:
            name = definition[:paren_start]
            paren_end = definition.rfind(")")
            args_text = definition[paren_start + 1 : paren_end] if paren_end > paren_start else ""

        name = "".join(name.split())
        args = split_args(args_text)
        count = len(args)

        if name == "NONE" and count == 0:
            return NoneRule()
        if name == "LITERAL" and count == 1:
            return LiteralRule(args[0])
        if name == "RAND" and count == 2:
            return self._build_rand(args[0], args[1])
        if name == "PICK":
            return PickRule(tuple(args))
        if name == "HASH" and count == 1:
            return HashRule(salt_from_text(args[0]))
        if name == "REGEX" and count >= 2:
            pattern = self._compile(name, args[0])
            if pattern is None:
                return LiteralRule("")
            return RegexRule(pattern, self.parse(args[1]))
        if name == "MATCHES" and count == 2:
            pattern = self._compile(name, args[1])
            if pattern is None:
                return LiteralRule("")
            return MatchesRule(args[0], pattern)
        if name == "IF" and count == 5:
            if args[1] not in OPERATORS:
                valid = ", ".join(sorted(OPERATORS))
                return self._warn(f"Invalid IF operator '{args[1]}' (must be: {valid})")
            value = args[2]
            # IN lists contain commas, so a template writes them as (a, b, c)
            if args[1] == "IN" and value.startswith("(") and value.endswith(")"):
                value = value[1:-1]
            return ConditionalRule(
                condition=self.parse(args[0]),
                operator=args[1],  # type: ignore[arg-type]
                value=value,
                when_true=self.parse(args[3]),
                when_false=self.parse(args[4]),
            )

        return self._warn(f"Unknown function or invalid args: {name} (args count: {count})")

    def _build_rand(self, low: str, high: str) -> RuleNode:
        if not _INT_RE.fullmatch(low) or not _INT_RE.fullmatch(high):
            return self._warn(f"RAND arguments must be integers: {low!r}, {high!r}")
        minimum, maximum = int(low), int(high)
        if minimum > maximum:
            return self._warn(f"RAND minimum {minimum} is greater than maximum {maximum}")
        return RandomIntRule(minimum, maximum)

    def _compile(self, verb: str, pattern: str) -> re.Pattern[str] | None:
        try:
            return re.compile(pattern)
        except re.error as e:
            self.diagnostics.append(f"Invalid regex in {verb}: {e} for pattern: {pattern}")
            return None


def parse_template(raw: str, diagnostics: list[str] | None = None) -> CompositeRule:
    """Parse a template string into a rule tree."""
    return TemplateParser(diagnostics).parse(raw)
