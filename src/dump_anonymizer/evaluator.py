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

"""Evaluation of compiled rule trees against cell values."""

import random
import re
import threading

from .models import (
    EMPTY_CONTEXT,
    CompositeRule,
    ConditionalRule,
    HashRule,
    LiteralRule,
    MatchesRule,
    NoneRule,
    PickRule,
    RandomIntRule,
    RegexRule,
    RowContext,
    RuleNode,
)

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619
_MASK32 = 0xFFFFFFFF

# $1..$99, $&, $`, $' and $$ in REGEX replacement text
_REPLACEMENT_REF = re.compile(r"\$(\d{1,2}|[&`'$])")

_local = threading.local()


def _thread_rng() -> random.Random:
    """Return the calling thread's own generator."""
    rng: random.Random | None = getattr(_local, "rng", None)
    if rng is None:
        rng = random.Random()
        _local.rng = rng
    return rng


def _to_bytes(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def salt_from_text(text: str) -> int:
    """Reduce a HASH argument to a 32-bit salt (s = s * 31 + byte)."""
    salt = 0
    for b in _to_bytes(text):
        salt = (salt * 31 + b) & _MASK32
    return salt


def fnv1a_hash(salt: int, value: str) -> str:
    """Salted 32-bit FNV-1a digest of value as a non-negative decimal string."""
    h = FNV_OFFSET_BASIS
    for b in _to_bytes(str(salt)) + _to_bytes(value):
        h ^= b
        h = (h * FNV_PRIME) & _MASK32
    return str(h & 0x7FFFFFFF)


def _expand(template: str, match: re.Match[str]) -> str:
    """Expand $-references in a replacement template for one match."""

    def ref(m: re.Match[str]) -> str:
        token = m.group(1)
        if token == "$":
            return "$"
        if token == "&":
            return match.group(0)
        if token == "`":
            return match.string[: match.start()]
        if token == "'":
            return match.string[match.end() :]
        index = int(token)
        if index > match.re.groups:
            # Fall back to a one-digit reference, then to the literal text
            if len(token) == 2 and int(token[0]) <= match.re.groups and token[0] != "0":
                return (match.group(int(token[0])) or "") + token[1]
            return m.group(0)
        if index == 0:
            return m.group(0)
        return match.group(index) or ""

    return _REPLACEMENT_REF.sub(ref, template)


def _compare(rule: ConditionalRule, actual: str) -> bool:
    if rule.operator == "EQ":
        return actual == rule.value
    if rule.operator == "NEQ":
        return actual != rule.value
    return any(entry.strip(" \t") == actual for entry in rule.value.split(","))


def evaluate(
    rule: RuleNode,
    value: str,
    ctx: RowContext = EMPTY_CONTEXT,
    rng: random.Random | None = None,
) -> str:
    """Evaluate a rule tree for one cell.

    Args:
        rule: Compiled rule tree
        value: Cell value the rule transforms
        ctx: Original values of the row, for cross-column lookups
        rng: Random source for RAND/PICK (None = per-thread generator)
    """
    if isinstance(rule, CompositeRule):
        return "".join(evaluate(child, value, ctx, rng) for child in rule.children)
    if isinstance(rule, LiteralRule):
        return rule.text
    if isinstance(rule, NoneRule):
        return value
    if isinstance(rule, RandomIntRule):
        return str((rng or _thread_rng()).randint(rule.minimum, rule.maximum))
    if isinstance(rule, PickRule):
        if not rule.options:
            return ""
        return (rng or _thread_rng()).choice(rule.options)
    if isinstance(rule, HashRule):
        return fnv1a_hash(rule.salt, value)
    if isinstance(rule, RegexRule):
        template = evaluate(rule.replacement, value, ctx, rng)
        return rule.pattern.sub(lambda m: _expand(template, m), value)
    if isinstance(rule, MatchesRule):
        return "true" if rule.pattern.fullmatch(ctx.get(rule.column)) else "false"
    if isinstance(rule, ConditionalRule):
        actual = evaluate(rule.condition, value, ctx, rng)
        branch = rule.when_true if _compare(rule, actual) else rule.when_false
        return evaluate(branch, value, ctx, rng)
    raise TypeError(f"Unknown rule type: {type(rule).__name__}")
