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

"""Tests for rule tree evaluation."""

import random
import re
import threading

from dump_anonymizer.evaluator import evaluate, fnv1a_hash
from dump_anonymizer.models import (
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
)
from dump_anonymizer.parser import parse_template

CTX = RowContext(("id", "email", "role"), ("7", "alice@corp.com", "admin"))


def _if(operator: str, value: str) -> ConditionalRule:
    """Conditional on the cell value itself."""
    return ConditionalRule(
        condition=NoneRule(),
        operator=operator,  # type: ignore[arg-type]
        value=value,
        when_true=LiteralRule("yes"),
        when_false=LiteralRule("no"),
    )


def test_literal_ignores_input() -> None:
    """Test literal returns its text regardless of value and context."""
    rule = LiteralRule("fixed")
    assert evaluate(rule, "a", CTX) == "fixed"
    assert evaluate(rule, "b") == "fixed"


def test_none_is_identity() -> None:
    """Test NONE returns the value unchanged."""
    assert evaluate(NoneRule(), "keep me", CTX) == "keep me"
    assert evaluate(NoneRule(), "") == ""


def test_random_int_in_range() -> None:
    """Test RAND draws stay within the closed interval."""
    rng = random.Random(1234)
    rule = RandomIntRule(3, 5)
    draws = {int(evaluate(rule, "x", CTX, rng)) for _ in range(200)}
    assert draws == {3, 4, 5}


def test_random_int_single_value() -> None:
    """Test RAND with equal bounds is constant."""
    assert evaluate(RandomIntRule(9, 9), "x") == "9"


def test_pick_from_options() -> None:
    """Test PICK only returns configured options."""
    rng = random.Random(42)
    rule = PickRule(("red", "green", "blue"))
    picks = {evaluate(rule, "x", CTX, rng) for _ in range(100)}
    assert picks == {"red", "green", "blue"}


def test_pick_empty_options() -> None:
    """Test PICK without options yields empty string."""
    assert evaluate(PickRule(()), "x") == ""


def test_hash_known_value() -> None:
    """Test FNV-1a digest for salt 0 and empty value."""
    # FNV-1a 32 of b"0" is 0x350CA8AF
    assert fnv1a_hash(0, "") == str(0x350CA8AF)


def test_hash_deterministic() -> None:
    """Test same salt and value always hash the same."""
    rule = HashRule(3105)
    first = evaluate(rule, "alice@corp.com", CTX)
    second = evaluate(rule, "alice@corp.com", RowContext((), ()))
    assert first == second
    assert first.isdigit()
    assert 0 <= int(first) <= 0x7FFFFFFF


def test_hash_depends_on_salt_and_value() -> None:
    """Test different salts or values give different digests."""
    assert fnv1a_hash(1, "alice") != fnv1a_hash(2, "alice")
    assert fnv1a_hash(1, "alice") != fnv1a_hash(1, "bob")


def test_hash_template() -> None:
    """Test HASH inside a template builds a stable pseudonym."""
    tree = parse_template("user{{HASH(pepper)}}@example.com")
    out = evaluate(tree, "alice@corp.com")
    assert out == evaluate(tree, "alice@corp.com")
    assert re.fullmatch(r"user\d+@example\.com", out)


def test_regex_replaces_all_matches() -> None:
    """Test REGEX substitutes every occurrence."""
    rule = RegexRule(re.compile(r"\d"), LiteralRule("X"))
    assert evaluate(rule, "tel 555-1234", CTX) == "tel XXX-XXXX"


def test_regex_no_match() -> None:
    """Test REGEX leaves non-matching values unchanged."""
    rule = RegexRule(re.compile(r"\d"), LiteralRule("X"))
    assert evaluate(rule, "no digits") == "no digits"


def test_regex_group_references() -> None:
    """Test $n, $& and $$ in replacement text."""
    tree = parse_template(r"{{REGEX(^(\w+)@(.+)$, $1 at $2 ($&) $$)}}")
    assert evaluate(tree, "bob@corp.com") == "bob at corp.com (bob@corp.com) $"


def test_regex_prefix_and_suffix_references() -> None:
    """Test $` and $' expand to the text before and after each match."""
    rule = RegexRule(re.compile("b"), LiteralRule("[$`|$']"))
    assert evaluate(rule, "abc") == "a[a|c]c"
    rule = RegexRule(re.compile(r"\d"), LiteralRule("<$`>"))
    assert evaluate(rule, "x1y2") == "x<x>y<x1y>"


def test_regex_unknown_group_is_literal() -> None:
    """Test references to missing groups stay literal."""
    rule = RegexRule(re.compile(r"(a)"), LiteralRule(r"$5\1"))
    assert evaluate(rule, "a") == r"$5\1"


def test_regex_dynamic_replacement() -> None:
    """Test the replacement subtree is evaluated with the same value."""
    tree = parse_template("{{REGEX(@.*, @{{PICK(example.org)}})}}")
    assert evaluate(tree, "alice@corp.com") == "alice@example.org"


def test_matches_uses_original_column() -> None:
    """Test MATCHES reads the named column from the row context."""
    assert evaluate(MatchesRule("role", re.compile("admin|root")), "x", CTX) == "true"
    assert evaluate(MatchesRule("role", re.compile("adm")), "x", CTX) == "false"


def test_matches_unknown_column() -> None:
    """Test MATCHES on an unknown column sees an empty value."""
    assert evaluate(MatchesRule("missing", re.compile("")), "x", CTX) == "true"
    assert evaluate(MatchesRule("missing", re.compile(".+")), "x", CTX) == "false"


def test_conditional_eq_neq() -> None:
    """Test EQ and NEQ operators."""
    assert evaluate(_if("EQ", "a"), "a") == "yes"
    assert evaluate(_if("EQ", "a"), "b") == "no"
    assert evaluate(_if("NEQ", "a"), "b") == "yes"
    assert evaluate(_if("NEQ", "a"), "a") == "no"


def test_conditional_in() -> None:
    """Test IN trims entries and requires exact equality."""
    rule = _if("IN", "a, b ,c")
    assert evaluate(rule, "b") == "yes"
    assert evaluate(rule, "c") == "yes"
    assert evaluate(rule, "ab") == "no"


def test_conditional_branch_sees_value() -> None:
    """Test selected branch is evaluated with the same value."""
    tree = parse_template("{{IF({{MATCHES(role, admin)}}, EQ, true, {{NONE}}, ***)}}")
    assert evaluate(tree, "secret", CTX) == "secret"
    other = RowContext(("role",), ("user",))
    assert evaluate(tree, "secret", other) == "***"


def test_composite_children_see_original_value() -> None:
    """Test every composite child receives the unmodified value."""
    rule = CompositeRule(
        (
            RegexRule(re.compile("a"), LiteralRule("b")),
            LiteralRule("|"),
            NoneRule(),
        )
    )
    assert evaluate(rule, "aa") == "bb|aa"


def test_row_context_lookup() -> None:
    """Test row context lookups by name."""
    assert CTX.get("email") == "alice@corp.com"
    assert CTX.get("nope") == ""
    short = RowContext(("a", "b"), ("1",))
    assert short.get("b") == ""


def test_evaluation_from_threads() -> None:
    """Test a shared tree evaluates concurrently from several threads."""
    tree = parse_template("{{RAND(1, 6)}}-{{HASH(x)}}")
    expected_hash = evaluate(HashRule(120), "v")
    results: list[str] = []
    lock = threading.Lock()

    def work() -> None:
        for _ in range(50):
            out = evaluate(tree, "v")
            with lock:
                results.append(out)

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 200
    for out in results:
        roll, digest = out.split("-")
        assert 1 <= int(roll) <= 6
        assert digest == expected_hash
