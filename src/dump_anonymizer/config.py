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

"""Configuration loading for anonymization rules.

The YAML layout is::

    rules:
      <schema>:
        <table>:
          - <column>: "<template>"
"""

from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import yaml

from .models import RawCatalog
from .parser import TemplateParser


def _iter_columns(table_node: Any) -> Iterator[tuple[Any, Any]]:
    """Yield (column, template) pairs from a list of mappings or a mapping."""
    if isinstance(table_node, dict):
        yield from table_node.items()
    elif isinstance(table_node, list):
        for entry in table_node:
            if isinstance(entry, dict):
                yield from entry.items()


def _parse_rules(rules_node: Any) -> RawCatalog:
    """Flatten the schema/table/column tree into {schema.table: {column: template}}."""
    raw: RawCatalog = {}
    if not isinstance(rules_node, dict):
        return raw
    for schema, schema_node in rules_node.items():
        if not isinstance(schema_node, dict):
            continue
        for table, table_node in schema_node.items():
            columns = raw.setdefault(f"{schema}.{table}", {})
            for column, template in _iter_columns(table_node):
                if template is None or isinstance(template, (dict, list)):
                    continue
                columns[str(column)] = str(template)
    return raw


def load_config_file(path: Path) -> RawCatalog:
    """Load templates from a YAML file."""
    if not path.exists():
        return {}
    with path.open() as f:
        data = yaml.safe_load(f)
    if not data or not isinstance(data, dict) or "rules" not in data:
        return {}
    return _parse_rules(data["rules"])


def load_config(paths: Iterable[Path]) -> RawCatalog:
    """Load and merge templates from several files.

    Later files override earlier ones for the same table and column.
    """
    merged: RawCatalog = {}
    for path in paths:
        for table, columns in load_config_file(path).items():
            merged.setdefault(table, {}).update(columns)
    return merged


def _validate_table(prefix: str, table_node: Any) -> list[str]:
    """Validate the column entries of one table, return list of errors."""
    errors: list[str] = []

    if isinstance(table_node, list):
        for i, entry in enumerate(table_node):
            if not isinstance(entry, dict):
                errors.append(f"{prefix}: entry {i + 1} must be a mapping of column to template")
    elif not isinstance(table_node, dict):
        return [f"{prefix}: must be a list or mapping of column templates"]

    for column, template in _iter_columns(table_node):
        where = f"{prefix}.{column}"
        if template is None:
            errors.append(f"{where}: missing template")
            continue
        if isinstance(template, (dict, list)):
            errors.append(f"{where}: template must be a string")
            continue
        diagnostics: list[str] = []
        TemplateParser(diagnostics).parse(str(template))
        errors.extend(f"{where}: {msg}" for msg in diagnostics)

    return errors


def validate_config_file(path: Path) -> list[str]:
    """Validate a configuration file, return list of error messages (empty if valid)."""
    if not path.exists():
        return [f"File not found: {path}"]

    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        return [f"YAML syntax error: {e}"]

    if data is None:
        return []

    if not isinstance(data, dict):
        return ["Invalid format: expected a mapping with 'rules' key"]

    if "rules" not in data:
        return []

    rules = data["rules"]
    if rules is None:
        return []
    if not isinstance(rules, dict):
        return ["Invalid format: 'rules' must be a mapping of schemas"]

    errors: list[str] = []
    for schema, schema_node in rules.items():
        if not isinstance(schema_node, dict):
            errors.append(f"Schema '{schema}': must be a mapping of tables")
            continue
        for table, table_node in schema_node.items():
            errors.extend(_validate_table(f"{schema}.{table}", table_node))

    return errors
