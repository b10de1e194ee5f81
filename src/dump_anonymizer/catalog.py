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

"""Compilation of configured templates into the rule catalog."""

from .models import Catalog, RawCatalog
from .parser import TemplateParser


def build_catalog(raw: RawCatalog, diagnostics: list[str] | None = None) -> Catalog:
    """Compile every template, prefixing diagnostics with table.column."""
    catalog: Catalog = {}
    for table, columns in raw.items():
        table_rules = catalog.setdefault(table, {})
        for column, template in columns.items():
            local: list[str] = []
            table_rules[column] = TemplateParser(local).parse(template)
            if diagnostics is not None:
                diagnostics.extend(f"{table}.{column}: {msg}" for msg in local)
    return catalog
