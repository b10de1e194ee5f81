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

"""Template-driven anonymization of COPY data in plain SQL dumps."""

from .catalog import build_catalog
from .dump import DumpTransducer, process_file
from .evaluator import evaluate
from .parser import parse_template

__all__ = ["DumpTransducer", "build_catalog", "evaluate", "parse_template", "process_file"]
