from __future__ import annotations

import keyword
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from wowverbs.errors import WowVerbsUserError
from wowverbs.models.expr import Parser
from wowverbs.models.verb import VERBS, Verb
from wowverbs.schema import IR_VERSION
from wowverbs.util import Catalog, _get_table

try:
    import yaml  # type: ignore
except Exception:  # pragma: no cover
    yaml = None

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Query:
    """An ordered sequence of verbs applied to a named input table."""
    table: Optional[str] = None
    verbs: List[Verb] = field(default_factory=list)

    def then(self, verb: Verb) -> "Query":
        if not isinstance(verb, Verb):
            raise WowVerbsUserError(
                "E_QUERY_STEP",
                "Query.then expects a Verb.",
                hint="Example: query.then(Filter('age >= 30')) or query.filter('age >= 30').",
            )
        return Query(self.table, self.verbs + [verb])

    def __getattr__(self, name: str) -> Callable[..., "Query"]:
        # query.filter(...), query.except_(...)
        verb_name = name[:-1] if name.endswith("_") and keyword.iskeyword(name[:-1]) else name
        factory = VERBS.get(verb_name)
        if factory is None:
            raise AttributeError(f"Query has no attribute or verb {name!r}")
        return lambda *params: self.then(factory(*params))

    def __str__(self) -> str:
        parts = [f"Query(table={self.table})"]
        for v in self.verbs:
            parts.append(f"  -> {v}")
        return "\n".join(parts)

    def evaluate(self, catalog: Optional[Catalog] = None, table: Any = None) -> Any:
        """Apply every verb in order; the input table is resolved by name unless given."""
        if table is None:
            table = _get_table(catalog, self.table)
        for i, verb in enumerate(self.verbs):
            logger.debug("query step %d: %s", i, verb.name)
            table = verb.evaluate(table, catalog)
        return table

    def to_object(self) -> Dict[str, Any]:
        """Serialize this query to a YAML/JSON-friendly IR (dict)."""
        return {
            "wowverbs": IR_VERSION,
            "table": self.table,
            "verbs": [v.to_object() for v in self.verbs],
        }

    @classmethod
    def from_object(cls, ir: Any) -> "Query":
        """Deserialize a query from IR (dict)."""
        if not isinstance(ir, dict):
            raise WowVerbsUserError(
                "E_IR_ROOT",
                "IR must be a mapping at the root.",
                hint="Expected keys: wowverbs, table, verbs.",
            )
        version = ir.get("wowverbs", IR_VERSION)
        if version != IR_VERSION:
            raise WowVerbsUserError(
                "E_IR_VERSION",
                f"Unsupported IR version: {version!r}.",
                hint=f"Supported: wowverbs: {IR_VERSION}",
            )
        table = ir.get("table")
        if table is not None and not isinstance(table, str):
            raise WowVerbsUserError(
                "E_IR_TABLE",
                "IR 'table' must be a table name string.",
                hint="Example: {wowverbs: 0, table: orders, verbs: [...]}",
            )
        verbs = ir.get("verbs")
        if verbs is None:
            verbs = []
        if not isinstance(verbs, list):
            raise WowVerbsUserError(
                "E_IR_VERBS",
                "IR 'verbs' must be a list.",
                hint="Example: verbs: [{verb: filter, criteria: {expr: 'a > 1'}}]",
            )
        out = cls(table)
        for i, item in enumerate(verbs):
            if not isinstance(item, dict):
                raise WowVerbsUserError(
                    "E_IR_VERB",
                    f"IR verb #{i} must be a mapping with a 'verb' key.",
                    hint=str(item),
                )
            out = out.then(Verb.from_object(item))
        return out

    def to_ast(self, parser: Optional[Parser] = None) -> Dict[str, Any]:
        return {
            "type": "Query",
            "table": self.table,
            "verbs": [v.to_ast(parser) for v in self.verbs],
        }

    def to_yaml(self, path: Optional[Union[str, Path]] = None) -> str:
        """Dump IR to YAML string. If `path` is provided, also write the file."""
        if yaml is None:
            raise WowVerbsUserError(
                "E_YAML_IMPORT",
                "PyYAML is not available; cannot serialize to YAML.",
                hint="Install dependency: pip install pyyaml",
            )
        text = yaml.safe_dump(self.to_object(), sort_keys=False)
        if path is not None:
            Path(path).write_text(text, encoding="utf-8")
        return text

    @classmethod
    def from_yaml(cls, text_or_path: Union[str, Path]) -> "Query":
        """Load a query from a YAML string or file path."""
        if yaml is None:
            raise WowVerbsUserError(
                "E_YAML_IMPORT",
                "PyYAML is not available; cannot parse YAML.",
                hint="Install dependency: pip install pyyaml",
            )
        text = str(text_or_path)
        if isinstance(text_or_path, Path) or ("\n" not in text and text.endswith((".yaml", ".yml"))):
            p = Path(text_or_path)
            if p.exists():
                text = p.read_text(encoding="utf-8")
        try:
            ir = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise WowVerbsUserError(
                "E_YAML_PARSE",
                f"Failed to parse YAML: {e}",
                hint="Check indentation and quoting.",
            ) from e
        return cls.from_object(ir)

    def save_yaml(self, path: Union[str, Path]) -> None:
        """Write YAML IR to a file."""
        self.to_yaml(path)

    @classmethod
    def load_yaml(cls, path: Union[str, Path]) -> "Query":
        """Load YAML IR from a file."""
        return cls.from_yaml(Path(path).read_text(encoding="utf-8"))


def query(table: Optional[str] = None) -> Query:
    """Start a query over the named catalog table."""
    return Query(table)
