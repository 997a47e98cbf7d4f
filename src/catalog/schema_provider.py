"""
Loads, parses, and caches the MedGraph schema catalog YAML.

The catalog is static configuration shared read-only by every request:
  - node and edge collection names
  - node types and their (upper-case) properties
  - relationship types used by the staged join pattern
  - numbered example queries that prompts refer to by number
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from functools import lru_cache
from typing import Any

import yaml

_SCHEMA_PATH = Path(__file__).resolve().parents[2] / "catalog" / "medgraph_schema.yml"

# Example numbers the prompt builder points the model at
EXAMPLE_COUNT = 1
EXAMPLE_GENDER_DISTRIBUTION = 2
EXAMPLE_GROUP_COUNT = 4
EXAMPLE_DEMOGRAPHIC_LIST = 6
EXAMPLE_STAGED = 11
EXAMPLE_YEAR_LIST = 12


@dataclass(frozen=True)
class NodeType:
    name: str
    properties: list[str] = field(default_factory=list)
    notes: str = ""


@dataclass(frozen=True)
class Relationship:
    name: str
    source: str
    target: str


@dataclass(frozen=True)
class ExampleQuery:
    number: int
    title: str
    query: str


@dataclass
class GraphSchema:
    """Fully parsed schema catalog."""

    version: int
    name: str
    description: str
    node_collection: str
    edge_collection: str
    node_types: dict[str, NodeType]
    relationships: list[Relationship]
    examples: dict[int, ExampleQuery]

    def node_type(self, name: str) -> NodeType | None:
        return self.node_types.get(name)

    def example(self, number: int) -> ExampleQuery | None:
        return self.examples.get(number)

    def get_node_type_names(self) -> list[str]:
        return list(self.node_types)

    def to_prompt_text(self) -> str:
        """Render the schema and examples as the block embedded in every prompt."""
        lines = [
            f"{self.name} Schema ({self.description}):",
            "",
            f"Node collection: {self.node_collection}   Edge collection: {self.edge_collection}",
            "Node types (lowercase, stored in node.type) and properties (ALL CAPS):",
        ]
        for nt in self.node_types.values():
            note = f"  -- {nt.notes}" if nt.notes else ""
            lines.append(f"- {nt.name}: {{{', '.join(nt.properties)}}}{note}")
        lines.append("")
        lines.append("Edge relationship_type values:")
        for rel in self.relationships:
            lines.append(f"- {rel.name}: {rel.source} -> {rel.target}")
        lines.append("")
        lines.append("EXAMPLE CORRECT AQL QUERIES:")
        for ex in self.examples.values():
            lines.append("")
            lines.append(f"{ex.number}. {ex.title}:")
            lines.extend(f"   {ln}" for ln in ex.query.rstrip().splitlines())
        return "\n".join(lines)


def _parse(raw: dict[str, Any]) -> GraphSchema:
    collections = raw.get("collections") or {}
    node_types = {
        nt["name"]: NodeType(
            name=nt["name"],
            properties=list(nt.get("properties") or []),
            notes=nt.get("notes", ""),
        )
        for nt in raw.get("node_types") or []
    }
    relationships = [
        Relationship(name=r["name"], source=r["from"], target=r["to"])
        for r in raw.get("relationships") or []
    ]
    examples = {
        int(ex["number"]): ExampleQuery(
            number=int(ex["number"]),
            title=ex["title"],
            query=ex["query"],
        )
        for ex in raw.get("examples") or []
    }
    return GraphSchema(
        version=int(raw.get("version", 1)),
        name=raw.get("name", "MedGraph"),
        description=raw.get("description", ""),
        node_collection=collections.get("nodes", "MedGraph_node"),
        edge_collection=collections.get("edges", "MedGraph_node_to_MedGraph_node"),
        node_types=node_types,
        relationships=relationships,
        examples=examples,
    )


@lru_cache
def load_schema(path: Path | None = None) -> GraphSchema:
    """Load and cache the schema catalog (defaults to ``catalog/medgraph_schema.yml``)."""
    path = path or _SCHEMA_PATH
    with open(path, encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    return _parse(raw)


def schema_prompt_text() -> str:
    return load_schema().to_prompt_text()
