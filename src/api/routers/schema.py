"""
GET /schema, GET /schema/node-types, GET /schema/examples -- catalog metadata endpoints.
"""
from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from src.catalog.schema_provider import load_schema

router = APIRouter()


class NodeTypeItem(BaseModel):
    name: str
    properties: list[str]
    notes: str = ""


class RelationshipItem(BaseModel):
    name: str
    source: str
    target: str


class ExampleItem(BaseModel):
    number: int
    title: str
    query: str


class SchemaResponse(BaseModel):
    name: str
    description: str
    node_collection: str
    edge_collection: str
    node_types: list[NodeTypeItem]
    relationships: list[RelationshipItem]


@router.get("/schema", response_model=SchemaResponse)
def get_schema() -> SchemaResponse:
    """Return the graph schema the engine describes to the model."""
    schema = load_schema()
    return SchemaResponse(
        name=schema.name,
        description=schema.description,
        node_collection=schema.node_collection,
        edge_collection=schema.edge_collection,
        node_types=[
            NodeTypeItem(name=nt.name, properties=nt.properties, notes=nt.notes)
            for nt in schema.node_types.values()
        ],
        relationships=[
            RelationshipItem(name=r.name, source=r.source, target=r.target)
            for r in schema.relationships
        ],
    )


@router.get("/schema/node-types")
def list_node_types() -> dict:
    """Return node type names (lightweight)."""
    return {"node_types": load_schema().get_node_type_names()}


@router.get("/schema/node-types/{name}", response_model=NodeTypeItem)
def get_node_type(name: str) -> NodeTypeItem:
    nt = load_schema().node_type(name)
    if nt is None:
        raise HTTPException(status_code=404, detail=f"Unknown node type: {name}")
    return NodeTypeItem(name=nt.name, properties=nt.properties, notes=nt.notes)


@router.get("/schema/examples", response_model=list[ExampleItem])
def list_examples() -> list[ExampleItem]:
    """Return the numbered example queries embedded in prompts."""
    schema = load_schema()
    return [ExampleItem(number=e.number, title=e.title, query=e.query) for e in schema.examples.values()]


@router.get("/schema/examples/{number}", response_model=ExampleItem)
def get_example(number: int) -> ExampleItem:
    """Return one example query by the number prompts cite it under."""
    e = load_schema().example(number)
    if e is None:
        raise HTTPException(status_code=404, detail=f"No example #{number}")
    return ExampleItem(number=e.number, title=e.title, query=e.query)
