"""
Build SQLAlchemy models from declarative JSON model definitions.

A definition file carries ``name``, ``properties`` and ``relations``:

    {
      "name": "CasUser",
      "properties": {"username": {"type": "string", "required": true}},
      "relations": {"accessTokens": {"type": "hasMany", "model": "AccessToken",
                                     "foreignKey": "userId"}}
    }

Property and relation names are converted to snake_case attributes and
columns; the table name is the snake_case model name.
"""
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Union

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String
from sqlalchemy.orm import relationship

from .models import Base, utcnow

logger = logging.getLogger(__name__)

COLUMN_TYPES = {
    "string": lambda: String(255),
    "number": Integer,
    "float": Float,
    "boolean": Boolean,
    "date": lambda: DateTime(timezone=True),
    "object": JSON,
    "any": JSON,
}

DEFAULT_FUNCTIONS = {
    "now": utcnow,
}


class ModelDefinitionError(ValueError):
    """Raised when a model definition cannot be turned into a model"""


def snake_case(name: str) -> str:
    name = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name).lower()


def read_definition(json_file: Union[str, Path]) -> Dict[str, Any]:
    with open(json_file, encoding="utf-8") as fp:
        definition = json.load(fp)
    if not definition.get("name"):
        raise ModelDefinitionError(f"Model definition {json_file} has no name")
    return definition


def build_column(prop_name: str, prop: Union[str, Dict[str, Any]]) -> Column:
    if isinstance(prop, str):
        prop = {"type": prop}

    type_name = prop.get("type", "string")
    if type_name not in COLUMN_TYPES:
        raise ModelDefinitionError(f"Unsupported type '{type_name}' for property '{prop_name}'")

    kwargs: Dict[str, Any] = {}
    if prop.get("id"):
        kwargs["primary_key"] = True
        kwargs["autoincrement"] = type_name == "number"
    else:
        kwargs["nullable"] = not prop.get("required", False)

    if "default" in prop:
        kwargs["default"] = prop["default"]
    elif prop.get("defaultFn") in DEFAULT_FUNCTIONS:
        kwargs["default"] = DEFAULT_FUNCTIONS[prop["defaultFn"]]

    index = prop.get("index")
    if isinstance(index, dict) and index.get("unique"):
        kwargs["unique"] = True
    elif index:
        kwargs["index"] = True

    return Column(snake_case(prop_name), COLUMN_TYPES[type_name](), **kwargs)


def build_relationship(model_name: str, rel_name: str, prop: Dict[str, Any]):
    target = prop.get("model")
    if not target:
        raise ModelDefinitionError(f"Relation '{rel_name}' of {model_name} has no model")

    foreign_key = prop.get("foreignKey")
    rel_type = prop.get("type", "hasMany")
    if rel_type == "hasMany":
        if foreign_key:
            return relationship(target, foreign_keys=f"{target}.{snake_case(foreign_key)}")
        return relationship(target)
    if rel_type in ("belongsTo", "hasOne"):
        kwargs: Dict[str, Any] = {"uselist": False}
        if foreign_key and rel_type == "belongsTo":
            kwargs["foreign_keys"] = f"{model_name}.{snake_case(foreign_key)}"
        elif foreign_key:
            kwargs["foreign_keys"] = f"{target}.{snake_case(foreign_key)}"
        return relationship(target, **kwargs)
    raise ModelDefinitionError(f"Unsupported relation type '{rel_type}' for '{rel_name}'")


def define_model(definition: Dict[str, Any], base=Base, mixins: Iterable[type] = ()) -> type:
    """Create a mapped class from an already parsed definition"""
    name = definition["name"]
    properties = definition.get("properties") or {}
    relations = definition.get("relations") or {}

    attrs: Dict[str, Any] = {"__tablename__": snake_case(name)}

    if not any(isinstance(p, dict) and p.get("id") for p in properties.values()):
        attrs["id"] = Column("id", Integer, primary_key=True, autoincrement=True)

    for prop_name, prop in properties.items():
        attrs[snake_case(prop_name)] = build_column(prop_name, prop)

    for rel_name, prop in relations.items():
        attrs[snake_case(rel_name)] = build_relationship(name, rel_name, prop)

    model = type(name, (*tuple(mixins), base), attrs)
    logger.debug(f"Loaded model {name} with properties {sorted(properties)}")
    return model


def load_model(json_file: Union[str, Path], base=Base, mixins: Iterable[type] = ()) -> type:
    """Read a JSON model definition and return the mapped class"""
    return define_model(read_definition(json_file), base=base, mixins=mixins)
