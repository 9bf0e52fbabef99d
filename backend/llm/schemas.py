"""Pydantic schemas for validating LLM tool arguments

Argument models are generated from the ``ToolDescriptor`` declarations in
``llm.tools`` so the catalog shown to the model and the validation applied to
its answers can never drift apart. Primitive types are strict: ``"50"`` is not
a number and ``1`` is not a string.
"""

from __future__ import annotations

import json
import re
from datetime import date
from functools import lru_cache
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Type

import dateparser
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError, create_model

from llm.tools import ParameterSpec, ToolDescriptor, TOOL_REGISTRY

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class _ToolArguments(BaseModel):
    model_config = ConfigDict(extra="ignore")


def normalize_date(value: str) -> str:
    """Normalize an ISO or natural-language date to YYYY-MM-DD"""
    value = value.strip()
    if _ISO_DATE.match(value):
        try:
            return date.fromisoformat(value).isoformat()
        except ValueError:
            raise ValueError(f"'{value}' is not a valid calendar date")

    parsed = dateparser.parse(value, settings={"RETURN_AS_TIMEZONE_AWARE": False})
    if parsed is None:
        raise ValueError(f"could not understand date '{value}'")
    return parsed.date().isoformat()


def _constraints(spec: ParameterSpec) -> Dict[str, Any]:
    constraints: Dict[str, Any] = {"strict": True}
    if spec.minimum is not None:
        constraints["ge"] = spec.minimum
    if spec.maximum is not None:
        constraints["le"] = spec.maximum
    if spec.exclusive_minimum is not None:
        constraints["gt"] = spec.exclusive_minimum
    return constraints


def _annotation_for(spec: ParameterSpec, model_name: str):
    """Map a parameter declaration onto a pydantic type annotation"""
    if spec.enum:
        return Literal[spec.enum]

    if spec.type == "string":
        field_kwargs: Dict[str, Any] = {"strict": True}
        if spec.required:
            field_kwargs["min_length"] = 1
        if spec.format == "date":
            return Annotated[str, Field(**field_kwargs), AfterValidator(normalize_date)]
        return Annotated[str, Field(**field_kwargs)]

    if spec.type == "number":
        return Annotated[float, Field(allow_inf_nan=False, **_constraints(spec))]

    if spec.type == "integer":
        return Annotated[int, Field(**_constraints(spec))]

    if spec.type == "boolean":
        return Annotated[bool, Field(strict=True)]

    if spec.type == "array":
        item_model = _build_model(f"{model_name}_{spec.name}_item", spec.items)
        list_kwargs: Dict[str, Any] = {}
        if spec.min_items is not None:
            list_kwargs["min_length"] = spec.min_items
        return Annotated[List[item_model], Field(**list_kwargs)]

    raise ValueError(f"Unsupported parameter type: {spec.type}")


def _build_model(model_name: str, parameters: Tuple[ParameterSpec, ...]) -> Type[BaseModel]:
    fields: Dict[str, Any] = {}
    for spec in parameters:
        annotation = _annotation_for(spec, model_name)
        if spec.required:
            fields[spec.name] = (annotation, ...)
        else:
            fields[spec.name] = (Optional[annotation], None)
    return create_model(model_name, __base__=_ToolArguments, **fields)


@lru_cache(maxsize=None)
def build_argument_model(descriptor: ToolDescriptor) -> Type[BaseModel]:
    """Pydantic model for a tool's arguments (cached per descriptor)"""
    return _build_model(f"{descriptor.name}_arguments", descriptor.parameters)


def _field_path(loc) -> str:
    path = ""
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        elif not path:
            path = str(part)
        else:
            path += f".{part}"
    return path or "arguments"


def format_validation_errors(tool_name: str, exc: ValidationError) -> str:
    """Render pydantic errors as one readable sentence naming every bad field"""
    problems = []
    for error in exc.errors():
        field_name = _field_path(error.get("loc", ()))
        if error.get("type") == "missing":
            problems.append(f"Missing required field '{field_name}'")
        else:
            problems.append(f"Invalid value for '{field_name}': {error.get('msg')}")
    return f"Invalid arguments for {tool_name}: " + "; ".join(problems)


def validate_tool_arguments(
    descriptor: ToolDescriptor, raw_arguments: Any
) -> Tuple[bool, Any]:
    """Validate untrusted arguments against a tool's declaration.

    Returns:
        (True, dict of provided fields) or (False, error message)
    """
    if isinstance(raw_arguments, str):
        try:
            raw_arguments = json.loads(raw_arguments) if raw_arguments.strip() else {}
        except json.JSONDecodeError:
            return False, f"Invalid arguments for {descriptor.name}: arguments are not valid JSON"
    if raw_arguments is None:
        raw_arguments = {}
    if not isinstance(raw_arguments, dict):
        return False, f"Invalid arguments for {descriptor.name}: arguments must be a JSON object"

    model = build_argument_model(descriptor)
    try:
        parsed = model.model_validate(raw_arguments)
    except ValidationError as e:
        return False, format_validation_errors(descriptor.name, e)

    data = parsed.model_dump(exclude_unset=True)
    return True, {key: value for key, value in data.items() if value is not None}


def validate_action_arguments(action_name: str, args: Any) -> Tuple[bool, Any]:
    """Validate arguments for a registered tool by name.

    Returns:
        (True, validated dict) or (False, error message)
    """
    descriptor = TOOL_REGISTRY.get(action_name)
    if descriptor is None:
        return False, f"Unknown tool: {action_name}"
    return validate_tool_arguments(descriptor, args)
