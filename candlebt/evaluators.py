"""Evaluator configuration and parameter validation.

The hosted indicator-schema service is an external collaborator; this module
defines its contract (``EvaluatorValidator``) and a local schema-driven
implementation (``SchemaValidator``) that checks required parameters, number
ranges, booleans and select options.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union
import json
import logging


@dataclass(frozen=True)
class EvaluatorConfig:
    """An evaluator requested for a run, with its parameters."""

    id: str
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Union[str, dict, "EvaluatorConfig"]) -> "EvaluatorConfig":
        """Build an EvaluatorConfig from an id, a dict or an existing config."""
        if isinstance(value, EvaluatorConfig):
            return value
        if isinstance(value, str):
            return cls(id=value)
        return cls(id=value["id"], params=dict(value.get("params") or {}))

    def to_dict(self) -> dict:
        return {"id": self.id, "params": dict(self.params)}


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ParameterDefinition:
    """Definition of one evaluator parameter."""

    type: str  # "number", "boolean" or "select"
    label: str
    default: Any = None
    description: str = ""
    min: Optional[float] = None
    max: Optional[float] = None
    options: List[Any] = field(default_factory=list)
    required: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "ParameterDefinition":
        options = [o["value"] if isinstance(o, dict) else o for o in data.get("options") or []]
        return cls(
            type=data["type"],
            label=data.get("label", ""),
            default=data.get("default"),
            description=data.get("description", ""),
            min=data.get("min"),
            max=data.get("max"),
            options=options,
            required=bool(data.get("required", False))
        )


@dataclass(frozen=True)
class IndicatorSchema:
    id: str
    name: str
    category: str = "general"
    parameters: Dict[str, ParameterDefinition] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "IndicatorSchema":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            category=data.get("category", "general"),
            parameters={
                key: ParameterDefinition.from_dict(value)
                for key, value in (data.get("parameters") or {}).items()
            }
        )


class EvaluatorValidator(Protocol):
    """Contract of the indicator parameter validation service."""

    def validate_params(self, evaluator_id: str, params: Dict[str, Any]) -> ValidationResult:
        ...


class SchemaValidator:
    """Validates evaluator parameters against locally loaded schemas."""

    def __init__(self, schemas: Iterable[IndicatorSchema] = (), logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._schemas: Dict[str, IndicatorSchema] = {s.id: s for s in schemas}

    @classmethod
    def from_json(cls, filepath: str) -> "SchemaValidator":
        """Load schemas from a JSON file holding a list of schema objects."""
        with open(Path(filepath), "r") as f:
            data = json.load(f)
        return cls(IndicatorSchema.from_dict(item) for item in data)

    def get_schema(self, evaluator_id: str) -> Optional[IndicatorSchema]:
        return self._schemas.get(evaluator_id)

    def all_schemas(self) -> List[IndicatorSchema]:
        return list(self._schemas.values())

    def schemas_by_category(self, category: str) -> List[IndicatorSchema]:
        return [s for s in self._schemas.values() if s.category == category]

    def default_params(self, evaluator_id: str) -> Dict[str, Any]:
        schema = self.get_schema(evaluator_id)
        if schema is None:
            return {}
        return {key: definition.default for key, definition in schema.parameters.items()}

    def validate_params(self, evaluator_id: str, params: Dict[str, Any]) -> ValidationResult:
        """Validate parameters for one evaluator.

        Args:
            evaluator_id: Evaluator id (e.g. "rsi")
            params: Parameter values keyed by parameter name

        Returns:
            ValidationResult listing every problem found
        """
        schema = self.get_schema(evaluator_id)
        if schema is None:
            return ValidationResult(valid=False, errors=[f"Unknown indicator: {evaluator_id}"])

        errors = []
        for key, definition in schema.parameters.items():
            if definition.required and key not in params:
                errors.append(f"Missing required parameter: {definition.label or key}")

        for key, value in params.items():
            definition = schema.parameters.get(key)
            if definition is None:
                errors.append(f"Unknown parameter: {key}")
                continue
            self._check_type(definition, key, value, errors)

        if errors:
            self.logger.debug(f"Invalid params for {evaluator_id}: {errors}")
        return ValidationResult(valid=not errors, errors=errors)

    @staticmethod
    def _check_type(definition: ParameterDefinition, key: str, value: Any, errors: List[str]):
        label = definition.label or key
        if definition.type == "number":
            # bool is an int subclass, reject it explicitly
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
                errors.append(f"{label} must be a number")
                return
            if definition.min is not None and value < definition.min:
                errors.append(f"{label} must be >= {definition.min}")
            if definition.max is not None and value > definition.max:
                errors.append(f"{label} must be <= {definition.max}")
        elif definition.type == "boolean":
            if not isinstance(value, bool):
                errors.append(f"{label} must be true or false")
        elif definition.type == "select":
            if value not in definition.options:
                joined = ", ".join(str(o) for o in definition.options)
                errors.append(f"{label} must be one of: {joined}")
