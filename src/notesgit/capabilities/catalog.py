"""Capability catalog loaded from the static capabilities.json definition."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from notesgit.core.errors import CatalogError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).with_name("capabilities.json")

# Primitive parameter types understood by the completion service
TYPE_MAP: Dict[str, str] = {
    "string": "string",
    "number": "number",
    "boolean": "boolean",
    "object": "object",
    "array": "array",
}


class ParameterSpec(BaseModel):
    """Type and description of one capability parameter."""
    model_config = ConfigDict(frozen=True)

    type: str = "string"
    description: str = ""


class ParameterSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = "object"
    properties: Dict[str, ParameterSpec] = Field(default_factory=dict)
    required: Tuple[str, ...] = ()


class CapabilityDescriptor(BaseModel):
    """Name, description and parameter schema of one capability."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    description: str
    parameters: ParameterSchema = Field(default_factory=ParameterSchema)

    def to_completion_format(self) -> Dict[str, Any]:
        """Convert to an OpenAI-style function tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {
                        key: {
                            "type": TYPE_MAP.get(spec.type, "string"),
                            "description": spec.description,
                        }
                        for key, spec in self.parameters.properties.items()
                    },
                    "required": list(self.parameters.required),
                },
            },
        }


class CatalogDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    capabilities: Tuple[CapabilityDescriptor, ...]


class CapabilityCatalog:
    """Registry of invocable capabilities.

    The definition file is parsed once on first use and cached.

    Example:
        >>> catalog = CapabilityCatalog()
        >>> tools = catalog.to_completion_format()
        >>> catalog.get("create-note").parameters.required
        ('title',)
    """

    def __init__(self, path: Optional[Path] = None):
        """Initialize the catalog.

        Args:
            path: Definition file. Defaults to the packaged capabilities.json.
        """
        self.path = Path(path) if path else DEFAULT_CATALOG_PATH
        self._descriptors: Optional[Dict[str, CapabilityDescriptor]] = None

    def load(self) -> Dict[str, CapabilityDescriptor]:
        """Parse and cache the catalog definition.

        Returns:
            Descriptors keyed by capability name, in definition order.

        Raises:
            CatalogError: If the file is missing, not JSON, or malformed.
        """
        if self._descriptors is not None:
            return self._descriptors

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogError(f"Cannot read capability catalog {self.path}: {e}") from e

        try:
            definition = CatalogDefinition.model_validate(raw)
        except ValidationError as e:
            raise CatalogError(
                f"Malformed capability catalog {self.path}",
                {"errors": e.errors(include_url=False)},
            ) from e

        descriptors: Dict[str, CapabilityDescriptor] = {}
        for descriptor in definition.capabilities:
            if descriptor.name in descriptors:
                raise CatalogError(f"Duplicate capability in catalog: {descriptor.name}")
            missing = [
                key for key in descriptor.parameters.required
                if key not in descriptor.parameters.properties
            ]
            if missing:
                raise CatalogError(
                    f"Capability {descriptor.name} requires undeclared parameters: {missing}"
                )
            descriptors[descriptor.name] = descriptor

        logger.debug("Capability catalog loaded", extra={"capability_count": len(descriptors)})
        self._descriptors = descriptors
        return descriptors

    def get(self, name: str) -> Optional[CapabilityDescriptor]:
        return self.load().get(name)

    def names(self) -> List[str]:
        return list(self.load().keys())

    def to_completion_format(self) -> List[Dict[str, Any]]:
        """Convert the whole catalog to tool definitions for ``bind_tools``."""
        return [descriptor.to_completion_format() for descriptor in self.load().values()]

    def validate_implementations(self, implemented: Iterable[str]):
        """Fail fast when a declared capability has no implementation.

        Args:
            implemented: Names of capabilities that have an implementation.

        Raises:
            CatalogError: If any catalog entry is unimplemented.
        """
        available = set(implemented)
        missing = [name for name in self.names() if name not in available]
        if missing:
            raise CatalogError(f"Capabilities declared without implementation: {missing}")
