"""Module for building the values documents of a chart.

Values are accumulated per profile. The default profile is written to
`values.yaml` and every other profile to `values.<profile>.yaml`, as an
overlay that inherits the properties of the default profile.
"""

from collections.abc import Iterable
import copy
import logging
from typing import Any

from .config import (
    AddIfStatement,
    HelmChartConfig,
    ValueReference,
    deduct_property,
    VALUES_START_TAG,
    VALUES_END_TAG,
)
from .exceptions import IncompleteValueMappingError
from .yaml_path import YamlPathEditor

__all__ = [
    "ValuesHolder",
    "populate_values",
    "merge_value_references",
    "replace_values",
    "to_nested_values",
    "merge_with_precedence",
]

_LOGGER = logging.getLogger(__name__)

ENVIRONMENT_PROPERTY_GROUP = "envs."


class ValuesHolder:
    """Holds the values of every profile."""

    def __init__(self) -> None:
        """Initialize ValuesHolder."""
        self._prod_values: dict[str, Any] = {}
        self._profiles: dict[str, dict[str, Any]] = {}

    @property
    def prod_values(self) -> dict[str, Any]:
        """The values of the default profile."""
        return self._prod_values

    @property
    def profiles(self) -> dict[str, dict[str, Any]]:
        """The values of every non-default profile."""
        return self._profiles

    def get(self, profile: str | None = None) -> dict[str, Any]:
        """Return the values of the profile, creating it if needed."""
        if not profile:
            return self._prod_values
        return self._profiles.setdefault(profile, {})

    def put(self, property_name: str, value: Any, profile: str | None = None) -> None:
        """Set the value of a property, replacing any existing value."""
        self.get(profile)[property_name] = value

    def put_if_absent(
        self, property_name: str, value: Any, profile: str | None = None
    ) -> None:
        """Set the value of a property unless the profile already has it."""
        self.get(profile).setdefault(property_name, value)

    def reconciled(self, profile: str) -> dict[str, Any]:
        """Return the profile values filled with the default profile values."""
        values = self.get(profile)
        for property_name, value in self._prod_values.items():
            values.setdefault(property_name, value)
        return values


def merge_value_references(
    references: Iterable[ValueReference], add_if_statements: Iterable[AddIfStatement]
) -> list[ValueReference]:
    """Return the value references including the conditional inclusion properties."""
    merged = list(references)
    for statement in add_if_statements:
        merged.append(
            ValueReference(
                property=statement.property, value=statement.with_default_value
            )
        )
    return merged


def populate_values(
    config: HelmChartConfig, references: Iterable[ValueReference]
) -> ValuesHolder:
    """Build the values that don't depend on the manifests."""
    values = ValuesHolder()
    for reference in references:
        if reference.has_paths:
            continue
        if reference.value is None:
            raise IncompleteValueMappingError(reference.property)
        values.put_if_absent(
            deduct_property(config, reference.property),
            reference.value,
            reference.profile,
        )

    # Dependencies are enabled unless the user says otherwise
    for dependency in config.dependencies:
        if dependency.condition:
            values.put(deduct_property(config, dependency.condition), True)
    return values


def _is_environment_property(reference: ValueReference) -> bool:
    return ENVIRONMENT_PROPERTY_GROUP in reference.property


def _environment_property_name(reference: ValueReference) -> str:
    _, _, name = reference.property.partition(ENVIRONMENT_PROPERTY_GROUP)
    return name


def process_value_reference(
    property_name: str,
    value: Any,
    reference: ValueReference,
    values: ValuesHolder,
    editor: YamlPathEditor,
    seen: dict[str, Any],
) -> None:
    """Replace the paths of a value reference and record its value."""
    profile = reference.profile
    expression = reference.expression or (
        VALUES_START_TAG + property_name + VALUES_END_TAG
    )
    editor = editor.select(reference.on_resource_kind, reference.on_resource_name)

    if property_name in seen:
        if profile:
            values.put_if_absent(
                property_name,
                value if value is not None else seen[property_name],
                profile,
            )
        for path in reference.paths:
            editor.set(path, expression)
        return

    for path in reference.paths:
        found = editor.read_and_set(path, expression)
        actual_value = value if value is not None else found
        if actual_value is not None and property_name not in seen:
            seen[property_name] = actual_value
            values.put_if_absent(property_name, actual_value, profile)


def replace_values(
    config: HelmChartConfig,
    resources: list[dict[str, Any]],
    references: list[ValueReference],
    values: ValuesHolder,
) -> list[dict[str, Any]]:
    """Replace the value references in the resources of a manifest file.

    Environment properties are processed last so they can reuse a property
    already known in the values instead of adding a new `envs` entry.
    """
    editor = YamlPathEditor(resources)
    seen: dict[str, Any] = {}

    for reference in references:
        if not _is_environment_property(reference):
            process_value_reference(
                deduct_property(config, reference.property),
                reference.value,
                reference,
                values,
                editor,
                seen,
            )

    for reference in references:
        if not _is_environment_property(reference):
            continue
        property_name = deduct_property(config, reference.property)
        value = reference.value
        environment_property = _environment_property_name(reference)
        for current_property, current_value in values.get(reference.profile).items():
            if current_property.endswith(environment_property):
                _LOGGER.debug(
                    "Using property %s for %s", current_property, property_name
                )
                property_name = current_property
                value = current_value
                break
        process_value_reference(
            property_name, value, reference, values, editor, seen
        )

    return editor.resources


def to_nested_values(values: dict[str, Any]) -> dict[str, Any]:
    """Convert dotted property names into nested mappings with sorted keys."""
    nested: dict[str, Any] = {}
    for property_name in sorted(values):
        parts = property_name.split(".")
        inner = nested
        for part in parts[:-1]:
            if not isinstance(inner.get(part), dict):
                if part in inner:
                    _LOGGER.warning(
                        "Replacing value of '%s' to hold property '%s'",
                        part,
                        property_name,
                    )
                inner[part] = {}
            inner = inner[part]
        if isinstance(inner.get(parts[-1]), dict):
            _LOGGER.warning(
                "Ignoring property '%s' that has nested values", property_name
            )
            continue
        inner[parts[-1]] = copy.deepcopy(values[property_name])
    return nested


def merge_with_precedence(
    preferred: dict[str, Any], fallback: dict[str, Any]
) -> dict[str, Any]:
    """Recursively merge two mappings where the preferred values win.

    Mappings present on both sides are merged, any other value from the
    preferred side replaces the fallback value. Keys only in the fallback are
    added after the preferred keys.
    """
    result = dict(preferred)
    for key, fallback_value in fallback.items():
        if key not in result:
            result[key] = fallback_value
            continue
        preferred_value = result[key]
        if isinstance(preferred_value, dict) and isinstance(fallback_value, dict):
            result[key] = merge_with_precedence(preferred_value, fallback_value)
    return result
