"""Configuration objects for helm-writer.

A chart is described by a `HelmChartConfig`, usually loaded from a yaml file:
```python
from helm_writer.config import read_config

config = await read_config(Path("helm.yaml"))
print(f"Building chart {config.name}")
```

Property names given in the configuration are turned into dotted values paths
with `deduct_property`, which is used everywhere a property must be addressed
in the values document.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, Optional, cast

import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.codecs.yaml import yaml_decode
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField

from .exceptions import InputException
from .files import read_text

__all__ = [
    "read_config",
    "deduct_property",
    "HelmChartConfig",
    "ValueReference",
    "HelmDependency",
    "Maintainer",
    "HelmExpression",
    "AddIfStatement",
]

_LOGGER = logging.getLogger(__name__)

VALUES_START_TAG = "{{ .Values."
VALUES_END_TAG = " }}"
DEFAULT_API_VERSION = "v2"
DEFAULT_CHART_TYPE = "application"
DEFAULT_EXTENSION = "tar.gz"
HELM_BIN = "helm"


@dataclass
class BaseConfigObject(DataClassDictMixin):
    """Base class for all configuration objects."""

    @classmethod
    def parse_yaml(cls, content: str) -> "BaseConfigObject":
        """Parse a serialized configuration object."""
        return yaml_decode(content, cls)

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class ValueReference(BaseConfigObject):
    """A property exposed as a chart value.

    The value is optionally bound to locations in the generated manifests and
    may belong to a profile, which is an overlay of the default values.
    """

    property: str
    """The dotted name of the property in the values document."""

    value: Any = None
    """The default value of the property."""

    expression: Optional[str] = None
    """The expression to inject instead of `{{ .Values.<property> }}`."""

    paths: list[str] = field(default_factory=list)
    """The yaml paths in the manifests where the expression is injected."""

    profile: Optional[str] = None
    """The profile of the value, the default profile when unset."""

    on_resource_kind: Optional[str] = field(
        metadata=field_options(alias="onResourceKind"), default=None
    )
    """Only apply the paths to resources of this kind."""

    on_resource_name: Optional[str] = field(
        metadata=field_options(alias="onResourceName"), default=None
    )
    """Only apply the paths to resources with this name."""

    @property
    def has_paths(self) -> bool:
        """Return true if the value is bound to any manifest location."""
        return bool(self.paths)


@dataclass
class HelmDependency(BaseConfigObject):
    """A chart dependency."""

    name: str
    """The name of the dependency chart."""

    version: str
    """The version of the dependency chart."""

    repository: str
    """The repository url of the dependency chart."""

    alias: Optional[str] = None
    """The alias of the dependency, the name when unset."""

    condition: Optional[str] = None
    """A property that enables the dependency, defaults to enabled."""

    tags: Optional[list[str]] = None
    """Tags used to group dependencies for enablement."""

    enabled: bool = True
    """Whether the dependency is enabled."""


@dataclass
class Maintainer(BaseConfigObject):
    """A maintainer of the chart."""

    name: str
    email: Optional[str] = None
    url: Optional[str] = None


@dataclass
class HelmExpression(BaseConfigObject):
    """A raw expression written at a path of every resource."""

    path: str
    expression: str


@dataclass
class AddIfStatement(BaseConfigObject):
    """Wrap matching resources in a `{{- if .Values.<property> }}` block."""

    property: str
    """The boolean property that enables the resources."""

    on_resource_kind: Optional[str] = field(
        metadata=field_options(alias="onResourceKind"), default=None
    )
    """The kind of the resources to wrap, all kinds when unset."""

    on_resource_name: Optional[str] = field(
        metadata=field_options(alias="onResourceName"), default=None
    )
    """The name of the resources to wrap, all names when unset."""

    with_default_value: bool = field(
        metadata=field_options(alias="withDefaultValue"), default=True
    )
    """The default value of the property in the values document."""

    def matches(self, kind: str, name: str | None) -> bool:
        """Return true if the resource should be wrapped by this statement."""
        return (not self.on_resource_kind or self.on_resource_kind == kind) and (
            not self.on_resource_name or self.on_resource_name == name
        )


@dataclass
class HelmChartConfig(BaseConfigObject):
    """Configuration of the chart to generate."""

    name: Optional[str] = None
    """The name of the chart, required."""

    enabled: bool = True
    """When disabled no chart is written."""

    version: Optional[str] = None
    """The chart version, the project version when unset."""

    description: Optional[str] = None
    home: Optional[str] = None
    sources: Optional[list[str]] = None
    maintainers: Optional[list[Maintainer]] = None
    icon: Optional[str] = None

    api_version: str = field(
        metadata=field_options(alias="apiVersion"), default=DEFAULT_API_VERSION
    )
    """The chart API version."""

    condition: Optional[str] = None
    tags: Optional[str] = None

    app_version: Optional[str] = field(
        metadata=field_options(alias="appVersion"), default=None
    )

    deprecated: bool = False

    annotations: Optional[dict[str, str]] = None

    kube_version: Optional[str] = field(
        metadata=field_options(alias="kubeVersion"), default=None
    )

    keywords: Optional[list[str]] = None
    dependencies: list[HelmDependency] = field(default_factory=list)
    type: str = DEFAULT_CHART_TYPE

    notes: Optional[str] = None
    """Name of an embedded notes template, used when the input has no NOTES.txt."""

    values: list[ValueReference] = field(default_factory=list)
    """Value references declared in the configuration."""

    expressions: list[HelmExpression] = field(default_factory=list)
    """Raw expressions applied after the value references."""

    add_if_statements: list[AddIfStatement] = field(
        metadata=field_options(alias="addIfStatements"), default_factory=list
    )
    """Conditional inclusion rules for resources."""

    values_root_alias: Optional[str] = field(
        metadata=field_options(alias="valuesRootAlias"), default=None
    )
    """Root key that properties are qualified with in the values document."""

    create_tar_file: bool = field(
        metadata=field_options(alias="createTarFile"), default=False
    )
    """Package the chart into an archive."""

    tar_file_classifier: Optional[str] = field(
        metadata=field_options(alias="tarFileClassifier"), default=None
    )

    extension: str = DEFAULT_EXTENSION
    """Extension of the archive, also selects the compression."""

    fetch_dependencies: bool = field(
        metadata=field_options(alias="fetchDependencies"), default=True
    )
    """Run `helm dependency build` when dependencies are declared."""

    helm_bin: str = field(metadata=field_options(alias="helmBin"), default=HELM_BIN)
    """The helm binary used to fetch dependencies."""


async def read_config(config_path: Path) -> HelmChartConfig:
    """Return the contents of a chart configuration file."""
    content = await read_text(config_path)
    if not content:
        raise InputException(f"Empty chart configuration file {config_path}")
    try:
        return cast(HelmChartConfig, HelmChartConfig.parse_yaml(content))
    except (yaml.YAMLError, MissingField, InvalidFieldValue) as err:
        raise InputException(
            f"Unable to parse chart configuration {config_path}: {err}"
        ) from err


def _dependency_names(config: HelmChartConfig) -> set[str]:
    names = set()
    for dependency in config.dependencies:
        names.add(dependency.name)
        if dependency.alias:
            names.add(dependency.alias)
    return names


def deduct_property(config: HelmChartConfig, property_name: str) -> str:
    """Return the dotted values path of a property.

    Properties of dependencies stay at the root of the values document since
    sub-charts read their values from there.
    """
    if property_name.startswith(VALUES_START_TAG) and property_name.endswith(
        VALUES_END_TAG
    ):
        property_name = property_name[len(VALUES_START_TAG) : -len(VALUES_END_TAG)]
    if not (alias := config.values_root_alias):
        return property_name
    if config.name and property_name.startswith(f"{config.name}."):
        return alias + property_name[len(config.name) :]
    root = property_name.split(".", 1)[0]
    if root == alias or root in _dependency_names(config):
        return property_name
    return f"{alias}.{property_name}"
