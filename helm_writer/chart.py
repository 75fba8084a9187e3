"""Representation of the chart descriptor, `Chart.yaml`.

The descriptor is built from the chart configuration only. When the input
directory has a `Chart.yaml` written by the user, both are merged and the
values of the user file win.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, Optional

from aiofiles.ospath import isfile
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
import yaml

from .config import HelmChartConfig
from .exceptions import InputException
from .files import read_text
from .values import merge_with_precedence

__all__ = [
    "Chart",
    "ChartDependency",
    "ChartMaintainer",
    "build_chart",
    "chart_document",
    "read_user_document",
]

_LOGGER = logging.getLogger(__name__)

CHART_FILENAME = "Chart.yaml"


@dataclass
class BaseChartModel(DataClassDictMixin):
    """Base class for the descriptor objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class ChartMaintainer(BaseChartModel):
    """A maintainer entry of the chart."""

    name: str
    email: Optional[str] = None
    url: Optional[str] = None


@dataclass
class ChartDependency(BaseChartModel):
    """A dependency entry of the chart."""

    name: str
    alias: str
    version: str
    repository: str
    condition: Optional[str] = None
    tags: Optional[list[str]] = None
    enabled: bool = True


@dataclass
class Chart(BaseChartModel):
    """The chart descriptor."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    name: str
    version: str
    kube_version: Optional[str] = field(
        metadata=field_options(alias="kubeVersion"), default=None
    )
    description: Optional[str] = None
    type: Optional[str] = None
    keywords: Optional[list[str]] = None
    home: Optional[str] = None
    sources: Optional[list[str]] = None
    dependencies: Optional[list[ChartDependency]] = None
    maintainers: Optional[list[ChartMaintainer]] = None
    icon: Optional[str] = None
    app_version: Optional[str] = field(
        metadata=field_options(alias="appVersion"), default=None
    )
    deprecated: Optional[bool] = None
    annotations: Optional[dict[str, str]] = None
    condition: Optional[str] = None
    tags: Optional[str] = None


def build_chart(config: HelmChartConfig, version: str) -> Chart:
    """Build the chart descriptor from the configuration."""
    if not config.name:
        raise InputException("Helm Chart name is required")
    return Chart(
        api_version=config.api_version,
        name=config.name,
        version=version,
        kube_version=config.kube_version,
        description=config.description,
        type=config.type,
        keywords=config.keywords or None,
        home=config.home,
        sources=config.sources or None,
        dependencies=[
            ChartDependency(
                name=dependency.name,
                alias=dependency.alias or dependency.name,
                version=dependency.version,
                repository=dependency.repository,
                condition=dependency.condition or None,
                tags=dependency.tags or None,
                enabled=dependency.enabled,
            )
            for dependency in config.dependencies
        ]
        or None,
        maintainers=[
            ChartMaintainer(
                name=maintainer.name, email=maintainer.email, url=maintainer.url
            )
            for maintainer in config.maintainers or []
        ]
        or None,
        icon=config.icon,
        app_version=config.app_version,
        deprecated=True if config.deprecated else None,
        annotations=dict(config.annotations) if config.annotations else None,
        condition=config.condition,
        tags=config.tags,
    )


async def read_user_document(
    input_dir: Path | None, filename: str
) -> dict[str, Any] | None:
    """Return the parsed yaml file of the input directory, if present."""
    if input_dir is None or not await isfile(path := input_dir / filename):
        return None
    try:
        doc = yaml.safe_load(await read_text(path))
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse user file {path}: {err}") from err
    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise InputException(f"Expected user file {path} to contain a mapping")
    return doc


async def chart_document(chart: Chart, input_dir: Path | None) -> dict[str, Any]:
    """Return the descriptor document merged with the user descriptor."""
    generated = chart.to_dict()
    if (user_doc := await read_user_document(input_dir, CHART_FILENAME)) is None:
        return generated
    _LOGGER.debug("Merging user %s", CHART_FILENAME)
    return merge_with_precedence(user_doc, generated)
