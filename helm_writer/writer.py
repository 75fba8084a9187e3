"""Library for writing a Helm chart from generated kubernetes manifests.

The manifests are rewritten so the locations named by the value references
hold template expressions, and the values they held become the defaults of
the values documents:
```python
from helm_writer.config import read_config
from helm_writer.writer import write_helm_files

config = await read_config(Path("helm.yaml"))
artifacts = await write_helm_files(
    config,
    [],
    [Path("target/kubernetes/kubernetes.yml")],
    input_dir=Path("src/main/helm"),
    output_dir=Path("target/helm"),
    default_version="1.0.0",
)
for path in artifacts:
    print(f"Wrote {path}")
```

The chart is written to `<output_dir>/<name>/` and the returned mapping has the
content of every generated text file. Copied files and directories map to an
empty string and the packaged archive to None.
"""

from collections.abc import Iterable
import importlib.resources
import logging
from pathlib import Path
import re
from typing import Any

from aiofiles.os import makedirs
from aiofiles.ospath import isdir, isfile
import yaml

from .chart import CHART_FILENAME, build_chart, chart_document, read_user_document
from .config import HelmChartConfig, ValueReference
from .exceptions import InputException, NotesNotFoundError, OutputException
from .files import copy_file, read_text, write_text
from .helm import Helm
from .package import archive_name, create_tarball, expand_files
from .template import TEMPLATES, write_templates
from .values import (
    ValuesHolder,
    merge_value_references,
    merge_with_precedence,
    populate_values,
    replace_values,
    to_nested_values,
)

__all__ = [
    "write_helm_files",
]

_LOGGER = logging.getLogger(__name__)

YAML_REG_EXP = re.compile(r".*?\.ya?ml$")
VALUES = "values"
VALUES_FILENAME = "values.yaml"
CHARTS = "charts"
NOTES = "NOTES.txt"
RESOURCES_PACKAGE = "helm_writer.resources"
ADDITIONAL_CHART_FILES = [
    "README.md",
    "LICENSE",
    "values.schema.json",
    "app-readme.md",
    "questions.yml",
    "questions.yaml",
    "requirements.yml",
    "requirements.yaml",
    "crds",
]
_ADDITIONAL_CHART_FILES = {name.lower() for name in ADDITIONAL_CHART_FILES}


def _dump(doc: dict[str, Any]) -> str:
    return yaml.safe_dump(doc, sort_keys=False, allow_unicode=True)


async def _read_manifest(path: Path) -> list[dict[str, Any]]:
    """Return the resources of a manifest file."""
    content = await read_text(path)
    try:
        docs = [doc for doc in yaml.safe_load_all(content) if doc is not None]
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse manifest {path}: {err}") from err
    for doc in docs:
        if not isinstance(doc, dict):
            raise InputException(f"Expected resources in manifest {path}, found {doc}")
    return docs


async def _replace_values_in_manifests(
    config: HelmChartConfig,
    manifest_files: Iterable[Path],
    references: list[ValueReference],
    values: ValuesHolder,
) -> list[dict[str, Any]]:
    resources: list[dict[str, Any]] = []
    for manifest_file in manifest_files:
        if not YAML_REG_EXP.match(manifest_file.name.lower()):
            _LOGGER.debug("Skipping non yaml file %s", manifest_file)
            continue
        docs = await _read_manifest(manifest_file)
        resources.extend(replace_values(config, docs, references, values))
    return resources


async def _write_values(
    input_dir: Path | None,
    chart_dir: Path,
    values: ValuesHolder,
    artifacts: dict[str, str | None],
) -> None:
    user_values = await read_user_document(input_dir, VALUES_FILENAME)

    def merged(flat_values: dict[str, Any]) -> dict[str, Any]:
        doc = to_nested_values(flat_values)
        if user_values is None:
            return doc
        return merge_with_precedence(user_values, doc)

    for profile in list(values.profiles):
        target = chart_dir / f"{VALUES}.{profile}.yaml"
        artifacts[str(target)] = await write_text(
            target, _dump(merged(values.reconciled(profile)))
        )
    target = chart_dir / VALUES_FILENAME
    artifacts[str(target)] = await write_text(
        target, _dump(merged(values.prod_values))
    )


def _load_notes_resource(notes: str) -> str:
    """Return the content of a notes template embedded in a package.

    The name is either a resource of this package or `<package>:<resource>`.
    """
    package, _, resource = notes.rpartition(":")
    resource = resource.lstrip("/")
    try:
        traversable = importlib.resources.files(package or RESOURCES_PACKAGE)
        notes_file = traversable.joinpath(resource)
        if resource and notes_file.is_file():
            return notes_file.read_text(encoding="utf-8")
    except ModuleNotFoundError as err:
        raise NotesNotFoundError(notes) from err
    raise NotesNotFoundError(notes)


async def _write_notes(
    config: HelmChartConfig,
    input_dir: Path | None,
    chart_dir: Path,
    artifacts: dict[str, str | None],
) -> None:
    target = chart_dir / TEMPLATES / NOTES
    if input_dir is not None and await isfile(input_dir / NOTES):
        await copy_file(input_dir / NOTES, target)
    elif config.notes:
        await write_text(target, _load_notes_resource(config.notes))
    else:
        return
    artifacts[str(target)] = ""


async def _copy_additional_files(
    input_dir: Path | None, chart_dir: Path, artifacts: dict[str, str | None]
) -> None:
    if input_dir is None or not await isdir(input_dir):
        return
    for source in sorted(input_dir.iterdir()):
        if source.name.lower() not in _ADDITIONAL_CHART_FILES:
            continue
        destination = chart_dir / source.name
        if source.is_dir():
            await makedirs(destination, exist_ok=True)
            for file in sorted(source.iterdir()):
                if file.is_file():
                    await copy_file(file, destination / file.name)
        else:
            await copy_file(source, destination)
        artifacts[str(destination)] = ""


async def write_helm_files(
    config: HelmChartConfig,
    references: Iterable[ValueReference],
    manifest_files: Iterable[Path],
    *,
    input_dir: Path | None,
    output_dir: Path,
    default_version: str,
) -> dict[str, str | None]:
    """Write the chart and return the written files.

    The references are the value references collected from other sources,
    processed after the ones declared in the configuration.
    """
    artifacts: dict[str, str | None] = {}
    if not config.enabled:
        return artifacts
    if not config.name:
        raise InputException("Helm Chart name is required")

    all_references = merge_value_references(
        config.values, config.add_if_statements
    ) + list(references)
    version = config.version or default_version
    output_dir = output_dir.absolute()
    chart_dir = output_dir / config.name

    _LOGGER.info('Creating Helm Chart "%s"', config.name)
    values = populate_values(config, all_references)
    try:
        resources = await _replace_values_in_manifests(
            config, manifest_files, all_references, values
        )
        templates_dir = chart_dir / TEMPLATES
        await makedirs(templates_dir, exist_ok=True)
        await write_templates(config, resources, input_dir, templates_dir, artifacts)

        chart_doc = await chart_document(build_chart(config, version), input_dir)
        target = chart_dir / CHART_FILENAME
        artifacts[str(target)] = await write_text(target, _dump(chart_doc))

        await _write_values(input_dir, chart_dir, values, artifacts)

        charts_dir = chart_dir / CHARTS
        await makedirs(charts_dir, exist_ok=True)
        artifacts[str(charts_dir)] = ""

        await _write_notes(config, input_dir, chart_dir, artifacts)
        await _copy_additional_files(input_dir, chart_dir, artifacts)

        if config.dependencies and config.fetch_dependencies:
            await Helm(config.helm_bin).dependency_build(chart_dir)

        if config.create_tar_file:
            archive = output_dir / archive_name(
                config.name, version, config.extension, config.tar_file_classifier
            )
            create_tarball(archive, chart_dir, expand_files(artifacts), config.name)
            artifacts[str(archive)] = None
    except OSError as err:
        raise OutputException(f"Error reading or writing resources: {err}") from err

    return artifacts
