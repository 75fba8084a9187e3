"""Library for splitting resources into the template files of a chart.

Every resource is written to `templates/<kind>.yaml`, resources of the same
kind share a file. Template functions (`{{- define ... }}` blocks) found in a
user template with the same file name are added to the top of the generated
file, and resources matching an `AddIfStatement` are wrapped in a
`{{- if .Values.<property> }}` block.

Template expressions are not valid yaml, so they are serialized as marked
double quoted strings and unwrapped by `repair_template` afterwards.
"""

import logging
from pathlib import Path
import re
from typing import Any

from aiofiles.ospath import isdir
import yaml

from .config import HelmChartConfig, deduct_property
from .exceptions import InputException
from .files import copy_file, read_text, write_text
from .yaml_path import TemplateExpression, YamlPathEditor, resource_name

__all__ = [
    "serialize_resource",
    "repair_template",
    "extract_template_functions",
    "process_user_templates",
    "write_templates",
]

_LOGGER = logging.getLogger(__name__)

TEMPLATES = "templates"
YAML = ".yaml"
KIND = "kind"
START_TAG = "{{"
END_TAG = "}}"
START_EXPRESSION_TOKEN = "---START---"
END_EXPRESSION_TOKEN = "---END---"
SEPARATOR_TOKEN = "---SEPARATOR---"
SEPARATOR_QUOTES = "---QUOTES---"
SEPARATOR_BACKSLASH = "---BACKSLASH---"
IF_STATEMENT_START_TAG = "{{{{- if .Values.{property} }}}}"
TEMPLATE_FUNCTION_END_TAG = "{{- end }}"
HELM_HELPER_PREFIX = "_"

_FUNCTION_START_RE = re.compile(r"\{\{-?\s*define\b")
_BLOCK_START_RE = re.compile(r"\{\{-?\s*(define|if|range|with|block)\b")
_BLOCK_END_RE = re.compile(r"\{\{-?\s*end\s*-?\}\}")
_ESCAPED_NEWLINE_RE = re.compile(r"\\\n\s*\\")


class TemplateDumper(yaml.SafeDumper):
    """Yaml dumper that marks template expressions for `repair_template`."""


def _represent_expression(
    dumper: yaml.SafeDumper, data: TemplateExpression
) -> yaml.ScalarNode:
    encoded = (
        str(data)
        .replace("\\", SEPARATOR_BACKSLASH)
        .replace('"', SEPARATOR_QUOTES)
        .replace("\r\n", "\n")
        .replace("\n", SEPARATOR_TOKEN)
    )
    return dumper.represent_scalar(
        "tag:yaml.org,2002:str",
        f"{START_EXPRESSION_TOKEN}{encoded}{END_EXPRESSION_TOKEN}",
        style='"',
    )


TemplateDumper.add_representer(TemplateExpression, _represent_expression)


def serialize_resource(resource: dict[str, Any]) -> str:
    """Serialize a resource as a yaml document with marked expressions."""
    return yaml.dump(
        resource,
        Dumper=TemplateDumper,
        sort_keys=False,
        explicit_start=True,
        allow_unicode=True,
        width=float("inf"),
    )


def repair_template(content: str) -> str:
    """Turn the marked expressions of a serialized resource into raw template text."""
    content = content.replace('"' + START_TAG, START_TAG).replace(
        END_TAG + '"', END_TAG
    )
    content = content.replace('"' + START_EXPRESSION_TOKEN, "").replace(
        END_EXPRESSION_TOKEN + '"', ""
    )
    content = content.replace(SEPARATOR_QUOTES, '"').replace(SEPARATOR_TOKEN, "\n")
    content = _ESCAPED_NEWLINE_RE.sub("", content)
    return content.replace(SEPARATOR_BACKSLASH, "\\")


def extract_template_functions(content: str) -> str:
    """Return only the template function definitions of a user template."""
    lines: list[str] = []
    depth = 0
    for line in content.splitlines():
        if depth == 0 and not _FUNCTION_START_RE.search(line):
            continue
        depth += len(_BLOCK_START_RE.findall(line)) - len(_BLOCK_END_RE.findall(line))
        depth = max(depth, 0)
        lines.append(line + "\n")
    return "".join(lines)


async def process_user_templates(
    input_dir: Path | None, templates_dir: Path, artifacts: dict[str, str | None]
) -> dict[str, str]:
    """Copy the helper templates and return the functions of the other templates.

    The functions are indexed by the template file name.
    """
    functions: dict[str, str] = {}
    if input_dir is None or not await isdir(input_dir / TEMPLATES):
        return functions
    for user_template in sorted((input_dir / TEMPLATES).iterdir()):
        if user_template.is_dir():
            _LOGGER.warning("Ignoring user template directory %s", user_template)
            continue
        if user_template.name.startswith(HELM_HELPER_PREFIX):
            output = templates_dir / user_template.name
            await copy_file(user_template, output)
            artifacts[str(output)] = ""
            continue
        if found := extract_template_functions(await read_text(user_template)):
            functions[user_template.name] = found
    return functions


def _apply_expressions(config: HelmChartConfig, resource: dict[str, Any]) -> None:
    editor = YamlPathEditor([resource])
    for expression in config.expressions:
        if expression.path and expression.expression:
            editor.read_and_set(expression.path, expression.expression)


def _adapt_resource(config: HelmChartConfig, resource: dict[str, Any]) -> str:
    kind = resource[KIND]
    content = serialize_resource(resource)
    for statement in config.add_if_statements:
        if statement.matches(kind, resource_name(resource)):
            content = "\n".join(
                [
                    IF_STATEMENT_START_TAG.format(
                        property=deduct_property(config, statement.property)
                    ),
                    content,
                    TEMPLATE_FUNCTION_END_TAG,
                    "",
                ]
            )
    return repair_template(content)


async def write_templates(
    config: HelmChartConfig,
    resources: list[dict[str, Any]],
    input_dir: Path | None,
    templates_dir: Path,
    artifacts: dict[str, str | None],
) -> None:
    """Write one template file per resource kind."""
    functions = await process_user_templates(input_dir, templates_dir, artifacts)

    contents: dict[str, list[str]] = {}
    for resource in resources:
        if not isinstance(kind := resource.get(KIND), str) or not kind:
            raise InputException(f"Invalid resource missing kind: {resource}")
        _apply_expressions(config, resource)
        filename = kind.lower() + YAML
        if filename not in contents:
            contents[filename] = [functions[filename]] if filename in functions else []
        contents[filename].append(_adapt_resource(config, resource))

    for filename, parts in contents.items():
        target = templates_dir / filename
        artifacts[str(target)] = await write_text(target, "\n".join(parts))
