"""Tests for writing a complete chart."""

from pathlib import Path
import shutil
import tarfile
from typing import Any

import pytest
import yaml

from helm_writer.config import (
    AddIfStatement,
    HelmChartConfig,
    HelmDependency,
    ValueReference,
    read_config,
)
from helm_writer.exceptions import (
    HelmException,
    IncompleteValueMappingError,
    InputException,
    NotesNotFoundError,
    OutputException,
)
from helm_writer.writer import write_helm_files

TESTDATA = Path(__file__).parent / "testdata"
MANIFEST = TESTDATA / "kubernetes.yml"
REPLICAS = ValueReference(property="app.replicas", value=3, paths=["spec.replicas"])


@pytest.fixture(name="input_dir")
def input_dir_fixture(tmp_path: Path) -> Path:
    """Fixture for an empty input directory."""
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    return input_dir


@pytest.fixture(name="output_dir")
def output_dir_fixture(tmp_path: Path) -> Path:
    """Fixture for the output directory."""
    return tmp_path / "output"


@pytest.fixture(name="config")
def config_fixture() -> HelmChartConfig:
    """Fixture for a minimal chart configuration."""
    return HelmChartConfig(name="my-chart")


def _load(path: Path) -> Any:
    return yaml.safe_load(path.read_text())


async def test_replicas_scenario(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test a value reference with a value and a path."""
    artifacts = await write_helm_files(
        config,
        [REPLICAS],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    chart_dir = output_dir / "my-chart"
    deployment = (chart_dir / "templates" / "deployment.yaml").read_text()
    assert "  replicas: {{ .Values.app.replicas }}\n" in deployment
    assert _load(chart_dir / "values.yaml") == {"app": {"replicas": 3}}
    assert (chart_dir / "templates" / "service.yaml").exists()
    assert (chart_dir / "charts").is_dir()
    assert not list((chart_dir / "charts").iterdir())

    assert _load(chart_dir / "Chart.yaml") == {
        "apiVersion": "v2",
        "name": "my-chart",
        "version": "1.0.0",
        "type": "application",
    }
    assert artifacts == {
        str(chart_dir / "templates" / "service.yaml"): (
            chart_dir / "templates" / "service.yaml"
        ).read_text(),
        str(chart_dir / "templates" / "deployment.yaml"): deployment,
        str(chart_dir / "Chart.yaml"): (chart_dir / "Chart.yaml").read_text(),
        str(chart_dir / "values.yaml"): (chart_dir / "values.yaml").read_text(),
        str(chart_dir / "charts"): "",
    }


async def test_profiles_scenario(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test a profile inherits the default values."""
    await write_helm_files(
        config,
        [
            ValueReference(property="image.tag", value="latest"),
            ValueReference(property="replicas", value=1, profile="dev"),
        ],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    chart_dir = output_dir / "my-chart"
    assert _load(chart_dir / "values.yaml") == {"image": {"tag": "latest"}}
    assert _load(chart_dir / "values.dev.yaml") == {
        "replicas": 1,
        "image": {"tag": "latest"},
    }


async def test_read_default_values(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test the values read from the manifests are the defaults."""
    await write_helm_files(
        config,
        [
            ValueReference(
                property="image",
                paths=["spec.template.spec.containers.(name == app).image"],
            ),
            ValueReference(
                property="service.port",
                paths=["(kind == Service).spec.ports.(name == http).port"],
            ),
            ValueReference(property="strategy", paths=["spec.strategy.type"]),
        ],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    chart_dir = output_dir / "my-chart"
    assert _load(chart_dir / "values.yaml") == {
        "image": "example/app:1.0",
        "service": {"port": 80},
    }
    deployment = (chart_dir / "templates" / "deployment.yaml").read_text()
    assert "image: {{ .Values.image }}\n" in deployment
    service = (chart_dir / "templates" / "service.yaml").read_text()
    assert "port: {{ .Values.service.port }}\n" in service


async def test_dependency_condition_scenario(
    input_dir: Path, output_dir: Path
) -> None:
    """Test dependency conditions are enabled and dependencies are fetched."""
    config = HelmChartConfig(
        name="my-chart",
        helm_bin="true",
        dependencies=[
            HelmDependency(
                name="db",
                version="1.0.0",
                repository="https://example.com/charts",
                condition="db.enabled",
            )
        ],
    )
    await write_helm_files(
        config,
        [],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    chart_dir = output_dir / "my-chart"
    assert _load(chart_dir / "values.yaml") == {"db": {"enabled": True}}
    assert _load(chart_dir / "Chart.yaml")["dependencies"] == [
        {
            "name": "db",
            "alias": "db",
            "version": "1.0.0",
            "repository": "https://example.com/charts",
            "condition": "db.enabled",
            "enabled": True,
        }
    ]


async def test_dependency_build_failure(input_dir: Path, output_dir: Path) -> None:
    """Test a failure fetching dependencies."""
    config = HelmChartConfig(
        name="my-chart",
        helm_bin="false",
        dependencies=[
            HelmDependency(
                name="db", version="1.0.0", repository="https://example.com/charts"
            )
        ],
    )
    with pytest.raises(HelmException, match="return code 1"):
        await write_helm_files(
            config,
            [],
            [MANIFEST],
            input_dir=input_dir,
            output_dir=output_dir,
            default_version="1.0.0",
        )


async def test_packaging_disabled(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test no archive is created by default."""
    artifacts = await write_helm_files(
        config,
        [REPLICAS],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    assert None not in artifacts.values()
    assert not list(output_dir.glob("*.tgz"))
    assert not list(output_dir.glob("*.tar.gz"))


async def test_packaging_scenario(input_dir: Path, output_dir: Path) -> None:
    """Test the chart archive."""
    (input_dir / "README.md").write_text("# My chart\n")
    config = HelmChartConfig(
        name="my-chart", version="1.0.0", create_tar_file=True, extension="tgz"
    )
    artifacts = await write_helm_files(
        config,
        [REPLICAS],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="0.0.1",
    )
    archive = output_dir / "my-chart-1.0.0.tgz"
    assert artifacts[str(archive)] is None
    assert list(artifacts)[-1] == str(archive)
    with tarfile.open(archive, "r:gz") as tar:
        names = set(tar.getnames())
    assert names == {
        "my-chart/Chart.yaml",
        "my-chart/values.yaml",
        "my-chart/README.md",
        "my-chart/templates/deployment.yaml",
        "my-chart/templates/service.yaml",
    }


async def test_config_file(input_dir: Path, output_dir: Path) -> None:
    """Test a chart built from a configuration file."""
    config = await read_config(TESTDATA / "helm.yaml")
    config.fetch_dependencies = False
    artifacts = await write_helm_files(
        config,
        [],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="0.0.1",
    )
    chart_dir = output_dir / "my-chart"
    assert _load(chart_dir / "values.yaml") == {
        "app": {
            "replicas": 3,
            "service": {"enabled": True},
        },
        "postgresql": {"enabled": True},
    }
    assert _load(chart_dir / "values.dev.yaml") == {
        "app": {
            "image": "example/app:1.0",
            "replicas": 3,
            "service": {"enabled": True},
        },
        "postgresql": {"enabled": True},
    }
    service = (chart_dir / "templates" / "service.yaml").read_text()
    assert service.startswith("{{- if .Values.app.service.enabled }}\n")
    assert service.endswith("{{- end }}\n")
    deployment = (chart_dir / "templates" / "deployment.yaml").read_text()
    assert "{{- if" not in deployment
    assert "replicas: {{ .Values.app.replicas }}\n" in deployment
    assert "image: {{ .Values.app.image }}\n" in deployment

    chart = _load(chart_dir / "Chart.yaml")
    assert chart["version"] == "1.0.0"
    assert chart["annotations"] == {"category": "Example"}
    assert str(output_dir / "my-chart-1.0.0-helm.tgz") in artifacts


async def test_user_files_merge(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test the user values and descriptor win over the generated ones."""
    (input_dir / "Chart.yaml").write_text(
        "description: Written by hand\nversion: 9.9.9\n"
    )
    (input_dir / "values.yaml").write_text(
        "app:\n  replicas: 5\nextra:\n  enabled: false\n"
    )
    await write_helm_files(
        config,
        [REPLICAS, ValueReference(property="app.name", value="app", profile="dev")],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    chart_dir = output_dir / "my-chart"
    assert _load(chart_dir / "Chart.yaml") == {
        "description": "Written by hand",
        "version": "9.9.9",
        "apiVersion": "v2",
        "name": "my-chart",
        "type": "application",
    }
    assert _load(chart_dir / "values.yaml") == {
        "app": {"replicas": 5},
        "extra": {"enabled": False},
    }
    assert _load(chart_dir / "values.dev.yaml") == {
        "app": {"replicas": 5, "name": "app"},
        "extra": {"enabled": False},
    }


async def test_user_templates(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test the helper templates and template functions of the user."""
    (input_dir / "templates").mkdir()
    (input_dir / "templates" / "_helpers.tpl").write_text(
        '{{- define "x" }}{{- end }}\n'
    )
    (input_dir / "templates" / "service.yaml").write_text(
        '{{- define "svc.name" }}app{{- end }}\nkind: Service\n'
    )
    artifacts = await write_helm_files(
        config,
        [],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    templates_dir = output_dir / "my-chart" / "templates"
    assert artifacts[str(templates_dir / "_helpers.tpl")] == ""
    service = (templates_dir / "service.yaml").read_text()
    assert service.startswith('{{- define "svc.name" }}app{{- end }}\n\n---\n')
    assert service.count("kind: Service") == 1


async def test_notes_from_input_dir(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test the notes of the input directory win over the configured ones."""
    (input_dir / "NOTES.txt").write_text("Installed {{ .Release.Name }}\n")
    config.notes = "does-not-exist.txt"
    artifacts = await write_helm_files(
        config,
        [],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    notes = output_dir / "my-chart" / "templates" / "NOTES.txt"
    assert notes.read_text() == "Installed {{ .Release.Name }}\n"
    assert artifacts[str(notes)] == ""


@pytest.mark.parametrize(
    "notes",
    [
        "NOTES.template.txt",
        "/NOTES.template.txt",
        "helm_writer.resources:NOTES.template.txt",
    ],
)
async def test_notes_from_resources(
    notes: str, input_dir: Path, output_dir: Path
) -> None:
    """Test the notes embedded in the package."""
    config = HelmChartConfig(name="my-chart", notes=notes)
    await write_helm_files(
        config,
        [],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    notes_file = output_dir / "my-chart" / "templates" / "NOTES.txt"
    assert "{{ .Release.Name }}" in notes_file.read_text()


@pytest.mark.parametrize(
    "notes",
    [
        "does-not-exist.txt",
        "does.not.exist:NOTES.txt",
    ],
)
async def test_notes_not_found(notes: str, input_dir: Path, output_dir: Path) -> None:
    """Test configured notes that can't be found."""
    config = HelmChartConfig(name="my-chart", notes=notes)
    with pytest.raises(NotesNotFoundError, match=notes):
        await write_helm_files(
            config,
            [],
            [MANIFEST],
            input_dir=input_dir,
            output_dir=output_dir,
            default_version="1.0.0",
        )


async def test_without_notes(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test no notes are written when none are configured."""
    await write_helm_files(
        config,
        [],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    assert not (output_dir / "my-chart" / "templates" / "NOTES.txt").exists()


async def test_additional_files(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test the auxiliary chart files are copied."""
    (input_dir / "readme.md").write_text("# My chart\n")
    (input_dir / "LICENSE").write_text("Apache-2.0\n")
    (input_dir / "crds").mkdir()
    (input_dir / "crds" / "crd.yaml").write_text("kind: CustomResourceDefinition\n")
    (input_dir / "other.txt").write_text("ignored\n")
    artifacts = await write_helm_files(
        config,
        [],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    chart_dir = output_dir / "my-chart"
    assert (chart_dir / "readme.md").read_text() == "# My chart\n"
    assert (chart_dir / "LICENSE").read_text() == "Apache-2.0\n"
    assert (chart_dir / "crds" / "crd.yaml").exists()
    assert not (chart_dir / "other.txt").exists()
    assert artifacts[str(chart_dir / "crds")] == ""
    assert artifacts[str(chart_dir / "readme.md")] == ""


async def test_add_if_statement_by_name(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test only the matching resource is wrapped in a condition."""
    config.add_if_statements = [
        AddIfStatement(
            property="deployment.enabled",
            on_resource_kind="Deployment",
            on_resource_name="app",
            with_default_value=False,
        )
    ]
    await write_helm_files(
        config,
        [],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    chart_dir = output_dir / "my-chart"
    deployment = (chart_dir / "templates" / "deployment.yaml").read_text()
    assert deployment.startswith("{{- if .Values.deployment.enabled }}\n---\n")
    assert deployment.endswith("\n{{- end }}\n")
    service = (chart_dir / "templates" / "service.yaml").read_text()
    assert "{{- if" not in service
    assert _load(chart_dir / "values.yaml") == {"deployment": {"enabled": False}}


async def test_same_kind_in_one_file(
    config: HelmChartConfig, input_dir: Path, output_dir: Path, tmp_path: Path
) -> None:
    """Test resources of the same kind from several manifests share a file."""
    other = tmp_path / "other.yaml"
    other.write_text(
        "apiVersion: v1\nkind: Service\nmetadata:\n  name: other\nspec:\n  ports: []\n"
    )
    await write_helm_files(
        config,
        [],
        [MANIFEST, other],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    service_file = output_dir / "my-chart" / "templates" / "service.yaml"
    services = list(yaml.safe_load_all(service_file.read_text()))
    assert [s["metadata"]["name"] for s in services] == ["app", "other"]


async def test_non_yaml_manifests_ignored(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test only yaml manifest files are processed."""
    await write_helm_files(
        config,
        [],
        [TESTDATA / "kubernetes.json"],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    assert not list((output_dir / "my-chart" / "templates").iterdir())


async def test_rebuild_overwrites(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test building twice produces the same files."""
    kwargs: dict[str, Any] = {
        "input_dir": input_dir,
        "output_dir": output_dir,
        "default_version": "1.0.0",
    }
    first = await write_helm_files(config, [REPLICAS], [MANIFEST], **kwargs)
    second = await write_helm_files(config, [REPLICAS], [MANIFEST], **kwargs)
    assert first == second


async def test_disabled(input_dir: Path, output_dir: Path) -> None:
    """Test nothing is written when the chart is disabled."""
    config = HelmChartConfig(name="my-chart", enabled=False)
    artifacts = await write_helm_files(
        config,
        [REPLICAS],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    assert artifacts == {}
    assert not output_dir.exists()


async def test_missing_chart_name(input_dir: Path, output_dir: Path) -> None:
    """Test the chart name is required before writing anything."""
    with pytest.raises(InputException, match="name is required"):
        await write_helm_files(
            HelmChartConfig(),
            [REPLICAS],
            [MANIFEST],
            input_dir=input_dir,
            output_dir=output_dir,
            default_version="1.0.0",
        )
    assert not output_dir.exists()


async def test_incomplete_value_mapping(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test a value reference without a path or a value."""
    with pytest.raises(IncompleteValueMappingError):
        await write_helm_files(
            config,
            [ValueReference(property="app.name")],
            [MANIFEST],
            input_dir=input_dir,
            output_dir=output_dir,
            default_version="1.0.0",
        )
    assert not output_dir.exists()


async def test_invalid_manifest(
    config: HelmChartConfig, input_dir: Path, output_dir: Path, tmp_path: Path
) -> None:
    """Test a manifest that is not valid yaml."""
    manifest = tmp_path / "broken.yaml"
    manifest.write_text("kind: [Service\n")
    with pytest.raises(InputException, match="Unable to parse manifest"):
        await write_helm_files(
            config,
            [],
            [manifest],
            input_dir=input_dir,
            output_dir=output_dir,
            default_version="1.0.0",
        )


async def test_invalid_encoding(
    config: HelmChartConfig, input_dir: Path, output_dir: Path, tmp_path: Path
) -> None:
    """Test a manifest that is not utf-8 text."""
    manifest = tmp_path / "bad.yaml"
    manifest.write_bytes(b"\xff\xfekind: Service\n")
    with pytest.raises(InputException, match="Unable to read"):
        await write_helm_files(
            config,
            [],
            [manifest],
            input_dir=input_dir,
            output_dir=output_dir,
            default_version="1.0.0",
        )


async def test_user_values_invalid_encoding(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test a user values file that is not utf-8 text."""
    (input_dir / "values.yaml").write_bytes(b"\xff\xfereplicas: 1\n")
    with pytest.raises(InputException, match="Unable to read"):
        await write_helm_files(
            config,
            [REPLICAS],
            [MANIFEST],
            input_dir=input_dir,
            output_dir=output_dir,
            default_version="1.0.0",
        )


async def test_structure_default_with_expressions(
    config: HelmChartConfig, input_dir: Path, output_dir: Path
) -> None:
    """Test a default read after a nested replacement is written as plain yaml."""
    await write_helm_files(
        config,
        [
            ValueReference(
                property="image", paths=["spec.template.spec.containers[0].image"]
            ),
            ValueReference(
                property="containers", paths=["spec.template.spec.containers"]
            ),
        ],
        [MANIFEST],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    values_file = output_dir / "my-chart" / "values.yaml"
    assert "python/" not in values_file.read_text()
    values = _load(values_file)
    assert values["image"] == "example/app:1.0"
    assert values["containers"][0]["name"] == "app"
    assert values["containers"][0]["image"] == "{{ .Values.image }}"


async def test_missing_manifest(
    config: HelmChartConfig, input_dir: Path, output_dir: Path, tmp_path: Path
) -> None:
    """Test an I/O error is wrapped."""
    with pytest.raises(OutputException, match="Error reading or writing resources"):
        await write_helm_files(
            config,
            [],
            [tmp_path / "missing.yaml"],
            input_dir=input_dir,
            output_dir=output_dir,
            default_version="1.0.0",
        )


async def test_without_input_dir(config: HelmChartConfig, output_dir: Path) -> None:
    """Test a chart without any user files."""
    artifacts = await write_helm_files(
        config,
        [REPLICAS],
        [MANIFEST],
        input_dir=None,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    assert str(output_dir / "my-chart" / "values.yaml") in artifacts


async def test_testdata_unchanged(
    config: HelmChartConfig, input_dir: Path, output_dir: Path, tmp_path: Path
) -> None:
    """Test the manifest files are not modified."""
    manifest = tmp_path / "kubernetes.yml"
    shutil.copy(MANIFEST, manifest)
    await write_helm_files(
        config,
        [REPLICAS],
        [manifest],
        input_dir=input_dir,
        output_dir=output_dir,
        default_version="1.0.0",
    )
    assert manifest.read_text() == MANIFEST.read_text()
