"""Library for running `helm` commands against a generated chart.

The only command needed while writing a chart is `helm dependency build`,
which downloads the declared dependencies into the `charts/` directory:
```python
from helm_writer.helm import Helm

await Helm().dependency_build(Path("/tmp/output/my-chart"))
```
"""

import logging
from pathlib import Path

from . import command
from .config import HELM_BIN
from .exceptions import HelmException

__all__ = [
    "Helm",
]

_LOGGER = logging.getLogger(__name__)


class Helm:
    """Runs helm commands for a chart directory."""

    def __init__(self, helm_bin: str = HELM_BIN) -> None:
        """Initialize Helm."""
        self._helm_bin = helm_bin

    async def dependency_build(self, chart_dir: Path) -> str:
        """Fetch the dependencies of the chart.

        A failure raises `HelmException` with the output of the command.
        """
        args = [self._helm_bin, "dependency", "build"]
        out = await command.run(command.Command(args, cwd=chart_dir, exc=HelmException))
        _LOGGER.info("Dependencies successfully fetched")
        return out
