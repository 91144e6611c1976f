"""
Chart targets render a helm chart with the CR spec as values
"""

# Standard
from typing import List, Optional
import os
import shutil
import subprocess
import tempfile

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config
from ..constants import DEFAULT_NAMESPACE
from ..exceptions import RenderError, assert_config
from ..values import chart_values
from .base import RenderResult, TargetBase, flatten_resources

log = alog.use_channel("CHART")


class ChartTarget(TargetBase):
    """Render a chart with `helm template`"""

    def __init__(self, helm_binary: Optional[str] = None):
        self.helm_binary = helm_binary or config.chart.helm_binary

    def render(self, cr_manifest, entry, extra_vars=None) -> RenderResult:
        metadata = cr_manifest.get("metadata", {})
        release_name = metadata.get("name")
        namespace = metadata.get("namespace") or DEFAULT_NAMESPACE
        assert_config(release_name, "Cannot render a chart for a CR without a name")
        assert_config(
            os.path.isdir(entry.target), f"Chart directory not found: {entry.target}"
        )

        values = chart_values(cr_manifest, entry)
        if extra_vars:
            values.update(extra_vars)

        with tempfile.NamedTemporaryFile(
            "w", suffix="-values.yaml", encoding="utf-8"
        ) as values_file:
            yaml.safe_dump(values, values_file, sort_keys=False)
            values_file.flush()
            output = self._run_helm(
                self.template_command(
                    release_name, entry.target, namespace, values_file.name
                )
            )

        resources = self.parse_manifests(output)
        log.debug(
            "Rendered %d resources from chart %s for %s/%s",
            len(resources),
            entry.target,
            namespace,
            release_name,
        )
        return RenderResult(
            resources=resources,
            message=(
                f"Rendered {len(resources)} resources from "
                f"{os.path.basename(entry.target)}"
            ),
        )

    def template_command(
        self, release_name: str, chart_dir: str, namespace: str, values_path: str
    ) -> List[str]:
        """Build the helm command line for rendering a chart"""
        cmd = [
            self.helm_binary,
            "template",
            release_name,
            chart_dir,
            "--namespace",
            namespace,
            "--values",
            values_path,
        ]
        if config.chart.include_crds:
            cmd.append("--include-crds")
        return cmd

    @staticmethod
    def parse_manifests(output: str) -> List[dict]:
        """Parse multi-document yaml output into resource manifests"""
        try:
            documents = list(yaml.safe_load_all(output))
        except yaml.YAMLError as err:
            raise RenderError(f"Chart produced invalid yaml: {err}") from err
        return flatten_resources(documents)

    def _run_helm(self, cmd: List[str]) -> str:
        assert_config(
            shutil.which(cmd[0]) is not None, f"Helm binary [{cmd[0]}] not found"
        )
        log.debug2("Running: %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=config.chart.timeout_seconds,
            )
        except subprocess.TimeoutExpired as err:
            raise RenderError(
                f"helm template timed out after {config.chart.timeout_seconds}s"
            ) from err

        if proc.returncode:
            log.debug("helm template failed: %s", proc.stderr)
            raise RenderError(
                f"helm template failed with return code {proc.returncode}: "
                f"{proc.stderr.strip()}",
                details=proc.stderr,
            )
        return proc.stdout
