"""
Tests for rendering helm charts
"""
# Standard
from unittest import mock
import subprocess
import tempfile

# Third Party
import pytest
import yaml

# Local
from declar8.exceptions import ConfigError, RenderError
from declar8.targets import ChartTarget, get_target
from declar8.targets.role import RoleTarget
from declar8.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    library_config,
    make_watch_entry,
    nested_config,
    setup_cr,
)

## Helpers #####################################################################

RENDERED = """
---
# Source: widget/templates/configmap.yaml
apiVersion: v1
kind: ConfigMap
metadata:
  name: widget-config
data:
  replicas: "2"
---
apiVersion: v1
kind: List
items:
  - apiVersion: v1
    kind: Service
    metadata:
      name: widget
  - apiVersion: apps/v1
    kind: Deployment
    metadata:
      name: widget
"""


@pytest.fixture
def chart_dir():
    with tempfile.TemporaryDirectory() as workdir:
        yield workdir


class HelmCapture:
    """Stand in for _run_helm that records the command and values"""

    def __init__(self, output=RENDERED):
        self.output = output
        self.cmd = None
        self.values = None

    def __call__(self, cmd):
        self.cmd = cmd
        with open(cmd[cmd.index("--values") + 1], encoding="utf-8") as handle:
            self.values = yaml.safe_load(handle)
        return self.output


## Tests #######################################################################


def test_get_target():
    """Make sure entries map to the right target type"""
    assert isinstance(get_target(make_watch_entry()), ChartTarget)
    assert isinstance(get_target(make_watch_entry(role="foo")), RoleTarget)
    assert isinstance(get_target(make_watch_entry(playbook="site.yaml")), RoleTarget)


def test_render_chart(chart_dir):
    """Make sure a chart renders with the CR spec as values"""
    entry = make_watch_entry(chart=chart_dir, overrideValues={"image.tag": "v1"})
    cr = setup_cr(spec={"replicaCount": 2})
    target = ChartTarget()
    capture = HelmCapture()
    with mock.patch.object(target, "_run_helm", capture):
        result = target.render(cr, entry)

    assert capture.cmd[:4] == ["helm", "template", TEST_INSTANCE_NAME, chart_dir]
    assert capture.cmd[capture.cmd.index("--namespace") + 1] == TEST_NAMESPACE
    assert "--include-crds" not in capture.cmd
    assert capture.values == {"replicaCount": 2, "image": {"tag": "v1"}}
    assert [res["kind"] for res in result.resources] == [
        "ConfigMap",
        "Service",
        "Deployment",
    ]
    assert result.summary is None
    assert "3 resources" in result.message


def test_render_chart_extra_vars(chart_dir):
    """Make sure extra vars are added to the values"""
    entry = make_watch_entry(chart=chart_dir)
    target = ChartTarget()
    capture = HelmCapture(output="")
    with mock.patch.object(target, "_run_helm", capture):
        result = target.render(setup_cr(), entry, extra_vars={"uninstall": True})
    assert capture.values == {"uninstall": True}
    assert result.resources == []


def test_template_command_include_crds():
    """Make sure the include_crds config adds the flag"""
    target = ChartTarget(helm_binary="/opt/helm")
    with library_config(chart=nested_config("chart", include_crds=True)):
        cmd = target.template_command("rel", "/chart", "ns", "/values.yaml")
    assert cmd[0] == "/opt/helm"
    assert cmd[-1] == "--include-crds"


def test_render_missing_chart():
    """Make sure a missing chart directory is a ConfigError"""
    entry = make_watch_entry(chart="/does/not/exist")
    with pytest.raises(ConfigError):
        ChartTarget().render(setup_cr(), entry)


def test_parse_manifests_invalid_yaml():
    """Make sure invalid helm output is a RenderError"""
    with pytest.raises(RenderError):
        ChartTarget.parse_manifests("foo: [bar")


def test_parse_manifests_non_mapping():
    """Make sure non-mapping documents are rejected"""
    with pytest.raises(ConfigError):
        ChartTarget.parse_manifests("- a\n- b\n")


## _run_helm ###################################################################


def test_run_helm_success():
    """Make sure helm output is returned"""
    proc = subprocess.CompletedProcess(["helm"], 0, stdout="out", stderr="")
    with mock.patch("shutil.which", return_value="/usr/bin/helm"), mock.patch(
        "subprocess.run", return_value=proc
    ) as run_mock:
        assert ChartTarget()._run_helm(["helm", "template"]) == "out"
    assert run_mock.call_args[0][0] == ["helm", "template"]


def test_run_helm_failure():
    """Make sure a failing helm is a RenderError with the stderr"""
    proc = subprocess.CompletedProcess(["helm"], 1, stdout="", stderr="bad chart\n")
    with mock.patch("shutil.which", return_value="/usr/bin/helm"), mock.patch(
        "subprocess.run", return_value=proc
    ):
        with pytest.raises(RenderError) as err:
            ChartTarget()._run_helm(["helm", "template"])
    assert "bad chart" in str(err.value)
    assert err.value.details == "bad chart\n"


def test_run_helm_timeout():
    """Make sure a helm timeout is a RenderError"""
    with mock.patch("shutil.which", return_value="/usr/bin/helm"), mock.patch(
        "subprocess.run", side_effect=subprocess.TimeoutExpired(["helm"], 1)
    ):
        with pytest.raises(RenderError):
            ChartTarget()._run_helm(["helm", "template"])


def test_run_helm_missing_binary():
    """Make sure a missing helm binary is a ConfigError"""
    with mock.patch("shutil.which", return_value=None):
        with pytest.raises(ConfigError):
            ChartTarget()._run_helm(["helm", "template"])
