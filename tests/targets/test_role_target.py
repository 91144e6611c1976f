"""
Tests for running roles and playbooks with ansible-runner
"""
# Standard
from unittest import mock
import os
import tempfile

# Third Party
import pytest

# Local
from declar8.constants import ROLE_META_VARIABLE
from declar8.exceptions import ConfigError, RenderError
from declar8.targets.role import LOCAL_INVENTORY, RoleTarget, summarize_stats
from declar8.test_helpers.helpers import (
    library_config,
    make_configmap,
    make_watch_entry,
    nested_config,
    setup_cr,
)

## Helpers #####################################################################


class FakeRunner:
    """Stand in for ansible_runner.run that replays a stats event"""

    def __init__(self, status="successful", rc=0, stats=None, resources=None):
        self.status = status
        self.rc = rc
        self.stats = stats or {
            "ok": {"localhost": 3},
            "changed": {"localhost": 1},
            "failures": {},
            "skipped": {"localhost": 2},
        }
        self.resources = resources
        self.kwargs = None

    def __call__(self, **kwargs):
        self.kwargs = kwargs
        handler = kwargs["event_handler"]
        handler({"event": "runner_on_ok", "event_data": {}})
        artifact_data = {}
        if self.resources is not None:
            artifact_data["resources"] = self.resources
        handler(
            {
                "event": "playbook_on_stats",
                "event_data": {"artifact_data": artifact_data},
            }
        )
        return self


## Tests #######################################################################


def test_summarize_stats():
    """Make sure per-host counters are totaled"""
    assert summarize_stats(
        {"ok": {"a": 1, "b": 2}, "changed": {"a": 1}, "failures": None}
    ) == {"ok": 3, "changed": 1, "failures": 0, "skipped": 0}
    empty = {"ok": 0, "changed": 0, "failures": 0, "skipped": 0}
    assert summarize_stats(None) == empty


def test_render_role():
    """Make sure a role runs with the CR variables and reports its resources"""
    entry = make_watch_entry(role="memcached")
    cr = setup_cr(spec={"replicaCount": 2})
    runner = FakeRunner(resources=[make_configmap()])
    with mock.patch("ansible_runner.run", runner):
        result = RoleTarget(roles_path="/opt/roles").render(cr, entry)

    assert runner.kwargs["role"] == "memcached"
    assert runner.kwargs["roles_path"] == ["/opt/roles"]
    assert runner.kwargs["inventory"] == LOCAL_INVENTORY
    assert runner.kwargs["extravars"]["replica_count"] == 2
    assert runner.kwargs["extravars"][ROLE_META_VARIABLE]["name"] == cr.metadata.name
    assert not os.path.exists(runner.kwargs["private_data_dir"])

    assert result.resources == [make_configmap()]
    assert result.summary == {"ok": 3, "changed": 1, "failures": 0, "skipped": 2}
    assert "1 changed" in result.message


def test_render_role_by_path():
    """Make sure a role given as a path adds its parent to the roles path"""
    entry = make_watch_entry(base_dir="/opt", role="roles/custom/memcached")
    runner = FakeRunner()
    with mock.patch("ansible_runner.run", runner):
        result = RoleTarget(roles_path="/etc/roles").render(setup_cr(), entry)
    assert runner.kwargs["role"] == "memcached"
    assert runner.kwargs["roles_path"] == ["/opt/roles/custom", "/etc/roles"]
    assert result.resources == []


def test_render_playbook():
    """Make sure a playbook entry runs the playbook with the extra vars"""
    with tempfile.NamedTemporaryFile(suffix=".yaml") as playbook:
        entry = make_watch_entry(playbook=playbook.name)
        runner = FakeRunner()
        with mock.patch("ansible_runner.run", runner):
            RoleTarget().render(setup_cr(), entry, extra_vars={"state": "absent"})
    assert runner.kwargs["playbook"] == playbook.name
    assert "role" not in runner.kwargs
    assert runner.kwargs["extravars"]["state"] == "absent"


def test_render_missing_playbook():
    """Make sure a missing playbook is a ConfigError"""
    entry = make_watch_entry(playbook="/does/not/exist.yaml")
    with pytest.raises(ConfigError):
        RoleTarget().render(setup_cr(), entry)


def test_render_failed_run():
    """Make sure a failed run is a RenderError carrying the summary"""
    entry = make_watch_entry(role="memcached")
    runner = FakeRunner(
        status="failed", rc=2, stats={"failures": {"localhost": 1}}
    )
    with mock.patch("ansible_runner.run", runner):
        with pytest.raises(RenderError) as err:
            RoleTarget().render(setup_cr(), entry)
    assert err.value.details["failures"] == 1


def test_render_invalid_resources_stat():
    """Make sure a resources stat that isn't a list is a ConfigError"""
    entry = make_watch_entry(role="memcached")
    with mock.patch("ansible_runner.run", FakeRunner(resources={"not": "a list"})):
        with pytest.raises(ConfigError):
            RoleTarget().render(setup_cr(), entry)


def test_render_keeps_artifacts():
    """Make sure a configured artifacts dir is kept"""
    entry = make_watch_entry(role="memcached")
    runner = FakeRunner()
    with tempfile.TemporaryDirectory() as artifacts_dir:
        with library_config(role=nested_config("role", artifacts_dir=artifacts_dir)):
            with mock.patch("ansible_runner.run", runner):
                RoleTarget().render(setup_cr(), entry)
        assert runner.kwargs["private_data_dir"] == artifacts_dir
        assert os.path.isdir(artifacts_dir)
