"""
Role targets run an ansible role or playbook with the CR spec as variables.
The role reports the resources it wants applied through set_stats:

- set_stats:
    data:
      resources: "{{ [configmap, deployment] }}"
    per_host: false
"""

# Standard
from typing import Optional
import os
import shutil
import tempfile

# Third Party
import ansible_runner

# First Party
import alog

# Local
from .. import config
from ..constants import ROLE_RESOURCES_STAT_KEY
from ..exceptions import RenderError, assert_config
from ..values import role_variables
from ..watches import TargetType
from .base import RenderResult, TargetBase, flatten_resources

log = alog.use_channel("ROLE")

# Counters copied from the runner stats into the run summary
SUMMARY_KEYS = ["ok", "changed", "failures", "skipped"]

# Operators run the automation against the local connection
LOCAL_INVENTORY = {
    "all": {"hosts": {"localhost": {"ansible_connection": "local"}}}
}


class RoleTarget(TargetBase):
    """Run a role or playbook with ansible-runner"""

    def __init__(self, roles_path: Optional[str] = None):
        self.roles_path = roles_path or config.role.roles_path

    def render(self, cr_manifest, entry, extra_vars=None) -> RenderResult:
        variables = role_variables(cr_manifest, entry, extra_vars)
        run_kwargs = self._target_kwargs(entry)

        artifacts_dir = config.role.artifacts_dir
        private_data_dir = artifacts_dir or tempfile.mkdtemp(prefix="declar8-")
        stats_events = []
        try:
            runner = ansible_runner.run(
                private_data_dir=private_data_dir,
                extravars=variables,
                inventory=LOCAL_INVENTORY,
                quiet=True,
                event_handler=lambda event: _capture_stats(stats_events, event),
                **run_kwargs,
            )
        finally:
            if not artifacts_dir:
                shutil.rmtree(private_data_dir, ignore_errors=True)

        summary = summarize_stats(runner.stats)
        log.debug(
            "Run of %s finished [%s] with %s", entry.target, runner.status, summary
        )
        if runner.status != "successful":
            raise RenderError(
                f"{entry.target_type.value} {entry.target} finished with status "
                f"[{runner.status}] (rc={runner.rc}): {summary}",
                details=summary,
            )

        artifact_data = {}
        if stats_events:
            event_data = stats_events[-1].get("event_data", {})
            artifact_data = event_data.get("artifact_data") or {}
        resources = artifact_data.get(ROLE_RESOURCES_STAT_KEY) or []
        assert_config(
            isinstance(resources, list),
            f"The [{ROLE_RESOURCES_STAT_KEY}] stat must be a list of manifests",
        )
        resources = flatten_resources(resources)
        return RenderResult(
            resources=resources,
            message=(
                f"Ran {entry.target_type.value} {os.path.basename(entry.target)}: "
                f"{summary['changed']} changed, {summary['failures']} failed"
            ),
            summary=summary,
        )

    def _target_kwargs(self, entry) -> dict:
        """Arguments selecting the role or playbook to run"""
        if entry.target_type == TargetType.PLAYBOOK:
            assert_config(
                os.path.isfile(entry.target), f"Playbook not found: {entry.target}"
            )
            return {"playbook": entry.target}

        role_name = entry.target
        roles_path = [os.path.abspath(self.roles_path)]
        if os.sep in role_name:
            roles_path.insert(0, os.path.dirname(role_name))
            role_name = os.path.basename(role_name)
        return {"role": role_name, "roles_path": roles_path}


def summarize_stats(stats: Optional[dict]) -> dict:
    """Total the per-host runner counters

    Args:
        stats:  Optional[dict]
            The runner stats, mapping each counter to {host: count}

    Returns:
        summary:  dict
            The total for each counter in SUMMARY_KEYS
    """
    stats = stats or {}
    return {key: sum((stats.get(key) or {}).values()) for key in SUMMARY_KEYS}


def _capture_stats(stats_events: list, event: dict) -> bool:
    if event.get("event") == "playbook_on_stats":
        stats_events.append(event)
    return True
