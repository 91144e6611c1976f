"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import List, Optional
from unittest import mock
import copy
import inspect
import os

# First Party
import aconfig
import alog

# Local
from declar8.config import library_config as config_detail_dict
from declar8.deploy_manager.dry_run_deploy_manager import DryRunDeployManager
from declar8.targets import RenderResult, TargetBase
from declar8.watches import WatchEntry

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_NAME = "test_instance"
TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
SOME_OTHER_NAMESPACE = "somewhere"

TEST_GROUP = "foo.bar.com"
TEST_VERSION = "v1"
TEST_KIND = "Widget"


def setup_cr(
    kind=TEST_KIND,
    api_version=f"{TEST_GROUP}/{TEST_VERSION}",
    spec=None,
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
    **kwargs,
):
    cr_dict = kwargs or {}
    cr_dict.setdefault("kind", kind)
    cr_dict.setdefault("apiVersion", api_version)
    cr_dict.setdefault("metadata", {}).setdefault("name", name)
    cr_dict.setdefault("metadata", {}).setdefault("namespace", namespace)
    cr_dict.setdefault("metadata", {}).setdefault("uid", TEST_INSTANCE_UID)
    cr_dict.setdefault("spec", {}).update(copy.deepcopy(spec or {}))
    return aconfig.Config(cr_dict, override_env_vars=False)


def make_watch_entry(base_dir=".", **kwargs) -> WatchEntry:
    """Build a WatchEntry from watches file style keys. Defaults to a chart
    entry for the test kind.
    """
    raw_entry = {
        "group": TEST_GROUP,
        "version": TEST_VERSION,
        "kind": TEST_KIND,
    }
    raw_entry.update(kwargs)
    if not any(key in raw_entry for key in ["chart", "role", "playbook"]):
        raw_entry["chart"] = "helm-charts/widget"
    return WatchEntry.from_dict(raw_entry, base_dir)


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        if isinstance(val, dict):
            val = aconfig.Config(val, override_env_vars=False)
        config_detail_dict[key] = val

    try:
        yield
    finally:
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


def nested_config(key: str, **overrides) -> dict:
    """Copy a nested library config section with some values replaced"""
    section = dict(config_detail_dict[key])
    section.update(overrides)
    return section


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            res = fail_flag()
            if res is not None:
                return res
        elif fail_flag == "assert":
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        return method(*args, **kwargs)

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    """

    def __init__(
        self,
        deploy_fail=False,
        deploy_raise=False,
        disable_fail=False,
        disable_raise=False,
        get_state_fail=False,
        get_state_raise=False,
        set_status_fail=False,
        set_status_raise=False,
        auto_enable=True,
        resources=None,
        **kwargs,
    ):
        resources = copy.deepcopy(list(resources or []))
        for resource in resources:
            resource.setdefault("apiVersion", "v1")
        super().__init__(resources, **kwargs)

        self.deploy_fail = "assert" if deploy_raise else deploy_fail
        self.disable_fail = "assert" if disable_raise else disable_fail
        self.get_state_fail = "assert" if get_state_raise else get_state_fail
        self.set_status_fail = "assert" if set_status_raise else set_status_fail
        self.mocks_enabled = False

        if auto_enable:
            self.enable_mocks()

    ## Helpers for Tests #######################################################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.mocks_enabled = True
        self.deploy = mock.Mock(
            side_effect=get_failable_method(
                self.deploy_fail, super().deploy, (False, False)
            )
        )
        self.disable = mock.Mock(
            side_effect=get_failable_method(
                self.disable_fail, super().disable, (False, False)
            )
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )

    def for_owner(self, owner_cr: dict) -> "MockDeployManager":
        """Owned copies get their own mocks bound to the copy"""
        owned = super().for_owner(owner_cr)
        if self.mocks_enabled:
            owned.enable_mocks()
        return owned

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return DryRunDeployManager.get_object_current_state(
            self, kind, name, namespace, api_version
        )[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None


class StaticTarget(TargetBase):
    """Target that renders a fixed resource list, or raises if given an
    exception
    """

    def __init__(
        self,
        resources: Optional[List[dict]] = None,
        message: str = "",
        summary: Optional[dict] = None,
        fail: Optional[Exception] = None,
    ):
        self.resources = resources or []
        self.message = message
        self.summary = summary
        self.fail = fail
        self.calls = []

    def render(self, cr_manifest, entry, extra_vars=None) -> RenderResult:
        self.calls.append((cr_manifest, entry, extra_vars))
        if self.fail:
            raise self.fail
        return RenderResult(
            resources=copy.deepcopy(self.resources),
            message=self.message,
            summary=self.summary,
        )


def make_configmap(name="test-cm", namespace=TEST_NAMESPACE, data=None) -> dict:
    """Make a simple ConfigMap manifest"""
    metadata = {"name": name}
    if namespace is not None:
        metadata["namespace"] = namespace
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": metadata,
        "data": data or {"key": "value"},
    }
