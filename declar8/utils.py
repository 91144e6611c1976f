"""
Common utilities shared across components in the library
"""

# Standard
from datetime import timedelta
from typing import Any, Optional
import copy
import json
import re

# First Party
import alog

# Local
from . import constants
from .exceptions import assert_cluster

log = alog.use_channel("DCUTL")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    The merge logic is quite simple: If both the base and overrides have a key
    and the type of the key for both is a dict, recursively merge, otherwise
    set the base value to the override value.

    Args:
        base:  dict
            The base config that will be updated with the overrides
        overrides:  dict
            The override config

    Returns:
        merged:  dict
            The merged results of overrides merged onto base
    """
    for key, value in overrides.items():
        if (
            key not in base
            or not isinstance(base[key], dict)
            or not isinstance(value, dict)
        ):
            base[key] = value
        else:
            base[key] = merge_configs(base[key], value)

    return base


def nested_set(dct: dict, key: str, val: Any):
    """Helper to set values in a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict into which the key will be set
        key:  str
            Key that may contain '.' notation indicating dict nesting
        val:  Any
            The value to place at the nested key
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.setdefault(part, {})
        if not isinstance(dct, dict):
            raise TypeError(
                "Intermediate key {} is not a dict".format(
                    constants.NESTED_DICT_DELIM.join(parts[: i + 1])
                )
            )
    dct[parts[-1]] = val


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict to search
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                "Intermediate key {} is not a dict".format(
                    constants.NESTED_DICT_DELIM.join(parts[: i + 1])
                )
            )
    return dct.get(parts[-1], dflt)


def obj_to_hash(obj: Any) -> str:
    """Get the hash of any jsonable python object

    Args:
        obj: Any
            The object to hash

    Returns:
        hash: str
            The hash of obj
    """
    return hash(json.dumps(obj, sort_keys=True, default=str))


## Time ########################################################################

# Accepts durations like 1h30m, 2hr, 45s, 0.5s
_TIME_DELTA_EXPR = re.compile(
    r"^((?P<hours>\d+?)hr?)?((?P<minutes>\d+?)m)?((?P<seconds>\d*\.?\d+?)s)?$"
)


def parse_time_delta(time_str: str) -> Optional[timedelta]:
    """Parse a string into a timedelta. Accepts values in the following
    formats: 1h, 2hr, 5m, 10s, 1h5m10s

    Args:
        time_str: str
            The string representation of a timedelta

    Returns:
        result: Optional[timedelta]
            The parsed timedelta if one could be found
    """
    parts = _TIME_DELTA_EXPR.match(str(time_str))
    if not parts or all(part is None for part in parts.groupdict().values()):
        return None
    time_params = {
        name: float(param) for name, param in parts.groupdict().items() if param
    }
    return timedelta(**time_params)


## Finalizers ##################################################################


def add_finalizer(deploy_manager, cr_manifest: dict, finalizer: str) -> bool:
    """This helper adds a finalizer to the given CR in the cluster

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to update the CR
        cr_manifest:  dict
            The current manifest of the CR
        finalizer:  str
            The finalizer to be added

    Returns:
        added:  bool
            True if the finalizer was not present and has been added
    """
    finalizers = cr_manifest.get("metadata", {}).get("finalizers", [])
    if finalizer in finalizers:
        return False

    log.debug("Adding finalizer: %s", finalizer)
    manifest = {
        "kind": cr_manifest["kind"],
        "apiVersion": cr_manifest["apiVersion"],
        "metadata": copy.deepcopy(cr_manifest["metadata"]),
    }
    manifest["metadata"].setdefault("finalizers", []).append(finalizer)
    success, _ = deploy_manager.deploy([manifest], manage_owner_references=False)
    assert_cluster(success, f"Failed add finalizer {finalizer}")
    return True


def remove_finalizer(deploy_manager, cr_manifest: dict, finalizer: str) -> bool:
    """This helper removes a finalizer from the given CR in the cluster

    Args:
        deploy_manager:  DeployManagerBase
            The deploy manager used to update the CR
        cr_manifest:  dict
            The current manifest of the CR
        finalizer:  str
            The finalizer to remove

    Returns:
        removed:  bool
            True if the finalizer was present and has been removed
    """
    metadata = cr_manifest.get("metadata", {})
    if finalizer not in metadata.get("finalizers", []):
        return False

    log.debug("Removing finalizer: %s", finalizer)
    success, current = deploy_manager.get_object_current_state(
        kind=cr_manifest["kind"],
        name=metadata["name"],
        namespace=metadata.get("namespace"),
        api_version=cr_manifest["apiVersion"],
    )
    assert_cluster(success, "Failed to look up CR for self")

    # Nothing to update once the CR is already gone
    if current:
        manifest = {
            "kind": cr_manifest["kind"],
            "apiVersion": cr_manifest["apiVersion"],
            "metadata": copy.deepcopy(current["metadata"]),
        }
        current_finalizers = manifest["metadata"].get("finalizers", [])
        if finalizer in current_finalizers:
            current_finalizers.remove(finalizer)
        success, _ = deploy_manager.deploy(
            [manifest], manage_owner_references=False
        )
        assert_cluster(success, f"Failed remove finalizer {finalizer}")
    return True
