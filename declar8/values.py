"""
Helpers that turn a custom resource into the value overlay fed to its target.
The spec is opaque: it is copied verbatim and the CR itself is never modified.
"""

# Standard
from typing import Optional
import copy
import os
import re

# First Party
import alog

# Local
from .constants import ROLE_META_VARIABLE
from .utils import merge_configs

log = alog.use_channel("VALUE")

# $VAR or ${VAR}
_ENV_VAR_EXPR = re.compile(
    r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))"
)

_CAMEL_BOUNDARY_EXPR = re.compile(r"((?<=[a-z0-9])[A-Z]|(?!^)[A-Z](?=[a-z]))")


def extract_overlay(cr_manifest: dict) -> dict:
    """Get a detached copy of the CR's spec. A missing spec is an empty
    overlay.
    """
    spec = cr_manifest.get("spec")
    if spec is None:
        return {}
    return to_plain(spec)


def expand_env_vars(value, environ: Optional[dict] = None):
    """Recursively expand $VAR and ${VAR} references in every string of the
    given value. Unset variables expand to an empty string.
    """
    environ = os.environ if environ is None else environ
    if isinstance(value, str):
        return _ENV_VAR_EXPR.sub(
            lambda match: environ.get(match.group("braced") or match.group("bare"), ""),
            value,
        )
    if isinstance(value, dict):
        return {key: expand_env_vars(val, environ) for key, val in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(val, environ) for val in value]
    return value


def chart_values(
    cr_manifest: dict,
    entry: "WatchEntry",  # noqa: F821
    environ: Optional[dict] = None,
) -> dict:
    """Build the chart values for a CR: its spec with the entry's
    overrideValues merged on top

    Args:
        cr_manifest:  dict
            The CR being reconciled
        entry:  WatchEntry
            The watch entry bound to the CR's kind

    Returns:
        values:  dict
            The values to render the chart with
    """
    overrides = expand_env_vars(copy.deepcopy(entry.override_values), environ)
    values = merge_configs(extract_overlay(cr_manifest), _expand_dotted(overrides))
    log.debug4("Chart values: %s", values)
    return values


def role_variables(
    cr_manifest: dict,
    entry: "WatchEntry",  # noqa: F821
    extra_vars: Optional[dict] = None,
) -> dict:
    """Build the extra variables a role or playbook runs with

    The spec is exposed at the top level (snake_cased unless disabled), along
    with metadata about the CR and the raw CR under _<group>_<kind>.

    Args:
        cr_manifest:  dict
            The CR being reconciled
        entry:  WatchEntry
            The watch entry bound to the CR's kind
        extra_vars:  Optional[dict]
            Additional variables which take precedence over everything else

    Returns:
        variables:  dict
            The extra vars for the run
    """
    spec = extract_overlay(cr_manifest)
    variables = to_snake_case(spec) if entry.snake_case_parameters else spec
    variables = merge_configs(variables, copy.deepcopy(entry.vars))

    metadata = cr_manifest.get("metadata", {})
    variables[ROLE_META_VARIABLE] = {
        "name": metadata.get("name"),
        "namespace": metadata.get("namespace"),
    }
    raw_key = _raw_cr_variable_name(entry.group, entry.kind)
    variables[raw_key] = to_plain(cr_manifest)
    variables[f"{raw_key}_spec"] = extract_overlay(cr_manifest)

    if extra_vars:
        variables = merge_configs(variables, copy.deepcopy(extra_vars))
    return variables


def to_plain(value):
    """Deep copy a value, turning mapping subclasses (such as parsed
    aconfig.Config manifests) into plain dicts that serialize cleanly
    """
    if isinstance(value, dict):
        return {key: to_plain(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(val) for val in value]
    return copy.deepcopy(value)


def to_snake_case(value):
    """Recursively convert the keys of every mapping from camelCase to
    snake_case. Values are left untouched.
    """
    if isinstance(value, dict):
        return {
            _snake_case_key(key): to_snake_case(val) for key, val in value.items()
        }
    if isinstance(value, list):
        return [to_snake_case(val) for val in value]
    return value


## Implementation Details ######################################################


def _snake_case_key(key):
    if not isinstance(key, str):
        return key
    return _CAMEL_BOUNDARY_EXPR.sub(r"_\1", key).lower()


def _raw_cr_variable_name(group: str, kind: str) -> str:
    group_part = re.sub(r"[.\-]", "_", group or "")
    return f"_{group_part}_{kind.lower()}"


def _expand_dotted(overrides: dict) -> dict:
    """overrideValues may use helm style dotted keys (image.tag) which are
    expanded into nested maps
    """
    expanded = {}
    for key, val in overrides.items():
        if isinstance(val, dict):
            val = _expand_dotted(val)
        if isinstance(key, str) and "." in key:
            parts = key.split(".")
            nested = {parts[-1]: val}
            for part in reversed(parts[:-1]):
                nested = {part: nested}
            merge_configs(expanded, nested)
        elif isinstance(val, dict) and isinstance(expanded.get(key), dict):
            merge_configs(expanded[key], val)
        else:
            expanded[key] = val
    return expanded
