"""
Helpers for kubernetes label and field selector strings. For the syntax see:
https://kubernetes.io/docs/concepts/overview/working-with-objects/labels/#label-selectors
"""

# Standard
from typing import Dict, List, Optional
import re

# First Party
import alog

log = alog.use_channel("SELCT")

# Set based requirements: "key in (a,b)" / "key notin (a,b)"
_SET_EXPR = re.compile(
    r"^\s*(?P<key>[^\s!=]+)\s+(?P<op>in|notin)\s+\((?P<values>[^)]*)\)\s*$"
)

# Equality based requirements: "key=a" / "key==a" / "key!=a"
_EQUALITY_EXPR = re.compile(
    r"^\s*(?P<key>[^\s!=]+)\s*(?P<op>==|!=|=)\s*(?P<value>[^\s]*)\s*$"
)

# Existence requirements: "key" / "!key"
_EXISTS_EXPR = re.compile(r"^\s*(?P<negate>!)?\s*(?P<key>[^\s!=(),]+)\s*$")


def make_label_selector(match_labels: Optional[Dict[str, str]]) -> Optional[str]:
    """Convert a matchLabels mapping into a selector string

    Args:
        match_labels:  Optional[Dict[str, str]]
            Label key/value pairs that must all be present

    Returns:
        label_selector:  Optional[str]
            The selector string or None when there is nothing to match
    """
    if not match_labels:
        return None
    return ",".join(f"{key}={value}" for key, value in sorted(match_labels.items()))


def match_selector(values: Dict[str, str], selector: Optional[str]) -> bool:
    """Determine whether a set of labels (or dotted fields) matches a selector

    Args:
        values:  Dict[str, str]
            The labels or flattened fields of the object
        selector:  Optional[str]
            The selector string. An empty selector matches everything.

    Returns:
        matches:  bool
            True if every requirement in the selector is satisfied
    """
    values = values or {}
    for requirement in split_selector(selector or ""):
        if not _match_requirement(values, requirement):
            log.debug3("Values %s do not match requirement [%s]", values, requirement)
            return False
    return True


def split_selector(selector: str) -> List[str]:
    """Split a selector on commas that are not inside a value set so that
    'app,tier in (frontend, backend)' becomes ['app', 'tier in (frontend, backend)']
    """
    requirements = []
    current = ""
    depth = 0
    for char in selector:
        if char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
        if char == "," and not depth:
            requirements.append(current)
            current = ""
            continue
        current += char
    requirements.append(current)
    return [req.strip() for req in requirements if req.strip()]


def flatten_fields(obj, prefix: str = "") -> Dict[str, str]:
    """Flatten a nested dict into dotted keys for field selector matching so
    that {"a": {"b": 1}} becomes {"a.b": 1}
    """
    if not isinstance(obj, dict):
        return {prefix: obj}
    flat = {}
    for key, val in obj.items():
        flat.update(flatten_fields(val, f"{prefix}.{key}" if prefix else key))
    return flat


## Implementation Details ######################################################


def _match_requirement(values: Dict[str, str], requirement: str) -> bool:
    """Evaluate a single selector requirement"""
    if match := _SET_EXPR.match(requirement):
        options = [opt.strip() for opt in match.group("values").split(",")]
        present = _as_str(values.get(match.group("key"))) in options
        return present if match.group("op") == "in" else not present

    if match := _EQUALITY_EXPR.match(requirement):
        equal = _as_str(values.get(match.group("key"))) == match.group("value")
        return not equal if match.group("op") == "!=" else equal

    if match := _EXISTS_EXPR.match(requirement):
        exists = match.group("key") in values
        return not exists if match.group("negate") else exists

    log.warning("Unable to parse selector requirement [%s]", requirement)
    return False


def _as_str(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    return str(value).strip()
