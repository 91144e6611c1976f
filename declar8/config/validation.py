"""
Module to validate values in a loaded config against the rules in
config_validation.yaml
"""

# Standard
from typing import Any, Dict, List, Optional, Type, Union
import abc
import builtins
import re

# Third Party
import urllib3

# First Party
import aconfig
import alog

# Local
from .. import constants
from ..utils import nested_get, parse_time_delta  # pylint: disable=cyclic-import

log = alog.use_channel("CONFG")


################################################################################
## Public ######################################################################
################################################################################


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get a list of any params that are invalid

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding validation setup

    Returns:
        invalid_params:  List[str]
            A list of all string keys for parameters that fail validation
    """
    invalid_params = []
    for val_key, validator in parse_validation_config(validation_config).items():
        if not validator.validate(nested_get(config, val_key)):
            log.warning("Found invalid config key [%s]", val_key)
            invalid_params.append(val_key)
    return invalid_params


def get_inconsistent_params(config: aconfig.Config) -> List[str]:
    """Get a list of params whose values are well typed but cannot be used by
    the operator. These are the checks that the validation file can't express:
    durations must parse, download urls must be https, and the operator-sdk
    release must be a version tag.

    Args:
        config:  aconfig.Config
            The parsed config with any override values

    Returns:
        inconsistent_params:  List[str]
            A list of all string keys for parameters that can't be used
    """
    inconsistent_params = []

    heartbeat_period = nested_get(config, "heartbeat_period")
    if parse_time_delta(heartbeat_period) is None:
        inconsistent_params.append("heartbeat_period")

    reconcile_period = nested_get(config, "reconcile_period")
    if reconcile_period and parse_time_delta(reconcile_period) is None:
        inconsistent_params.append("reconcile_period")

    sdk_version = nested_get(config, "bootstrap.operator_sdk_version")
    if not _SDK_VERSION_EXPR.match(str(sdk_version)):
        inconsistent_params.append("bootstrap.operator_sdk_version")

    for url_key in _DOWNLOAD_URL_KEYS:
        if not _is_https_url(nested_get(config, url_key)):
            inconsistent_params.append(url_key)

    for key in inconsistent_params:
        log.warning("Found unusable config key [%s]", key)
    return inconsistent_params


def parse_validation_config(
    validation_config: dict,
    prefix_parts: Optional[List[str]] = None,
) -> Dict[str, "ValidatedParameter"]:
    """Recursively parse the given validation config into a dict mapping nested
    keys to ValidatedParameter instances. Any dict holding a known "type" is a
    parameter, every other dict is recursed into.
    """
    output_dict = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        assert isinstance(key, str), "Only string keys allowed!"
        if not isinstance(val, dict):
            continue

        key_parts = prefix_parts + [key]
        nested_key = constants.NESTED_DICT_DELIM.join(key_parts)
        param = _construct_parameter(dict(val)) if "type" in val else None
        if param is not None:
            log.debug3("Found parameter at %s", nested_key)
            output_dict[nested_key] = param
        else:
            log.debug3("Recursing into %s", nested_key)
            output_dict.update(parse_validation_config(val, key_parts))
    return output_dict


################################################################################
## Implementation ##############################################################
################################################################################

# operator-sdk publishes release binaries under tags like v1.39.1
_SDK_VERSION_EXPR = re.compile(r"^v\d+\.\d+\.\d+$")

_DOWNLOAD_URL_KEYS = [
    "bootstrap.helm_install_script_url",
    "bootstrap.operator_sdk_download_url",
]


def _is_https_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parsed = urllib3.util.parse_url(value)
    except urllib3.exceptions.LocationParseError:
        return False
    return parsed.scheme == "https" and bool(parsed.host)


# Mapping from the "type" key in the validation file to the parameter class
_PARAMETER_TYPES: Dict[str, Type["ValidatedParameter"]] = {}


def _register(type_key: str):
    """Decorator that registers a parameter class under its type key"""

    def decorator(param_class):
        _PARAMETER_TYPES[type_key] = param_class
        return param_class

    return decorator


def _construct_parameter(param_args: Dict[str, Any]) -> Optional["ValidatedParameter"]:
    """Construct a ValidatedParameter from the given args parsed out of a
    validation file. Unknown types yield None.
    """
    param_class = _PARAMETER_TYPES.get(param_args.pop("type"))
    if param_class is None:
        return None
    return param_class(**param_args)


# pylint: disable=too-few-public-methods


class ValidatedParameter(abc.ABC):
    """A parameter with type and value validation"""

    TYPES = []

    def __init__(self, optional: bool = False):
        self.optional = optional

    def validate(self, value: Any) -> bool:
        """Run the validation for a read value

        Args:
            value:  Any
                The value to validate against this parameter

        Returns:
            valid:  bool
                True if the value is valid, False otherwise
        """
        if self.optional and value is None:
            return True

        # bool is an int, but an int parameter should never accept True
        if isinstance(value, bool) and bool not in self.TYPES:
            log.warning("Invalid type <%s>", type(value))
            return False
        if not isinstance(value, tuple(self.TYPES)):
            log.warning("Invalid type <%s>", type(value))
            return False

        valid_value = self._validate_value(value)
        if not valid_value:
            log.warning("Invalid value [%s]", value)
        return valid_value

    @abc.abstractmethod
    def _validate_value(self, value: Any) -> bool:
        """Type specific value validation"""


@_register("number")
class NumberParameter(ValidatedParameter):
    """A parameter that must be a number and has optional inclusive bounds"""

    TYPES = [int, float]

    def __init__(
        self,
        min: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        max: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min = min
        self._max = max

    def _validate_value(self, value: Union[int, float]) -> bool:
        return (self._min is None or value >= self._min) and (
            self._max is None or value <= self._max
        )


@_register("int")
class IntParameter(NumberParameter):
    """A number parameter that must be an int"""

    TYPES = [int]


@_register("str")
class StrParameter(ValidatedParameter):
    """A parameter that must be a str and has optional length bounds"""

    TYPES = [str]

    def __init__(
        self,
        min_len: Optional[int] = None,
        max_len: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min_len = min_len
        self._max_len = max_len

    def _validate_value(self, value: str) -> bool:
        return (self._min_len is None or len(value) >= self._min_len) and (
            self._max_len is None or len(value) <= self._max_len
        )


@_register("bool")
class BoolParameter(ValidatedParameter):
    """A parameter that must be a bool"""

    TYPES = [bool]

    def _validate_value(self, value: bool) -> bool:
        return True


@_register("enum")
class EnumParameter(ValidatedParameter):
    """A parameter with a fixed set of valid values"""

    TYPES = [str, int, type(None)]

    def __init__(self, values: List[Union[str, int, None]], **kwargs):
        super().__init__(**kwargs)
        assert isinstance(values, list) and values, "Must specify enum values!"
        self.values = values

    def _validate_value(self, value: Union[str, int, None]) -> bool:
        return value in self.values


@_register("list")
class ListParameter(StrParameter):
    """A parameter that must be a list with optional length bounds and item
    type
    """

    TYPES = [list]

    def __init__(self, item_type: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._item_type = None
        if item_type is not None:
            assert hasattr(builtins, item_type), f"Unsupported item_type: {item_type}"
            self._item_type = getattr(builtins, item_type)

    def _validate_value(self, value: list) -> bool:
        return super()._validate_value(value) and (
            self._item_type is None
            or all(isinstance(item, self._item_type) for item in value)
        )


# pylint: enable=too-few-public-methods
