"""
Tests for the library config module

NOTE: Python makes it hard to change env vars in a way that will effect import
    time, so we're relying on the fact that aconfig is well tested and not
    actually validating the env-var override behavior!
"""

# Third Party
import pytest

# First Party
import aconfig

# Local
from declar8 import config


def test_config_keys():
    """Make sure that the expected keys are present"""
    assert isinstance(config.deploy_retries, int)
    assert config.chart.helm_binary == "helm"
    assert isinstance(config.bootstrap.ansible_packages, list)


def test_config_missing_key():
    """Make sure unknown keys raise AttributeError"""
    with pytest.raises(AttributeError):
        config.not_a_real_key  # pylint: disable=pointless-statement


def test_loaded_config_is_valid():
    """Make sure the shipped config passes its own validation"""
    assert not config.validation.get_invalid_params(
        config.config.library_config, config.config.validation_config
    )


########################
## get_invalid_params ##
########################


def test_get_invalid_params_some_invalid_params():
    """Test that get_invalid_params returns only the invalid parameters when
    some are invalid and some are valid
    """
    assert config.validation.get_invalid_params(
        config=aconfig.Config({"key": 3, "str": "foo"}),
        validation_config=aconfig.Config(
            {
                "key": {"type": "int", "min": 0, "max": 1},
                "str": {"type": "str", "min_len": 1},
            },
        ),
    ) == ["key"]


def test_get_invalid_params_nested():
    """Make sure nested parameters are validated with dotted keys"""
    assert config.validation.get_invalid_params(
        config=aconfig.Config({"chart": {"timeout_seconds": 0}}),
        validation_config=aconfig.Config(
            {"chart": {"timeout_seconds": {"type": "number", "min": 1}}}
        ),
    ) == ["chart.timeout_seconds"]


#############################
## get_inconsistent_params ##
#############################


def make_usable_config(**overrides):
    """Copy of the shipped config with some top level or bootstrap values
    replaced
    """
    raw_config = {
        "heartbeat_period": "30s",
        "reconcile_period": "",
        "bootstrap": dict(config.config.library_config.bootstrap),
    }
    for key, val in overrides.items():
        if key.startswith("bootstrap."):
            raw_config["bootstrap"][key.split(".", 1)[1]] = val
        else:
            raw_config[key] = val
    return aconfig.Config(raw_config, override_env_vars=False)


def test_get_inconsistent_params_shipped_config():
    """Make sure the shipped config has nothing unusable"""
    assert not config.validation.get_inconsistent_params(
        config.config.library_config
    )
    assert not config.validation.get_inconsistent_params(make_usable_config())


@pytest.mark.parametrize(
    ["key", "value"],
    [
        ["heartbeat_period", "soon"],
        ["heartbeat_period", ""],
        ["reconcile_period", "every day"],
        ["bootstrap.operator_sdk_version", "1.39.1"],
        ["bootstrap.operator_sdk_version", "latest"],
        ["bootstrap.helm_install_script_url", "http://get.helm.sh/get-helm-3"],
        ["bootstrap.helm_install_script_url", "get-helm-3"],
        ["bootstrap.operator_sdk_download_url", "https://"],
    ],
)
def test_get_inconsistent_params(key, value):
    """Make sure values that can't be used by the operator are reported"""
    assert config.validation.get_inconsistent_params(
        make_usable_config(**{key: value})
    ) == [key]


def test_get_inconsistent_params_periods():
    """Make sure compound durations are accepted"""
    assert not config.validation.get_inconsistent_params(
        make_usable_config(heartbeat_period="1h5m10s", reconcile_period="2m")
    )


#####################
## parameter types ##
#####################


def test_number_parameter():
    """Test all validation cases for NumberParameter"""
    ParamType = config.validation.NumberParameter

    # Valid Cases
    assert ParamType().validate(1)
    assert ParamType().validate(1.2)
    assert ParamType(min=0).validate(1)
    assert ParamType(max=1).validate(0.5)
    assert ParamType(optional=True).validate(None)

    # Invalid Cases
    assert not ParamType().validate("1")
    assert not ParamType().validate(True)
    assert not ParamType().validate(None)
    assert not ParamType(min=2).validate(1)
    assert not ParamType(max=0).validate(0.5)


def test_int_parameter():
    """Test that IntParameter rejects floats"""
    ParamType = config.validation.IntParameter
    assert ParamType(min=0).validate(3)
    assert not ParamType().validate(1.5)


def test_str_parameter():
    """Test all validation cases for StrParameter"""
    ParamType = config.validation.StrParameter
    assert ParamType().validate("")
    assert ParamType(min_len=1, max_len=3).validate("foo")
    assert not ParamType(min_len=1).validate("")
    assert not ParamType(max_len=2).validate("foo")
    assert not ParamType().validate(1)


def test_bool_parameter():
    """Test that BoolParameter only accepts bools"""
    ParamType = config.validation.BoolParameter
    assert ParamType().validate(False)
    assert not ParamType().validate("true")
    assert not ParamType().validate(0)


def test_enum_parameter():
    """Test that EnumParameter only accepts its values"""
    ParamType = config.validation.EnumParameter
    assert ParamType(values=["a", 1, None]).validate("a")
    assert ParamType(values=["a", 1, None]).validate(None)
    assert not ParamType(values=["a"]).validate("b")
    with pytest.raises(AssertionError):
        ParamType(values=[])


def test_list_parameter():
    """Test that ListParameter checks its length and item type"""
    ParamType = config.validation.ListParameter
    assert ParamType(item_type="str", min_len=1).validate(["a"])
    assert not ParamType(min_len=1).validate([])
    assert not ParamType(item_type="str").validate(["a", 1])
    assert not ParamType().validate("abc")


def test_unknown_type_is_skipped():
    """Make sure validation entries with unknown types are ignored"""
    parsed = config.validation.parse_validation_config(
        {"foo": {"type": "not-a-type"}, "bar": {"type": "int"}}
    )
    assert list(parsed.keys()) == ["bar"]
