"""
Tests for the common utilities
"""
# Standard
from datetime import timedelta

# Third Party
import pytest

# Local
from declar8 import utils
from declar8.exceptions import ClusterError
from declar8.test_helpers.helpers import MockDeployManager, setup_cr

## merge_configs ###############################################################


def test_merge_configs_nested():
    """Make sure nested dicts merge and leaves are overwritten"""
    base = {"a": {"b": 1, "c": 2}, "d": [1, 2]}
    merged = utils.merge_configs(base, {"a": {"c": 3, "e": 4}, "d": [3]})
    assert merged is base
    assert merged == {"a": {"b": 1, "c": 3, "e": 4}, "d": [3]}


def test_merge_configs_type_change():
    """Make sure a dict override replaces a scalar"""
    assert utils.merge_configs({"a": 1}, {"a": {"b": 2}}) == {"a": {"b": 2}}


## nested_set/nested_get #######################################################


def test_nested_set_and_get():
    """Make sure dotted keys create and read nested dicts"""
    dct = {}
    utils.nested_set(dct, "foo.bar.baz", 1)
    assert dct == {"foo": {"bar": {"baz": 1}}}
    assert utils.nested_get(dct, "foo.bar.baz") == 1
    assert utils.nested_get(dct, "foo.missing.baz", "dflt") == "dflt"


def test_nested_set_non_dict_intermediate():
    """Make sure setting through a non-dict raises"""
    with pytest.raises(TypeError):
        utils.nested_set({"foo": 1}, "foo.bar", 2)


def test_nested_get_non_dict_intermediate():
    """Make sure reading through a non-dict raises"""
    with pytest.raises(TypeError):
        utils.nested_get({"foo": 1}, "foo.bar")


## parse_time_delta ############################################################


@pytest.mark.parametrize(
    ["time_str", "expected"],
    [
        ("1h", timedelta(hours=1)),
        ("2hr", timedelta(hours=2)),
        ("5m", timedelta(minutes=5)),
        ("10s", timedelta(seconds=10)),
        ("0.5s", timedelta(seconds=0.5)),
        ("1h5m10s", timedelta(hours=1, minutes=5, seconds=10)),
        ("", None),
        ("foo", None),
        ("10", None),
    ],
)
def test_parse_time_delta(time_str, expected):
    """Make sure time strings parse into the expected deltas"""
    assert utils.parse_time_delta(time_str) == expected


## Finalizers ##################################################################


def test_add_finalizer():
    """Make sure a finalizer is added to the CR in the cluster once"""
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr])
    assert utils.add_finalizer(dm, cr, "foo.bar/cleanup")
    current = dm.get_obj(cr.kind, cr.metadata.name, cr.metadata.namespace)
    assert current["metadata"]["finalizers"] == ["foo.bar/cleanup"]

    # Adding again is a no-op
    cr_with_finalizer = setup_cr(metadata={"finalizers": ["foo.bar/cleanup"]})
    dm.deploy.reset_mock()
    assert not utils.add_finalizer(dm, cr_with_finalizer, "foo.bar/cleanup")
    dm.deploy.assert_not_called()


def test_add_finalizer_deploy_failure():
    """Make sure a failed deploy raises a ClusterError"""
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr], deploy_fail=True)
    with pytest.raises(ClusterError):
        utils.add_finalizer(dm, cr, "foo.bar/cleanup")


def test_remove_finalizer():
    """Make sure only the named finalizer is removed"""
    cr = setup_cr(metadata={"finalizers": ["foo.bar/cleanup", "other"]})
    dm = MockDeployManager(resources=[cr])
    assert utils.remove_finalizer(dm, cr, "foo.bar/cleanup")
    current = dm.get_obj(cr.kind, cr.metadata.name, cr.metadata.namespace)
    assert current["metadata"]["finalizers"] == ["other"]


def test_remove_finalizer_not_present():
    """Make sure removing a missing finalizer does nothing"""
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr])
    assert not utils.remove_finalizer(dm, cr, "foo.bar/cleanup")
    dm.get_object_current_state.assert_not_called()


def test_remove_finalizer_cr_gone():
    """Make sure a CR that is already gone is not recreated"""
    cr = setup_cr(metadata={"finalizers": ["foo.bar/cleanup"]})
    dm = MockDeployManager()
    assert utils.remove_finalizer(dm, cr, "foo.bar/cleanup")
    dm.deploy.assert_not_called()
    assert not dm.has_obj(cr.kind, cr.metadata.name, cr.metadata.namespace)
