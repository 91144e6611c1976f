"""
Tests for building chart values and role variables from a CR
"""
# Local
from declar8.constants import ROLE_META_VARIABLE
from declar8.test_helpers.helpers import make_watch_entry, setup_cr
from declar8.values import (
    chart_values,
    expand_env_vars,
    extract_overlay,
    role_variables,
    to_snake_case,
)

## extract_overlay #############################################################


def test_extract_overlay_detached():
    """Make sure the overlay is a plain copy of the spec"""
    cr = setup_cr(spec={"replicaCount": 2, "nested": {"a": [1, 2]}})
    overlay = extract_overlay(cr)
    assert overlay == {"replicaCount": 2, "nested": {"a": [1, 2]}}
    assert type(overlay) is dict
    overlay["nested"]["a"].append(3)
    assert cr.spec.nested.a == [1, 2]


def test_extract_overlay_no_spec():
    """Make sure a CR without a spec has an empty overlay"""
    assert extract_overlay({"kind": "Foo", "metadata": {"name": "foo"}}) == {}


## expand_env_vars #############################################################


def test_expand_env_vars():
    """Make sure both variable forms expand and unset ones are empty"""
    environ = {"IMAGE": "nginx", "TAG": "1.2"}
    assert expand_env_vars(
        {"image": "${IMAGE}:$TAG", "list": ["$MISSING", 1], "num": 3}, environ
    ) == {"image": "nginx:1.2", "list": ["", 1], "num": 3}


## chart_values ################################################################


def test_chart_values_override_wins():
    """Make sure overrideValues are merged on top of the spec"""
    entry = make_watch_entry(
        overrideValues={"image.repository": "${RELATED_IMAGE}", "replicaCount": 1}
    )
    cr = setup_cr(spec={"replicaCount": 3, "image": {"tag": "latest"}})
    values = chart_values(cr, entry, environ={"RELATED_IMAGE": "quay.io/nginx"})
    assert values == {
        "replicaCount": 1,
        "image": {"tag": "latest", "repository": "quay.io/nginx"},
    }
    assert cr.spec.replicaCount == 3
    assert entry.override_values == {
        "image.repository": "${RELATED_IMAGE}",
        "replicaCount": 1,
    }


## role_variables ##############################################################


def test_role_variables_snake_case():
    """Make sure role variables carry the snake_cased spec and CR metadata"""
    entry = make_watch_entry(role="memcached", vars={"extra": True})
    cr = setup_cr(spec={"replicaCount": 2, "podSpec": {"nodeName": "a"}})
    variables = role_variables(cr, entry)

    assert variables["replica_count"] == 2
    assert variables["pod_spec"] == {"node_name": "a"}
    assert variables["extra"] is True
    assert variables[ROLE_META_VARIABLE] == {
        "name": cr.metadata.name,
        "namespace": cr.metadata.namespace,
    }
    assert variables["_foo_bar_com_widget"]["spec"]["replicaCount"] == 2
    assert variables["_foo_bar_com_widget_spec"] == {
        "replicaCount": 2,
        "podSpec": {"nodeName": "a"},
    }


def test_role_variables_no_snake_case():
    """Make sure snakeCaseParameters=false keeps the spec keys"""
    entry = make_watch_entry(role="memcached", snakeCaseParameters=False)
    variables = role_variables(setup_cr(spec={"replicaCount": 2}), entry)
    assert variables["replicaCount"] == 2
    assert "replica_count" not in variables


def test_role_variables_extra_vars_win():
    """Make sure extra vars take precedence over the spec"""
    entry = make_watch_entry(role="memcached")
    variables = role_variables(
        setup_cr(spec={"state": "present"}), entry, extra_vars={"state": "absent"}
    )
    assert variables["state"] == "absent"


def test_to_snake_case():
    """Make sure common camel case forms convert"""
    assert to_snake_case(
        {"fooBar": 1, "HTTPServer": 2, "already_snake": 3, "items": [{"aB": 1}]}
    ) == {"foo_bar": 1, "http_server": 2, "already_snake": 3, "items": [{"a_b": 1}]}
