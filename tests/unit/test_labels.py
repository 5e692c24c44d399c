"""Tests for label helpers."""

from __future__ import annotations

from styra_operator.constants import LABEL_CONTROL_PLANE, LABEL_CONTROLLER_CLASS, LABEL_MANAGED_BY
from styra_operator.utils.labels import (
    controller_class_matches,
    managed_by_labels,
    owner_reference,
    uses_ocp,
)


class TestControllerClass:
    """Test cases for controller class matching."""

    def test_no_labels(self):
        assert controller_class_matches(None, "")
        assert not controller_class_matches({}, "blue")

    def test_label_must_match(self):
        assert controller_class_matches({LABEL_CONTROLLER_CLASS: "blue"}, "blue")
        assert not controller_class_matches({LABEL_CONTROLLER_CLASS: "green"}, "blue")

    def test_unrelated_labels_with_empty_class(self):
        assert controller_class_matches({"app": "x"}, "")
        assert not controller_class_matches({LABEL_CONTROLLER_CLASS: "blue"}, "")


class TestLabels:
    """Test cases for the remaining label helpers."""

    def test_uses_ocp(self):
        assert uses_ocp({LABEL_CONTROL_PLANE: "ocp"})
        assert not uses_ocp({LABEL_CONTROL_PLANE: "saas"})
        assert not uses_ocp(None)

    def test_managed_by(self):
        labels = managed_by_labels({"app": "x"})
        assert labels == {"app": "x", LABEL_MANAGED_BY: "styra-controller"}

    def test_owner_reference(self, make_body):
        ref = owner_reference(make_body(name="test"))

        assert ref.uid == "uid-test"
        assert ref.kind == "System"
        assert ref.api_version == "styra.bankdata.dk/v1beta1"
        assert ref.controller is True
        assert ref.block_owner_deletion is True
