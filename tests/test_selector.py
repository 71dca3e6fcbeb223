import pytest

from rrc.errors import StoreError
from rrc.selector import match, matches_labels, to_label_selector


def test_matches_labels_requires_every_pair():
    labels = {"app": "web", "tier": "frontend"}
    assert matches_labels(labels, {"app": "web"})
    assert matches_labels(labels, {"app": "web", "tier": "frontend"})
    assert not matches_labels(labels, {"app": "web", "tier": "backend"})
    assert not matches_labels(None, {"app": "web"})


def test_empty_selector_matches_everything_in_scope(workloads):
    workloads.add("a", labels={"app": "x"})
    workloads.add("b")
    workloads.add("c", namespace="other")

    names = sorted(w.name for w in match(workloads, "default", {}))
    assert names == ["a", "b"]


def test_match_is_scoped_and_filtered(workloads):
    workloads.add("a", labels={"key1": "value1"})
    workloads.add("b", labels={"key1": "value2"})
    workloads.add("c", namespace="other", labels={"key1": "value1"})

    assert [w.name for w in match(workloads, "default", {"key1": "value1"})] == ["a"]


def test_match_filters_even_if_store_does_not(workloads):
    class LooseStore:
        def list(self, namespace, selector):
            return workloads.list(namespace, {})

    workloads.add("a", labels={"app": "web"})
    workloads.add("b", labels={"app": "db"})
    assert [w.name for w in match(LooseStore(), "default", {"app": "web"})] == ["a"]


def test_list_failure_propagates_verbatim(workloads):
    err = StoreError("apiserver unavailable")
    workloads.list_error = err
    with pytest.raises(StoreError) as exc:
        match(workloads, "default", {})
    assert exc.value is err


def test_to_label_selector():
    assert to_label_selector({}) == ""
    assert to_label_selector({"b": "2", "a": "1"}) == "a=1,b=2"
    with pytest.raises(ValueError):
        to_label_selector({"": "x"})
