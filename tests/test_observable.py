"""Tests for schema-less trackers: dirty paths, identity and pass-through behaviour."""

import collections
import math

import pytest

from dirtytrack import (
    TrackedDict,
    TrackedList,
    create_observable,
    get_observable_internals,
    is_observable,
    is_tracked,
    unwrap,
)
from tests.utils import assert_exact_paths, dirty_paths


@pytest.mark.observable
def test_nested_write_marks_path_and_every_ancestor():
    """Writing a.b.c records the leaf path and both ancestors"""
    # Arrange
    state = create_observable({"a": {"b": {"c": 0}}})

    # Act
    state["a"]["b"]["c"] = 1

    # Assert
    assert_exact_paths(state, ["a.b.c", "a.b", "a"])
    assert dirty_paths(state) == ["a.b.c", "a.b", "a"]
    assert unwrap(state) == {"a": {"b": {"c": 1}}}


@pytest.mark.observable
def test_reading_same_key_twice_returns_same_handle():
    """Nested handles are cached per key"""
    state = create_observable({"a": {"b": {}}, "items": [{"x": 1}]})

    assert state["a"] is state["a"]
    assert state["a"]["b"] is state["a"]["b"]
    assert state["items"][0] is state["items"][0]
    assert state.get("a") is state["a"]


@pytest.mark.observable
def test_handles_pass_type_checks_of_their_target():
    state = create_observable({"a": {"b": 1}, "items": [1, 2]})

    assert isinstance(state, dict)
    assert isinstance(state["items"], list)
    assert isinstance(state, TrackedDict)
    assert isinstance(state["items"], TrackedList)
    assert state == {"a": {"b": 1}, "items": [1, 2]}
    assert {"b": 1} == state["a"]
    assert repr(state["items"]) == "[1, 2]"
    assert len(state) == 2
    assert "a" in state
    assert list(state) == ["a", "items"]


@pytest.mark.observable
def test_raw_data_never_holds_handles():
    """Values written through a handle are stored unwrapped"""
    state = create_observable({"a": {"x": 1}, "b": None})

    state["b"] = state["a"]

    raw = unwrap(state)
    assert not is_tracked(raw["b"])
    assert raw["b"] is raw["a"]


@pytest.mark.observable
def test_identical_write_is_not_a_change():
    """Assigning a handle back to the field holding it records nothing"""
    state = create_observable({"a": {"b": 1}, "n": 1, "s": "x"})

    state["a"] = state["a"]
    state["n"] = 1
    state["s"] = "x"

    assert get_observable_internals(state).is_dirty() is False


@pytest.mark.observable
def test_equal_copy_of_structured_value_is_a_change():
    """Structured values compare by identity"""
    state = create_observable({"a": {"b": 1}})

    state["a"] = {"b": 1}

    assert_exact_paths(state, ["a"])


@pytest.mark.observable
def test_nan_over_nan_is_a_change():
    nan = float("nan")
    state = create_observable({"x": nan})

    state["x"] = nan

    assert_exact_paths(state, ["x"])


@pytest.mark.observable
def test_negative_zero_over_zero_is_not_a_change():
    state = create_observable({"x": 0})

    state["x"] = -0.0

    assert dirty_paths(state) == []
    assert math.copysign(1, unwrap(state)["x"]) == -1


@pytest.mark.observable
def test_bool_over_equal_int_is_a_change():
    state = create_observable({"x": 1})

    state["x"] = True

    assert_exact_paths(state, ["x"])


@pytest.mark.observable
def test_new_key_is_dirty():
    state = create_observable({"a": {}})

    state["a"]["fresh"] = 1

    assert_exact_paths(state, ["a.fresh", "a"])


@pytest.mark.observable
def test_delete_marks_path_and_removes_key():
    """Deleting a key records its path and the key is gone afterwards"""
    state = create_observable({"a": {"b": 1, "c": 2}})

    del state["a"]["b"]

    assert_exact_paths(state, ["a.b", "a"])
    assert "b" not in state["a"]
    assert unwrap(state) == {"a": {"c": 2}}


@pytest.mark.observable
def test_deleting_missing_key_raises_without_marking():
    state = create_observable({"a": 1})

    with pytest.raises(KeyError):
        del state["missing"]

    assert dirty_paths(state) == []


@pytest.mark.observable
def test_mapping_mixins_report_each_write():
    state = create_observable({"a": 1, "b": 2})

    state.update({"a": 10, "c": 3})
    assert state.pop("b") == 2
    assert state.setdefault("d", {"x": 1}) is state["d"]

    assert_exact_paths(state, ["a", "c", "b", "d"])


@pytest.mark.observable
def test_dict_clear_marks_every_key():
    state = create_observable({"a": {"x": 1, "y": 2}})

    state["a"].clear()

    assert_exact_paths(state, ["a.x", "a.y", "a"])
    assert unwrap(state) == {"a": {}}


@pytest.mark.observable
def test_popitem_removes_last_key_like_dict():
    state = create_observable({"d": {"a": 1, "b": 2, "c": {"x": 3}}})
    child = state["d"]["c"]

    item = state["d"].popitem()

    assert item == ("c", {"x": 3})
    assert item[1] is child
    assert unwrap(state) == {"d": {"a": 1, "b": 2}}
    assert_exact_paths(state, ["d.c", "d"])


@pytest.mark.observable
def test_popitem_on_empty_mapping_raises_without_marking():
    state = create_observable({"d": {}})

    with pytest.raises(KeyError, match="dictionary is empty"):
        state["d"].popitem()

    assert dirty_paths(state) == []


@pytest.mark.observable
def test_defaultdict_insert_on_read_is_a_change():
    state = create_observable({"d": collections.defaultdict(list)})

    assert state["d"]["k"] == []

    assert unwrap(state) == {"d": {"k": []}}
    assert_exact_paths(state, ["d.k", "d"])


@pytest.mark.observable
def test_defaultdict_reads_of_present_keys_and_get_are_not_changes():
    state = create_observable({"d": collections.defaultdict(int, {"a": 1})})
    counts = state["d"]

    assert counts["a"] == 1
    assert counts.get("missing") is None
    assert counts.pop("missing", 0) == 0
    with pytest.raises(KeyError):
        counts.pop("missing")

    assert "missing" not in counts
    assert dirty_paths(state) == []


@pytest.mark.observable
def test_mark_clean_empties_change_set():
    state = create_observable({"a": 0})
    internals = get_observable_internals(state)

    state["a"] = 1
    assert internals.is_dirty()

    internals.mark_clean()

    assert not internals.is_dirty()
    assert internals.dirty_paths() == []


@pytest.mark.observable
def test_dirty_paths_keep_insertion_order_and_are_distinct():
    state = create_observable({"a": 0, "b": {"c": 0}})

    state["b"]["c"] = 1
    state["a"] = 1
    state["b"]["c"] = 2

    assert dirty_paths(state) == ["b.c", "b", "a"]


@pytest.mark.observable
def test_copies_of_handles_are_raw_values():
    import copy

    state = create_observable({"a": {"b": [1, 2]}})

    shallow = copy.copy(state)
    deep = copy.deepcopy(state)

    assert type(shallow) is dict and type(deep) is dict
    assert deep == {"a": {"b": [1, 2]}}
    assert deep["a"] is not unwrap(state)["a"]
    assert type(state.copy()) is dict


@pytest.mark.observable
def test_observable_can_wrap_a_list_root():
    state = create_observable([{"x": 1}])

    state[0]["x"] = 2

    assert_exact_paths(state, ["0.x", "0"])
    assert is_observable(state)
    assert not is_observable(state[0])


# ============================================================================
# SEQUENCES
# ============================================================================


@pytest.mark.observable
def test_append_marks_new_index_and_sequence():
    state = create_observable({"items": []})

    state["items"].append(1)

    assert_exact_paths(state, ["items.0", "items"])


@pytest.mark.observable
def test_pop_marks_removed_index():
    state = create_observable({"items": [1, 2, 3]})

    assert state["items"].pop() == 3

    assert_exact_paths(state, ["items.2", "items"])


@pytest.mark.observable
def test_pop_front_marks_every_shifted_index():
    state = create_observable({"items": [1, 2, 3]})

    assert state["items"].pop(0) == 1

    assert_exact_paths(state, ["items.0", "items.1", "items.2", "items"])
    assert unwrap(state)["items"] == [2, 3]


@pytest.mark.observable
def test_insert_at_front_marks_every_index():
    state = create_observable({"items": [1, 2]})

    state["items"].insert(0, 0)

    assert_exact_paths(state, ["items.0", "items.1", "items.2", "items"])


@pytest.mark.observable
def test_reverse_marks_only_moved_indices():
    state = create_observable({"items": [1, 2, 3]})

    state["items"].reverse()

    assert_exact_paths(state, ["items.0", "items.2", "items"])


@pytest.mark.observable
def test_sort_marks_changed_indices():
    state = create_observable({"items": [3, 1, 2]})

    state["items"].sort()

    assert unwrap(state)["items"] == [1, 2, 3]
    assert_exact_paths(state, ["items.0", "items.1", "items.2", "items"])


@pytest.mark.observable
def test_extend_and_inplace_add_mark_new_indices():
    state = create_observable({"items": [1]})

    state["items"].extend([2, 3])
    state["items"] += [4]

    assert unwrap(state)["items"] == [1, 2, 3, 4]
    assert_exact_paths(state, ["items.1", "items.2", "items.3", "items"])


@pytest.mark.observable
def test_slice_assignment_and_deletion():
    state = create_observable({"items": [1, 2, 3]})

    state["items"][0:2] = [9, 2]
    assert_exact_paths(state, ["items.0", "items"])

    get_observable_internals(state).mark_clean()
    del state["items"][0:2]

    assert unwrap(state)["items"] == [3]
    assert_exact_paths(state, ["items.0", "items.1", "items.2", "items"])


@pytest.mark.observable
def test_list_clear_marks_every_index():
    state = create_observable({"items": [1, 2]})

    state["items"].clear()

    assert_exact_paths(state, ["items.0", "items.1", "items"])


@pytest.mark.observable
def test_negative_index_write_uses_positive_path():
    state = create_observable({"items": [1, 2, 3]})

    state["items"][-1] = 30

    assert_exact_paths(state, ["items.2", "items"])


@pytest.mark.observable
def test_nested_record_inside_sequence():
    state = create_observable({"items": [{"x": 1}]})

    state["items"][0]["x"] = 2

    assert_exact_paths(state, ["items.0.x", "items.0", "items"])


@pytest.mark.observable
def test_cached_child_follows_its_new_index():
    """A record shifted by insert reports its new position"""
    state = create_observable({"items": [{"x": 1}]})
    first = state["items"][0]

    state["items"].insert(0, {"x": 0})
    get_observable_internals(state).mark_clean()
    first["x"] = 5

    assert_exact_paths(state, ["items.1.x", "items.1", "items"])
    assert state["items"][1] is first


@pytest.mark.observable
def test_iteration_yields_handles():
    state = create_observable({"items": [{"x": 1}, {"x": 2}]})

    for item in state["items"]:
        item["x"] += 10

    assert unwrap(state)["items"] == [{"x": 11}, {"x": 12}]
    assert_exact_paths(
        state, ["items.0.x", "items.0", "items.1.x", "items.1", "items"]
    )


@pytest.mark.observable
def test_sequence_operators_return_raw_lists():
    state = create_observable({"items": [1, 2]})

    assert state["items"] + [3] == [1, 2, 3]
    assert [0] + state["items"] == [0, 1, 2]
    assert state["items"] * 2 == [1, 2, 1, 2]
    assert 2 in state["items"]
    assert state["items"].index(2) == 1
    assert state["items"][0:1] == [1]
    assert dirty_paths(state) == []


# ============================================================================
# ATTRIBUTE RECORDS
# ============================================================================


class Point:
    def __init__(self, x, y):
        self.x = x
        self.y = y

    def move(self, dx):
        self.x += dx

    @property
    def norm(self):
        return abs(self.x) + abs(self.y)

    @property
    def position(self):
        return (self.x, self.y)

    @position.setter
    def position(self, value):
        self.x, self.y = value


class Slotted:
    __slots__ = ("a", "b")

    def __init__(self):
        self.a = {"inner": 1}
        self.b = 0


class Inventory:
    def __init__(self):
        self.items = []

    def __len__(self):
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def add(self, item):
        self.items.append(item)


@pytest.mark.observable
def test_attribute_write_marks_path():
    state = create_observable({"p": Point(1, 2)})

    state["p"].x = 5

    assert_exact_paths(state, ["p.x", "p"])
    assert isinstance(state["p"], Point)


@pytest.mark.observable
def test_methods_run_against_the_handle():
    """Writes made by a method through self are intercepted"""
    state = create_observable({"p": Point(1, 2)})

    state["p"].move(3)

    assert unwrap(state)["p"].x == 4
    assert_exact_paths(state, ["p.x", "p"])


@pytest.mark.observable
def test_property_getters_and_setters_run_against_the_handle():
    point = create_observable(Point(1, 2))

    assert point.norm == 3
    point.position = (5, 2)

    assert_exact_paths(point, ["x"])
    assert point.position == (5, 2)


@pytest.mark.observable
def test_attribute_delete_marks_before_removing():
    point = create_observable(Point(1, 2))

    del point.y

    assert_exact_paths(point, ["y"])
    assert not hasattr(unwrap(point), "y")


@pytest.mark.observable
def test_slotted_objects_are_tracked():
    record = create_observable(Slotted())

    record.a["inner"] = 2
    record.b = 1

    assert_exact_paths(record, ["a.inner", "a", "b"])


@pytest.mark.observable
def test_object_protocols_follow_the_target_class():
    inventory = create_observable(Inventory())

    inventory.add({"sku": 1})

    assert len(inventory) == 1
    assert [item["sku"] for item in inventory] == [1]
    assert_exact_paths(inventory, ["items.0", "items"])
    assert not callable(inventory)
    assert not callable(create_observable(Point(0, 0)))
