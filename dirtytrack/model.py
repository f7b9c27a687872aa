"""
Schema-backed Trackers
======================

create_model() validates raw input against a pydantic model class, dumps it
to a plain structure, snapshots that structure as the original, then tracks
it like create_observable() does.

Fields typed Any keep tracked handles by reference, so one observable can be
shared between several models and mutations through it reach all of them.
"""

import copy
import weakref
from typing import Any, Dict, Hashable, Optional, Type

from pydantic import BaseModel

from dirtytrack.base import ChangeSet, NotTrackedError, render_key
from dirtytrack.graph import Node, node_of
from dirtytrack.observable import ObservableInternals, _attach_tracker
from dirtytrack.proxy import is_tracked, unwrap


class ModelInternals(ObservableInternals):
    """Change-set operations of a schema-backed tracker."""

    def __init__(
        self,
        dirty: ChangeSet,
        node: Node,
        schema: Type[BaseModel],
        original: Dict[str, Any],
    ):
        super().__init__(dirty)
        self.schema = schema
        self.original = original
        self._node_ref = weakref.ref(node)

    def _top_level_key(self, path: str, keys: Dict[str, Hashable]) -> Any:
        # Longest rendered key wins, rendered keys may contain dots
        best = None
        for rendered, key in keys.items():
            if path == rendered or path.startswith(rendered + "."):
                if best is None or len(rendered) > len(best[0]):
                    best = (rendered, key)
        return best

    def dirty_data(self) -> Dict[Hashable, Any]:
        """
        Current values of every top-level key that has a dirty path.

        Keys appear in the order their first dirty path was recorded. Keys that
        have been deleted since are left out.
        """
        node = self._node_ref()
        if node is None:
            return {}
        handle = node.handle
        keys = {render_key(key): key for key in node.target}
        result = {}
        for path in self.dirty.paths():
            match = self._top_level_key(path, keys)
            if match is None or match[1] in result:
                continue
            result[match[1]] = handle[match[1]]
        return result


def create_model(schema: Type[BaseModel], data: Optional[Dict[str, Any]] = None) -> Any:
    """
    Validate data against schema and start tracking the result.

    Args:
        schema: pydantic model class describing the structure
        data: Raw, possibly partial input; defaults fill the rest

    Returns:
        The root handle over the dumped structure

    Raises:
        pydantic.ValidationError: If data does not satisfy schema
    """
    validated = schema.model_validate(data if data is not None else {})
    shared = {name: value for name, value in validated if is_tracked(value)}
    dumped = validated.model_dump(exclude=set(shared))
    structure = {
        name: unwrap(shared[name]) if name in shared else dumped[name]
        for name, _ in validated
        if name in shared or name in dumped
    }
    original = copy.deepcopy(structure)
    return _attach_tracker(
        structure,
        lambda change_set, node: ModelInternals(change_set, node, schema, original),
    )


def get_model_internals(tracked: Any) -> ModelInternals:
    """
    Return the internals of a schema-backed tracker root.

    Raises:
        NotTrackedError: If tracked was not created by create_model()
    """
    node = node_of(tracked)
    if node is None or not isinstance(node.internals, ModelInternals):
        raise NotTrackedError(
            f"{type(tracked).__name__} object is not a model tracker root"
        )
    return node.internals


def is_model(value: Any) -> bool:
    node = node_of(value)
    return node is not None and isinstance(node.internals, ModelInternals)
