"""
Per-type property discovery and child-wrapping eligibility.

Everything here is evaluated once per class and cached. A class declares its
tracked properties through dataclass fields, class annotations, or settable
properties. Classes that declare nothing fall back to the public attributes
found on the instance being wrapped.

Eligibility rules:
- complex-trackable: a Protocol that is not collection-shaped, or a class that
  is not final, not frozen, not a scalar or builtin container, not marked
  do_not_track, and constructible without arguments
- collection-trackable: a single-argument list/sequence type whose element
  type is complex-trackable
"""

import collections.abc as abc
import dataclasses
import datetime
import decimal
import enum
import fractions
import inspect
import logging
import pathlib
import threading
import typing
import uuid
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Tuple, Type

from changetracking.config import (
    DO_NOT_TRACK_METADATA_KEY,
    DO_NOT_TRACK_NAMES_ATTR,
    is_type_marked_do_not_track,
)

logger = logging.getLogger(__name__)

VALUE = 'value'
COMPLEX = 'complex'
COLLECTION = 'collection'

_SCALAR_TYPES: Tuple[type, ...] = (
    str, bytes, bytearray, int, float, complex, bool, type(None),
    enum.Enum, decimal.Decimal, fractions.Fraction,
    datetime.date, datetime.time, datetime.timedelta,
    uuid.UUID, pathlib.PurePath,
)
BUILTIN_CONTAINERS: Tuple[type, ...] = (list, tuple, dict, set, frozenset)

_SEQUENCE_ORIGINS = (list, abc.MutableSequence, abc.Sequence, abc.Collection)


@dataclass(frozen=True)
class PropertyInfo:
    """How one property of a tracked type is handled."""
    name: str
    declared_type: Any
    kind: str = VALUE
    element_type: Optional[type] = None


@dataclass(frozen=True)
class TypeCatalog:
    """Cached property layout of one class.

    properties: tracked properties in declaration order
    excluded: declared names that are passed straight through untracked
    declared: False when the class declares nothing and instances are scanned
    has_keyed_items: class implements __setitem__ (indexer-style properties)
    """
    cls: type
    properties: Dict[str, PropertyInfo]
    excluded: FrozenSet[str]
    declared: bool
    has_keyed_items: bool


_catalog_cache: Dict[type, TypeCatalog] = {}
_complex_cache: Dict[Any, bool] = {}
_cache_lock = threading.RLock()


def strip_optional(tp: Any) -> Any:
    """Optional[X] -> X; anything else unchanged."""
    if typing.get_origin(tp) is typing.Union:
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return tp


def is_scalar_type(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, _SCALAR_TYPES)


def _is_protocol(tp: type) -> bool:
    return bool(getattr(tp, '_is_protocol', False)) and tp is not typing.Protocol


def has_native_layout(tp: type) -> bool:
    """Whether instances of tp are allocated by a C-level __new__, such as array.array or deque."""
    for base in tp.__mro__:
        if base is object or base is typing.Generic:
            continue
        allocator = vars(base).get('__new__')
        if allocator is not None and inspect.isbuiltin(allocator):
            return True
    return False


def _has_parameterless_constructor(tp: type) -> bool:
    try:
        signature = inspect.signature(tp)
    except (TypeError, ValueError):
        # Builtin or extension types without introspectable signatures
        return True
    return all(
        p.default is not inspect.Parameter.empty
        or p.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
        for p in signature.parameters.values()
    )


def is_complex_trackable_type(tp: Any) -> bool:
    """Whether a property declared as tp should hold a tracked child wrapper."""
    tp = strip_optional(tp)
    try:
        return _complex_cache[tp]
    except (KeyError, TypeError):
        pass
    result = _compute_complex_trackable(tp)
    try:
        _complex_cache[tp] = result
    except TypeError:
        pass
    return result


def _compute_complex_trackable(tp: Any) -> bool:
    if not isinstance(tp, type):
        return False
    if is_scalar_type(tp) or issubclass(tp, BUILTIN_CONTAINERS) or has_native_layout(tp):
        return False
    if is_type_marked_do_not_track(tp):
        return False
    if _is_protocol(tp):
        return not issubclass(tp, abc.Iterable)
    if getattr(tp, '__final__', False):
        return False
    params = getattr(tp, '__dataclass_params__', None)
    if params is not None and params.frozen:
        return False
    return _has_parameterless_constructor(tp)


def collection_element_type(tp: Any) -> Optional[type]:
    """Element type of a single-argument sequence type, if its elements are trackable."""
    tp = strip_optional(tp)
    origin = typing.get_origin(tp)
    if origin not in _SEQUENCE_ORIGINS:
        return None
    args = typing.get_args(tp)
    if len(args) != 1:
        return None
    element = strip_optional(args[0])
    return element if is_complex_trackable_type(element) else None


def classify(name: str, declared_type: Any) -> PropertyInfo:
    element = collection_element_type(declared_type)
    if element is not None:
        return PropertyInfo(name, declared_type, COLLECTION, element)
    if is_complex_trackable_type(declared_type):
        return PropertyInfo(name, declared_type, COMPLEX)
    return PropertyInfo(name, declared_type, VALUE)


def classify_value(name: str, value: Any) -> PropertyInfo:
    """Classify an undeclared instance attribute by its runtime value."""
    if isinstance(value, list):
        if value and all(is_complex_trackable_type(type(item)) for item in value):
            return PropertyInfo(name, type(value), COLLECTION, None)
        return PropertyInfo(name, type(value), VALUE)
    if value is not None and is_complex_trackable_type(type(value)):
        return PropertyInfo(name, type(value), COMPLEX)
    return PropertyInfo(name, type(value), VALUE)


# ==================== PROPERTY DISCOVERY ====================

def _resolved_hints(cls: type) -> Dict[str, Any]:
    try:
        return typing.get_type_hints(cls)
    except Exception as e:
        # Unresolvable forward references: keep raw annotations, strings become untyped
        logger.debug(f"Could not resolve type hints for {cls.__name__}: {e}")
        hints: Dict[str, Any] = {}
        for klass in reversed(cls.__mro__):
            for key, value in getattr(klass, '__annotations__', {}).items():
                hints[key] = None if isinstance(value, str) else value
        return hints


def _is_class_var(tp: Any) -> bool:
    return tp is typing.ClassVar or typing.get_origin(tp) is typing.ClassVar


def _excluded_names(cls: type) -> set:
    names = set()
    for klass in cls.__mro__:
        names.update(klass.__dict__.get(DO_NOT_TRACK_NAMES_ATTR, ()))
    return names


def _settable_properties(cls: type) -> Dict[str, Any]:
    found = {}
    for klass in reversed(cls.__mro__):
        for name, attr in klass.__dict__.items():
            if isinstance(attr, property):
                if attr.fset is None:
                    found.pop(name, None)
                    continue
                annotations = getattr(attr.fget, '__annotations__', {}) if attr.fget else {}
                return_type = annotations.get('return')
                found[name] = None if isinstance(return_type, str) else return_type
    return found


def _build_catalog(cls: type) -> TypeCatalog:
    hints = _resolved_hints(cls)
    excluded = _excluded_names(cls)
    declared: Dict[str, Any] = {}

    if dataclasses.is_dataclass(cls):
        for f in dataclasses.fields(cls):
            declared[f.name] = hints.get(f.name, None)
            if f.metadata.get(DO_NOT_TRACK_METADATA_KEY):
                excluded.add(f.name)
    else:
        for name, tp in hints.items():
            if not _is_class_var(tp):
                declared[name] = tp

    for name, tp in _settable_properties(cls).items():
        declared.setdefault(name, tp)

    properties: Dict[str, PropertyInfo] = {}
    passthrough = set()
    for name, tp in declared.items():
        if name.startswith('_'):
            continue
        if name in excluded or is_type_marked_do_not_track(strip_optional(tp)):
            passthrough.add(name)
            continue
        properties[name] = classify(name, tp)

    has_keyed_items = any('__setitem__' in klass.__dict__ for klass in cls.__mro__[:-1])
    catalog = TypeCatalog(
        cls=cls,
        properties=properties,
        excluded=frozenset(passthrough | (excluded - set(properties))),
        declared=bool(declared),
        has_keyed_items=has_keyed_items,
    )
    logger.debug(
        f"Catalogued {cls.__name__}: tracked={list(properties)}, "
        f"excluded={sorted(catalog.excluded)}, declared={catalog.declared}"
    )
    return catalog


def get_catalog(cls: type) -> TypeCatalog:
    """Get (building once) the property catalog of cls."""
    catalog = _catalog_cache.get(cls)
    if catalog is not None:
        return catalog
    with _cache_lock:
        catalog = _catalog_cache.get(cls)
        if catalog is None:
            catalog = _build_catalog(cls)
            _catalog_cache[cls] = catalog
        return catalog


def instance_properties(target: Any, catalog: TypeCatalog) -> Dict[str, PropertyInfo]:
    """Tracked properties of one instance.

    Declared classes use the cached catalog; undeclared classes scan the
    instance's public attributes at wrap time.
    """
    if catalog.declared:
        return catalog.properties
    try:
        attributes = vars(target)
    except TypeError:
        return {}
    return {
        name: classify_value(name, value)
        for name, value in attributes.items()
        if not name.startswith('_') and name not in catalog.excluded
    }


def clear_caches() -> None:
    """Drop cached catalogs and eligibility results (classes redefined at runtime)."""
    with _cache_lock:
        _catalog_cache.clear()
        _complex_cache.clear()


def untrackable_reason(value: Any) -> Optional[str]:
    """Why value cannot be wrapped as a tracked object, or None if it can."""
    if value is None:
        return "None cannot be tracked"
    cls = type(value)
    if isinstance(value, BUILTIN_CONTAINERS):
        return f"{cls.__name__} is a bare container; use track_collection() for lists"
    if is_scalar_type(cls):
        return f"{cls.__name__} is a scalar value"
    if isinstance(value, type) or inspect.isroutine(value) or inspect.ismodule(value):
        return f"{cls.__name__} is not a data object"
    if has_native_layout(cls):
        return f"{cls.__name__} is a native type; use track_collection() for sequences"
    if is_type_marked_do_not_track(cls):
        return f"{cls.__name__} is marked do_not_track"
    params = getattr(cls, '__dataclass_params__', None)
    if params is not None and params.frozen:
        return f"{cls.__name__} is a frozen dataclass"
    if getattr(cls, '__final__', False):
        return f"{cls.__name__} is final and cannot be subclassed"
    return None
