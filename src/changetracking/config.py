"""
Tracking settings and exclusion markers.

Settings resolve in three layers:
1. Explicit settings passed to track()/track_collection() or a factory
2. The innermost active settings_context() block (contextvars scoped)
3. The module-level default set with set_default_settings()

Exclusion markers tell the engine to leave a property alone entirely:
- @do_not_track on a class excludes every property declared with that type
- tracked_field(track=False) (or field metadata {"do_not_track": True}) on a dataclass field
- __do_not_track__ = ("name", ...) on any class
"""

import contextvars
import dataclasses
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Generator, Optional, Type

logger = logging.getLogger(__name__)

DO_NOT_TRACK_METADATA_KEY = 'do_not_track'
DO_NOT_TRACK_CLASS_MARKER = '_changetracking_do_not_track'
DO_NOT_TRACK_NAMES_ATTR = '__do_not_track__'


@dataclass(frozen=True)
class ChangeTrackingSettings:
    """Switches for the recursive wrapping policy.

    make_complex_properties_trackable: wrap nested complex-typed properties
    make_collection_properties_trackable: wrap list-typed properties as TrackedCollection
    make_collection_items_in_source_as_proxies: the underlying list holds item
        wrappers (True) or the plain items (False)
    """
    make_complex_properties_trackable: bool = True
    make_collection_properties_trackable: bool = True
    make_collection_items_in_source_as_proxies: bool = True


_default_settings: ChangeTrackingSettings = ChangeTrackingSettings()

_current_settings: contextvars.ContextVar[Optional[ChangeTrackingSettings]] = contextvars.ContextVar(
    'changetracking_settings', default=None
)


def set_default_settings(settings: ChangeTrackingSettings) -> None:
    """Set the module-level default used when no settings are given."""
    global _default_settings
    if not isinstance(settings, ChangeTrackingSettings):
        raise TypeError(f"Expected ChangeTrackingSettings, got {type(settings).__name__}")
    _default_settings = settings
    logger.debug(f"Default tracking settings set to {settings}")


def get_default_settings() -> ChangeTrackingSettings:
    """Get the module-level default settings."""
    return _default_settings


def resolve_settings(settings: Optional[ChangeTrackingSettings] = None) -> ChangeTrackingSettings:
    """Pick explicit settings, else the active context, else the module default."""
    if settings is not None:
        return settings
    scoped = _current_settings.get()
    return scoped if scoped is not None else _default_settings


@contextmanager
def settings_context(**overrides: Any) -> Generator[ChangeTrackingSettings, None, None]:
    """Scope settings overrides to a with-block.

    Overrides apply on top of whatever settings are currently in effect, so
    nested blocks compose.

    Usage:
        with settings_context(make_collection_properties_trackable=False):
            order = track(Order(...))
    """
    merged = dataclasses.replace(resolve_settings(), **overrides)
    token = _current_settings.set(merged)
    try:
        yield merged
    finally:
        _current_settings.reset(token)


# ==================== EXCLUSION MARKERS ====================

def do_not_track(cls: Type) -> Type:
    """Class decorator: never track instances of cls or properties declared as cls."""
    setattr(cls, DO_NOT_TRACK_CLASS_MARKER, True)
    return cls


def is_type_marked_do_not_track(cls: Any) -> bool:
    # Checked on the class itself, not inherited
    return isinstance(cls, type) and cls.__dict__.get(DO_NOT_TRACK_CLASS_MARKER, False) is True


def tracked_field(*, track: bool = True, **kwargs: Any) -> Any:
    """dataclasses.field() wrapper with a track switch.

    Example:
        @dataclass
        class Order:
            lead_id: int = tracked_field(default=0, track=False)
    """
    metadata = dict(kwargs.pop('metadata', None) or {})
    if not track:
        metadata[DO_NOT_TRACK_METADATA_KEY] = True
    return dataclasses.field(metadata=metadata, **kwargs)
