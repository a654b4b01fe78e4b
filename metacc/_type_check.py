"""
Type checking decorator for MetaCC.

Provides runtime type checking that is only active during unit tests.
"""

import collections.abc
import functools
import inspect
import os
import types
from pathlib import Path
from typing import get_type_hints, get_origin, get_args, Union


# conftest.py sets METACC_TYPECHECK=1 before metacc is imported
TYPECHECK_ENABLED = os.environ.get("METACC_TYPECHECK") == "1"

_CONTAINER_ORIGINS = {
    list: list,
    tuple: tuple,
    collections.abc.Sequence: collections.abc.Sequence,
    collections.abc.Iterable: collections.abc.Iterable,
}

_MAPPING_ORIGINS = (dict, collections.abc.Mapping)

_UNION_ORIGINS = (Union, types.UnionType)


def _type_name(tp) -> str:
    return getattr(tp, '__name__', str(tp))


def _check_type(value, expected_type, param_name: str):
    """Check if value matches expected type, raise TypeError if not."""
    if value is None:
        origin = get_origin(expected_type)
        if origin in _UNION_ORIGINS and type(None) in get_args(expected_type):
            return
        if expected_type is type(None):
            return
        raise TypeError(f"Parameter '{param_name}' expected {expected_type}, got None")

    origin = get_origin(expected_type)

    if origin is None:
        if expected_type is Path:
            # Accept Path or str that can be converted to Path
            if not isinstance(value, (os.PathLike, str)):
                raise TypeError(f"Parameter '{param_name}' expected Path, got {type(value).__name__}")
        elif isinstance(expected_type, type) and not isinstance(value, expected_type):
            raise TypeError(
                f"Parameter '{param_name}' expected {expected_type.__name__}, got {type(value).__name__}"
            )
        # Anything that is not a plain class (Any, TypeVar, ...) is not checked

    elif origin in _CONTAINER_ORIGINS:
        container = _CONTAINER_ORIGINS[origin]
        if not isinstance(value, container):
            raise TypeError(f"Parameter '{param_name}' expected {_type_name(container)}, got {type(value).__name__}")
        args = get_args(expected_type)
        # Only homogeneous containers are element-checked; iterables may be one-shot
        if args and origin is not collections.abc.Iterable and (origin is not tuple or args[-1] is Ellipsis):
            for i, elem in enumerate(value):
                _check_type(elem, args[0], f"{param_name}[{i}]")

    elif origin in _MAPPING_ORIGINS:
        if not isinstance(value, collections.abc.Mapping):
            raise TypeError(f"Parameter '{param_name}' expected mapping, got {type(value).__name__}")

    elif origin in _UNION_ORIGINS:
        args = get_args(expected_type)
        for arg in args:
            if arg is type(None):
                continue
            try:
                _check_type(value, arg, param_name)
                return
            except TypeError:
                continue
        type_names = [_type_name(a) for a in args if a is not type(None)]
        raise TypeError(
            f"Parameter '{param_name}' expected one of {type_names}, got {type(value).__name__}"
        )


def typecheck(func):
    """Decorator that checks function argument types against type hints.

    Only active when METACC_TYPECHECK=1. Otherwise returns the function unchanged.
    """
    if not TYPECHECK_ENABLED:
        return func

    try:
        hints = get_type_hints(func)
    except Exception:
        # Unresolvable forward references: leave the function unchecked
        return func
    hints.pop('return', None)
    sig = inspect.signature(func)

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        bound = sig.bind_partial(*args, **kwargs)
        for param_name, value in bound.arguments.items():
            if param_name in hints and sig.parameters[param_name].kind not in (
                    inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                _check_type(value, hints[param_name], param_name)
        return func(*args, **kwargs)

    return wrapper


def typecheck_methods(cls):
    """Class decorator that applies typecheck to all public methods."""
    if not TYPECHECK_ENABLED:
        return cls

    for name, method in list(vars(cls).items()):
        # Skip private/magic methods except __init__
        if name.startswith('_') and name != '__init__':
            continue
        if inspect.isfunction(method):
            setattr(cls, name, typecheck(method))

    return cls
