"""Overwrite-if-set deep merge over config models.

A value from the override replaces the baseline value only when it is set.
Unset means None, an empty string, zero, a zero duration, or an empty list,
map or section. Booleans are only unset when None, so an explicit False
wins. Lists are replaced whole; maps and unknown keys merge key by key.
"""
from __future__ import annotations

from copy import deepcopy
from datetime import timedelta
from typing import Any

from pydantic import BaseModel

from ..errors import ConfigMergeError


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, timedelta):
        return value == timedelta(0)
    if isinstance(value, (str, bytes, list, tuple, dict, set)):
        return len(value) == 0
    if isinstance(value, BaseModel):
        if any(not is_empty(getattr(value, f)) for f in type(value).model_fields):
            return False
        return all(is_empty(v) for v in (value.__pydantic_extra__ or {}).values())
    return False


def _merge_value(dst: Any, src: Any) -> Any:
    if is_empty(src):
        return dst
    if isinstance(src, BaseModel):
        if isinstance(dst, type(src)):
            return _merge_models(dst, src)
        return src.model_copy(deep=True)
    if isinstance(src, dict):
        if not isinstance(dst, dict):
            return deepcopy(src)
        out = dict(dst)
        for k, v in src.items():
            out[k] = _merge_value(out[k], v) if k in out else deepcopy(v)
        return out
    if isinstance(src, list):
        return deepcopy(src)
    return src


def _merge_models(dst: BaseModel, src: BaseModel) -> BaseModel:
    for name in type(src).model_fields:
        setattr(dst, name, _merge_value(getattr(dst, name, None), getattr(src, name)))
    src_extra = src.__pydantic_extra__
    if src_extra:
        if dst.__pydantic_extra__ is None:
            raise ConfigMergeError(f"{type(dst).__name__} does not accept unknown keys")
        for k, v in src_extra.items():
            dst.__pydantic_extra__[k] = _merge_value(dst.__pydantic_extra__.get(k), v)
    return dst


def merge_with_overwrite(dst: BaseModel, src: BaseModel | None) -> BaseModel:
    """Merge ``src`` onto ``dst`` in place and return ``dst``."""
    if src is None:
        return dst
    if type(src) is not type(dst):
        raise ConfigMergeError(f"cannot merge {type(src).__name__} into {type(dst).__name__}")
    return _merge_models(dst, src)
