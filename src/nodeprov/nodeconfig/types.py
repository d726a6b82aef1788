"""Shared building blocks for node configuration schemas.

Durations travel as Go duration strings (``60s``, ``1m30s``, ``500ms``) and
live in memory as ``timedelta``. Scalars default to None so that "not set"
is distinguishable from a real value during merges.
"""
from __future__ import annotations

import os
import re
from datetime import timedelta
from typing import Annotated, Any, ClassVar, Optional

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, model_validator
from pydantic.alias_generators import to_camel, to_pascal

from ..config import HSM_PROXY_LIBRARY

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

_UNIT_US = {
    "ns": 0.001,
    "us": 1,
    "µs": 1,
    "μs": 1,
    "ms": 1000,
    "s": 1000_000,
    "m": 60_000_000,
    "h": 3600_000_000,
}


def parse_go_duration(value: Any) -> Optional[timedelta]:
    if value is None or isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        if value == 0:
            return timedelta(0)
        raise ValueError(f"missing unit in duration {value!r}")
    s = str(value).strip().strip('"')
    if s == "":
        return timedelta(0)
    sign = 1
    if s[0] in "+-":
        sign = -1 if s[0] == "-" else 1
        s = s[1:]
    if s == "0":
        return timedelta(0)
    pos = 0
    total_us = 0.0
    for m in _DURATION_PART.finditer(s):
        if m.start() != pos:
            break
        total_us += float(m.group(1)) * _UNIT_US[m.group(2)]
        pos = m.end()
    if pos != len(s) or pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(microseconds=sign * round(total_us))


def _trim(whole: int, frac: int, digits: int) -> str:
    out = str(whole)
    if frac:
        out += "." + f"{frac:0{digits}d}".rstrip("0")
    return out


def format_go_duration(d: Optional[timedelta]) -> Optional[str]:
    if d is None:
        return None
    us = d // timedelta(microseconds=1)
    if us == 0:
        return "0s"
    sign = "-" if us < 0 else ""
    us = abs(us)
    if us < 1000:
        return f"{sign}{us}µs"
    if us < 1_000_000:
        return f"{sign}{_trim(us // 1000, us % 1000, 3)}ms"
    h, rem = divmod(us, 3600_000_000)
    m, rem = divmod(rem, 60_000_000)
    secs = _trim(rem // 1_000_000, rem % 1_000_000, 6) + "s"
    if h:
        return f"{sign}{h}h{m}m{secs}"
    if m:
        return f"{sign}{m}m{secs}"
    return f"{sign}{secs}"


Duration = Annotated[
    timedelta,
    BeforeValidator(parse_go_duration),
    PlainSerializer(format_go_duration, return_type=str),
]


def _takes_none(field) -> bool:
    return field.is_required() or (field.default is None and field.default_factory is None)


class ConfigModel(BaseModel):
    """Base for config sections: camelCase keys, unknown keys kept and merged.

    Known keys match regardless of case (``General`` and ``general`` are the same
    field) and are stored under the field alias.
    A section key with no value takes the section default.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, alias_generator=to_camel)

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        lookup = {}
        for name, field in cls.model_fields.items():
            alias = field.alias or name
            lookup.setdefault(alias.lower(), (alias, field))
            lookup.setdefault(name.lower(), (alias, field))
        out = {}
        for key, value in data.items():
            hit = lookup.get(key.lower()) if isinstance(key, str) else None
            if hit is None:
                out[key] = value
                continue
            alias, field = hit
            if value is None and not _takes_none(field):
                continue
            out[alias] = value
        return out


class _PascalModel(ConfigModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, alias_generator=to_pascal)


class File(ConfigModel):
    file: Optional[str] = None


class Files(ConfigModel):
    files: Optional[list[str]] = None


class FileKeyStoreOpts(_PascalModel):
    key_store: Optional[str] = None


class SwOpts(_PascalModel):
    security: Optional[int] = None
    hash: Optional[str] = None
    file_key_store: Optional[FileKeyStoreOpts] = None


class PKCS11Opts(_PascalModel):
    security: Optional[int] = None
    hash: Optional[str] = None
    library: Optional[str] = None
    label: Optional[str] = None
    pin: Optional[str] = None
    software_verify: Optional[bool] = None
    immutable: Optional[bool] = None
    file_key_store: Optional[FileKeyStoreOpts] = None


class BCCSP(_PascalModel):
    default: Optional[str] = None
    sw: Optional[SwOpts] = Field(None, alias="SW")
    pkcs11: Optional[PKCS11Opts] = Field(None, alias="PKCS11")

    def using_pkcs11(self) -> bool:
        return (self.default or "").lower() == "pkcs11"


def apply_pkcs11_defaults(bccsp: Optional[BCCSP], using_hsm_proxy: bool) -> None:
    """Fill PKCS11 options when the HSM-backed provider is selected."""
    if bccsp is None or not bccsp.using_pkcs11():
        return
    if bccsp.pkcs11 is None:
        bccsp.pkcs11 = PKCS11Opts()
    opts = bccsp.pkcs11
    if using_hsm_proxy:
        opts.library = HSM_PROXY_LIBRARY
    if not opts.hash:
        opts.hash = "SHA2"
    if not opts.security:
        opts.security = 256
    opts.software_verify = True


class NodeConfig(ConfigModel):
    """Top-level node configuration document."""

    kind: ClassVar[str] = "node"

    def _bccsp_holder(self) -> Any:
        raise NotImplementedError

    def get_bccsp_section(self) -> Optional[BCCSP]:
        return self._bccsp_holder().bccsp

    def set_bccsp_library(self, library: str) -> None:
        holder = self._bccsp_holder()
        if holder.bccsp is None:
            holder.bccsp = BCCSP()
        if holder.bccsp.pkcs11 is None:
            holder.bccsp.pkcs11 = PKCS11Opts()
        holder.bccsp.pkcs11.library = library

    def using_pkcs11(self) -> bool:
        bccsp = self.get_bccsp_section()
        return bccsp is not None and bccsp.using_pkcs11()

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def to_bytes(self) -> bytes:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False).encode("utf-8")

    def write_to_file(self, path: str) -> None:
        data = self.to_bytes()
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        # O_CREAT mode is ignored for files that already exist
        os.chmod(path, 0o600)

    def deep_copy(self):
        return self.model_copy(deep=True)
