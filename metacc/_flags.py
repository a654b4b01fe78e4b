"""
Universal flags and per-toolchain flag tables.

A universal flag names a compiler/linker option independently of any vendor.
Each toolchain owns one FlagTable that expands every universal flag into the
native arguments that vendor expects. An empty expansion means the vendor has
no equivalent and is not an error.
"""

import collections.abc
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Sequence, Union

from ._errors import ConfigurationError, UnknownFlagError


class UniversalFlag(Enum):
    """Closed set of vendor-neutral compiler/linker options."""

    # Optimization
    O0 = "o0"
    O1 = "o1"
    O2 = "o2"
    O3 = "o3"
    OS = "os"
    # Target instruction set
    SSE4_2 = "sse4_2"
    AVX = "avx"
    AVX2 = "avx2"
    AVX512 = "avx512"
    NATIVE = "native"
    # Debugging and whole-program
    DEBUG = "debug"
    LTO = "lto"
    # Warnings
    WARN_ALL = "warn_all"
    WARN_ERROR = "warn_error"
    # Language standards
    C11 = "c11"
    C17 = "c17"
    C23 = "c23"
    CXX11 = "cxx11"
    CXX14 = "cxx14"
    CXX17 = "cxx17"
    CXX20 = "cxx20"
    CXX23 = "cxx23"
    CXX26 = "cxx26"
    # Sanitizers
    ASAN = "asan"
    UBSAN = "ubsan"
    MSAN = "msan"
    # Code generation
    NO_RTTI = "no_rtti"
    NO_EXCEPTIONS = "no_exceptions"
    PIC = "pic"
    NO_SEMANTIC_INTERPOSITION = "no_semantic_interposition"
    NO_OMIT_FRAME_POINTER = "no_omit_frame_pointer"
    NO_STRICT_ALIASING = "no_strict_aliasing"
    # Output kind
    OBJECTS = "objects"
    SHARED = "shared"
    STATIC = "static"
    STRIP = "strip"

    @classmethod
    def parse(cls, flag: Union["UniversalFlag", str]) -> "UniversalFlag":
        """Return the member for a member or its string value.
        Raises:  UnknownFlagError for anything outside the set"""
        if isinstance(flag, cls):
            return flag
        if isinstance(flag, str):
            try:
                return cls(flag)
            except ValueError:
                pass
        raise UnknownFlagError(flag)


F = UniversalFlag

# Flags that select what kind of artifact a step produces. At most one may be present.
OUTPUT_KIND_FLAGS = frozenset({F.OBJECTS, F.SHARED, F.STATIC})


class FlagTable(collections.abc.Mapping):
    """Immutable mapping of UniversalFlag to an ordered tuple of native arguments."""

    def __init__(self, name: str, entries: Mapping[UniversalFlag, Sequence[str]]):
        missing = [flag.value for flag in UniversalFlag if flag not in entries]
        if missing:
            raise ConfigurationError(f"Flag table {name} has no entry for: {', '.join(missing)}")
        self.name = name
        self._entries = MappingProxyType({flag: tuple(entries[flag]) for flag in UniversalFlag})

    def __getitem__(self, flag):
        return self._entries[flag]

    def __iter__(self):
        return iter(self._entries)

    def __len__(self):
        return len(self._entries)

    def __repr__(self):
        return f"FlagTable({self.name})"

    def override(self, name: str, changes: Mapping[UniversalFlag, Sequence[str]]) -> "FlagTable":
        """Build a new table from this one with some entries replaced."""
        merged: Dict[UniversalFlag, Sequence[str]] = dict(self._entries)
        merged.update(changes)
        return FlagTable(name, merged)

    def translate(self, flags: Iterable[Union[UniversalFlag, str]]) -> List[str]:
        """Expand universal flags into native arguments, preserving order.
        All flags are validated before any lookup, so one bad flag fails the whole call.
        Raises:  UnknownFlagError"""
        parsed = [UniversalFlag.parse(flag) for flag in flags]
        native = []
        for flag in parsed:
            native.extend(self._entries[flag])
        return native


def parse_flags(flags: Iterable[Union[UniversalFlag, str]]) -> List[UniversalFlag]:
    """Validate a flag sequence without translating it."""
    return [UniversalFlag.parse(flag) for flag in flags]


GNU_FLAGS = FlagTable("gnu", {
    F.O0:            ["-O0"],
    F.O1:            ["-O1"],
    F.O2:            ["-O2"],
    F.O3:            ["-O3"],
    F.OS:            ["-Os"],
    # x86-64 micro-architecture levels match /arch:SSE4.2 and /arch:AVX2 better than -msse4.2 / -mavx2
    F.SSE4_2:        ["-march=x86-64-v2"],
    F.AVX:           ["-march=x86-64-v2", "-mavx"],
    F.AVX2:          ["-march=x86-64-v3"],
    F.AVX512:        ["-march=x86-64-v4"],
    F.NATIVE:        ["-march=native", "-mtune=native"],
    F.DEBUG:         ["-g3"],
    F.LTO:           ["-flto"],
    F.WARN_ALL:      ["-Wall", "-Wextra", "-pedantic"],
    F.WARN_ERROR:    ["-Werror"],
    F.C11:           ["-std=c11"],
    F.C17:           ["-std=c17"],
    F.C23:           ["-std=c23"],
    F.CXX11:         ["-std=c++11"],
    F.CXX14:         ["-std=c++14"],
    F.CXX17:         ["-std=c++17"],
    F.CXX20:         ["-std=c++20"],
    F.CXX23:         ["-std=c++23"],
    F.CXX26:         ["-std=c++2c"],
    F.ASAN:          ["-fsanitize=address"],
    F.UBSAN:         ["-fsanitize=undefined"],
    F.MSAN:          ["-fsanitize=memory"],
    F.NO_RTTI:                   ["-fno-rtti"],
    F.NO_EXCEPTIONS:             ["-fno-exceptions", "-fno-unwind-tables"],
    F.PIC:                       ["-fPIC"],
    F.NO_SEMANTIC_INTERPOSITION: ["-fno-semantic-interposition"],
    F.NO_OMIT_FRAME_POINTER:     ["-fno-omit-frame-pointer"],
    F.NO_STRICT_ALIASING:        ["-fno-strict-aliasing"],
    F.OBJECTS:                   ["-c"],
    F.SHARED:                    ["-shared"],
    F.STATIC:                    ["-r", "-nostdlib"],
    F.STRIP:                     ["-Wl,--strip-unneeded"],
})

CLANG_FLAGS = GNU_FLAGS.override("clang", {
    F.LTO: ["-flto=thin"],
})

MSVC_FLAGS = FlagTable("msvc", {
    F.O0:            ["/Od"],
    F.O1:            ["/O1"],
    F.O2:            ["/O2"],
    F.O3:            ["/O2", "/Ob3"],
    F.OS:            ["/O1"],
    F.SSE4_2:        ["/arch:SSE4.2"],
    F.AVX:           ["/arch:AVX"],
    F.AVX2:          ["/arch:AVX2"],
    F.AVX512:        ["/arch:AVX512"],
    F.NATIVE:        [],
    F.DEBUG:         ["/Zi"],
    F.LTO:           ["/GL"],
    F.WARN_ALL:      ["/W4"],
    F.WARN_ERROR:    ["/WX"],
    F.C11:           ["/std:c11"],
    F.C17:           ["/std:c17"],
    F.C23:           ["/std:clatest"],
    F.CXX11:         [],
    F.CXX14:         ["/std:c++14"],
    F.CXX17:         ["/std:c++17"],
    F.CXX20:         ["/std:c++20"],
    F.CXX23:         ["/std:c++23preview"],
    F.CXX26:         ["/std:c++latest"],
    F.ASAN:          ["/fsanitize=address"],
    F.UBSAN:         [],
    F.MSAN:          [],
    F.NO_RTTI:                   ["/GR-"],
    F.NO_EXCEPTIONS:             ["/EHs-", "/EHc-"],
    F.PIC:                       [],
    F.NO_SEMANTIC_INTERPOSITION: [],
    F.NO_OMIT_FRAME_POINTER:     ["/Oy-"],
    F.NO_STRICT_ALIASING:        [],
    F.OBJECTS:                   ["/c"],
    F.SHARED:                    ["/LD"],
    F.STATIC:                    ["/c"],
    F.STRIP:                     [],
})

CLANG_CL_FLAGS = MSVC_FLAGS.override("clang_cl", {
    F.O3:  ["/Ot"],  # clang-cl treats /Ot as -O3
    F.LTO: ["-flto=thin"],
})

TINYCC_FLAGS = FlagTable("tinycc", {
    **{flag: [] for flag in UniversalFlag},
    F.O1:         ["-O1"],
    F.O2:         ["-O2"],
    F.O3:         ["-O2"],
    F.DEBUG:      ["-g"],
    F.WARN_ALL:   ["-Wall"],
    F.WARN_ERROR: ["-Werror"],
    F.OBJECTS:    ["-c"],
    F.SHARED:     ["-shared"],
    F.STATIC:     ["-c"],
})
