"""
MetaCC command line interface.

Usage:
    metacc c hello.c -o hello                       # Compile and link a C program
    metacc cxx main.cpp util.cpp -O2 --std c++17 -o app
    metacc c util.c -c                              # Compile to build/util.o
    metacc c util.c --static -o libutil.a           # Compile and archive
    metacc link shared a.o b.o -o libab.so          # Link existing objects
    metacc c hello.c -o hello --run                 # Build, then run the program
    metacc version                                  # Show the selected compiler
"""
import argparse
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional

from ._config import MetaccConfig
from ._detector import TOOLCHAINS, toolchain_class
from ._driver import Driver
from ._errors import CompilerNotFoundError, ConfigurationError
from ._flags import UniversalFlag as F
from ._logger import MetaccLogger


VERSION = "0.1.0"

# Exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_COMPILER_NOT_FOUND = 3

OPTIMIZATION_LEVELS = {"0": F.O0, "1": F.O1, "2": F.O2, "3": F.O3, "s": F.OS}

TARGETS = {
    "sse4.2": F.SSE4_2,
    "avx":    F.AVX,
    "avx2":   F.AVX2,
    "avx512": F.AVX512,
    "native": F.NATIVE,
}

WARNING_CONFIGS = {"all": F.WARN_ALL, "error": F.WARN_ERROR}

C_STANDARDS = {"c11": F.C11, "c17": F.C17, "c23": F.C23}

CXX_STANDARDS = {
    "c++11": F.CXX11,
    "c++14": F.CXX14,
    "c++17": F.CXX17,
    "c++20": F.CXX20,
    "c++23": F.CXX23,
    "c++26": F.CXX26,
}

LONG_FLAGS = {
    "--lto":                       F.LTO,
    "--asan":                      F.ASAN,
    "--ubsan":                     F.UBSAN,
    "--msan":                      F.MSAN,
    "--no-rtti":                   F.NO_RTTI,
    "--no-exceptions":             F.NO_EXCEPTIONS,
    "--pic":                       F.PIC,
    "--no-semantic-interposition": F.NO_SEMANTIC_INTERPOSITION,
    "--no-omit-frame-pointer":     F.NO_OMIT_FRAME_POINTER,
    "--no-strict-aliasing":        F.NO_STRICT_ALIASING,
}

# --x<name> option -> toolchain kind used as xflags key
XFLAGS = {
    "xmsvc":    "msvc",
    "xgnu":     "gnu",
    "xclang":   "clang",
    "xclangcl": "clang_cl",
    "xtinycc":  "tinycc",
}


class AppendFlag(argparse.Action):
    """Appends a universal flag to namespace.flags in command line order.
    Without a mapping the option takes no value and appends const; with one,
    the option value is looked up in the mapping."""

    def __init__(self, option_strings, dest, mapping: Optional[Dict[str, F]] = None, **kwargs):
        self.mapping = mapping
        if mapping is None:
            kwargs["nargs"] = 0
        else:
            kwargs.setdefault("choices", list(mapping))
        super().__init__(option_strings, "flags", **kwargs)

    def __call__(self, parser, namespace, values, option_string=None):
        flag = self.const if self.mapping is None else self.mapping[values]
        namespace.flags = [*(getattr(namespace, "flags", None) or []), flag]


def add_driver_options(parser: argparse.ArgumentParser):
    """Options that configure toolchain selection and the Driver."""
    group = parser.add_argument_group("driver options")
    group.add_argument("--prefer",      action="append", choices=list(TOOLCHAINS), metavar="KIND",
                       help=f"Toolchain to try, repeatable, in order ({', '.join(TOOLCHAINS)})")
    group.add_argument("--search-path", action="append", default=[], metavar="DIR",
                       help="Directory searched for compiler executables before PATH")
    group.add_argument("--output-dir",  type=str, metavar="DIR", help="Directory for relative outputs (default: build)")
    group.add_argument("--log-dir",     type=str, metavar="DIR", help="Write metacc.log to this directory")
    group.add_argument("--config",      type=str, metavar="PATH", help="Configuration file (default: ~/.metacc/config.json)")
    group.add_argument("--force",       action="store_true", help="Rebuild even if the output is up to date")


def add_link_options(parser: argparse.ArgumentParser):
    parser.add_argument("-l", dest="libs",      action="append", default=[], metavar="LIB", help="Link against library LIB")
    parser.add_argument("-L", dest="lib_paths", action="append", default=[], metavar="DIR", help="Add a library search path")
    parser.add_argument("-s", "--strip", action=AppendFlag, const=F.STRIP, help="Strip unneeded symbols")
    parser.add_argument("--lto",         action=AppendFlag, const=F.LTO, help="Enable link time optimization")
    for name, kind in XFLAGS.items():
        parser.add_argument(f"--{name}", action="append", default=[], metavar="VALUE",
                            help=f"Pass VALUE to the {kind} toolchain only")


def add_compile_options(parser: argparse.ArgumentParser, standards: Dict[str, F]):
    parser.add_argument("sources", nargs="+", metavar="SOURCE", help="Source files")
    parser.add_argument("-o", dest="output", metavar="PATH", help="Output file path")
    parser.add_argument("-I", dest="include_paths", action="append", default=[], metavar="DIR",
                        help="Add an include search directory")
    parser.add_argument("-D", dest="definitions", action="append", default=[], metavar="DEF",
                        help="Add a preprocessor definition")
    parser.add_argument("-O", action=AppendFlag, mapping=OPTIMIZATION_LEVELS, metavar="LEVEL",
                        help="Optimization level (0, 1, 2, 3 or s)")
    parser.add_argument("-m", "--arch", action=AppendFlag, mapping=TARGETS, metavar="ARCH",
                        help=f"Target instruction set ({', '.join(TARGETS)})")
    parser.add_argument("-g", "--debug", action=AppendFlag, const=F.DEBUG, help="Emit debugging symbols")
    parser.add_argument("--std", action=AppendFlag, mapping=standards, metavar="STANDARD",
                        help=f"Language standard ({', '.join(standards)})")
    parser.add_argument("-W", action=AppendFlag, mapping=WARNING_CONFIGS, metavar="CONFIG",
                        help="Warnings: all or error")
    parser.add_argument("-c", "--objects", action=AppendFlag, const=F.OBJECTS, help="Compile only, do not link")
    parser.add_argument("--shared", action=AppendFlag, const=F.SHARED, help="Produce a shared library")
    parser.add_argument("--static", action=AppendFlag, const=F.STATIC, help="Produce a static library")
    parser.add_argument("-r", "--run", action="store_true", help="Run the executable after a successful build")
    for option, flag in LONG_FLAGS.items():
        if option != "--lto":
            parser.add_argument(option, action=AppendFlag, const=flag)
    add_link_options(parser)
    add_driver_options(parser)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="metacc", description="Portable C/C++ compiler driver",
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    c_parser = subparsers.add_parser("c", help="Compile C sources")
    add_compile_options(c_parser, C_STANDARDS)

    cxx_parser = subparsers.add_parser("cxx", help="Compile C++ sources")
    add_compile_options(cxx_parser, CXX_STANDARDS)

    link_parser = subparsers.add_parser("link", help="Link object files")
    link_parser.add_argument("link_type", choices=["executable", "shared", "static"], help="What to produce")
    link_parser.add_argument("objects", nargs="+", metavar="OBJECT", help="Object files")
    link_parser.add_argument("-o", dest="output", required=True, metavar="PATH", help="Output file path")
    link_parser.add_argument("--language", choices=["c", "cxx"],
                             help="Compiler driver used to link (default: cxx where the toolchain has one)")
    add_link_options(link_parser)
    add_driver_options(link_parser)

    version_parser = subparsers.add_parser("version", help="Show the selected toolchain and its version banner")
    add_driver_options(version_parser)
    return parser


def validate_compile_args(parsed: argparse.Namespace) -> Optional[str]:
    """Return an error message for an invalid flag combination, or None."""
    flags = parsed.flags or []
    objects = F.OBJECTS in flags
    if objects and parsed.output and len(parsed.sources) > 1:
        return "-o cannot be used with --objects and more than one source"
    if not objects and not parsed.output:
        return "-o is required"
    if parsed.run and (objects or F.SHARED in flags or F.STATIC in flags):
        return "--run cannot be used with --objects, --shared, or --static"
    return None


def xflags_from(parsed: argparse.Namespace) -> Dict[str, List[str]]:
    return {kind: getattr(parsed, name) for name, kind in XFLAGS.items() if getattr(parsed, name)}


def make_driver(parsed: argparse.Namespace, config: MetaccConfig) -> Driver:
    """Create a Driver from the configuration, with command line options taking precedence."""
    overrides = {"stdout_sink": sys.stdout, "stderr_sink": sys.stderr}
    if parsed.prefer:
        overrides["prefer"] = [toolchain_class(kind) for kind in parsed.prefer]
    if parsed.search_path:
        overrides["search_paths"] = [*parsed.search_path, *config.search_paths]
    if parsed.output_dir:
        overrides["output_dir"] = parsed.output_dir
    # A log_dir from the config file is handled by Driver.from_config
    if parsed.log_dir:
        overrides["logger"] = MetaccLogger(Path(parsed.log_dir))
    return Driver.from_config(config, **overrides)


def cmd_compile(driver: Driver, parsed: argparse.Namespace) -> int:
    options = {
        "flags": parsed.flags or [],
        "xflags": xflags_from(parsed),
        "include_paths": parsed.include_paths,
        "definitions": parsed.definitions,
        "libs": parsed.libs,
        "lib_paths": parsed.lib_paths,
        "language": "cxx" if parsed.command == "cxx" else "c",
        "force": parsed.force,
    }

    # Compile-only without -o: one object per source, named after the source
    if F.OBJECTS in options["flags"] and not parsed.output:
        for source in parsed.sources:
            if driver.build(source, None, **options) is None:
                return EXIT_FAILURE
        return EXIT_OK

    output = driver.build(parsed.sources, parsed.output, **options)
    if output is None:
        return EXIT_FAILURE
    if parsed.run:
        return subprocess.run([str(output)], check=False).returncode
    return EXIT_OK


def cmd_link(driver: Driver, parsed: argparse.Namespace) -> int:
    options = {
        "flags": parsed.flags or [],
        "xflags": xflags_from(parsed),
        "libs": parsed.libs,
        "lib_paths": parsed.lib_paths,
        "force": parsed.force,
    }
    if parsed.language:
        options["language"] = parsed.language
    if parsed.link_type == "executable":
        success = driver.link_executable(parsed.objects, parsed.output, **options)
    elif parsed.link_type == "shared":
        success = driver.link_shared(parsed.objects, parsed.output, **options)
    else:
        # Archiving takes no linker options
        success = driver.link_static(parsed.objects, parsed.output, force=parsed.force)
    return EXIT_OK if success else EXIT_FAILURE


def cmd_version(driver: Driver) -> int:
    toolchain = driver.toolchain
    print(f"{type(toolchain).__name__}: {toolchain.c}")
    print(driver.version_banner().rstrip())
    return EXIT_OK


def main(args: List[str] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return EXIT_FAILURE

    if parsed.command in ("c", "cxx"):
        error = validate_compile_args(parsed)
        if error:
            print(f"Error: {error}.", file=sys.stderr)
            return EXIT_FAILURE

    try:
        config = MetaccConfig.load(Path(parsed.config) if parsed.config else None)
        driver = make_driver(parsed, config)

        if parsed.command in ("c", "cxx"):
            return cmd_compile(driver, parsed)
        elif parsed.command == "link":
            return cmd_link(driver, parsed)
        return cmd_version(driver)
    except CompilerNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_COMPILER_NOT_FOUND
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
