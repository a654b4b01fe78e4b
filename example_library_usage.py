#!/usr/bin/env python3
"""
Example: Using MetaCC as a library

Builds a small program and a static library with whichever compiler is
installed, using the same request on every platform.
"""

import sys
import time
from pathlib import Path

from metacc import Driver, OutputKind, UniversalFlag as F, CompilerNotFoundError

SOURCES = ["main.c", "util.c"]


def example_single_step():
    """Compile and link in one call"""
    driver = Driver(stdout_sink=sys.stdout, stderr_sink=sys.stderr)
    print(f"Using {type(driver.toolchain).__name__}: {driver.toolchain.c}")

    ok = driver.invoke(
        SOURCES, "hello",
        flags=[F.O2, F.WARN_ALL, F.DEBUG],
        # Only the entry for the detected toolchain is used
        xflags={"gnu": ["-fanalyzer"], "msvc": ["/analyze"]},
        definitions=["NDEBUG"],
    )
    print("Build " + ("succeeded" if ok else "failed"))


def example_separate_steps():
    """Compile each source, archive the library, link the program"""
    driver = Driver(output_dir="build")

    start = time.perf_counter()
    for source in SOURCES:
        if not driver.compile(source, flags=[F.O2, F.PIC]):
            print(f"ERROR: {source} failed")
            print(driver.log[-1].stderr)
            return
    elapsed = time.perf_counter() - start

    # Unchanged sources are skipped on the second run
    print(f"Compiled {len(SOURCES)} files in {elapsed:.2f}s ({len(driver.log)} commands run)")

    object_ext = driver.toolchain.default_extension(OutputKind.OBJECTS)
    objects = [Path("build") / (Path(s).stem + object_ext) for s in SOURCES]
    # Default name: libutil.a, or util.lib with MSVC
    driver.invoke(objects[1:], flags=[F.STATIC])
    driver.link_executable(objects[:1], "app", libs=["util"], lib_paths=["build"])

    for result in driver.log:
        print(f"  {result.returncode}: {' '.join(result.command)}")


def example_parallel_builds():
    """One Driver per thread: a Driver runs one command at a time and owns its log"""
    from concurrent.futures import ThreadPoolExecutor

    def compile_file(source):
        return source, Driver(output_dir="build").compile(source, flags=[F.O2])

    with ThreadPoolExecutor(max_workers=4) as executor:
        for source, ok in executor.map(compile_file, SOURCES):
            print(f"  {source}: {'ok' if ok else 'FAILED'}")


if __name__ == "__main__":
    print("=" * 60)
    print("MetaCC Library Usage Examples")
    print("=" * 60)

    try:
        example_single_step()
        example_separate_steps()
        # Uncomment for parallel build example:
        # example_parallel_builds()
    except CompilerNotFoundError as e:
        print(e)
        sys.exit(3)
