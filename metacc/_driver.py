"""
Main MetaCC driver.

Turns a BuildRequest into the native command line of the detected toolchain,
skips steps whose output is already up to date, runs the command, and keeps a
log of everything it ran.
"""

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Type, Union

from ._config import MetaccConfig, DEFAULT_OUTPUT_DIR
from ._detector import ToolchainDetector, DEFAULT_CANDIDATES
from ._errors import ConfigurationError
from ._flags import UniversalFlag, OUTPUT_KIND_FLAGS, parse_flags
from ._logger import MetaccLogger
from ._msvc import EnvironmentSink, DEFAULT_MSVC_ARCH
from ._request import BuildRequest, InvocationResult
from ._toolchain import Toolchain, Command, Language, OutputKind, PathLike

# returncode recorded when a command cannot be launched at all
LAUNCH_FAILURE_RETURNCODE = 127


class Driver:
    """Runs compile, link and archive steps with the first available toolchain.

    Not thread-safe: one Driver runs one subprocess at a time and owns its log.
    """

    def __init__(self, prefer: Sequence[Type[Toolchain]] = DEFAULT_CANDIDATES,
                 search_paths: Sequence[PathLike] = (), stdout_sink=None, stderr_sink=None,
                 output_dir: PathLike = DEFAULT_OUTPUT_DIR, logger=None,
                 env_sink: Optional[EnvironmentSink] = None, msvc_arch: str = DEFAULT_MSVC_ARCH):
        """Detect the toolchain. MSVC bootstrap, if needed, happens here.
        Args:    prefer: Toolchain classes to probe, in priority order
                 search_paths: Directories searched for compiler executables before PATH
                 stdout_sink: Optional object whose write() receives each command's stdout
                 stderr_sink: Optional object whose write() receives each command's stderr
                              (may be the same object as stdout_sink)
                 output_dir: Directory that relative output paths are placed under
                 logger: Logger (defaults to the "metacc" logger)
                 env_sink: Where MSVC bootstrap writes environment variables (defaults to os.environ)
                 msvc_arch: Target architecture passed to vcvarsall.bat
        Raises:  CompilerNotFoundError if no candidate is available"""
        self.logger = logger if logger is not None else logging.getLogger("metacc")
        self.stdout_sink = stdout_sink
        self.stderr_sink = stderr_sink
        self.output_dir = Path(output_dir).absolute()
        self.log: List[InvocationResult] = []
        detector = ToolchainDetector(search_paths, env_sink=env_sink, msvc_arch=msvc_arch, logger=self.logger)
        self.toolchain = detector.detect(prefer)

    @classmethod
    def from_config(cls, config: MetaccConfig, **overrides) -> "Driver":
        """Create a Driver from a MetaccConfig; keyword arguments override config values.
        A configured log_dir gets a MetaccLogger writing metacc.log there."""
        kwargs = {
            "prefer": config.prefer,
            "search_paths": config.search_paths,
            "output_dir": config.output_dir,
            "msvc_arch": config.msvc_arch,
        }
        if config.log_dir is not None and "logger" not in overrides:
            kwargs["logger"] = MetaccLogger(config.log_dir)
        kwargs.update(overrides)
        return cls(**kwargs)

    def version_banner(self) -> str:
        return self.toolchain.version_banner()

    def translate_flags(self, flags: Sequence[Union[UniversalFlag, str]]) -> List[str]:
        """Translate universal flags for the active toolchain.
        Raises:  UnknownFlagError before anything is looked up"""
        return self.toolchain.flags.translate(flags)

    def extra_flags(self, xflags: Mapping) -> List[str]:
        """Native flags from xflags entries keyed by the active toolchain's class or kind name."""
        active_class = type(self.toolchain)
        extra = []
        for key, values in xflags.items():
            if key is active_class or key == active_class.kind:
                extra.extend([values] if isinstance(values, str) else values)
        return extra

    def resolve_output(self, path: PathLike) -> Path:
        """Absolute paths are used as-is; relative paths are placed under output_dir."""
        path = Path(path)
        return path if path.is_absolute() else self.output_dir / path

    def default_output(self, request: BuildRequest, output_kind: OutputKind) -> Path:
        """<stem of first input><conventional extension>, e.g. hello.c -> hello.o, util.c -> libutil.a"""
        stem = Path(request.inputs[0]).stem
        extension = self.toolchain.default_extension(output_kind)
        if extension in (".a", ".so", ".dylib"):
            stem = f"lib{stem}"
        return Path(stem + extension)

    @staticmethod
    def up_to_date(output: Path, inputs: Sequence[Path]) -> bool:
        """True if output exists and is strictly newer than every input.
        False if the output or any input is missing, or any input is as new or newer.
        Timestamps only: clock skew or touching a file without changing it fools this check."""
        if not output.exists():
            return False
        output_mtime = output.stat().st_mtime_ns
        return all(p.exists() and p.stat().st_mtime_ns < output_mtime for p in inputs)

    def invoke(self, request: Union[BuildRequest, PathLike, Sequence[PathLike]],
               output: Optional[PathLike] = None, **kwargs) -> bool:
        """Run one build step.
        Args:    request: A BuildRequest, or the input file(s) followed by the BuildRequest
                          fields as keyword arguments (flags=, xflags=, include_paths=,
                          definitions=, libs=, lib_paths=, language=, force=, env=, working_dir=)
                 output: Output path (when request is not a BuildRequest)
        Returns: True if the step succeeded or was skipped as up to date
        Raises:  UnknownFlagError, ConfigurationError for malformed requests"""
        return self.build(request, output, **kwargs) is not None

    def build(self, request: Union[BuildRequest, PathLike, Sequence[PathLike]],
              output: Optional[PathLike] = None, **kwargs) -> Optional[Path]:
        """Same as invoke, but returns the resolved output path on success and None on failure."""
        if not isinstance(request, BuildRequest):
            request = BuildRequest.create(request, output, **kwargs)
        if not request.inputs:
            raise ConfigurationError("at least one input is required")

        # Everything that can reject the request happens before any subprocess
        native_flags = self.translate_flags(request.flags)
        output_kind = request.output_kind
        language = request.effective_language()
        self.toolchain.compiler_for(language)
        native_flags += self.extra_flags(request.xflags)

        out = self.resolve_output(request.output if request.output is not None
                                  else self.default_output(request, output_kind))

        working_dir = Path(request.working_dir) if request.working_dir is not None else None
        inputs = [self._locate(p, working_dir) for p in request.inputs]
        if not request.force and self.up_to_date(out, inputs):
            self.logger.info(f"UP TO DATE - output: {out}")
            return out

        if output_kind is OutputKind.STATIC:
            if self.toolchain.archiver is None:
                self.logger.warning(f"No archiver available for {type(self.toolchain).__name__}, cannot create {out}")
                return None
            commands = self.archive_commands(request, out)
        else:
            commands = [self.toolchain.command(request.inputs, out, native_flags, request.include_paths,
                                               request.definitions, request.libs, request.lib_paths,
                                               language=language)]

        out.parent.mkdir(parents=True, exist_ok=True)
        for cmd in commands:
            if not self.run_command(cmd, env=request.env, working_dir=working_dir).success:
                return None
        return out

    def archive_commands(self, request: BuildRequest, out: Path) -> List[Command]:
        """Commands for a static library request. Source inputs are compiled to
        objects next to the library first; object inputs are archived as they are."""
        compile_flags = [flag for flag in parse_flags(request.flags)
                         if flag not in OUTPUT_KIND_FLAGS] + [UniversalFlag.OBJECTS]
        native_flags = self.translate_flags(compile_flags) + self.extra_flags(request.xflags)
        object_ext = self.toolchain.default_extension(OutputKind.OBJECTS)

        commands: List[Command] = []
        objects: List[PathLike] = []
        for path in request.inputs:
            source_language = Language.from_path(path)
            if source_language is None:
                objects.append(path)
                continue
            obj = out.parent / (Path(path).stem + object_ext)
            commands.append(self.toolchain.compile([path], obj, native_flags, request.include_paths,
                                                   request.definitions,
                                                   language=request.language or source_language))
            objects.append(obj)
        return commands + self.toolchain.archive(objects, out)

    def compile(self, sources: Union[PathLike, Sequence[PathLike]], output: Optional[PathLike] = None,
                flags: Sequence[Union[UniversalFlag, str]] = (), **kwargs) -> bool:
        """Compile source file(s) into an object file."""
        return self.invoke(sources, output, flags=self._with_flag(flags, UniversalFlag.OBJECTS), **kwargs)

    def link_language(self) -> Language:
        """C++ where the toolchain has a C++ driver (it links C objects too), otherwise C."""
        return Language.CXX if Language.CXX in self.toolchain.languages else Language.C

    def link_executable(self, objects: Sequence[PathLike], output: PathLike,
                        flags: Sequence[Union[UniversalFlag, str]] = (), **kwargs) -> bool:
        """Link object files into an executable. Links with link_language() unless language= is given."""
        kwargs.setdefault("language", self.link_language())
        return self.invoke(objects, output, flags=flags, **kwargs)

    def link_shared(self, objects: Sequence[PathLike], output: PathLike,
                    flags: Sequence[Union[UniversalFlag, str]] = (), **kwargs) -> bool:
        """Link object files into a shared library."""
        kwargs.setdefault("language", self.link_language())
        return self.invoke(objects, output, flags=self._with_flag(flags, UniversalFlag.SHARED), **kwargs)

    def link_static(self, objects: Sequence[PathLike], output: PathLike, **kwargs) -> bool:
        """Archive object files into a static library (ar + ranlib, or lib on MSVC)."""
        return self.invoke(objects, output, flags=[UniversalFlag.STATIC], **kwargs)

    def run_command(self, cmd: List[str], env: Optional[Mapping[str, str]] = None,
                    working_dir: Optional[Path] = None) -> InvocationResult:
        """Run one command, record it in the log and forward its output to the sinks.
        A non-zero exit is reported in the result, never raised."""
        start_time = time.perf_counter()
        full_env = {**os.environ, **env} if env else None
        try:
            result = subprocess.run(
                cmd,
                cwd=working_dir,
                capture_output=True,
                text=True,
                errors="replace",
                env=full_env
            )
            invocation = InvocationResult(cmd, result.stdout, result.stderr, result.returncode)
        except OSError as e:
            invocation = InvocationResult(cmd, "", f"{cmd[0]}: {e}\n", LAUNCH_FAILURE_RETURNCODE)

        self.record_output(invocation)
        elapsed = time.perf_counter() - start_time
        if invocation.success:
            self.logger.info(f"RUN - returncode: 0, time: {elapsed:.3f} seconds, command: {cmd}")
        else:
            self.logger.warning(f"FAILED - returncode: {invocation.returncode}, "
                                f"time: {elapsed:.3f} seconds, command: {cmd}")
        return invocation

    def record_output(self, invocation: InvocationResult):
        self.log.append(invocation)
        if hasattr(self.stdout_sink, "write"):
            self.stdout_sink.write(invocation.stdout)
        if hasattr(self.stderr_sink, "write"):
            self.stderr_sink.write(invocation.stderr)

    @staticmethod
    def _locate(path: PathLike, working_dir: Optional[Path]) -> Path:
        path = Path(path)
        if working_dir is not None and not path.is_absolute():
            return working_dir / path
        return path

    @staticmethod
    def _with_flag(flags: Sequence[Union[UniversalFlag, str]], flag: UniversalFlag) -> List:
        flags = list(flags)
        if flag not in flags and flag.value not in flags:
            flags.append(flag)
        return flags
