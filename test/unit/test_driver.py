#!/usr/bin/env python3
"""
Unit tests for the Driver.

Verifies that:
1. Requests are validated before any subprocess is spawned
2. Only the active toolchain's xflags are applied
3. Up-to-date outputs are skipped unless forced
4. Every command run is logged and its output forwarded to the sinks
"""

import io
import logging
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from metacc import (
    Driver, BuildRequest, InvocationResult, UniversalFlag as F, GNU, MSVC,
    UnknownFlagError, ConfigurationError, CompilerNotFoundError, MetaccConfig,
)

from conftest import (
    FakeGNU, FakeGNUWithoutRanlib, FakeGNUWithoutAr, FakeClang, FakeTinyCC, FakeMSVC, FakeRun,
    write_source, SIMPLE_CPP_CODE,
)


class TestInvoke:
    """Basic invocation."""

    def test_compile_object(self, make_driver, fake_run, hello_c, tmp_path):
        """Compiling hello.c to an object: C compiler first, -o last, no library flags."""
        driver = make_driver()
        assert driver.invoke([hello_c], "hello.o", flags=[F.OBJECTS], libs=["m"], lib_paths=["/opt/lib"])

        cmd = fake_run.calls[0]
        assert cmd[0] == "gcc"
        assert cmd[-2:] == ["-o", str(tmp_path / "build" / "hello.o")]
        assert not any(arg.startswith(("-l", "-L")) for arg in cmd)

    def test_accepts_build_request(self, make_driver, fake_run, hello_c):
        request = BuildRequest.create(hello_c, "hello.o", flags=["objects", "o2"])
        assert make_driver().invoke(request)
        assert "-O2" in fake_run.calls[0]

    def test_failure_returns_false(self, make_driver, hello_c):
        driver = make_driver()
        with patch("metacc._driver.subprocess.run", FakeRun(returncode=1, stderr="error: boom\n")):
            assert not driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        assert driver.log[-1].returncode == 1
        assert not driver.log[-1].success

    def test_launch_failure_recorded(self, make_driver, hello_c):
        """A compiler that vanished after detection is a failed result, not an exception."""
        driver = make_driver()
        with patch("metacc._driver.subprocess.run", side_effect=FileNotFoundError("gcc")):
            assert not driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        assert driver.log[-1].returncode == 127
        assert driver.log[-1].stderr

    def test_build_returns_output_path(self, make_driver, fake_run, hello_c, tmp_path):
        assert make_driver().build(hello_c, "hello") == tmp_path / "build" / "hello"

    def test_build_returns_none_on_failure(self, make_driver, hello_c):
        driver = make_driver()
        with patch("metacc._driver.subprocess.run", FakeRun(returncode=2)):
            assert driver.build(hello_c, "hello") is None

    def test_env_and_working_dir_passed(self, make_driver, fake_run, hello_c, tmp_path):
        make_driver().invoke("hello.c", "hello.o", flags=[F.OBJECTS], env={"CCACHE_DISABLE": "1"},
                             working_dir=tmp_path)
        kwargs = fake_run.kwargs[0]
        assert kwargs["cwd"] == tmp_path
        assert kwargs["env"]["CCACHE_DISABLE"] == "1"
        assert kwargs["env"].get("PATH") == os.environ.get("PATH")

    def test_no_env_inherits_process_environment(self, make_driver, fake_run, hello_c):
        make_driver().invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        assert fake_run.kwargs[0]["env"] is None


class TestValidation:
    """Nothing is spawned or logged for a malformed request."""

    def test_unknown_flag_spawns_nothing(self, make_driver, fake_run, hello_c):
        driver = make_driver()
        with pytest.raises(UnknownFlagError):
            driver.invoke(hello_c, "hello.o", flags=[F.O2, "fast-math"])
        assert fake_run.calls == []
        assert driver.log == []

    def test_conflicting_output_kinds(self, make_driver, fake_run, hello_c):
        with pytest.raises(ConfigurationError):
            make_driver().invoke(hello_c, "hello.o", flags=[F.OBJECTS, F.SHARED])
        assert fake_run.calls == []

    def test_tinycc_rejects_cxx_before_spawning(self, make_driver, fake_run, hello_cpp):
        with pytest.raises(ConfigurationError):
            make_driver(FakeTinyCC).invoke(hello_cpp, "hello.o", flags=[F.OBJECTS])
        assert fake_run.calls == []

    def test_empty_inputs(self, make_driver, fake_run):
        driver = make_driver()
        with pytest.raises(ConfigurationError) as exc_info:
            driver.invoke([], None, flags=[F.OBJECTS])
        assert "at least one input" in str(exc_info.value)
        assert fake_run.calls == []
        assert driver.log == []

    def test_no_compiler(self, tmp_path):
        with patch("metacc._toolchain.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(CompilerNotFoundError):
                Driver(prefer=[GNU], output_dir=tmp_path)


class TestXflags:
    """Vendor-specific extra flags."""

    def test_only_active_toolchain_applies(self, make_driver, fake_run, hello_c):
        xflags = {FakeGNU: ["-fanalyzer"], MSVC: ["/analyze"]}
        make_driver().invoke(hello_c, "hello.o", flags=[F.OBJECTS], xflags=xflags)
        assert "-fanalyzer" in fake_run.calls[0]
        assert "/analyze" not in fake_run.calls[0]

    def test_kind_name_key(self, make_driver, fake_run, hello_c):
        make_driver().invoke(hello_c, "hello.o", flags=[F.OBJECTS], xflags={"gnu": ["-fanalyzer"], "msvc": ["/analyze"]})
        assert "-fanalyzer" in fake_run.calls[0]
        assert "/analyze" not in fake_run.calls[0]

    def test_parent_class_key_does_not_apply(self, make_driver, fake_run, hello_c):
        """Clang derives from GNU but a GNU entry is not meant for it."""
        make_driver(FakeClang).invoke(hello_c, "hello.o", flags=[F.OBJECTS], xflags={GNU: ["-fanalyzer"]})
        assert "-fanalyzer" not in fake_run.calls[0]

    def test_xflags_follow_translated_flags(self, make_driver, fake_run, hello_c):
        make_driver().invoke(hello_c, "hello.o", flags=[F.OBJECTS, F.O2], xflags={"gnu": "-fanalyzer"})
        cmd = fake_run.calls[0]
        assert cmd[1:4] == ["-c", "-O2", "-fanalyzer"]


class TestOutputPath:
    """Output path resolution."""

    def test_relative_output_under_output_dir(self, make_driver, fake_run, hello_c, tmp_path):
        make_driver().invoke(hello_c, Path("objs") / "hello.o", flags=[F.OBJECTS])
        assert fake_run.calls[0][-1] == str(tmp_path / "build" / "objs" / "hello.o")
        assert (tmp_path / "build" / "objs").is_dir()

    def test_absolute_output_unchanged(self, make_driver, fake_run, hello_c, tmp_path):
        output = tmp_path / "elsewhere" / "hello.o"
        make_driver().invoke(hello_c, output, flags=[F.OBJECTS])
        assert fake_run.calls[0][-1] == str(output)

    def test_default_object_name(self, make_driver, fake_run, hello_c, tmp_path):
        make_driver().invoke(hello_c, flags=[F.OBJECTS])
        assert fake_run.calls[0][-1] == str(tmp_path / "build" / "hello.o")

    def test_default_msvc_object_name(self, make_driver, fake_run, hello_c, tmp_path):
        make_driver(FakeMSVC).invoke(hello_c, flags=[F.OBJECTS])
        assert fake_run.calls[0][-1] == f"/Fo{tmp_path / 'build' / 'hello.obj'}"

    def test_default_static_name(self, make_driver, fake_run, tmp_path):
        obj = write_source(tmp_path / "util.o", "")
        make_driver().invoke(obj, flags=[F.STATIC])
        assert fake_run.calls[0][2] == str(tmp_path / "build" / "libutil.a")

    def test_output_dir_from_config(self, fake_run, hello_c, tmp_path):
        config = MetaccConfig({"output_dir": str(tmp_path / "out")})
        driver = Driver.from_config(config, prefer=[FakeGNU])
        driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        assert fake_run.calls[0][-1] == str(tmp_path / "out" / "hello.o")

    def test_log_dir_from_config(self, fake_run, hello_c, tmp_path):
        config = MetaccConfig({"output_dir": str(tmp_path / "out"), "log_dir": str(tmp_path / "logs")})
        driver = Driver.from_config(config, prefer=[FakeGNU])
        driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        driver.logger.close()
        content = (tmp_path / "logs" / "metacc.log").read_text(encoding="utf-8")
        assert "RUN - returncode: 0" in content

    def test_explicit_logger_wins_over_log_dir(self, fake_run, tmp_path):
        config = MetaccConfig({"log_dir": str(tmp_path / "logs")})
        logger = logging.getLogger("metacc.test")
        assert Driver.from_config(config, prefer=[FakeGNU], logger=logger).logger is logger
        assert not (tmp_path / "logs").exists()


class TestUpToDate:
    """mtime-based skipping."""

    def test_second_invoke_skipped(self, make_driver, fake_run, hello_c):
        driver = make_driver()
        assert driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        log_length = len(driver.log)
        assert driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        assert len(driver.log) == log_length
        assert len(fake_run.calls) == 1

    def test_force_always_runs(self, make_driver, fake_run, hello_c):
        driver = make_driver()
        driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS], force=True)
        assert len(driver.log) == 2

    def test_modified_input_rebuilds(self, make_driver, fake_run, hello_c, tmp_path):
        driver = make_driver()
        driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        output = tmp_path / "build" / "hello.o"
        later = output.stat().st_mtime + 10
        os.utime(hello_c, (later, later))
        driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        assert len(fake_run.calls) == 2

    @pytest.mark.pedantic
    def test_equal_mtime_rebuilds(self, tmp_path):
        """A tie is not up to date."""
        source = write_source(tmp_path / "a.c")
        output = tmp_path / "a.o"
        output.write_text("")
        stamp = source.stat().st_mtime_ns
        os.utime(output, ns=(stamp, stamp))
        assert not Driver.up_to_date(output, [source])

    def test_missing_input_rebuilds(self, tmp_path):
        output = tmp_path / "a.o"
        output.write_text("")
        assert not Driver.up_to_date(output, [tmp_path / "missing.c"])

    def test_missing_output_rebuilds(self, tmp_path):
        source = write_source(tmp_path / "a.c")
        assert not Driver.up_to_date(tmp_path / "a.o", [source])

    def test_newer_output_is_up_to_date(self, tmp_path):
        source = write_source(tmp_path / "a.c")
        output = tmp_path / "a.o"
        output.write_text("")
        assert Driver.up_to_date(output, [source])

    def test_inputs_relative_to_working_dir(self, make_driver, fake_run, tmp_path):
        """Staleness looks for relative inputs where the compiler will, in working_dir."""
        src_dir = tmp_path / "src"
        write_source(src_dir / "main.c")
        driver = make_driver()
        driver.invoke("main.c", "main.o", flags=[F.OBJECTS], working_dir=src_dir)
        driver.invoke("main.c", "main.o", flags=[F.OBJECTS], working_dir=src_dir)
        assert len(fake_run.calls) == 1


class TestStatic:
    """Static libraries go through the archiver."""

    def test_archive_with_indexer_runs_two_steps(self, make_driver, fake_run, tmp_path):
        objs = [write_source(tmp_path / "a.o", ""), write_source(tmp_path / "b.o", "")]
        driver = make_driver()
        assert driver.invoke(objs, "libab.a", flags=[F.STATIC])
        library = str(tmp_path / "build" / "libab.a")
        assert fake_run.calls == [["ar", "rcs", library, *map(str, objs)], ["ranlib", library]]
        assert len(driver.log) == 2

    def test_archive_without_indexer_runs_one_step(self, make_driver, fake_run, tmp_path):
        obj = write_source(tmp_path / "a.o", "")
        driver = make_driver(FakeGNUWithoutRanlib)
        assert driver.invoke([obj], "liba.a", flags=[F.STATIC])
        assert len(fake_run.calls) == 1

    def test_missing_archiver_fails_without_spawning(self, make_driver, fake_run, tmp_path):
        obj = write_source(tmp_path / "a.o", "")
        driver = make_driver(FakeGNUWithoutAr)
        assert not driver.invoke([obj], "liba.a", flags=[F.STATIC])
        assert fake_run.calls == []

    def test_sources_compiled_before_archiving(self, make_driver, fake_run, tmp_path):
        source = write_source(tmp_path / "util.c")
        driver = make_driver()
        assert driver.invoke([source], "libutil.a", flags=[F.STATIC, F.O2])
        obj = str(tmp_path / "build" / "util.o")
        compile_cmd, archive_cmd, _ = fake_run.calls
        assert compile_cmd == ["gcc", "-O2", "-c", str(source), "-o", obj]
        assert archive_cmd[:4] == ["ar", "rcs", str(tmp_path / "build" / "libutil.a"), obj]

    def test_msvc_archive(self, make_driver, fake_run, tmp_path):
        obj = write_source(tmp_path / "a.obj", "")
        make_driver(FakeMSVC).invoke([obj], "a.lib", flags=[F.STATIC])
        assert fake_run.calls == [["lib", f"/OUT:{tmp_path / 'build' / 'a.lib'}", str(obj)]]

    def test_stops_after_failed_step(self, make_driver, tmp_path):
        source = write_source(tmp_path / "util.c")
        recorder = FakeRun(returncode=1)
        with patch("metacc._driver.subprocess.run", recorder):
            assert not make_driver().invoke([source], "libutil.a", flags=[F.STATIC])
        assert len(recorder.calls) == 1


class TestLanguageSelection:
    def test_cxx_sniffed_from_single_source(self, make_driver, fake_run, hello_cpp):
        make_driver().invoke(hello_cpp, "hello.o", flags=[F.OBJECTS])
        assert fake_run.calls[0][0] == "g++"

    def test_explicit_language_wins(self, make_driver, fake_run, hello_cpp):
        make_driver().invoke(hello_cpp, "hello.o", flags=[F.OBJECTS], language="c")
        assert fake_run.calls[0][0] == "gcc"

    def test_several_inputs_default_to_c(self, make_driver, fake_run, tmp_path):
        sources = [write_source(tmp_path / "a.cpp", SIMPLE_CPP_CODE), write_source(tmp_path / "b.cpp", SIMPLE_CPP_CODE)]
        make_driver().invoke(sources, "app")
        assert fake_run.calls[0][0] == "gcc"


class TestConvenience:
    """compile / link_executable / link_shared / link_static."""

    def test_compile_adds_objects_flag(self, make_driver, fake_run, hello_c):
        assert make_driver().compile(hello_c, "hello.o", flags=[F.DEBUG])
        assert fake_run.calls[0][1:3] == ["-g3", "-c"]

    def test_compile_does_not_duplicate_objects(self, make_driver, fake_run, hello_c):
        make_driver().compile(hello_c, "hello.o", flags=["objects"])
        assert fake_run.calls[0].count("-c") == 1

    def test_link_executable(self, make_driver, fake_run, tmp_path):
        obj = write_source(tmp_path / "main.o", "")
        assert make_driver().link_executable([obj], "app", libs=["m"])
        assert fake_run.calls[0][:4] == ["g++", str(obj), "-lm", "-o"]

    def test_link_shared(self, make_driver, fake_run, tmp_path):
        obj = write_source(tmp_path / "a.o", "")
        make_driver().link_shared([obj], "liba.so", flags=[F.PIC])
        assert fake_run.calls[0][:3] == ["g++", "-fPIC", "-shared"]

    def test_link_with_clang_uses_cxx_driver(self, make_driver, fake_run, tmp_path):
        obj = write_source(tmp_path / "main.o", "")
        make_driver(FakeClang).link_executable([obj], "app")
        assert fake_run.calls[0][0] == "clang++"

    def test_link_language_explicit(self, make_driver, fake_run, tmp_path):
        obj = write_source(tmp_path / "main.o", "")
        make_driver().link_executable([obj], "app", language="c")
        assert fake_run.calls[0][0] == "gcc"

    def test_link_with_tinycc_uses_c_driver(self, make_driver, fake_run, tmp_path):
        obj = write_source(tmp_path / "main.o", "")
        assert make_driver(FakeTinyCC).link_executable([obj], "app")
        assert fake_run.calls[0][0] == "tcc"

    def test_link_static(self, make_driver, fake_run, tmp_path):
        obj = write_source(tmp_path / "a.o", "")
        assert make_driver().link_static([obj], "liba.a")
        assert fake_run.calls[0][:2] == ["ar", "rcs"]


class TestOutputForwarding:
    """Invocation log and sinks."""

    def test_log_entries(self, make_driver, hello_c):
        driver = make_driver()
        with patch("metacc._driver.subprocess.run", FakeRun(stdout="out\n", stderr="warning: x\n")):
            driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        entry = driver.log[0]
        assert isinstance(entry, InvocationResult)
        assert (entry.stdout, entry.stderr, entry.returncode) == ("out\n", "warning: x\n", 0)
        assert entry.command[0] == "gcc"

    def test_separate_sinks(self, make_driver, hello_c):
        out, err = io.StringIO(), io.StringIO()
        driver = make_driver(stdout_sink=out, stderr_sink=err)
        with patch("metacc._driver.subprocess.run", FakeRun(stdout="out\n", stderr="err\n")):
            driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        assert out.getvalue() == "out\n"
        assert err.getvalue() == "err\n"

    def test_shared_sink(self, make_driver, hello_c):
        both = io.StringIO()
        driver = make_driver(stdout_sink=both, stderr_sink=both)
        with patch("metacc._driver.subprocess.run", FakeRun(stdout="out\n", stderr="err\n")):
            driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        assert both.getvalue() == "out\nerr\n"

    def test_sink_without_write_ignored(self, make_driver, fake_run, hello_c):
        driver = make_driver(stdout_sink=object())
        assert driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])

    def test_commands_logged(self, make_driver, fake_run, hello_c, caplog):
        with caplog.at_level(logging.INFO, logger="metacc"):
            make_driver().invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        assert any("returncode: 0" in record.message for record in caplog.records)

    def test_skip_logged(self, make_driver, fake_run, hello_c, caplog):
        driver = make_driver()
        driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        with caplog.at_level(logging.INFO, logger="metacc"):
            driver.invoke(hello_c, "hello.o", flags=[F.OBJECTS])
        assert any("UP TO DATE" in record.message for record in caplog.records)

    def test_version_banner(self, make_driver):
        driver = make_driver()
        with patch("metacc._toolchain.subprocess.run") as run:
            run.return_value.stdout = "gcc (GCC) 14.2.0\n"
            assert driver.version_banner() == "gcc (GCC) 14.2.0\n"
        assert run.call_args[0][0] == ["gcc", "--version"]
