"""
Shared pytest fixtures for clang_ebpf_builder tests.

Provides a fake toolchain: small /bin/sh scripts standing in for uname,
gcc, clang and llc.  Every invocation is appended to a call log so tests
can assert which commands ran.  The fake clang writes a stub .ll file
and the fake llc writes a stub object, each to the path after ``-o``.

Real-object tests additionally compile MINIMAL_BPF_IR with llc.

Requirements:
  - a POSIX /bin/sh (Linux, macOS, WSL)
  - llc with the BPF target for the real-object tests (skipped otherwise)
"""
import os
import platform
import shutil
import subprocess
import stat
import textwrap
from pathlib import Path

import pytest

from clang_ebpf_builder.config import BuilderSettings
from clang_ebpf_builder.core.environment import BuildContext, Toolchain

# Bytes written by the fake llc
FAKE_OBJECT = b"\x7fELF\x01\xff fake bpf object\n"

KERNEL_RELEASE = "6.1.0-test"
TRIPLET = "x86_64-linux-gnu"
CLANG_INCLUDE = "/usr/lib/llvm/lib/clang/16/include"

# Minimal BPF module: one program section plus a license section
MINIMAL_BPF_IR = textwrap.dedent("""\
    target triple = "bpf"

    @_license = dso_local global [4 x i8] c"GPL\\00", section "license", align 1

    define dso_local i32 @prog() section "tracepoint/x" {
    entry:
      ret i32 0
    }
""")

# Writes the value after -o
_WRITE_OUTPUT = """\
out=""
prev=""
for a in "$@"; do
  if [ "$prev" = "-o" ]; then out="$a"; fi
  prev="$a"
done
if [ -n "$out" ]; then printf '%s' "$PAYLOAD" > "$out"; fi
"""


def _write_script(path: Path, body: str, log: Path) -> Path:
    path.write_text(
        "#!/bin/sh\n"
        f'echo "$(basename "$0") $*" >> "{log}"\n'
        + textwrap.dedent(body)
    )
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture(scope="session", autouse=True)
def posix_sh():
    """Skip everything if there is no /bin/sh to run the fake toolchain."""
    if platform.system() == "Windows" or not os.path.exists("/bin/sh"):
        pytest.skip("fake toolchain needs /bin/sh - run tests on Linux/WSL")


@pytest.fixture
def tool_dir(tmp_path) -> Path:
    d = tmp_path / "bin"
    d.mkdir()
    return d


@pytest.fixture
def call_log(tmp_path) -> Path:
    """File the fake tools append "<name> <args>" lines to."""
    p = tmp_path / "calls.log"
    p.touch()
    return p


@pytest.fixture
def make_tool(tool_dir, call_log):
    """Factory: make_tool(name, body) → path to an executable script."""
    def _make(name: str, body: str) -> str:
        return str(_write_script(tool_dir / name, body, call_log))
    return _make


@pytest.fixture
def fake_uname(make_tool) -> str:
    return make_tool("uname", f"""\
        case "$1" in
          -r) echo "{KERNEL_RELEASE}" ;;
          -m) echo "x86_64" ;;
        esac
    """)


@pytest.fixture
def fake_gcc(make_tool) -> str:
    return make_tool("gcc", f'echo "{TRIPLET}"\n')


@pytest.fixture
def fake_clang(make_tool) -> str:
    """Quiet clang: answers discovery, writes a stub IR file."""
    return make_tool("clang", f"""\
        if [ "$1" = "-print-file-name=include" ]; then
          echo "{CLANG_INCLUDE}"
          exit 0
        fi
        PAYLOAD="; ModuleID = 'fake'"
    """ + _WRITE_OUTPUT)


@pytest.fixture
def fake_llc(make_tool) -> str:
    """Quiet llc: writes FAKE_OBJECT to the -o path."""
    return make_tool("llc", """\
        out=""
        prev=""
        for a in "$@"; do
          if [ "$prev" = "-o" ]; then out="$a"; fi
          prev="$a"
        done
        printf '\\177ELF\\001\\377 fake bpf object\\n' > "$out"
    """)


@pytest.fixture
def noisy_tool(make_tool):
    """
    Factory for a stage tool that prints *stdout* / *stderr* and exits
    with *code*, still writing its -o file.
    """
    def _make(name: str, stdout: str = "", stderr: str = "", code: int = 0) -> str:
        body = "PAYLOAD=x\n" + _WRITE_OUTPUT
        if stdout:
            body += f"printf '%s' '{stdout}'\n"
        if stderr:
            body += f"printf '%s' '{stderr}' >&2\n"
        body += f"exit {code}\n"
        return make_tool(name, body)
    return _make


@pytest.fixture
def toolchain(fake_clang, fake_llc, fake_gcc, fake_uname) -> Toolchain:
    return Toolchain(clang=fake_clang, llc=fake_llc, gcc=fake_gcc, uname=fake_uname)


@pytest.fixture
def missing_toolchain(tmp_path) -> Toolchain:
    """Every executable points at a path that does not exist."""
    missing = tmp_path / "does-not-exist"
    return Toolchain(
        clang=str(missing / "clang"),
        llc=str(missing / "llc"),
        gcc=str(missing / "gcc"),
        uname=str(missing / "uname"),
    )


@pytest.fixture
def ctx() -> BuildContext:
    """Synthetic context with fixed paths."""
    return BuildContext(
        kernel_base="/kb",
        arch="x86",
        triplet=TRIPLET,
        clang_include=CLANG_INCLUDE,
        user_include=f"/usr/include/{TRIPLET}",
        local_include=None,
    )


@pytest.fixture
def source_file(tmp_path) -> Path:
    p = tmp_path / "prog.c"
    p.write_text('int prog(void *ctx) { return 0; }\nchar _license[] __attribute__((section("license"))) = "GPL";\n')
    return p


@pytest.fixture
def settings(toolchain, tmp_path, monkeypatch) -> BuilderSettings:
    """Settings wired to the fake toolchain, isolated from any local .env."""
    monkeypatch.chdir(tmp_path)
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    return BuilderSettings(
        CLANG=toolchain.clang,
        LLC=toolchain.llc,
        GCC=toolchain.gcc,
        UNAME=toolchain.uname,
        OUT_DIR=str(out_dir),
    )


@pytest.fixture
def calls(call_log):
    """calls() → lines of the call log so far."""
    def _read() -> list:
        return call_log.read_text().splitlines()
    return _read


@pytest.fixture
def fake_object() -> bytes:
    """Exact bytes the fake llc writes."""
    return FAKE_OBJECT


# ── real llc fixtures ────────────────────────────────────────────────

@pytest.fixture(scope="session")
def llc_path() -> str:
    """Skip tests if llc is not available."""
    path = shutil.which("llc")
    if path is None:
        pytest.skip("llc not available - install LLVM to run these tests")
    return path


@pytest.fixture
def bpf_ir(tmp_path) -> Path:
    p = tmp_path / "minimal_bpf.ll"
    p.write_text(MINIMAL_BPF_IR)
    return p


@pytest.fixture
def bpf_object(llc_path, bpf_ir, tmp_path) -> Path:
    """MINIMAL_BPF_IR compiled by llc into a real BPF ELF object."""
    out = tmp_path / "minimal_bpf.o"
    result = subprocess.run(
        [llc_path, "-march=bpf", "-filetype=obj", "-o", str(out), str(bpf_ir)],
        capture_output=True,
        text=True,
        timeout=30,
    )
    if result.returncode != 0:
        pytest.skip(f"llc has no BPF target: {result.stderr.strip()}")
    return out


@pytest.fixture
def ir_clang(make_tool, bpf_ir) -> str:
    """Quiet clang stand-in that emits MINIMAL_BPF_IR as its -o file."""
    return make_tool("ir-clang", f"""\
        out=""
        prev=""
        for a in "$@"; do
          if [ "$prev" = "-o" ]; then out="$a"; fi
          prev="$a"
        done
        cat "{bpf_ir}" > "$out"
    """)
