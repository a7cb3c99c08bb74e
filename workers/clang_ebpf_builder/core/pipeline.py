"""
Compile pipeline - C → LLVM IR → BPF object, as two ordered stages.

The two stages cannot be merged into one clang invocation: the target
architecture is not propagated through the compile chain for some
arch-conditional kernel headers (linux/ptrace.h among them), which then
mis-expand silently.  See iovisor/bcc#2578.

Stage outcome is classified from the captured output, not the exit code:
  1. stripped stdout non-empty → failure, payload = stdout verbatim
  2. stripped stderr non-empty → failure, payload = stderr verbatim
  3. otherwise                 → success

The build is tracked as a small state machine:

    UNRESOLVED → RESOLVED → IR_GENERATED → OBJECT_GENERATED → EMBEDDED

with a FAILED transition out of every non-terminal state.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional

from clang_ebpf_builder.core.commands import DEFAULT_TIMEOUT, ToolRun, run_tool
from clang_ebpf_builder.core.embedder import EmbedFormat, write_embedded
from clang_ebpf_builder.core.environment import (
    BuildContext,
    EnvironmentOverrides,
    Toolchain,
    resolve_context,
)
from clang_ebpf_builder.errors import ArtifactIOError, CompileError, EbpfBuildError
from clang_ebpf_builder.policy.profile import CompileProfile

logger = logging.getLogger(__name__)


class BuildStage(str, Enum):
    UNRESOLVED = "UNRESOLVED"
    RESOLVED = "RESOLVED"
    IR_GENERATED = "IR_GENERATED"
    OBJECT_GENERATED = "OBJECT_GENERATED"
    EMBEDDED = "EMBEDDED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class StageFailure:
    """Failure transition: where the build stopped and why."""

    from_stage: BuildStage
    error: EbpfBuildError


@dataclass(frozen=True)
class StageRun:
    """One executed toolchain stage and its classified outcome."""

    name: str                    # "emit_ir" | "emit_object"
    run: ToolRun
    error: Optional[str] = None  # classified payload, None on success


# ── argv assembly ────────────────────────────────────────────────────────────

def include_args(ctx: BuildContext, profile: CompileProfile) -> List[str]:
    """
    Stage-1 include arguments, in search order.

    Earlier entries shadow same-named headers in later ones.  kconfig.h
    is force-included between the kernel and generated uapi entries.
    """
    kb = ctx.kernel_base
    arch_inc = f"{kb}/arch/{ctx.arch}/include"
    local = ctx.local_include if ctx.local_include is not None else profile.local_include_fallback

    return [
        "-isystem", ctx.clang_include,
        "-I", f"{arch_inc}/generated/uapi",
        "-I", f"{arch_inc}/generated",
        "-I", arch_inc,
        "-I", f"{arch_inc}/uapi",
        "-I", f"{kb}/include",
        "-I", f"{kb}/include/uapi",
        "-include", f"{kb}/include/linux/kconfig.h",
        "-I", f"{kb}/include/generated/uapi",
        "-I", local,
        "-I", ctx.user_include,
        "-I", profile.system_include,
    ]


def define_args(ctx: BuildContext, profile: CompileProfile) -> List[str]:
    """Stage-1 preprocessor definitions."""
    args: List[str] = []
    for name in profile.defines:
        args += ["-D", name]
    args += ["-D", f'KBUILD_MODNAME="{profile.module_name}"']
    args += ["-D", f"__TARGET_ARCH_{ctx.arch}"]
    return args


def intermediate_path(output_path: str, profile: CompileProfile) -> str:
    return f"{output_path}{profile.ir_suffix}"


def ir_command(
    input_path: str,
    output_path: str,
    ctx: BuildContext,
    toolchain: Toolchain,
    profile: CompileProfile,
) -> List[str]:
    """clang argv for C → LLVM IR."""
    return (
        [toolchain.clang, "-S", "-nostdinc"]
        + include_args(ctx, profile)
        + list(profile.warning_flags)
        + list(profile.codegen_flags)
        + define_args(ctx, profile)
        + [profile.opt_level, "-emit-llvm"]
        + ["-c", str(input_path)]
        + ["-o", intermediate_path(output_path, profile)]
    )


def object_command(
    output_path: str,
    toolchain: Toolchain,
    profile: CompileProfile,
) -> List[str]:
    """llc argv for LLVM IR → BPF object."""
    return [
        toolchain.llc,
        f"-march={profile.march}",
        f"-filetype={profile.filetype}",
        "-o", str(output_path),
        intermediate_path(output_path, profile),
    ]


# ── output classification ────────────────────────────────────────────────────

def classify_output(stdout: str, stderr: str) -> Optional[str]:
    """
    Return the failure payload for a stage, or None on success.

    stdout is checked before stderr, even though compilers usually
    report on stderr; the exit status is not consulted.
    """
    if stdout.strip():
        return stdout
    if stderr.strip():
        return stderr
    return None


# ── intermediate file ────────────────────────────────────────────────────────

@contextmanager
def intermediate_file(path: str, keep: bool = False) -> Iterator[str]:
    """
    Scope the stage-1 output file.

    Removed on every exit path unless *keep* is set, in which case it
    is left next to the object.
    """
    try:
        yield path
    finally:
        if not keep:
            try:
                Path(path).unlink()
            except FileNotFoundError:
                pass
            else:
                logger.debug("Removed intermediate %s", path)


# ── state machine ────────────────────────────────────────────────────────────

class CompilePipeline:
    """
    Drives one build through resolution, both compile stages and the
    optional embedding step.

    Usage::

        pipeline = CompilePipeline("prog.c", "prog.o")
        pipeline.resolve(overrides, local_include="include")
        pipeline.compile()
        pipeline.embed("prog_data.py")

    Each step raises on failure after recording the failure transition;
    ``state``, ``failure`` and ``stages`` stay inspectable afterwards.
    """

    def __init__(
        self,
        input_path: str,
        output_path: str,
        toolchain: Optional[Toolchain] = None,
        profile: Optional[CompileProfile] = None,
        timeout: Optional[int] = DEFAULT_TIMEOUT,
        keep_intermediate: bool = False,
    ):
        self.input_path = str(input_path)
        self.output_path = str(output_path)
        self.toolchain = toolchain or Toolchain()
        self.profile = profile or CompileProfile.v1()
        self.timeout = timeout
        self.keep_intermediate = keep_intermediate

        self.state = BuildStage.UNRESOLVED
        self.context: Optional[BuildContext] = None
        self.failure: Optional[StageFailure] = None
        self.stages: List[StageRun] = []

    # -- transitions ----------------------------------------------------------

    def _expect(self, *states: BuildStage):
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise RuntimeError(f"pipeline is {self.state.value}, expected {allowed}")

    def _fail(self, error: EbpfBuildError):
        logger.error("Build of %s failed in %s: %s", self.input_path, self.state.value, error.kind)
        self.failure = StageFailure(from_stage=self.state, error=error)
        self.state = BuildStage.FAILED

    def resolve(
        self,
        overrides: Optional[EnvironmentOverrides] = None,
        local_include: Optional[str] = None,
    ) -> BuildContext:
        """UNRESOLVED → RESOLVED by resolving the environment."""
        self._expect(BuildStage.UNRESOLVED)
        try:
            ctx = resolve_context(overrides, local_include, self.toolchain, self.timeout)
        except EbpfBuildError as e:
            self._fail(e)
            raise
        return self.bind(ctx)

    def bind(self, context: BuildContext) -> BuildContext:
        """UNRESOLVED → RESOLVED with an already resolved context."""
        self._expect(BuildStage.UNRESOLVED)
        self.context = context
        self.state = BuildStage.RESOLVED
        logger.info(
            "Resolved context: kernel_base=%s arch=%s triplet=%s",
            context.kernel_base, context.arch, context.triplet,
        )
        return context

    def _run_stage(self, name: str, cmd: List[str], reached: BuildStage):
        logger.info("Running %s for %s", name, self.input_path)
        try:
            run = run_tool(cmd, timeout=self.timeout)
        except EbpfBuildError as e:
            self._fail(e)
            raise

        payload = classify_output(run.stdout, run.stderr)
        self.stages.append(StageRun(name=name, run=run, error=payload))
        if payload is not None:
            error = CompileError(name, payload)
            self._fail(error)
            raise error
        self.state = reached

    def compile(self) -> BuildContext:
        """RESOLVED → IR_GENERATED → OBJECT_GENERATED."""
        self._expect(BuildStage.RESOLVED)
        assert self.context is not None

        ir_path = intermediate_path(self.output_path, self.profile)
        with intermediate_file(ir_path, keep=self.keep_intermediate):
            self._run_stage(
                "emit_ir",
                ir_command(self.input_path, self.output_path, self.context, self.toolchain, self.profile),
                BuildStage.IR_GENERATED,
            )
            self._run_stage(
                "emit_object",
                object_command(self.output_path, self.toolchain, self.profile),
                BuildStage.OBJECT_GENERATED,
            )

        logger.info("Compiled %s → %s", self.input_path, self.output_path)
        return self.context

    def read_object(self) -> bytes:
        """Bytes of the compiled object (OBJECT_GENERATED or EMBEDDED)."""
        self._expect(BuildStage.OBJECT_GENERATED, BuildStage.EMBEDDED)
        try:
            return Path(self.output_path).read_bytes()
        except OSError as e:
            error = ArtifactIOError(self.output_path, str(e))
            self._fail(error)
            raise error from e

    def embed(
        self,
        destination: str,
        fmt: EmbedFormat = EmbedFormat.PYTHON,
        data: Optional[bytes] = None,
    ) -> int:
        """
        OBJECT_GENERATED → EMBEDDED.  Returns the number of embedded bytes.

        *data* is the object as already read by the caller; the object file
        is read only when it is not given.
        """
        self._expect(BuildStage.OBJECT_GENERATED)
        assert self.context is not None

        if data is None:
            data = self.read_object()
        try:
            write_embedded(destination, data, self.context, fmt)
        except ArtifactIOError as e:
            self._fail(e)
            raise
        self.state = BuildStage.EMBEDDED
        logger.info("Embedded %d bytes into %s", len(data), destination)
        return len(data)


def compile_program(
    input_path: str,
    output_path: str,
    context: BuildContext,
    toolchain: Optional[Toolchain] = None,
    profile: Optional[CompileProfile] = None,
    timeout: Optional[int] = DEFAULT_TIMEOUT,
    keep_intermediate: bool = False,
) -> BuildContext:
    """
    Compile *input_path* into the BPF object *output_path* using *context*.

    Returns the context on success.

    Raises
    ------
    CompileError
        If either stage produced diagnostic output.
    ToolInvocationError
        If clang or llc could not be executed.
    """
    pipeline = CompilePipeline(
        input_path,
        output_path,
        toolchain=toolchain,
        profile=profile,
        timeout=timeout,
        keep_intermediate=keep_intermediate,
    )
    pipeline.bind(context)
    return pipeline.compile()
