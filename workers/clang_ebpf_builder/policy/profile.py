"""
Profile - fixed compile policy for kernel-style eBPF C.

All flag opinions live here so the pipeline only assembles argv.
Changing a define or a codegen flag is a profile change, not a code
change.
"""
from dataclasses import dataclass
from typing import Tuple

from clang_ebpf_builder import PROFILE_ID


@dataclass(frozen=True)
class CompileProfile:
    """Flags, defines and file suffixes for the clang → llc pipeline."""

    profile_id: str

    # Stage 1 (clang → LLVM IR)
    warning_flags: Tuple[str, ...]
    codegen_flags: Tuple[str, ...]
    defines: Tuple[str, ...]
    module_name: str
    opt_level: str
    ir_suffix: str

    # Stage 2 (llc → object)
    march: str
    filetype: str

    # Last include entry, generic userland headers
    system_include: str = "/usr/include/"

    # Used for -I when the caller supplies no local include
    local_include_fallback: str = "."

    @classmethod
    def v1(cls) -> "CompileProfile":
        """The locked v1 profile: linux-bpf-clang-llc."""
        return cls(
            profile_id=PROFILE_ID,
            warning_flags=("-Wno-everything",),
            codegen_flags=(
                # __stack_chk_fail is not a supported BPF call
                "-fno-stack-protector",
                "-fno-jump-tables",
                "-fno-unwind-tables",
                "-fno-asynchronous-unwind-tables",
            ),
            defines=(
                "__KERNEL__",
                "__ASM_SYSREG_H",
                "__BPF_TRACING__",
            ),
            module_name="clang-built-ebpf-module",
            opt_level="-O2",
            ir_suffix=".ll",
            march="bpf",
            filetype="obj",
        )
