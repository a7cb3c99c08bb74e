"""
clang_ebpf_builder - eBPF program builder driven by clang + llc.

Resolve the kernel/compiler build environment, compile a C eBPF program
to a BPF ELF object in two stages (C → LLVM IR → object), and optionally
embed the object bytes into a generated source file.

No loader, no verifier, no kernel header validation.
"""

__version__ = "0.1.0"
BUILDER_NAME = "clang_ebpf_builder"
BUILDER_VERSION = "v1"
PROFILE_ID = "linux-bpf-clang-llc"
ENV_PREFIX = "CLANG_EBPF_BUILDER_"
