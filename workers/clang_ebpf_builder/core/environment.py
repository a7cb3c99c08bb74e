"""
Environment resolver - determine the build context for clang.

Each field is resolved independently with a strict two-step priority:
  1. explicit override (the discovery command is then never run),
  2. computed default from host introspection.

Nothing is validated here.  A wrong path surfaces later as a compiler
diagnostic; an empty discovery output becomes the value verbatim.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from clang_ebpf_builder.core.commands import DEFAULT_TIMEOUT, run_discovery

logger = logging.getLogger(__name__)

# uname -m values the kernel tree files under arch/x86
ARCH_ALIASES = {
    "x86_64": "x86",
    "i386": "x86",
}


@dataclass(frozen=True)
class BuildContext:
    """Paths and tokens used by clang to compile an eBPF program."""

    kernel_base: str              # kernel headers root, /lib/modules/<release>/build/
    arch: str                     # kernel arch token, uname -m normalized
    triplet: str                  # target triplet, gcc -dumpmachine
    clang_include: str            # clang builtins, clang -print-file-name=include
    user_include: str             # /usr/include/<triplet>
    local_include: Optional[str] = None  # caller-supplied extra include dir


@dataclass(frozen=True)
class EnvironmentOverrides:
    """Explicit per-field overrides; None means "compute the default"."""

    kernel_base: Optional[str] = None
    arch: Optional[str] = None
    triplet: Optional[str] = None
    clang_include: Optional[str] = None
    user_include: Optional[str] = None


@dataclass(frozen=True)
class Toolchain:
    """Executables used for discovery and for the two compile stages."""

    clang: str = "clang"
    llc: str = "llc"
    gcc: str = "gcc"
    uname: str = "uname"


def normalize_arch(machine: str) -> str:
    """Map a machine type to the kernel arch directory name."""
    return ARCH_ALIASES.get(machine, machine)


def _override_or(name: str, override: Optional[str], default: Callable[[], str]) -> str:
    if override is not None:
        logger.debug("%s: override %r", name, override)
        return override
    value = default()
    logger.debug("%s: computed %r", name, value)
    return value


def resolve_context(
    overrides: Optional[EnvironmentOverrides] = None,
    local_include: Optional[str] = None,
    toolchain: Optional[Toolchain] = None,
    timeout: Optional[int] = DEFAULT_TIMEOUT,
) -> BuildContext:
    """
    Resolve a BuildContext.

    Parameters
    ----------
    overrides : EnvironmentOverrides, optional
        Values that replace the computed defaults.
    local_include : str, optional
        Extra include directory, passed through verbatim.
    toolchain : Toolchain, optional
        Executables used for discovery.  Defaults to the bare names.

    Raises
    ------
    DiscoveryCommandUnavailable
        If a discovery command that is actually needed cannot be run.
    """
    if overrides is None:
        overrides = EnvironmentOverrides()
    if toolchain is None:
        toolchain = Toolchain()

    def discover(*cmd: str) -> str:
        return run_discovery(list(cmd), timeout=timeout)

    kernel_base = _override_or(
        "kernel_base",
        overrides.kernel_base,
        lambda: f"/lib/modules/{discover(toolchain.uname, '-r')}/build/",
    )
    arch = _override_or(
        "arch",
        overrides.arch,
        lambda: normalize_arch(discover(toolchain.uname, "-m")),
    )
    clang_include = _override_or(
        "clang_include",
        overrides.clang_include,
        lambda: discover(toolchain.clang, "-print-file-name=include"),
    )
    triplet = _override_or(
        "triplet",
        overrides.triplet,
        lambda: discover(toolchain.gcc, "-dumpmachine"),
    )
    user_include = _override_or(
        "user_include",
        overrides.user_include,
        lambda: f"/usr/include/{triplet}",
    )

    return BuildContext(
        kernel_base=kernel_base,
        arch=arch,
        triplet=triplet,
        clang_include=clang_include,
        user_include=user_include,
        local_include=str(local_include) if local_include is not None else None,
    )
