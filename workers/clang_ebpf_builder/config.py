"""
Builder configuration

Every value can be set through a ``CLANG_EBPF_BUILDER_*`` environment
variable (or a local ``.env`` file).  The environment is read here and
nowhere else: core code receives explicit ``EnvironmentOverrides`` and
``Toolchain`` values built from these settings.
"""
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from clang_ebpf_builder import ENV_PREFIX
from clang_ebpf_builder.core.environment import EnvironmentOverrides, Toolchain


class BuilderSettings(BaseSettings):
    """Builder settings"""

    # Build context overrides (None → computed default)
    LINUX_KERNEL_BASE: Optional[str] = None
    LINUX_ARCH: Optional[str] = None
    LINUX_TRIPLET: Optional[str] = None
    CLANG_INCLUDE: Optional[str] = None
    USER_INCLUDE: Optional[str] = None

    # Toolchain executables
    CLANG: str = "clang"
    LLC: str = "llc"
    GCC: str = "gcc"
    UNAME: str = "uname"

    # Object output directory for build_to_code (cargo-style OUT_DIR accepted)
    OUT_DIR: Optional[str] = Field(
        None,
        validation_alias=AliasChoices(f"{ENV_PREFIX}OUT_DIR", "OUT_DIR"),
    )

    # Keep <output>.ll after the build instead of removing it
    KEEP_INTERMEDIATE: bool = False

    # Per-invocation timeout in seconds
    TIMEOUT: int = 120

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        case_sensitive=True,
        populate_by_name=True,
        extra="ignore",
    )

    def overrides(self) -> EnvironmentOverrides:
        """Context overrides as an explicit value for the resolver."""
        return EnvironmentOverrides(
            kernel_base=self.LINUX_KERNEL_BASE,
            arch=self.LINUX_ARCH,
            triplet=self.LINUX_TRIPLET,
            clang_include=self.CLANG_INCLUDE,
            user_include=self.USER_INCLUDE,
        )

    def toolchain(self) -> Toolchain:
        """Executable names for discovery and compilation."""
        return Toolchain(
            clang=self.CLANG,
            llc=self.LLC,
            gcc=self.GCC,
            uname=self.UNAME,
        )
