"""
Schema - Pydantic models for the build receipt.

One receipt per build: build_receipt.json.
Records the resolved context, every executed toolchain stage, the
produced object and the embedding, or where and why the build stopped.
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from clang_ebpf_builder import BUILDER_NAME, BUILDER_VERSION, PROFILE_ID


class BuilderInfo(BaseModel):
    name: str = BUILDER_NAME
    version: str = BUILDER_VERSION
    profile_id: str = PROFILE_ID


class ContextModel(BaseModel):
    """Resolved BuildContext (only present on success)."""
    kernel_base: str
    arch: str
    triplet: str
    clang_include: str
    user_include: str
    local_include: Optional[str] = None


class PhaseRecord(BaseModel):
    """One toolchain stage (emit_ir / emit_object)."""
    name: str
    command: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    status: str               # SUCCESS | FAILED


class ObjectElf(BaseModel):
    machine: str = ""
    elf_class: int = 0
    endianness: str = ""
    elf_type: str = ""
    section_names: List[str] = Field(default_factory=list)
    program_sections: List[str] = Field(default_factory=list)
    license: Optional[str] = None


class ObjectMeta(BaseModel):
    """The compiled BPF object."""
    path: str
    sha256: str
    size_bytes: int
    elf: Optional[ObjectElf] = None   # None if not readable as ELF


class EmbedRecord(BaseModel):
    destination: str
    format: str               # python | rust
    byte_count: int


class BuildReceipt(BaseModel):
    """Single authoritative record of one build invocation."""

    builder: BuilderInfo = Field(default_factory=BuilderInfo)

    input_path: str
    output_path: str
    intermediate_path: str
    intermediate_kept: bool = False

    status: str = "FAILED"    # SUCCESS | FAILED
    stage: str                # final BuildStage
    failed_from: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    context: Optional[ContextModel] = None
    phases: List[PhaseRecord] = Field(default_factory=list)
    artifact: Optional[ObjectMeta] = None
    embed: Optional[EmbedRecord] = None

    created_at: str
    finished_at: Optional[str] = None


def now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()
