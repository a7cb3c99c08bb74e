"""
ELF reader - informational metadata for the compiled BPF object.

Used only to enrich the build receipt.  The object is never rejected
or modified based on what is found here.
"""
import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from elftools.common.exceptions import ELFError
from elftools.elf.constants import SH_FLAGS
from elftools.elf.elffile import ELFFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ObjectElfInfo:
    """Structural facts about a BPF object file."""

    machine: str             # "EM_BPF" for llc -march=bpf output
    elf_class: int           # 32 or 64
    endianness: str          # "little" or "big"
    elf_type: str            # "ET_REL" for -filetype=obj
    section_names: List[str] = field(default_factory=list)
    program_sections: List[str] = field(default_factory=list)  # executable sections
    license: Optional[str] = None


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _read_license(elffile: ELFFile) -> Optional[str]:
    section = elffile.get_section_by_name("license")
    if section is None:
        return None
    return section.data().split(b"\x00", 1)[0].decode("utf-8", errors="replace")


def describe_object(path: str) -> Optional[ObjectElfInfo]:
    """
    Read ELF metadata from *path*.

    Returns None (and logs a warning) if the file is not a readable ELF.
    """
    try:
        with open(Path(path), "rb") as f:
            elffile = ELFFile(f)
            sections = list(elffile.iter_sections())
            names = [s.name for s in sections if s.name]
            programs = [
                s.name for s in sections
                if s["sh_type"] == "SHT_PROGBITS" and s["sh_flags"] & SH_FLAGS.SHF_EXECINSTR
            ]
            return ObjectElfInfo(
                machine=elffile.header["e_machine"],
                elf_class=elffile.elfclass,
                endianness="little" if elffile.little_endian else "big",
                elf_type=elffile.header["e_type"],
                section_names=names,
                program_sections=programs,
                license=_read_license(elffile),
            )
    except (ELFError, OSError) as e:
        logger.warning("ELF metadata unavailable for %s: %s", path, e)
        return None
