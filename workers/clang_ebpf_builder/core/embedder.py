"""
Artifact embedder - render object bytes as a generated source file.

The generated file holds a provenance header (kernel_base, arch,
triplet, DO NOT EDIT) and a single immutable byte-sequence constant
``DATA``.  Bytes are written as ``format(b, "#01x")``: ``0x0``,
``0x1``, ``0xff``.  Values below 0x10 are not zero-padded; the output
stays valid but irregular, and matches what earlier generated files
contain.
"""
import re
from enum import Enum
from typing import Iterable

from clang_ebpf_builder.core.environment import BuildContext
from clang_ebpf_builder.errors import ArtifactIOError


class EmbedFormat(str, Enum):
    """Target language of the generated file."""
    PYTHON = "python"
    RUST = "rust"


_HEADER = "Automatically generated for: kernel_base={} arch={} triplet={} - DO NOT EDIT."

# Module constant: built once on first import, shared by every importer.
_PYTHON_TEMPLATE = "# {header}\n\nDATA = bytes([{code}])\n"

_RUST_TEMPLATE = (
    "/// {header}\n\n"
    "use lazy_static::lazy_static;\n"
    "lazy_static! {{\n"
    "  pub static ref DATA: Vec<u8> = vec![{code}];\n"
    "}}"
)

_TEMPLATES = {
    EmbedFormat.PYTHON: _PYTHON_TEMPLATE,
    EmbedFormat.RUST: _RUST_TEMPLATE,
}

# Declaration line only; the provenance header never matches
_DATA_LIST = re.compile(r"^(?:DATA =|\s*pub static ref DATA:)[^\[]*\[([^\]]*)\]", re.M)


def _one_line(value: str) -> str:
    """Keep a provenance value inside the single header comment line."""
    return value.replace("\r", " ").replace("\n", " ")


def hex_literals(data: Iterable[int]) -> str:
    """Comma-separated hex literals, one per byte, no trailing comma."""
    return ",".join(format(b, "#01x") for b in data)


def render_embedded(
    data: bytes,
    ctx: BuildContext,
    fmt: EmbedFormat = EmbedFormat.PYTHON,
) -> str:
    """Generated source text for *data* with *ctx* as provenance."""
    header = _HEADER.format(*(_one_line(v) for v in (ctx.kernel_base, ctx.arch, ctx.triplet)))
    return _TEMPLATES[EmbedFormat(fmt)].format(header=header, code=hex_literals(data))


def write_embedded(
    path: str,
    data: bytes,
    ctx: BuildContext,
    fmt: EmbedFormat = EmbedFormat.PYTHON,
) -> str:
    """
    Write the generated file to *path*, truncating any existing content.

    Returns the written text.
    """
    text = render_embedded(data, ctx, fmt)
    try:
        with open(path, "w") as f:
            f.write(text)
    except OSError as e:
        raise ArtifactIOError(str(path), str(e)) from e
    return text


def parse_embedded(text: str) -> bytes:
    """
    Recover the byte sequence from generated text (either format).

    Raises
    ------
    ValueError
        If no ``DATA`` literal list is found or a literal is malformed.
    """
    match = _DATA_LIST.search(text)
    if match is None:
        raise ValueError("no DATA byte list in generated text")
    tokens = [t.strip() for t in match.group(1).split(",")]
    return bytes(int(t, 16) for t in tokens if t)
