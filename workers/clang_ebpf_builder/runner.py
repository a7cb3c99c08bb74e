"""
Builder runner - top-level orchestration: C source → BPF object → embed.

Entry points:
  - build:          compile only, returns the BuildContext or raises.
  - build_to_code:  compile into OUT_DIR, then embed the object bytes
                    into a generated source file.
  - run_build:      same steps, never raises for build failures; returns
                    a BuildReceipt describing what happened.

Also runnable as a CLI:

    python -m clang_ebpf_builder.runner prog.c prog.o -I include --embed prog_data.py
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from clang_ebpf_builder.config import BuilderSettings
from clang_ebpf_builder.core.elf_reader import describe_object, sha256_bytes
from clang_ebpf_builder.core.embedder import EmbedFormat
from clang_ebpf_builder.core.environment import BuildContext
from clang_ebpf_builder.core.pipeline import CompilePipeline, intermediate_path
from clang_ebpf_builder.errors import ConfigurationError, EbpfBuildError
from clang_ebpf_builder.io.schema import (
    BuildReceipt,
    ContextModel,
    EmbedRecord,
    ObjectElf,
    ObjectMeta,
    PhaseRecord,
    now_iso,
)
from clang_ebpf_builder.io.writer import write_receipt

logger = logging.getLogger(__name__)


def _pipeline(input_path: str, output_path: str, settings: BuilderSettings) -> CompilePipeline:
    return CompilePipeline(
        input_path,
        output_path,
        toolchain=settings.toolchain(),
        timeout=settings.TIMEOUT,
        keep_intermediate=settings.KEEP_INTERMEDIATE,
    )


def _local_include(includes) -> Optional[str]:
    return str(includes) if includes is not None else None


def build(
    input_path: str,
    output_path: str,
    includes: Optional[Path] = None,
    settings: Optional[BuilderSettings] = None,
) -> BuildContext:
    """
    Compile the C eBPF program *input_path* into the BPF object *output_path*.

    If *includes* is set it is added to the include paths (e.g. for
    bpf_helpers.h).

    Raises
    ------
    CompileError
        If clang or llc reported diagnostics; ``str(err)`` is the output.
    SetupError
        If a discovery or toolchain command could not be executed.
    """
    settings = settings or BuilderSettings()
    pipeline = _pipeline(input_path, output_path, settings)
    pipeline.resolve(settings.overrides(), _local_include(includes))
    return pipeline.compile()


def object_path_in_out_dir(object_name: str, settings: BuilderSettings) -> str:
    if not settings.OUT_DIR:
        raise ConfigurationError("OUT_DIR is not set (CLANG_EBPF_BUILDER_OUT_DIR or OUT_DIR)")
    return f"{settings.OUT_DIR}/{object_name}"


def build_to_code(
    input_path: str,
    object_name: str,
    includes: Optional[Path],
    output_source: str,
    settings: Optional[BuilderSettings] = None,
    fmt: EmbedFormat = EmbedFormat.PYTHON,
) -> BuildContext:
    """
    Compile *input_path* into ``OUT_DIR/object_name``, then embed the
    object bytes as ``DATA`` inside *output_source*.

    *output_source* is truncated and rewritten.
    """
    settings = settings or BuilderSettings()
    output_object = object_path_in_out_dir(object_name, settings)

    pipeline = _pipeline(input_path, output_object, settings)
    ctx = pipeline.resolve(settings.overrides(), _local_include(includes))
    pipeline.compile()
    pipeline.embed(output_source, fmt)
    return ctx


# ── receipt-producing runner ─────────────────────────────────────────────────

def _context_model(ctx: BuildContext) -> ContextModel:
    return ContextModel(
        kernel_base=ctx.kernel_base,
        arch=ctx.arch,
        triplet=ctx.triplet,
        clang_include=ctx.clang_include,
        user_include=ctx.user_include,
        local_include=ctx.local_include,
    )


def _object_meta(path: str, data: bytes) -> ObjectMeta:
    info = describe_object(path)
    elf = None
    if info is not None:
        elf = ObjectElf(
            machine=info.machine,
            elf_class=info.elf_class,
            endianness=info.endianness,
            elf_type=info.elf_type,
            section_names=info.section_names,
            program_sections=info.program_sections,
            license=info.license,
        )
    return ObjectMeta(path=path, sha256=sha256_bytes(data), size_bytes=len(data), elf=elf)


def run_build(
    input_path: str,
    output_path: str,
    includes: Optional[Path] = None,
    embed_to: Optional[str] = None,
    fmt: EmbedFormat = EmbedFormat.PYTHON,
    settings: Optional[BuilderSettings] = None,
    receipt_dir: Optional[Path] = None,
) -> BuildReceipt:
    """
    Run a full build and describe it as a BuildReceipt.

    Build failures are recorded in the receipt (status FAILED, the stage
    the build failed from, error kind and text) instead of raised.  A
    failed receipt never carries a context, object or embed record.
    """
    settings = settings or BuilderSettings()
    created_at = now_iso()
    pipeline = _pipeline(input_path, output_path, settings)

    artifact: Optional[ObjectMeta] = None
    embed: Optional[EmbedRecord] = None
    try:
        pipeline.resolve(settings.overrides(), _local_include(includes))
        pipeline.compile()
        data = pipeline.read_object()
        artifact = _object_meta(pipeline.output_path, data)
        if embed_to is not None:
            count = pipeline.embed(embed_to, fmt, data=data)
            embed = EmbedRecord(destination=str(embed_to), format=EmbedFormat(fmt).value, byte_count=count)
    except EbpfBuildError as e:
        # already recorded by the pipeline failure transition
        logger.debug("run_build stopped: %s", e.kind)

    phases = [
        PhaseRecord(
            name=s.name,
            command=s.run.command,
            exit_code=s.run.exit_code,
            stdout=s.run.stdout,
            stderr=s.run.stderr,
            duration_ms=s.run.duration_ms,
            status="SUCCESS" if s.error is None else "FAILED",
        )
        for s in pipeline.stages
    ]

    receipt = BuildReceipt(
        input_path=pipeline.input_path,
        output_path=pipeline.output_path,
        intermediate_path=intermediate_path(pipeline.output_path, pipeline.profile),
        intermediate_kept=pipeline.keep_intermediate,
        stage=pipeline.state.value,
        phases=phases,
        created_at=created_at,
        finished_at=now_iso(),
    )

    if pipeline.failure is not None:
        receipt.status = "FAILED"
        receipt.failed_from = pipeline.failure.from_stage.value
        receipt.error_kind = pipeline.failure.error.kind
        receipt.error = str(pipeline.failure.error)
    else:
        assert pipeline.context is not None
        receipt.status = "SUCCESS"
        receipt.context = _context_model(pipeline.context)
        receipt.artifact = artifact
        receipt.embed = embed

    if receipt_dir is not None:
        path = write_receipt(receipt, receipt_dir)
        logger.info("Receipt saved: %s", path)

    return receipt


# ── CLI ──────────────────────────────────────────────────────────────────────

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="clang_ebpf_builder - compile a C eBPF program with clang + llc",
    )
    parser.add_argument("input", help="C eBPF source file")
    parser.add_argument("output", help="BPF object file to produce")
    parser.add_argument(
        "-I", "--include",
        default=None,
        help="Extra include directory (e.g. for bpf_helpers.h)",
    )
    parser.add_argument(
        "--embed",
        default=None,
        help="Generated source file to embed the object bytes into",
    )
    parser.add_argument(
        "--format",
        choices=[f.value for f in EmbedFormat],
        default=EmbedFormat.PYTHON.value,
        help="Language of the generated embed file",
    )
    parser.add_argument(
        "--keep-intermediate",
        action="store_true",
        help="Leave <output>.ll on disk",
    )
    parser.add_argument(
        "--receipt-dir",
        type=Path,
        default=None,
        help="Directory to write build_receipt.json",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    settings = BuilderSettings()
    if args.keep_intermediate:
        settings = settings.model_copy(update={"KEEP_INTERMEDIATE": True})

    receipt = run_build(
        args.input,
        args.output,
        includes=args.include,
        embed_to=args.embed,
        fmt=EmbedFormat(args.format),
        settings=settings,
        receipt_dir=args.receipt_dir,
    )

    if receipt.status != "SUCCESS":
        print(receipt.error or "", file=sys.stderr)
        return 1

    ctx = receipt.context
    print(f"built {receipt.output_path}  kernel_base={ctx.kernel_base} arch={ctx.arch} triplet={ctx.triplet}")
    if receipt.embed is not None:
        print(f"embedded {receipt.embed.byte_count} bytes into {receipt.embed.destination}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
