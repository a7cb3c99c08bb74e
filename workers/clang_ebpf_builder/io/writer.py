"""
Writer - serialize the build receipt to JSON.

Filesystem layout:
    <output_dir>/build_receipt.json
"""
import json
from pathlib import Path

from clang_ebpf_builder.io.schema import BuildReceipt

RECEIPT_FILENAME = "build_receipt.json"


def write_receipt(receipt: BuildReceipt, output_dir: Path) -> Path:
    """
    Write build_receipt.json into *output_dir*.

    Creates *output_dir* if it does not exist.
    Returns the receipt path.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    receipt_path = output_dir / RECEIPT_FILENAME

    receipt_path.write_text(
        json.dumps(
            receipt.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n"
    )
    return receipt_path
