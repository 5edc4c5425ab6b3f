from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, List, Mapping

from Crypto.Hash import keccak


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def write_json_atomic(path: Path, data: Any) -> None:
    ensure_dir(path.parent)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")
    os.replace(tmp, path)


def env(environ: Mapping[str, str], name: str, default: str) -> str:
    val = environ.get(name)
    return val if val else default


def env_list(environ: Mapping[str, str], name: str) -> List[str]:
    raw = environ.get(name) or ""
    return [x.strip() for x in raw.split(",") if x.strip()]


def keccak_hex(text: str) -> str:
    h = keccak.new(digest_bits=256)
    h.update(text.encode("utf-8"))
    return "0x" + h.hexdigest()


def keccak_selector(signature: str) -> str:
    return keccak_hex(signature)[:10]


def ascii_to_hex(text: str) -> str:
    return "0x" + text.encode("utf-8").hex()


def pad32(hex_str: str) -> str:
    return hex_str.rjust(64, "0")


def normalize_address(addr: str) -> str:
    a = str(addr).lower()
    if not a.startswith("0x") or len(a) != 42:
        raise ValueError(f"invalid address: {addr}")
    return a


def abi_encode_address(address: str) -> str:
    return pad32(normalize_address(address)[2:])


def address_to_topic(address: str) -> str:
    return "0x" + abi_encode_address(address)


def topic_to_address(topic: str) -> str:
    if not isinstance(topic, str) or not topic.startswith("0x") or len(topic) != 66:
        raise ValueError(f"unexpected topic format: {topic}")
    return "0x" + topic[-40:].lower()


def decode_uint256(hex_str: str | None) -> int:
    # Empty return data ("0x") decodes as zero.
    s = str(hex_str or "0x")
    if not s.startswith("0x"):
        raise ValueError(f"data must be 0x-prefixed: {s[:20]}")
    body = s[2:]
    return int(body, 16) if body else 0


def floor_zero(value: int) -> int:
    return value if value > 0 else 0
