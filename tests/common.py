from __future__ import annotations

from importlib.util import module_from_spec, spec_from_file_location
from pathlib import Path

import torch

REPO_ROOT = Path(__file__).resolve().parents[1]
WIDTH = 16
FRAC = 8
SCALE = 1 << FRAC


def load_module(path: Path, name: str):
    spec = spec_from_file_location(name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Unable to load module {name} from {path}")
    module = module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def q88_from_float_tensor(t: torch.Tensor) -> torch.Tensor:
    scaled = t * SCALE
    rounded = torch.where(
        scaled >= 0, torch.floor(scaled + 0.5), torch.ceil(scaled - 0.5)
    )
    return rounded.to(torch.int16)


def float_from_q88_tensor(t: torch.Tensor) -> torch.Tensor:
    return t.to(torch.float32) / SCALE


def write_mem(path: Path, values: list[int]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="ascii") as handle:
        for val in values:
            handle.write(f"{to_hex(val)}\n")


def to_hex(val: int, width: int = WIDTH) -> str:
    mask = (1 << width) - 1
    return format(val & mask, f"0{width // 4}x")


def sign_extend(val: int, width: int = WIDTH) -> int:
    sign_bit = 1 << (width - 1)
    mask = (1 << width) - 1
    val &= mask
    return (val ^ sign_bit) - sign_bit


def read_mem(path: Path, width: int = WIDTH) -> list[int]:
    values: list[int] = []
    with path.open("r", encoding="ascii") as handle:
        for line in handle:
            text = line.strip()
            if not text:
                continue
            values.append(sign_extend(int(text, 16), width))
    return values
