from __future__ import annotations

from collections import deque
from pathlib import Path
import sys
from typing import Callable, TextIO

import torch
import torch.nn.functional as F

REPO_ROOT = Path(__file__).resolve().parent
TESTS_DIR = REPO_ROOT / "tests"
NETWORK_DIR = REPO_ROOT / "networks" / "iqconv"
sys.path.insert(0, str(TESTS_DIR))

from common import (  # noqa: E402
    SCALE,
    float_from_q88_tensor,
    load_module,
    q88_from_float_tensor,
    write_mem,
)

_iqconv_mod = load_module(NETWORK_DIR / "iqconv.py", "iqconv_module")
N_IN = _iqconv_mod.N_IN
N_LAYER_OUT = _iqconv_mod.N_LAYER_OUT


class Stream:
    """In-memory FIFO standing in for an hls::stream."""

    def __init__(self, name: str = "stream", values=()):
        self.name = name
        self._fifo = deque(values)

    def write(self, value) -> None:
        self._fifo.append(value)

    def read(self):
        if not self._fifo:
            raise RuntimeError(f"Read from empty stream {self.name!r}")
        return self._fifo.popleft()

    def empty(self) -> bool:
        return not self._fifo

    def __len__(self) -> int:
        return len(self._fifo)

    def snapshot(self) -> list:
        """Queued values in FIFO order, without consuming them."""
        return list(self._fifo)


Unit = Callable[[Stream, Stream], tuple[Stream, int, int]]


def conv1d_q88(x_q: torch.Tensor, w_q: torch.Tensor, b_q: torch.Tensor | None) -> torch.Tensor:
    x_f = x_q.to(torch.float32) / SCALE
    w_f = w_q.to(torch.float32) / SCALE
    b_f = b_q.to(torch.float32) / SCALE if b_q is not None else None
    y_f = F.conv1d(x_f, w_f, bias=b_f)
    return q88_from_float_tensor(y_f)


def relu_q88(x_q: torch.Tensor) -> torch.Tensor:
    return torch.clamp(x_q, min=0)


def linear_q88(x_q: torch.Tensor, w_q: torch.Tensor, b_q: torch.Tensor) -> torch.Tensor:
    x_f = x_q.to(torch.float32) / SCALE
    w_f = w_q.to(torch.float32) / SCALE
    b_f = b_q.to(torch.float32) / SCALE
    y_f = x_f @ w_f.t() + b_f
    return q88_from_float_tensor(y_f)


def load_model(n_in: int = N_IN, n_layer_out: int = N_LAYER_OUT):
    pt_path = NETWORK_DIR / "iqconv_model.pt"
    if pt_path.exists() and (n_in, n_layer_out) == (N_IN, N_LAYER_OUT):
        state = torch.load(pt_path, map_location="cpu")
        model = _iqconv_mod.IQConv(n_in=n_in, num_classes=n_layer_out)
        model.load_state_dict(state)
    else:
        # Seeded init without disturbing the caller's global RNG.
        with torch.random.fork_rng(devices=[]):
            torch.manual_seed(0)
            model = _iqconv_mod.IQConv(n_in=n_in, num_classes=n_layer_out)
    model.eval()
    return model


def iqconv_q88(x_q: torch.Tensor, model) -> torch.Tensor:
    """Q8.8 forward pass of IQConv on a (1, 2, n_in) tensor."""
    conv_w_q = q88_from_float_tensor(model.conv.weight.detach())
    conv_b_q = q88_from_float_tensor(model.conv.bias.detach())
    dense_w_q = q88_from_float_tensor(model.dense.weight.detach())
    dense_b_q = q88_from_float_tensor(model.dense.bias.detach())
    out_w_q = q88_from_float_tensor(model.output.weight.detach())
    out_b_q = q88_from_float_tensor(model.output.bias.detach())

    x_q = relu_q88(conv1d_q88(x_q, conv_w_q, conv_b_q))
    x_q = x_q.view(1, -1)
    x_q = relu_q88(linear_q88(x_q, dense_w_q, dense_b_q))
    return linear_q88(x_q, out_w_q, out_b_q).squeeze(0)


def make_ex_iqconv(n_in: int = N_IN, n_layer_out: int = N_LAYER_OUT) -> Unit:
    model = load_model(n_in, n_layer_out)

    def ex_iqconv(data_i: Stream, data_q: Stream) -> tuple[Stream, int, int]:
        samples_i = [data_i.read() for _ in range(n_in)]
        samples_q = [data_q.read() for _ in range(n_in)]
        x_f = torch.tensor([[samples_i, samples_q]], dtype=torch.float32)
        out_q = iqconv_q88(q88_from_float_tensor(x_f), model)

        res_strm = Stream("res_strm")
        for val in float_from_q88_tensor(out_q).tolist():
            res_strm.write(val)
        return res_strm, n_in, n_layer_out

    return ex_iqconv


def generate_stimulus(n_in: int = N_IN) -> tuple[Stream, Stream]:
    data_i = Stream("data_i")
    data_q = Stream("data_q")
    for ii in range(n_in):
        data_i.write(0.01 * ii)
        data_q.write(0.01 * ii + 0.005)
    return data_i, data_q


def invoke_unit(unit: Unit, data_i: Stream, data_q: Stream) -> tuple[Stream, int, int]:
    res_strm, size_in, size_out = unit(data_i, data_q)
    return res_strm, size_in, size_out


def report_results(
    res_strm: Stream,
    size_in: int,
    size_out: int,
    n_layer_out: int = N_LAYER_OUT,
    out: TextIO | None = None,
) -> int:
    out = out if out is not None else sys.stdout
    print(f"Found network size: {size_in}x{size_out}", file=out)

    # No reference vector is available, so err_cnt is never incremented.
    err_cnt = 0
    for ii in range(n_layer_out):
        for jj in range(1):
            curr_data = float(res_strm.read())
            print(f"Row/Chan: {ii}/{jj}: {curr_data}", file=out)
    print("Done read", file=out)
    return err_cnt


def _dump_stream(path: Path, stream: Stream) -> None:
    values = torch.tensor(stream.snapshot(), dtype=torch.float32)
    write_mem(path, q88_from_float_tensor(values).tolist())


def run_harness(
    unit: Unit | None = None,
    n_in: int = N_IN,
    n_layer_out: int = N_LAYER_OUT,
    out: TextIO | None = None,
    build_dir: Path | None = None,
) -> int:
    if unit is None:
        unit = make_ex_iqconv(n_in, n_layer_out)

    data_i, data_q = generate_stimulus(n_in)
    if build_dir is not None:
        _dump_stream(build_dir / "input_i.mem", data_i)
        _dump_stream(build_dir / "input_q.mem", data_q)

    res_strm, size_in, size_out = invoke_unit(unit, data_i, data_q)
    if build_dir is not None:
        _dump_stream(build_dir / "output.mem", res_strm)

    return report_results(res_strm, size_in, size_out, n_layer_out=n_layer_out, out=out)


def main() -> int:
    return run_harness()


if __name__ == "__main__":
    sys.exit(main())
