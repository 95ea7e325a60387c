import taichi as ti

import torch


torch_taichi = {
    torch.float16: ti.f16,
    torch.float32: ti.f32,
    torch.float64: ti.f64,
    torch.int32: ti.i32,
    torch.int64: ti.i64,
    torch.int8: ti.i8,
    torch.int16: ti.i16,
    torch.uint8: ti.u8,
}


def taichi_dtype(dtype:torch.dtype):
  if dtype not in torch_taichi:
    raise ValueError(f"Unsupported dtype: {dtype}")
  return torch_taichi[dtype]
