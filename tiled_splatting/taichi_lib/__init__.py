from functools import cache
from beartype.typing import Optional
import taichi as ti

from .generic import make_library


@cache
def get_library(dtype):
  if dtype not in (ti.f32, ti.f64):
    raise ValueError(f"Unsupported dtype: {dtype}")
  return make_library(dtype)


def supports_shared_memory() -> bool:
  """ True if the active taichi arch runs the cooperative kernels,
    which need shared arrays, block barriers and block votes (sync_all_nonzero, cuda only).
    Otherwise the portable kernel variants are used.
  """
  return ti.lang.impl.current_cfg().arch == ti.cuda


def resolve_shared_memory(requested:Optional[bool]) -> bool:
  if requested is None:
    return supports_shared_memory()

  if requested and not supports_shared_memory():
    arch = ti.lang.impl.current_cfg().arch
    raise ValueError(f"Shared memory kernels require the cuda arch, current arch is {arch}")
  return requested
