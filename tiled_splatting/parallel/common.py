from beartype.typing import List, Optional
import taichi as ti
import torch

from tiled_splatting.errors import check_capacity
from tiled_splatting.taichi_lib import resolve_shared_memory

# work items per workgroup, each work item handles two elements
BLOCK_SIZE = 256
BLOCK_ELEMENTS = 2 * BLOCK_SIZE

# shared memory is padded by one element every NUM_BANKS to avoid bank conflicts
NUM_BANKS = 32
LOG_NUM_BANKS = 5
SHARED_SIZE = BLOCK_ELEMENTS + BLOCK_ELEMENTS // NUM_BANKS

# alignment of scratch sizes (elements)
TEMP_ALIGNMENT = 4

block_dtypes = (torch.int32, torch.int64, torch.float32, torch.float64)


def cdiv(a:int, b:int) -> int:
  return (a + b - 1) // b


def num_blocks(n:int) -> int:
  return max(1, cdiv(n, BLOCK_ELEMENTS))


def block_levels(n:int) -> List[int]:
  """ Number of blocks at each level of the recursive block tree, 
    finest first, the last level is always a single block.
  """
  levels = [num_blocks(n)]
  while levels[-1] > 1:
    levels.append(num_blocks(levels[-1]))
  return levels


def query_temp_size(n:int) -> int:
  """ Scratch elements needed for a scan or reduction of n elements:
    one slot per block on every level with more than one block, plus one.
  """
  assert n >= 0, f"n must be non-negative, got {n}"

  size = sum(blocks for blocks in block_levels(n) if blocks > 1) + 1
  return cdiv(size, TEMP_ALIGNMENT) * TEMP_ALIGNMENT


@ti.func
def bank_offset(i:ti.i32) -> ti.i32:
  return i >> LOG_NUM_BANKS


class BlockEngine:
  """ Common parts of the block-tree engines (scan, reduce) """

  def __init__(self, use_shared_memory:Optional[bool] = None):
    self.use_shared_memory = use_shared_memory

    # per block work area of the portable kernels, grown on demand and reused
    self.staging = None

  @staticmethod
  def query_temp_size(n:int) -> int:
    return query_temp_size(n)

  def shared_memory(self) -> bool:
    return resolve_shared_memory(self.use_shared_memory)

  def staging_area(self, num_blocks:int, dtype:torch.dtype, device:torch.device) -> Optional[torch.Tensor]:
    """ (num_blocks, SHARED_SIZE) view of the staging buffer, None when shared memory is used """
    if self.shared_memory():
      return None

    staging = self.staging
    if (staging is None or staging.shape[0] < num_blocks 
        or staging.dtype != dtype or staging.device != device):
      self.staging = staging = torch.empty((num_blocks, SHARED_SIZE), dtype=dtype, device=device)
    return staging[:num_blocks]

  def check_args(self, name:str, temp:torch.Tensor, src:torch.Tensor, dst:torch.Tensor, n:int, 
                 dst_size:Optional[int] = None):
    check_capacity(f"{name} scratch", query_temp_size(n), temp.shape[0])

    if src.dtype not in block_dtypes:
      raise ValueError(f"{name}: unsupported dtype {src.dtype}, expected one of {block_dtypes}")
    if not (temp.dtype == src.dtype == dst.dtype):
      raise ValueError(f"{name}: dtypes must match, got temp={temp.dtype}, src={src.dtype}, dst={dst.dtype}")

    for t, t_name in [(temp, "temp"), (src, "src"), (dst, "dst")]:
      assert t.dim() == 1 and t.is_contiguous(), f"{name}: {t_name} must be a contiguous 1D tensor, got {t.shape}"

    assert src.shape[0] >= n, f"{name}: src has {src.shape[0]} elements, expected at least {n}"
    dst_size = n if dst_size is None else dst_size
    assert dst.shape[0] >= dst_size, f"{name}: dst has {dst.shape[0]} elements, expected at least {dst_size}"
