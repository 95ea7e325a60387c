from functools import cache
from types import SimpleNamespace

from beartype.typing import Optional
import taichi as ti
import torch

from tiled_splatting.parallel.common import (
  BLOCK_SIZE, BLOCK_ELEMENTS, LOG_NUM_BANKS, SHARED_SIZE, BlockEngine, bank_offset, cdiv)
from tiled_splatting.taichi_lib.conversions import taichi_dtype
from tiled_splatting.taichi_queue import TaichiQueue, queued


@cache
def scan_kernels(dtype=ti.i32, use_shared_memory:bool=True):
  # last element of the block (padded index), holds the block total after the up-sweep
  root = (BLOCK_ELEMENTS - 1) + ((BLOCK_ELEMENTS - 1) >> LOG_NUM_BANKS)

  @ti.kernel
  def prescan_shared(src: ti.types.ndarray(dtype, ndim=1),
                     dst: ti.types.ndarray(dtype, ndim=1),
                     block_sums: ti.types.ndarray(dtype, ndim=1),
                     n: ti.i32, num_blocks: ti.i32,
                     store_sum: ti.i32, inclusive: ti.i32):

    ti.loop_config(block_dim=BLOCK_SIZE)
    for block_id, thid in ti.ndrange(num_blocks, BLOCK_SIZE):
      temp = ti.simt.block.SharedArray((SHARED_SIZE, ), dtype)
      block_total = ti.simt.block.SharedArray((1, ), dtype)

      base = block_id * BLOCK_ELEMENTS
      ai = thid
      bi = thid + BLOCK_SIZE

      value_a = ti.cast(0, dtype)
      value_b = ti.cast(0, dtype)
      if base + ai < n:
        value_a = src[base + ai]
      if base + bi < n:
        value_b = src[base + bi]

      temp[ai + bank_offset(ai)] = value_a
      temp[bi + bank_offset(bi)] = value_b

      # up-sweep, partial sums built in place up the tree
      stride = 1
      d = BLOCK_SIZE
      while d > 0:
        ti.simt.block.sync()
        if thid < d:
          i = stride * (2 * thid + 1) - 1
          j = i + stride
          i += bank_offset(i)
          j += bank_offset(j)
          temp[j] = temp[j] + temp[i]

        stride *= 2
        d = d >> 1

      ti.simt.block.sync()
      if thid == 0:
        block_total[0] = temp[root]
        if store_sum != 0:
          block_sums[block_id] = temp[root]
        temp[root] = ti.cast(0, dtype)

      # down-sweep
      d = 1
      while d <= BLOCK_SIZE:
        stride = stride >> 1
        ti.simt.block.sync()
        if thid < d:
          i = stride * (2 * thid + 1) - 1
          j = i + stride
          i += bank_offset(i)
          j += bank_offset(j)

          t = temp[i]
          temp[i] = temp[j]
          temp[j] = temp[j] + t

        d = d << 1

      ti.simt.block.sync()
      out_a = temp[ai + bank_offset(ai)]
      out_b = temp[bi + bank_offset(bi)]

      if inclusive != 0:
        # shift left by one, the last slot takes the block total
        out_a = temp[ai + 1 + bank_offset(ai + 1)]
        out_b = block_total[0]
        if bi + 1 < BLOCK_ELEMENTS:
          out_b = temp[bi + 1 + bank_offset(bi + 1)]

      if base + ai < n:
        dst[base + ai] = out_a
      if base + bi < n:
        dst[base + bi] = out_b


  @ti.kernel
  def prescan_staged(src: ti.types.ndarray(dtype, ndim=1),
                     dst: ti.types.ndarray(dtype, ndim=1),
                     block_sums: ti.types.ndarray(dtype, ndim=1),
                     staging: ti.types.ndarray(dtype, ndim=2),
                     n: ti.i32, num_blocks: ti.i32,
                     store_sum: ti.i32, inclusive: ti.i32):

    # one work item per block, walks the same tree as prescan_shared
    for block_id in range(num_blocks):
      base = block_id * BLOCK_ELEMENTS

      for k in range(BLOCK_ELEMENTS):
        value = ti.cast(0, dtype)
        if base + k < n:
          value = src[base + k]
        staging[block_id, k + bank_offset(k)] = value

      stride = 1
      d = BLOCK_SIZE
      while d > 0:
        for thid in range(d):
          i = stride * (2 * thid + 1) - 1
          j = i + stride
          i += bank_offset(i)
          j += bank_offset(j)
          staging[block_id, j] = staging[block_id, j] + staging[block_id, i]

        stride *= 2
        d = d >> 1

      total = staging[block_id, root]
      if store_sum != 0:
        block_sums[block_id] = total
      staging[block_id, root] = ti.cast(0, dtype)

      d = 1
      while d <= BLOCK_SIZE:
        stride = stride >> 1
        for thid in range(d):
          i = stride * (2 * thid + 1) - 1
          j = i + stride
          i += bank_offset(i)
          j += bank_offset(j)

          t = staging[block_id, i]
          staging[block_id, i] = staging[block_id, j]
          staging[block_id, j] = staging[block_id, j] + t

        d = d << 1

      for k in range(BLOCK_ELEMENTS):
        if base + k < n:
          out = staging[block_id, k + bank_offset(k)]
          if inclusive != 0:
            out = total
            if k + 1 < BLOCK_ELEMENTS:
              out = staging[block_id, k + 1 + bank_offset(k + 1)]
          dst[base + k] = out


  @ti.kernel
  def uniform_add_shared(data: ti.types.ndarray(dtype, ndim=1),
                         sums: ti.types.ndarray(dtype, ndim=1),
                         n: ti.i32, num_blocks: ti.i32):

    ti.loop_config(block_dim=BLOCK_SIZE)
    for block_id, thid in ti.ndrange(num_blocks, BLOCK_SIZE):
      uni = ti.simt.block.SharedArray((1, ), dtype)
      if thid == 0:
        uni[0] = sums[block_id]
      ti.simt.block.sync()

      address = block_id * BLOCK_ELEMENTS + thid
      if address < n:
        ti.atomic_add(data[address], uni[0])
      if address + BLOCK_SIZE < n:
        ti.atomic_add(data[address + BLOCK_SIZE], uni[0])


  @ti.kernel
  def uniform_add_global(data: ti.types.ndarray(dtype, ndim=1),
                         sums: ti.types.ndarray(dtype, ndim=1),
                         n: ti.i32, num_blocks: ti.i32):

    for block_id, thid in ti.ndrange(num_blocks, BLOCK_SIZE):
      address = block_id * BLOCK_ELEMENTS + thid
      if address < n:
        ti.atomic_add(data[address], sums[block_id])
      if address + BLOCK_SIZE < n:
        ti.atomic_add(data[address + BLOCK_SIZE], sums[block_id])


  @ti.kernel
  def add_init(data: ti.types.ndarray(dtype, ndim=1), init: dtype, n: ti.i32):
    for i in range(n):
      data[i] = data[i] + init


  if use_shared_memory:
    def prescan(src, dst, block_sums, staging, *args):
      return TaichiQueue.run_sync(prescan_shared, src, dst, block_sums, *args)
    uniform_add = queued(uniform_add_shared)
  else:
    prescan = queued(prescan_staged)
    uniform_add = queued(uniform_add_global)

  return SimpleNamespace(prescan=prescan, uniform_add=uniform_add, add_init=queued(add_init))


class PrefixScanEngine(BlockEngine):
  """ Work efficient (Blelloch) prefix sum over 1D device tensors.

    Two phases: query_temp_size(n) gives the scratch size (in elements of the 
    scanned dtype), the caller allocates it once and reuses it across calls.
    src and dst may be the same tensor.
  """

  def exclusive_sum(self, temp:torch.Tensor, src:torch.Tensor, dst:torch.Tensor, init=0, n:Optional[int]=None):
    return self.scan(temp, src, dst, init, n, inclusive=False)

  def inclusive_sum(self, temp:torch.Tensor, src:torch.Tensor, dst:torch.Tensor, init=0, n:Optional[int]=None):
    return self.scan(temp, src, dst, init, n, inclusive=True)

  def scan(self, temp:torch.Tensor, src:torch.Tensor, dst:torch.Tensor, init=0, n:Optional[int]=None, 
           inclusive:bool=False) -> torch.Tensor:
    n = src.shape[0] if n is None else n
    self.check_args("scan", temp, src, dst, n)

    if n == 0:
      return dst

    kernels = scan_kernels(taichi_dtype(src.dtype), self.shared_memory())
    staging = self.staging_area(cdiv(n, BLOCK_ELEMENTS), src.dtype, src.device)
    self._scan_level(kernels, temp, staging, src, dst, n, int(inclusive))

    if init != 0:
      kernels.add_init(dst, init, n)
    return dst

  def _scan_level(self, kernels, temp:torch.Tensor, staging:Optional[torch.Tensor], 
                  src:torch.Tensor, dst:torch.Tensor, n:int, inclusive:int):
    num_blocks = cdiv(n, BLOCK_ELEMENTS)

    if num_blocks > 1:
      sums = temp[:num_blocks]
      kernels.prescan(src, dst, sums, staging, n, num_blocks, 1, inclusive)

      # block sums are scanned (exclusive) in place, using the rest of temp
      self._scan_level(kernels, temp[num_blocks:], staging, sums, sums, num_blocks, 0)
      kernels.uniform_add(dst, sums, n, num_blocks)
    else:
      kernels.prescan(src, dst, temp, staging, n, 1, 0, inclusive)
