from functools import cache
from types import SimpleNamespace

import taichi as ti
import torch

from tiled_splatting.parallel.common import (
  BLOCK_SIZE, BLOCK_ELEMENTS, LOG_NUM_BANKS, SHARED_SIZE, BlockEngine, bank_offset, cdiv)
from tiled_splatting.taichi_lib.conversions import taichi_dtype
from tiled_splatting.taichi_queue import TaichiQueue, queued

reduce_ops = ('sum', 'max', 'min')


def identity(op:str, dtype:torch.dtype):
  if op == 'sum':
    return 0
  
  if dtype.is_floating_point:
    lowest, highest = -float('inf'), float('inf')
  else:
    info = torch.iinfo(dtype)
    lowest, highest = info.min, info.max

  return lowest if op == 'max' else highest


@cache
def reduce_kernels(dtype=ti.f32, op:str='sum', use_shared_memory:bool=True):
  root = (BLOCK_ELEMENTS - 1) + ((BLOCK_ELEMENTS - 1) >> LOG_NUM_BANKS)

  @ti.func
  def add(a, b):
    return a + b

  combine = dict(sum=add, max=ti.max, min=ti.min)[op]

  @ti.kernel
  def reduce_shared(src: ti.types.ndarray(dtype, ndim=1),
                    block_results: ti.types.ndarray(dtype, ndim=1),
                    n: ti.i32, num_blocks: ti.i32, init: dtype):

    ti.loop_config(block_dim=BLOCK_SIZE)
    for block_id, thid in ti.ndrange(num_blocks, BLOCK_SIZE):
      temp = ti.simt.block.SharedArray((SHARED_SIZE, ), dtype)

      base = block_id * BLOCK_ELEMENTS
      ai = thid
      bi = thid + BLOCK_SIZE

      value_a = init
      value_b = init
      if base + ai < n:
        value_a = src[base + ai]
      if base + bi < n:
        value_b = src[base + bi]

      temp[ai + bank_offset(ai)] = value_a
      temp[bi + bank_offset(bi)] = value_b

      stride = 1
      d = BLOCK_SIZE
      while d > 0:
        ti.simt.block.sync()
        if thid < d:
          i = stride * (2 * thid + 1) - 1
          j = i + stride
          i += bank_offset(i)
          j += bank_offset(j)
          temp[j] = combine(temp[j], temp[i])

        stride *= 2
        d = d >> 1

      ti.simt.block.sync()
      if thid == 0:
        block_results[block_id] = temp[root]


  @ti.kernel
  def reduce_staged(src: ti.types.ndarray(dtype, ndim=1),
                    block_results: ti.types.ndarray(dtype, ndim=1),
                    staging: ti.types.ndarray(dtype, ndim=2),
                    n: ti.i32, num_blocks: ti.i32, init: dtype):

    for block_id in range(num_blocks):
      base = block_id * BLOCK_ELEMENTS

      for k in range(BLOCK_ELEMENTS):
        value = init
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
          staging[block_id, j] = combine(staging[block_id, j], staging[block_id, i])

        stride *= 2
        d = d >> 1

      block_results[block_id] = staging[block_id, root]


  if use_shared_memory:
    def reduce_blocks(src, block_results, staging, *args):
      return TaichiQueue.run_sync(reduce_shared, src, block_results, *args)
  else:
    reduce_blocks = queued(reduce_staged)

  return SimpleNamespace(reduce_blocks=reduce_blocks)


class ReduceEngine(BlockEngine):
  """ Tree reduction (sum, max or min) of a 1D device tensor into dst[0],
    uses the same block layout and scratch size as PrefixScanEngine.
  """

  def reduce(self, temp:torch.Tensor, src:torch.Tensor, dst:torch.Tensor, n=None, op:str='sum') -> torch.Tensor:
    if op not in reduce_ops:
      raise ValueError(f"reduce: unsupported op {op}, expected one of {reduce_ops}")

    n = src.shape[0] if n is None else n
    self.check_args("reduce", temp, src, dst, n, dst_size=1)

    init = identity(op, src.dtype)
    if n == 0:
      dst[:1].fill_(init)
      return dst

    kernels = reduce_kernels(taichi_dtype(src.dtype), op, self.shared_memory())
    staging = self.staging_area(cdiv(n, BLOCK_ELEMENTS), src.dtype, src.device)
    result = self._reduce_level(kernels, temp, staging, src, n, init)

    dst[:1].copy_(result)
    return dst

  def _reduce_level(self, kernels, temp:torch.Tensor, staging, src:torch.Tensor, n:int, init) -> torch.Tensor:
    num_blocks = cdiv(n, BLOCK_ELEMENTS)
    results = temp[:num_blocks]
    kernels.reduce_blocks(src, results, staging, n, num_blocks, init)

    if num_blocks > 1:
      return self._reduce_level(kernels, temp[num_blocks:], staging, results, num_blocks, init)
    return results
