from functools import cache
from types import SimpleNamespace

from beartype.typing import Optional
import taichi as ti
import torch

from tiled_splatting.errors import check_capacity
from tiled_splatting.parallel.common import query_temp_size
from tiled_splatting.parallel.scan import PrefixScanEngine
from tiled_splatting.taichi_lib.conversions import taichi_dtype
from tiled_splatting.taichi_queue import queued

key_dtypes = (torch.int32, torch.int64)
value_dtypes = (torch.int32, torch.int64, torch.float32)


@cache
def radix_kernels(key_dtype=ti.i64, value_dtype=ti.i32):

  @ti.func
  def key_bit(key:key_dtype, bit:ti.i32) -> ti.i32:
    return ti.cast((key >> ti.cast(bit, key_dtype)) & 1, ti.i32)

  @ti.kernel
  def count_zeros(keys: ti.types.ndarray(key_dtype, ndim=1),
                  flags: ti.types.ndarray(ti.i32, ndim=1),
                  n: ti.i32, bit: ti.i32):
    for i in range(n):
      is_zero = 1 - key_bit(keys[i], bit)
      flags[i] = is_zero

      # the scan is exclusive, keep the last flag to count the total
      if i == n - 1:
        flags[n] = is_zero


  @ti.kernel
  def assign(keys_in: ti.types.ndarray(key_dtype, ndim=1),
             values_in: ti.types.ndarray(value_dtype, ndim=1),
             keys_out: ti.types.ndarray(key_dtype, ndim=1),
             values_out: ti.types.ndarray(value_dtype, ndim=1),
             flags: ti.types.ndarray(ti.i32, ndim=1),
             n: ti.i32, bit: ti.i32):
    total_zeros = flags[n] + flags[n - 1]

    for i in range(n):
      dest = flags[i]
      if key_bit(keys_in[i], bit) == 1:
        dest = total_zeros + i - flags[i]

      keys_out[dest] = keys_in[i]
      values_out[dest] = values_in[i]

  return SimpleNamespace(count_zeros=queued(count_zeros), assign=queued(assign))


class RadixSortEngine:
  """ Stable least significant bit radix sort of (key, value) pairs.
  
    One pass per bit, keys are ordered as unsigned bit patterns over the low `bits` bits.
    Scratch is int32: a prefix scan workspace followed by n + 1 flags.
  """

  def __init__(self, use_shared_memory:Optional[bool] = None):
    self.scan = PrefixScanEngine(use_shared_memory)

  @staticmethod
  def query_temp_size(n:int) -> int:
    return query_temp_size(n) + n + 1

  def sort_pairs(self, temp:torch.Tensor, 
                 keys_in:torch.Tensor, values_in:torch.Tensor,
                 keys_out:torch.Tensor, values_out:torch.Tensor, 
                 n:Optional[int]=None, bits:Optional[int]=None):
    n = keys_in.shape[0] if n is None else n
    key_bits = 8 * keys_in.element_size()
    bits = key_bits if bits is None else bits

    check_capacity("radix sort scratch", self.query_temp_size(n), temp.shape[0])

    if temp.dtype != torch.int32:
      raise ValueError(f"radix sort: scratch must be int32, got {temp.dtype}")
    if keys_in.dtype not in key_dtypes or keys_out.dtype != keys_in.dtype:
      raise ValueError(f"radix sort: unsupported keys {keys_in.dtype} -> {keys_out.dtype}")
    if values_in.dtype not in value_dtypes or values_out.dtype != values_in.dtype:
      raise ValueError(f"radix sort: unsupported values {values_in.dtype} -> {values_out.dtype}")

    assert 0 <= bits <= key_bits, f"bits must be in [0, {key_bits}], got {bits}"
    for t in (keys_in, values_in, keys_out, values_out):
      assert t.dim() == 1 and t.shape[0] >= n, f"expected 1D tensors of at least {n} elements, got {t.shape}"

    if n == 0:
      return keys_out, values_out

    kernels = radix_kernels(taichi_dtype(keys_in.dtype), taichi_dtype(values_in.dtype))

    scan_size = query_temp_size(n)
    scan_temp = temp[:scan_size]
    flags = temp[scan_size:scan_size + n + 1]

    for bit in range(bits):
      kernels.count_zeros(keys_in, flags, n, bit)
      self.scan.exclusive_sum(scan_temp, flags, flags, 0, n)
      kernels.assign(keys_in, values_in, keys_out, values_out, flags, n, bit)

      keys_in[:n].copy_(keys_out[:n])
      values_in[:n].copy_(values_out[:n])

    # zero bits sorted, outputs hold the (unchanged) inputs
    if bits == 0:
      keys_out[:n].copy_(keys_in[:n])
      values_out[:n].copy_(values_in[:n])

    return keys_out, values_out
