from functools import cache
import math
from numbers import Integral
from types import SimpleNamespace
from beartype.typing import Tuple
import taichi as ti
from taichi.math import ivec2
import torch

from tiled_splatting.data_types import RasterConfig
from tiled_splatting.taichi_lib import get_library
from tiled_splatting.taichi_lib.conversions import torch_taichi
from tiled_splatting.taichi_queue import TaichiQueue, queued


def tile_grid(image_size: Tuple[Integral, Integral], tile_size: int) -> Tuple[int, int]:
  """ (tiles wide, tiles high) covering the image, partial tiles at the edges included """
  return tuple(int(math.ceil(x / tile_size)) for x in image_size)


@ti.func
def make_sort_key(depth:ti.f32, tile_id:ti.i32) -> ti.i64:
  # non negative float reinterpreted as int retains the same order
  # high bits store the tile id (most significant)
  depth_key = ti.cast(ti.bit_cast(depth, ti.i32), ti.i64)
  return (ti.cast(tile_id, ti.i64) << 32) | depth_key


@ti.func
def get_tile_id(key:ti.i64) -> ti.i32:
  return ti.cast(key >> 32, ti.i32)


@cache
def tile_mapper(config:RasterConfig, torch_dtype=torch.float32):
  dtype = torch_taichi[torch_dtype]
  lib = get_library(dtype)

  tile_size = config.tile_size
  constants = (config.gaussian_scale, config.blur_cov, config.cov_eps, config.min_discriminant)

  @ti.kernel
  def allocate_tiles_kernel(
    mean_ndc: ti.types.ndarray(lib.vec2, ndim=1),  # (N, 2)
    cov_ndc: ti.types.ndarray(lib.vec3, ndim=1),   # (N, 3)
    depth: ti.types.ndarray(dtype, ndim=1),        # (N)
    image_size: ivec2,
    grid: ivec2,

    # outputs
    mean_pixel: ti.types.ndarray(lib.vec2, ndim=1),  # (N, 2)
    conic: ti.types.ndarray(lib.vec3, ndim=1),       # (N, 3)
    radii: ti.types.ndarray(ti.i32, ndim=1),         # (N)
    counts: ti.types.ndarray(ti.i32, ndim=1),        # (N)

    # config constants, passed at full precision of dtype
    gaussian_scale: dtype,
    blur_cov: dtype,
    cov_eps: dtype,
    min_discriminant: dtype,
  ):
    size = ti.cast(image_size, dtype)
    pixel_scale = lib.vec3(size.x * size.x, size.x * size.y, size.y * size.y) * 0.25

    ti.loop_config(block_dim=256)
    for idx in range(depth.shape[0]):
      radius = 0
      count = 0

      mean_pixel[idx] = lib.vec2(0.)
      conic[idx] = lib.vec3(0.)

      if depth[idx] > 0:
        # ndc to pixel units, low pass filter on the diagonal
        cov = cov_ndc[idx] * pixel_scale + lib.vec3(blur_cov, 0., blur_cov)
        det = cov.x * cov.z - cov.y * cov.y

        if det != 0.:
          m = mean_ndc[idx]
          center = lib.vec2(lib.ndc_to_pixel(m.x, size.x), lib.ndc_to_pixel(m.y, size.y))

          radius = ti.cast(ti.ceil(gaussian_scale * ti.sqrt(lib.max_eigenvalue(cov, min_discriminant))), ti.i32)
          lower, upper = lib.tile_rect(center, radius, grid, tile_size)

          span = upper - lower
          if span.x > 0 and span.y > 0:
            count = span.x * span.y
            mean_pixel[idx] = center
            conic[idx] = lib.cov_to_conic(cov, cov_eps)
          else:
            radius = 0

      radii[idx] = radius
      counts[idx] = count


  @ti.kernel
  def duplicate_with_keys_kernel(
    mean_pixel: ti.types.ndarray(lib.vec2, ndim=1),  # (N, 2)
    radii: ti.types.ndarray(ti.i32, ndim=1),         # (N)
    depth: ti.types.ndarray(dtype, ndim=1),          # (N)
    offsets: ti.types.ndarray(ti.i32, ndim=1),       # (N) inclusive scan of tile counts
    grid: ivec2,

    # outputs (L) 
    keys: ti.types.ndarray(ti.i64, ndim=1),
    values: ti.types.ndarray(ti.i32, ndim=1),
  ):
    ti.loop_config(block_dim=256)
    for idx in range(radii.shape[0]):
      if radii[idx] > 0:
        offset = 0
        if idx > 0:
          offset = offsets[idx - 1]

        lower, upper = lib.tile_rect(mean_pixel[idx], radii[idx], grid, tile_size)
        z = ti.cast(depth[idx], ti.f32)

        for y in range(lower.y, upper.y):
          for x in range(lower.x, upper.x):
            keys[offset] = make_sort_key(z, y * grid.x + x)
            values[offset] = idx
            offset += 1


  @ti.kernel
  def find_ranges_kernel(
    sorted_keys: ti.types.ndarray(ti.i64, ndim=1),  # (L) 
    num_rendered: ti.i32,

    # output tile_ranges (tile id -> start, end), zeroed beforehand
    tile_ranges: ti.types.ndarray(ti.math.ivec2, ndim=1),
  ):
    ti.loop_config(block_dim=256)
    for idx in range(num_rendered):
      tile_id = get_tile_id(sorted_keys[idx])

      if idx == 0:
        tile_ranges[tile_id][0] = 0
      else:
        prev_tile_id = get_tile_id(sorted_keys[idx - 1])
        if prev_tile_id != tile_id:
          tile_ranges[prev_tile_id][1] = idx
          tile_ranges[tile_id][0] = idx

      if idx == num_rendered - 1:
        tile_ranges[tile_id][1] = num_rendered


  def allocate_tiles(*args):
    return TaichiQueue.run_sync(allocate_tiles_kernel, *args, *constants)

  return SimpleNamespace(
    lib=lib,
    allocate_tiles=allocate_tiles,
    duplicate_with_keys=queued(duplicate_with_keys_kernel),
    find_ranges=queued(find_ranges_kernel),
  )
