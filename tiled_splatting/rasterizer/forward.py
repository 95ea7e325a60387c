from functools import cache
import taichi as ti
from taichi.math import ivec2

from tiled_splatting.data_types import RasterConfig
from tiled_splatting.taichi_lib import get_library


@ti.func
def tile_pixel(tile_id:ti.i32, tile_idx:ti.i32, tile_size:ti.template(), tiles_wide:ti.i32) -> ivec2:
  tile = ivec2(tile_id % tiles_wide, tile_id // tiles_wide)
  return tile * tile_size + ivec2(tile_idx % tile_size, tile_idx // tile_size)


@cache
def forward_kernel(config:RasterConfig, dtype=ti.f32, use_shared_memory:bool=True):
  lib = get_library(dtype)

  tile_size = config.tile_size
  tile_area = config.tile_area

  clamp_max_alpha = config.clamp_max_alpha
  alpha_threshold = config.alpha_threshold
  transmittance_threshold = config.transmittance_threshold

  @ti.func
  def splat_alpha(pixelf:lib.vec2, mean:lib.vec2, conic:lib.vec3, opacity:dtype) -> dtype:
    alpha = dtype(0.)
    power = lib.conic_power(mean - pixelf, conic)
    if power <= 0.:
      alpha = ti.min(clamp_max_alpha, opacity * ti.exp(power))
    return alpha


  @ti.kernel
  def forward_shared(
    # per splat inputs
    mean_pixel: ti.types.ndarray(lib.vec2, ndim=1),  # [N, 2]
    conic: ti.types.ndarray(lib.vec3, ndim=1),       # [N, 3]
    opacity: ti.types.ndarray(dtype, ndim=1),        # [N]
    feature: ti.types.ndarray(lib.vec3, ndim=1),     # [N, 3]

    # tile data structures
    tile_ranges: ti.types.ndarray(ti.math.ivec2, ndim=1),  # [T] start/end range of instances
    point_list: ti.types.ndarray(ti.i32, ndim=1),          # [L] instance -> splat index

    background: lib.vec3,

    # outputs
    image: ti.types.ndarray(dtype, ndim=3),          # [3, H, W] 
    transmittance: ti.types.ndarray(dtype, ndim=2),  # [H, W]
    n_contrib: ti.types.ndarray(ti.i32, ndim=2),     # [H, W]
  ):
    height, width = transmittance.shape
    tiles_wide = (width + tile_size - 1) // tile_size
    tiles_high = (height + tile_size - 1) // tile_size

    ti.loop_config(block_dim=tile_area)
    for tile_id, tile_idx in ti.ndrange(tiles_wide * tiles_high, tile_area):
      pixel = tile_pixel(tile_id, tile_idx, tile_size, tiles_wide)
      pixelf = ti.cast(pixel, dtype)

      inside = pixel.x < width and pixel.y < height
      done = False
      if not inside:
        done = True

      start_offset, end_offset = tile_ranges[tile_id]
      num_rounds = (end_offset - start_offset + tile_area - 1) // tile_area

      collected_mean = ti.simt.block.SharedArray((tile_area, ), dtype=lib.vec2)
      collected_conic_opacity = ti.simt.block.SharedArray((tile_area, ), dtype=lib.vec4)
      collected_feature = ti.simt.block.SharedArray((tile_area, ), dtype=lib.vec3)

      T = dtype(1.)
      C = lib.vec3(0.)
      contributor = 0
      last_contributor = 0

      for r in range(num_rounds):
        if ti.simt.block.sync_all_nonzero(ti.i32(done)):
          break

        # each thread loads one instance into shared memory
        round_start = start_offset + r * tile_area
        fetch_index = round_start + tile_idx
        if fetch_index < end_offset:
          idx = point_list[fetch_index]
          collected_mean[tile_idx] = mean_pixel[idx]
          collected_conic_opacity[tile_idx] = lib.vec4(*conic[idx], opacity[idx])
          collected_feature[tile_idx] = feature[idx]

        ti.simt.block.sync()

        for j in range(ti.min(tile_area, end_offset - round_start)):
          if done:
            break

          contributor += 1
          conic_opacity = collected_conic_opacity[j]
          alpha = splat_alpha(pixelf, collected_mean[j], conic_opacity.xyz, conic_opacity.w)

          if alpha >= alpha_threshold:
            test_T = T * (1. - alpha)
            if test_T < transmittance_threshold:
              done = True
            else:
              C += collected_feature[j] * (alpha * T)
              T = test_T
              last_contributor = contributor

      if inside:
        for c in ti.static(range(3)):
          image[c, pixel.y, pixel.x] = T * background[c] + C[c]

        transmittance[pixel.y, pixel.x] = T
        n_contrib[pixel.y, pixel.x] = last_contributor


  @ti.kernel
  def forward_global(
    mean_pixel: ti.types.ndarray(lib.vec2, ndim=1),
    conic: ti.types.ndarray(lib.vec3, ndim=1),
    opacity: ti.types.ndarray(dtype, ndim=1),
    feature: ti.types.ndarray(lib.vec3, ndim=1),

    tile_ranges: ti.types.ndarray(ti.math.ivec2, ndim=1),
    point_list: ti.types.ndarray(ti.i32, ndim=1),

    background: lib.vec3,

    image: ti.types.ndarray(dtype, ndim=3),
    transmittance: ti.types.ndarray(dtype, ndim=2),
    n_contrib: ti.types.ndarray(ti.i32, ndim=2),
  ):
    height, width = transmittance.shape
    tiles_wide = (width + tile_size - 1) // tile_size
    tiles_high = (height + tile_size - 1) // tile_size

    # same traversal order as forward_shared, instances read from global memory
    for tile_id, tile_idx in ti.ndrange(tiles_wide * tiles_high, tile_area):
      pixel = tile_pixel(tile_id, tile_idx, tile_size, tiles_wide)

      if pixel.x < width and pixel.y < height:
        pixelf = ti.cast(pixel, dtype)
        start_offset, end_offset = tile_ranges[tile_id]

        T = dtype(1.)
        C = lib.vec3(0.)
        contributor = 0
        last_contributor = 0

        for k in range(start_offset, end_offset):
          idx = point_list[k]

          contributor += 1
          alpha = splat_alpha(pixelf, mean_pixel[idx], conic[idx], opacity[idx])

          if alpha >= alpha_threshold:
            test_T = T * (1. - alpha)
            if test_T < transmittance_threshold:
              break

            C += feature[idx] * (alpha * T)
            T = test_T
            last_contributor = contributor

        for c in ti.static(range(3)):
          image[c, pixel.y, pixel.x] = T * background[c] + C[c]

        transmittance[pixel.y, pixel.x] = T
        n_contrib[pixel.y, pixel.x] = last_contributor


  return forward_shared if use_shared_memory else forward_global
