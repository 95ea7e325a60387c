from functools import cache
from beartype import beartype
import taichi as ti
import torch

from tiled_splatting.data_types import ProjectedSplats, RasterConfig, Splats
from tiled_splatting.log import create_logger
from tiled_splatting.taichi_lib import get_library
from tiled_splatting.taichi_lib.conversions import torch_taichi
from tiled_splatting.taichi_queue import queued

from .camera import Camera

logger = create_logger(__name__)


@cache
def project_function(torch_dtype=torch.float32):
  dtype = torch_taichi[torch_dtype]
  lib = get_library(dtype)

  @ti.kernel
  def project_kernel(
    position: ti.types.ndarray(lib.vec3, ndim=1),  # (N, 3)
    scale: ti.types.ndarray(lib.vec3, ndim=1),     # (N, 3)
    rotation: ti.types.ndarray(lib.vec4, ndim=1),  # (N, 4)

    T_camera_world: lib.mat4,
    tan_fov: lib.vec2,
    focal: lib.vec2,      # (1, 1) in tangent form, pixels in focal form
    cov_scale: lib.vec3,  # converts the projected covariance to ndc units

    # config constants, passed at full precision of dtype
    near_plane: dtype,
    fov_clamp: dtype,
    cov_eps: dtype,

    # outputs
    mean: ti.types.ndarray(lib.vec2, ndim=1),   # (N, 2)
    cov2d: ti.types.ndarray(lib.vec3, ndim=1),  # (N, 3)
    conic: ti.types.ndarray(lib.vec3, ndim=1),  # (N, 3)
    depth: ti.types.ndarray(dtype, ndim=1),     # (N)
  ):
    W = lib.linear_part(T_camera_world)

    for idx in range(position.shape[0]):
      t = lib.transform_point(T_camera_world, position[idx])

      if t.z < near_plane:
        mean[idx] = lib.vec2(0.)
        cov2d[idx] = lib.vec3(0.)
        conic[idx] = lib.vec3(0.)
        depth[idx] = 0.

      else:
        cov3d = lib.covariance_3d(ti.math.normalize(rotation[idx]), scale[idx])

        J = lib.ewa_jacobian(lib.clamp_to_frustum(t, tan_fov, fov_clamp), focal)
        cov = lib.project_covariance(W, cov3d, J) * cov_scale

        mean[idx] = t.xy / (t.z * tan_fov)
        cov2d[idx] = cov
        conic[idx] = lib.cov_to_conic(cov, cov_eps)
        depth[idx] = t.z

  return queued(project_kernel), lib


class GaussianProjector:
  """ Projects 3D splats to normalized device coordinates:
    mean, 2D covariance (EWA approximation) and its conic, plus view depth.
  """

  def __init__(self, config:RasterConfig = RasterConfig()):
    self.config = config

  @beartype
  def forward(self, splats:Splats, camera:Camera, use_focal:bool=False) -> ProjectedSplats:
    config = self.config
    dtype, device = splats.position.dtype, splats.position.device
    project, lib = project_function(dtype)

    tan_x, tan_y = camera.tan_fov
    if use_focal:
      # jacobian in pixels, rescaled by the half image size
      assert camera.image_size is not None, "focal form requires camera image_size"
      focal = camera.focal_length
      sx, sy = camera.image_size[0] * 0.5, camera.image_size[1] * 0.5
    else:
      focal = (1.0, 1.0)
      sx, sy = tan_x, tan_y

    n = splats.batch_size[0]
    mean = torch.empty((n, 2), dtype=dtype, device=device)
    cov2d = torch.empty((n, 3), dtype=dtype, device=device)
    conic = torch.empty((n, 3), dtype=dtype, device=device)
    depth = torch.empty((n,), dtype=dtype, device=device)

    if n > 0:
      T_camera_world = camera.world_to_camera.to(dtype=torch.float64)
      project(splats.position.contiguous(), splats.scale.contiguous(), splats.rotation.contiguous(),
              lib.mat4(T_camera_world.tolist()), lib.vec2(tan_x, tan_y), lib.vec2(*focal),
              lib.vec3(1.0 / (sx * sx), 1.0 / (sx * sy), 1.0 / (sy * sy)),
              config.near_plane, config.fov_clamp, config.cov_eps,
              mean, cov2d, conic, depth)
    
    logger.debug(f"projected {n} splats, use_focal={use_focal}")
    return ProjectedSplats(position=mean, cov2d=cov2d, conic=conic, depth=depth, batch_size=(n,))

  __call__ = forward
