from beartype.typing import Tuple
import roma
import torch

from tiled_splatting.data_types import ProjectedSplats, RasterConfig, Splats
from tiled_splatting.perspective import Camera


def quat_to_mat(q:torch.Tensor) -> torch.Tensor:
  # (r, x, y, z) -> roma (x, y, z, w)
  return roma.unitquat_to_rotmat(roma.quat_wxyz_to_xyzw(q))


def covariance_3d(rotation:torch.Tensor, scale:torch.Tensor) -> torch.Tensor:
  """ Sigma = R S S^T R^T, (N, 3, 3) """
  R = quat_to_mat(torch.nn.functional.normalize(rotation, dim=-1))
  m = R * scale.unsqueeze(1)
  return m @ m.transpose(1, 2)


def ewa_jacobian(t:torch.Tensor, tan_fov:Tuple[float, float], fov_clamp:float) -> torch.Tensor:
  """ Jacobian of the perspective projection (tangent form), (N, 2, 3) """
  limit = torch.tensor(tan_fov, dtype=t.dtype, device=t.device) * fov_clamp

  z = t[:, 2]
  xy = torch.clamp(t[:, :2] / z.unsqueeze(1), -limit, limit) * z.unsqueeze(1)
  zero = torch.zeros_like(z)

  return torch.stack([
    1 / z, zero, -xy[:, 0] / (z * z),
    zero, 1 / z, -xy[:, 1] / (z * z)
  ], dim=1).reshape(-1, 2, 3)


def cov_to_conic(cov:torch.Tensor, eps:float) -> torch.Tensor:
  x, y, z = cov.unbind(-1)
  inv_det = 1 / (x * z - y * y + eps)
  return torch.stack([inv_det * z, -inv_det * y, inv_det * x], -1)


def project_splats(splats:Splats, camera:Camera, config:RasterConfig = RasterConfig()) -> ProjectedSplats:
  """ Reference projection to normalized device coordinates (torch) """
  T = camera.world_to_camera.to(splats.position.dtype)
  t = splats.position @ T[:3, :3].T + T[:3, 3]

  tan_x, tan_y = camera.tan_fov
  tan_fov = torch.tensor([tan_x, tan_y], dtype=t.dtype, device=t.device)

  W = T[:3, :3]
  J = ewa_jacobian(t, (tan_x, tan_y), config.fov_clamp)
  m = J @ W

  cov = m @ covariance_3d(splats.rotation, splats.scale) @ m.transpose(1, 2)
  cov2d = torch.stack([cov[:, 0, 0] / (tan_x * tan_x), 
                       cov[:, 0, 1] / (tan_x * tan_y), 
                       cov[:, 1, 1] / (tan_y * tan_y)], -1)

  mean = t[:, :2] / (t[:, 2:3] * tan_fov)
  conic = cov_to_conic(cov2d, config.cov_eps)
  depth = t[:, 2]

  culled = depth < config.near_plane
  zero = torch.zeros((), dtype=t.dtype, device=t.device)

  n = t.shape[0]
  return ProjectedSplats(
    position=torch.where(culled.unsqueeze(1), zero, mean),
    cov2d=torch.where(culled.unsqueeze(1), zero, cov2d),
    conic=torch.where(culled.unsqueeze(1), zero, conic),
    depth=torch.where(culled, zero, depth),
    batch_size=(n,)
  )
