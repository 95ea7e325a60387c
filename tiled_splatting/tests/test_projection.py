import math
from tqdm import tqdm
import torch

from tiled_splatting.data_types import RasterConfig
from tiled_splatting.perspective import Camera, GaussianProjector
import tiled_splatting.torch_lib.projection as torch_proj

from tiled_splatting.tests.random_data import front_camera, ndc_scale, random_camera, random_splats, single_splat
from tiled_splatting.tests.util import compare, compare_projected


def test_world_to_camera():
  camera = Camera.look_at((0., 0., -5.), (0., 0., 0.), world_up=(0., 1., 0.))
  T = camera.world_to_camera

  origin = T @ torch.tensor([0., 0., 0., 1.])
  compare("origin", origin, torch.tensor([0., 0., 5., 1.]), atol=1e-6)

  rotation = T[:3, :3]
  compare("orthonormal", rotation @ rotation.T, torch.eye(3), atol=1e-6)


def test_tan_fov_focal():
  camera = Camera.look_at((0., 0., -5.), (0., 0., 0.), fov=90.0, image_size=(200, 100))

  tan_x, tan_y = camera.tan_fov
  assert math.isclose(tan_y, 1.0, rel_tol=1e-6)
  assert math.isclose(tan_x, 2.0, rel_tol=1e-6)

  fx, fy = camera.focal_length
  assert math.isclose(fx, 50.0, rel_tol=1e-6) and math.isclose(fy, 50.0, rel_tol=1e-6)


def test_projection(iters=20, dtype=torch.float64, device='cpu'):
  projector = GaussianProjector()

  for i in tqdm(range(iters), desc="projection"):
    torch.manual_seed(i)
    camera = random_camera().to(device=device, dtype=dtype)
    splats = random_splats(torch.randint(1, 1000, (1,)).item(), device=device, dtype=dtype)

    projected = projector.forward(splats, camera)
    expected = torch_proj.project_splats(splats, camera)

    compare_projected(projected, expected, rtol=1e-5, atol=1e-8)


def test_focal_form(iters=10, dtype=torch.float64):
  projector = GaussianProjector()

  for i in range(iters):
    torch.manual_seed(i)
    camera = random_camera().to(dtype=dtype)
    splats = random_splats(500, dtype=dtype)

    tangent = projector.forward(splats, camera, use_focal=False)
    focal = projector.forward(splats, camera, use_focal=True)

    compare_projected(tangent, focal, rtol=1e-6, atol=1e-10)


def test_centred_splat():
  distance = 5.0
  camera = front_camera(distance=distance)
  splats = single_splat(scale=0.5, dtype=torch.float64)

  projected = GaussianProjector().forward(splats, camera.to(dtype=torch.float64))

  # isotropic splat on the optical axis, covariance is (s / (z tan))^2 I 
  s = (0.5 * ndc_scale(distance)) ** 2
  compare("position", projected.position, torch.zeros(1, 2, dtype=torch.float64), atol=1e-9)
  compare("cov2d", projected.cov2d, torch.tensor([[s, 0., s]], dtype=torch.float64), rtol=1e-6, atol=1e-12)
  assert math.isclose(projected.depth.item(), distance, rel_tol=1e-9)


def test_near_cull():
  camera = front_camera(distance=5.0)
  config = RasterConfig()

  # behind the camera, and just in front but closer than the near plane
  splats = random_splats(2)
  splats.position[0] = torch.tensor([0., 0., -10.])
  splats.position[1] = torch.tensor([0., 0., -5. + config.near_plane * 0.5])

  projected = GaussianProjector(config).forward(splats, camera)

  assert (projected.depth == 0).all()
  assert (projected.position == 0).all() and (projected.cov2d == 0).all() and (projected.conic == 0).all()
  assert not projected.visible.any()


def test_near_plane_f64():
  # the near plane test runs at the precision of the splats (f32(0.2) > 0.2 + 1e-9)
  camera = front_camera(distance=5.0).to(dtype=torch.float64)
  config = RasterConfig(near_plane=0.2)

  splats = random_splats(2, dtype=torch.float64)
  splats.position[0] = torch.tensor([0., 0., -5. + 0.2 + 1e-9], dtype=torch.float64)
  splats.position[1] = torch.tensor([0., 0., -5. + 0.2 - 1e-9], dtype=torch.float64)

  projected = GaussianProjector(config).forward(splats, camera)
  assert projected.visible.tolist() == [True, False]
  assert math.isclose(projected.depth[0].item(), 0.2 + 1e-9, rel_tol=1e-12)


if __name__ == "__main__":
  from tiled_splatting.taichi_queue import taichi_queue
  import taichi as ti

  with taichi_queue(arch=ti.cpu, offline_cache=True, log_level=ti.INFO):
    test_projection()
    test_focal_form()
