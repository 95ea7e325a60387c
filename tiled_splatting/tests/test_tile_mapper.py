from taichi.math import ivec2
import torch

from tiled_splatting.data_types import RasterConfig
from tiled_splatting.mapper.tile_mapper import tile_grid, tile_mapper


def test_tile_grid():
  assert tile_grid((64, 64), 16) == (4, 4)
  assert tile_grid((65, 17), 16) == (5, 2)
  assert tile_grid((1, 1), 16) == (1, 1)


def test_find_ranges(device):
  mapper = tile_mapper(RasterConfig())

  tiles = torch.tensor([0, 0, 0, 2, 2, 5], dtype=torch.int64, device=device)
  keys = (tiles << 32) | torch.arange(6, dtype=torch.int64, device=device)

  # trailing garbage past num_rendered is ignored
  keys = torch.cat([keys, torch.full((4, ), -1, dtype=torch.int64, device=device)])
  
  ranges = torch.zeros((7, 2), dtype=torch.int32, device=device)
  mapper.find_ranges(keys, 6, ranges)

  assert ranges.tolist() == [[0, 3], [0, 0], [3, 5], [0, 0], [0, 0], [5, 6], [0, 0]]


def ndc_splats(mean, cov_pixel, depth, image_size, config:RasterConfig, device='cpu'):
  """ Splats with a given pixel covariance (before the low pass filter) """
  w, h = image_size
  cov_pixel = torch.tensor(cov_pixel, dtype=torch.float32, device=device)
  blur = torch.tensor([config.blur_cov, 0., config.blur_cov], device=device)
  cov_ndc = (cov_pixel - blur) / torch.tensor([w * w / 4, w * h / 4, h * h / 4], device=device)

  mean = torch.tensor(mean, dtype=torch.float32, device=device)
  depth = torch.tensor(depth, dtype=torch.float32, device=device)
  return mean, cov_ndc, depth


def allocate(mean, cov_ndc, depth, image_size, config:RasterConfig):
  mapper = tile_mapper(config)
  grid = tile_grid(image_size, config.tile_size)

  n, device = depth.shape[0], depth.device
  mean_pixel = torch.empty((n, 2), device=device)
  conic = torch.empty((n, 3), device=device)
  radii = torch.empty((n, ), dtype=torch.int32, device=device)
  counts = torch.empty((n, ), dtype=torch.int32, device=device)

  mapper.allocate_tiles(mean, cov_ndc, depth, ivec2(image_size), ivec2(grid),
                        mean_pixel, conic, radii, counts)
  return mean_pixel, conic, radii, counts


def test_allocate_tiles(device):
  config = RasterConfig()
  image_size = (64, 64)

  # centred, culled (depth 0), far off screen
  mean, cov_ndc, depth = ndc_splats(
    mean=[[0., 0.], [0., 0.], [5., 5.]],
    cov_pixel=[[4., 0., 4.]] * 3, 
    depth=[1., 0., 1.], image_size=image_size, config=config, device=device)

  mean_pixel, conic, radii, counts = allocate(mean, cov_ndc, depth, image_size, config)

  # max eigenvalue 4 + sqrt(0.1) (discriminant floor), radius ceil(3 * sqrt(4.316)) = 7
  assert radii.tolist() == [7, 0, 0]

  # pixel centre 31.5, tiles [1, 3) x [1, 3)
  assert counts.tolist() == [4, 0, 0]
  assert torch.allclose(mean_pixel[0], torch.tensor([31.5, 31.5], device=device))
  assert torch.allclose(conic[0], torch.tensor([0.25, 0., 0.25], device=device), rtol=1e-4)


def test_allocate_non_square(device):
  # wide image, the y variance scales with height squared
  config = RasterConfig()
  image_size = (128, 32)

  mean, cov_ndc, depth = ndc_splats(
    mean=[[0., 0.]], cov_pixel=[[1., 0., 17.]], depth=[1.],
    image_size=image_size, config=config, device=device)

  mean_pixel, conic, radii, counts = allocate(mean, cov_ndc, depth, image_size, config)

  # max eigenvalue 17, radius ceil(3 * sqrt(17)) = 13
  assert radii.tolist() == [13]
  assert torch.allclose(mean_pixel[0], torch.tensor([63.5, 15.5], device=device))
  assert torch.allclose(conic[0], torch.tensor([1., 0., 1. / 17.], device=device), rtol=1e-4, atol=1e-6)

  # tiles [3, 5) x [0, 2)
  assert counts.tolist() == [4]


def test_duplicate_with_keys(device):
  config = RasterConfig()
  image_size = (64, 64)
  grid = tile_grid(image_size, config.tile_size)
  mapper = tile_mapper(config)

  mean, cov_ndc, depth = ndc_splats(
    mean=[[0., 0.], [5., 5.], [0., 0.]],
    cov_pixel=[[4., 0., 4.]] * 3, 
    depth=[2., 1., 0.5], image_size=image_size, config=config, device=device)

  mean_pixel, _, radii, counts = allocate(mean, cov_ndc, depth, image_size, config)
  offsets = torch.cumsum(counts, 0, dtype=torch.int32)
  total = offsets[-1].item()
  assert total == 8

  keys = torch.empty((total, ), dtype=torch.int64, device=device)
  values = torch.empty((total, ), dtype=torch.int32, device=device)
  mapper.duplicate_with_keys(mean_pixel, radii, depth, offsets, ivec2(grid), keys, values)

  # tiles (1, 1), (2, 1), (1, 2), (2, 2) of a 4 wide grid, row by row
  assert (keys >> 32).tolist() == [5, 6, 9, 10] * 2
  assert values.tolist() == [0] * 4 + [2] * 4

  depth_bits = keys & 0xFFFFFFFF
  assert (depth_bits[:4] == depth[0:1].view(torch.int32).to(torch.int64)).all()
  assert (depth_bits[4:] == depth[2:3].view(torch.int32).to(torch.int64)).all()
