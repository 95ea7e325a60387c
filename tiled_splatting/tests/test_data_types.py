import dataclasses
import logging

from beartype.roar import BeartypeCallHintParamViolation
import pytest
import torch

from tiled_splatting.data_types import ProjectedSplats, RasterConfig, Splats
from tiled_splatting.errors import CapacityError, check_capacity
from tiled_splatting.log import PACKAGE_LOGGER, create_logger


def test_from_arrays():
  splats = Splats.from_arrays(
    position=[0., 1., 2., 3., 4., 5.],
    scale=[1.] * 6,
    rotation=[1., 0., 0., 0.] * 2,
    opacity=[0.5, 0.25],
    feature=[1., 0., 0., 0., 1., 0.])

  assert splats.batch_size == (2, )
  assert splats.position.shape == (2, 3) and splats.position[1].tolist() == [3., 4., 5.]
  assert splats.opacity.shape == (2, 1)
  assert splats.rotation.dtype == torch.float32


def test_splat_shapes():
  with pytest.raises(AssertionError):
    Splats(position=torch.zeros(2, 3), scale=torch.zeros(2, 3), rotation=torch.zeros(2, 3),
           opacity=torch.zeros(2, 1), feature=torch.zeros(2, 3), batch_size=(2,))


def test_projected_splats():
  projected = ProjectedSplats(
    position=torch.tensor([[0., 0.], [0.5, -0.5]]),
    cov2d=torch.ones(2, 3),
    conic=torch.ones(2, 3),
    depth=torch.tensor([2., 0.]),
    batch_size=(2,))

  assert projected.visible.tolist() == [True, False]
  assert projected[1:].position.tolist() == [[0.5, -0.5]]
  assert projected.to(torch.float64).position.dtype == torch.float64


def test_config():
  config = RasterConfig()
  assert config.tile_size == 16 and config.tile_area == 256
  assert config.sort_bits == 64

  with pytest.raises(dataclasses.FrozenInstanceError):
    config.tile_size = 8

  # hashable, kernels are cached per config
  assert hash(config) == hash(RasterConfig())

  with pytest.raises(AssertionError):
    RasterConfig(tile_size=64)

  with pytest.raises(BeartypeCallHintParamViolation):
    RasterConfig(near_plane="near")


def test_capacity_error():
  check_capacity("buffer", 10, 10)

  with pytest.raises(CapacityError) as e:
    check_capacity("buffer", 11, 10)

  assert isinstance(e.value, RuntimeError)
  assert (e.value.required, e.value.available) == (11, 10)
  assert "buffer" in str(e.value)


def test_logger():
  logger = create_logger("tiled_splatting.tests")
  create_logger("tiled_splatting.tests")

  package_logger = logging.getLogger(PACKAGE_LOGGER)
  assert len(package_logger.handlers) == 1
  assert logger.parent is package_logger
