import os

import pytest
import taichi as ti
import torch

from tiled_splatting.taichi_queue import TaichiQueue


@pytest.fixture(scope="session", autouse=True)
def taichi_arch():
  arch = os.environ.get("TILED_SPLATTING_ARCH", "cpu")
  TaichiQueue.init(arch=getattr(ti, arch), offline_cache=True, log_level=ti.WARN)
  yield arch
  TaichiQueue.stop()


@pytest.fixture(scope="session")
def device(taichi_arch):
  return torch.device("cuda") if taichi_arch == "cuda" else torch.device("cpu")
