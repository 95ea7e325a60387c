from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
import threading

import taichi as ti
import torch

from tiled_splatting.log import create_logger

logger = create_logger(__name__)


class InlineExecutor:
  """ Runs submitted work immediately on the calling thread """
  def __init__(self, initializer, **kwargs):
    initializer()

  def submit(self, fn, *args, **kwargs):
    future = Future()
    future.set_result(fn(*args, **kwargs))
    return future

  def shutdown(self, wait=True):
    pass


class TaichiQueue():
  """ Single ordered queue for all kernel dispatches (use in place of ti.init),
    kernels run one after another in submission order.

    threaded=True runs taichi on a dedicated worker thread.
  """
  executor: ThreadPoolExecutor = None
  worker_id: int = None
  readbacks: int = 0

  @classmethod
  def init(cls, *args, threaded=False, **kwargs):
    if cls.executor is None:

      def initializer():
        if threaded:
          cls.worker_id = threading.get_ident()
        ti.init(*args, **kwargs)
        logger.debug(f"taichi initialized, arch={ti.lang.impl.current_cfg().arch}, threaded={threaded}")

      if threaded:
        cls.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="taichi", initializer=initializer)
        # initializer runs with the first task
        cls.executor.submit(lambda: None).result()
      else:
        cls.executor = InlineExecutor(initializer)

    return cls.executor

  @classmethod
  def queue(cls):
    assert cls.executor is not None, "TaichiQueue not initialized (run TaichiQueue.init() in place of ti.init())"
    return cls.executor

  @staticmethod
  def _await_run(func, *args, **kwargs):
    args = [arg.result() if isinstance(arg, Future) else arg for arg in args]
    return func(*args, **kwargs)

  @classmethod
  def run_async(cls, func, *args, **kwargs) -> Future:
    return cls.queue().submit(cls._await_run, func, *args, **kwargs)

  @classmethod
  def run_sync(cls, func, *args, **kwargs):
    assert threading.get_ident() != cls.worker_id, "TaichiQueue.run_sync() called from worker thread (will deadlock)"
    return cls.run_async(func, *args, **kwargs).result()

  @classmethod
  def stop(cls) -> None:
    if cls.executor is not None:
      cls.run_sync(ti.reset)
      cls.executor.shutdown(wait=True)

      cls.executor = None
      cls.worker_id = None


@contextmanager
def taichi_queue(*args, **kwargs):
  TaichiQueue.init(*args, **kwargs)
  try:
    yield TaichiQueue
  finally:
    TaichiQueue.stop()


def queued(kernel):
  def f(*args, **kwargs):
    return TaichiQueue.run_sync(kernel, *args, **kwargs)
  return f


def read_scalar(tensor:torch.Tensor, index:int=-1):
  """ Blocking readback of a single device value,
    waits for all queued kernels to complete first.
  """
  TaichiQueue.run_sync(ti.sync)
  TaichiQueue.readbacks += 1
  return tensor[index].item()
