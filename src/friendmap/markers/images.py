"""
Asynchronous image loading for single-friend markers.
"""
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional, Protocol

from friendmap.config import settings
from friendmap.core.exceptions import ImageLoadFailure
from friendmap.utils.logger import logger

ResultCallback = Callable[[Any], None]
FailureCallback = Callable[[ImageLoadFailure], None]


class ImageLoader(Protocol):
    """Loads an image off-thread and reports back through callbacks."""

    def load(self, image_ref: str, on_result: ResultCallback, on_failure: FailureCallback) -> None: ...


class ThreadedImageLoader:
    """
    Runs a fetch function on a thread pool.

    The callbacks fire on the worker thread; callers that touch UI state must
    marshal them onto their own thread.

    Fetching and decoding belong to `fetch`, which maps an image reference to a
    displayable image and raises on failure.
    """

    def __init__(self, fetch: Callable[[str], Any], max_workers: Optional[int] = None):
        self.fetch = fetch
        self.max_workers = max_workers or settings.IMAGE_LOADER_WORKERS
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="friendmap-image",
        )

        logger.debug("Initialized ThreadedImageLoader", max_workers=self.max_workers)

    def load(self, image_ref: str, on_result: ResultCallback, on_failure: FailureCallback) -> Future:
        """
        Schedule a fetch.

        Args:
            image_ref: Reference handed to `fetch`
            on_result: Called with the image on success
            on_failure: Called with an ImageLoadFailure otherwise

        Returns:
            The future of the background job
        """

        def job() -> None:
            try:
                image = self.fetch(image_ref)
                if image is None:
                    raise ValueError("fetch returned no image")
            except Exception as e:
                on_failure(ImageLoadFailure(image_ref, e))
                return
            on_result(image)

        return self._executor.submit(job)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "ThreadedImageLoader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()
