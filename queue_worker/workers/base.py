import enum
import logging
import threading
from typing import Optional


class WorkerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class BaseWorker:
    """
    A long-running loop on its own thread, stopped cooperatively.

    Subclasses implement ``_run()`` and check ``self._stop_event`` at every
    suspension point. ``shutdown()`` signals the loop; ``wait()`` confirms it
    has exited.
    """

    name = "worker"

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__module__)
        self.state = WorkerState.IDLE
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self.state is WorkerState.RUNNING

    def start(self):
        """Spawn the loop thread and return immediately."""
        with self._state_lock:
            if self.state is not WorkerState.IDLE:
                raise RuntimeError(f"Cannot start {self.name} worker in state '{self.state.value}'")
            self.state = WorkerState.RUNNING
        self.logger.info(f"Starting {self.name} worker")
        self._before_start()
        self._thread = threading.Thread(target=self._run_guarded, name=f"{self.name}-worker", daemon=True)
        self._thread.start()

    def _before_start(self):
        pass

    def _run_guarded(self):
        try:
            self._run()
        except Exception:
            self.logger.exception(f"{self.name.capitalize()} worker loop crashed")
        finally:
            with self._state_lock:
                self.state = WorkerState.STOPPED
            self.logger.info(f"{self.name.capitalize()} worker stopped")

    def _run(self):
        raise NotImplementedError

    def shutdown(self):
        """Signal the loop to stop. Does not wait for in-flight work; idempotent."""
        with self._state_lock:
            if self.state is WorkerState.STOPPED:
                return
            self.state = WorkerState.STOPPED
        self.logger.info(f"Stopping {self.name} worker")
        self._stop_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the loop thread has exited. Returns False on timeout."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()
