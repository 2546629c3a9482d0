import resource
import time
from contextlib import contextmanager


class Timings:
    """Wall clock per pipeline step plus how many items each step handled.

    Steps are reported in the order they first ran; a step entered twice
    accumulates. ``as_dict`` yields ``<step>_sec`` keys, ``<name>_count``
    keys for every ``count`` call, and ``total_wall_sec``.
    """

    def __init__(self) -> None:
        self._steps: dict[str, float] = {}
        self._counts: dict[str, int] = {}
        self._t0 = time.perf_counter()

    @contextmanager
    def step(self, name: str):
        self._steps.setdefault(name, 0.0)
        start = time.perf_counter()
        try:
            yield
        finally:
            self._steps[name] += time.perf_counter() - start

    def count(self, name: str, n: int) -> None:
        self._counts[name] = self._counts.get(name, 0) + n

    def as_dict(self) -> dict[str, float]:
        out: dict[str, float] = {f"{name}_sec": sec for name, sec in self._steps.items()}
        out.update({f"{name}_count": n for name, n in self._counts.items()})
        out["total_wall_sec"] = time.perf_counter() - self._t0
        return out

    def resource_snapshot(self) -> dict:
        # ru_maxrss is KB on Linux.
        ru = resource.getrusage(resource.RUSAGE_SELF)
        return {
            "cpu_user_sec": ru.ru_utime,
            "cpu_system_sec": ru.ru_stime,
            "max_rss_kb": ru.ru_maxrss,
        }
