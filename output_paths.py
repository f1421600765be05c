import logging
from pathlib import Path


def allocate_output_path(directory, title: str, ext: str, reserved=()) -> Path:
    directory = Path(directory)
    ext = ext.lstrip(".")
    candidate = directory / f"{title}.{ext}"
    counter = 1

    while candidate.exists() or candidate in reserved:
        candidate = directory / f"{title}_{counter}.{ext}"
        counter += 1
        logging.debug(f"DUPLICATE - Trying {candidate.name}")

    return candidate


class OutputPathAllocator:
    """Hands out collision-free output paths and remembers them until released.

    Reservations cover jobs running inside this process only; another process
    writing into the same directory can still race on the existence check.
    """

    def __init__(self):
        self._reserved: set[Path] = set()

    def reserve(self, directory, title: str, ext: str) -> Path:
        path = allocate_output_path(directory, title, ext, self._reserved)
        self._reserved.add(path)
        return path

    def release(self, path):
        if path is not None:
            self._reserved.discard(Path(path))

    @property
    def reserved(self) -> frozenset:
        return frozenset(self._reserved)
