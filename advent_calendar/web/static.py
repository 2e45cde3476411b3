"""Static assets served from several directories."""
from pathlib import Path
from typing import Sequence

from fastapi.staticfiles import StaticFiles


class ChainedStaticFiles(StaticFiles):
    """
    StaticFiles searching a list of directories in order.

    The last directory is the packaged one and must exist; configured
    directories before it may be missing.
    """

    def __init__(self, directories: Sequence[Path]):
        super().__init__(directory=str(directories[-1]))
        self.all_directories = [str(directory) for directory in directories]
