import logging
import os
import tempfile
from pathlib import Path

from smokecore.schemas import SmokeRun

logger = logging.getLogger(__name__)


def write_artifact(path: Path, run: SmokeRun) -> Path:
    path = path.absolute()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f'.{path.name}.', suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(run.to_json() + '\n')
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    logger.info(f'Wrote smoke summary to {path}')
    return path


def remove_quietly(path: Path):
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.debug(f'Could not remove {path}: {e}')
