import sys

import asyncio
import uvicorn

from smokecore import enable_debug_logging
from smokecore.config import load_config
from smokecore.exceptions import ConfigurationError
from smokecore.mock_api import create_mock_app
from smokecore.pipeline import run_smoke
from smokecore.schemas import SmokeRun


def main(argv: list[str]) -> int:
    command = argv[1] if len(argv) > 1 else 'run'
    if command == 'run':
        try:
            config = load_config(output=argv[2] if len(argv) > 2 else None)
        except ConfigurationError as e:
            run = SmokeRun(ok=False, summary={}, error=f'invalid configuration: {e}')
            print(run.to_json(), file=sys.stderr)
            return run.exit_code
        if config.debug:
            enable_debug_logging()
        run = asyncio.run(run_smoke(config))
        print(run.to_json(), file=sys.stdout if run.ok else sys.stderr)
        return run.exit_code
    elif command == 'serve-mock':
        config = load_config()
        if config.debug:
            enable_debug_logging()
        uvicorn.run(create_mock_app(), host='127.0.0.1', port=config.backend_port)
        return 0
    else:
        raise ValueError(f'Unknown command {command!r}')


def run():
    sys.exit(main(sys.argv))


if __name__ == '__main__':
    run()
