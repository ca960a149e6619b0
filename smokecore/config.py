import os
import shlex
import yaml
from pathlib import Path
from pydantic import AfterValidator, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Annotated
from yaml import YAMLError

from smokecore.const import (
    DEFAULT_BACKEND_COMMAND,
    DEFAULT_OUTPUT,
    DEFAULT_PORT,
    DEFAULT_SAMPLE_CONFIG,
)
from smokecore.exceptions import ConfigurationError


class Config(BaseSettings):
    model_config = SettingsConfigDict(extra='ignore')

    backend_port: int = Field(DEFAULT_PORT, validation_alias='BACKEND_PORT')
    freecad_root: Path | None = Field(None, validation_alias='FREECAD_ROOT')
    mock: bool = Field(False, validation_alias='SMOKE_MOCK')
    sample_config: str = Field(DEFAULT_SAMPLE_CONFIG, validation_alias='SMOKE_CONFIG')
    output: Path = Field(Path(DEFAULT_OUTPUT), validation_alias='SMOKE_OUTPUT')

    backend_command: str = DEFAULT_BACKEND_COMMAND
    backend_cwd: Annotated[Path, AfterValidator(lambda path: path.absolute())] = Path('.')
    probe_interval: float = 0.5
    max_attempts: int = 60
    shutdown_timeout: float = 1.5
    request_timeout: float = 120.0

    debug: bool = False

    @property
    def base_url(self) -> str:
        return f'http://localhost:{self.backend_port}/api'

    @property
    def backend_args(self) -> list[str]:
        return shlex.split(self.backend_command)

    @property
    def mode(self) -> str:
        return 'mock' if self.mock else 'real'


def config_file_path() -> Path:
    config_home = Path(os.getenv('XDG_CONFIG_HOME') or os.path.expanduser('~/.config'))
    return config_home / 'smokecore' / 'config.yml'


def settings_values(values: dict) -> dict:
    # Fields with an environment alias only accept that alias as input.
    result = {}
    for key, value in values.items():
        field = Config.model_fields.get(key)
        alias = field.validation_alias if field is not None else None
        result[alias if isinstance(alias, str) else key] = value
    return result


def load_config(config_file: Path | None = None, **overrides) -> Config:
    file = config_file or config_file_path()
    config_values = {}
    if file.is_file():
        try:
            config_values = yaml.safe_load(file.read_text()) or {}
        except YAMLError as e:
            raise ConfigurationError(str(e))
        if not isinstance(config_values, dict):
            raise ConfigurationError(f'{file} must contain a mapping')
    config_values |= {k: v for k, v in overrides.items() if v is not None}
    try:
        return Config(
            **settings_values(config_values), _env_file='.env', _env_prefix='SMOKE_'
        )
    except ValidationError as e:
        raise ConfigurationError(str(e))


__all__ = ['Config', 'load_config', 'settings_values']
