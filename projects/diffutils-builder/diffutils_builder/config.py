import json
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import urlparse

from diffutils_builder.errors import ConfigError
from diffutils_builder.settings import CONFIG_FILE_NAME, DEFAULT_CONFIG_FILE_NAME

logger = logging.getLogger("builder")


@dataclass(frozen=True)
class TarballSpec:
    url: str
    sha256: str
    local_path: str | None = None

    @property
    def filename(self) -> str:
        name = PurePosixPath(urlparse(self.url).path).name
        if not name:
            raise ConfigError(f"tarball url has no file name: [{self.url}]")
        return name


@dataclass(frozen=True)
class PatchRecord:
    patch: str  # relative to the build root
    file: str  # relative to the source tree


@dataclass(frozen=True)
class BuildConfig:
    tarball: TarballSpec
    patches: tuple[PatchRecord, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> "BuildConfig":
        if not isinstance(data, dict):
            raise ConfigError("configuration must be a JSON object")

        tarball = data.get("tarball")
        if not isinstance(tarball, dict):
            raise ConfigError("configuration requires a 'tarball' object")
        url = _require_str(tarball, "url", "tarball")
        sha256 = _require_str(tarball, "sha256", "tarball")
        local_path = tarball.get("localPath") or None
        if local_path is not None and not isinstance(local_path, str):
            raise ConfigError("'tarball.localPath' must be a string")

        patches = data.get("patches", [])
        if not isinstance(patches, list):
            raise ConfigError("'patches' must be a list")
        records = []
        for idx, entry in enumerate(patches):
            if not isinstance(entry, dict):
                raise ConfigError(f"'patches[{idx}]' must be an object")
            records.append(
                PatchRecord(
                    patch=_require_str(entry, "patch", f"patches[{idx}]"),
                    file=_require_str(entry, "file", f"patches[{idx}]"),
                )
            )

        return cls(
            tarball=TarballSpec(url=url, sha256=sha256, local_path=local_path),
            patches=tuple(records),
        )


def _require_str(data: dict, key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"'{where}.{key}' must be a non-empty string")
    return value


def find_config_file(root_dir: Path) -> Path:
    config_file = root_dir / CONFIG_FILE_NAME
    if not config_file.is_file():
        config_file = root_dir / DEFAULT_CONFIG_FILE_NAME
    if not config_file.is_file():
        raise ConfigError(
            f"neither {CONFIG_FILE_NAME} nor {DEFAULT_CONFIG_FILE_NAME} found in {root_dir}"
        )
    return config_file


def load_config(root_dir: Path) -> BuildConfig:
    """Read `config.json` from `root_dir`, falling back to `config-default.json`."""
    config_file = find_config_file(root_dir)
    logger.info(f"Loading configuration: [{config_file}]")
    try:
        data = json.loads(config_file.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"unable to read {config_file}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"unable to parse {config_file}: {e}") from e
    return BuildConfig.from_dict(data)
