import logging
from dataclasses import dataclass
from pathlib import Path

from diffutils_builder.errors import FilesystemError
from diffutils_builder.settings import BINARY_DIR_NAME, BINARY_GLOB, CHECKSUM_SUFFIX
from msys_build_utils.file import sha256_of_file

logger = logging.getLogger("builder")


@dataclass(frozen=True)
class ArtifactChecksum:
    file_path: Path
    sha256: str
    sidecar_path: Path

    @property
    def line(self) -> str:
        return f"{self.sha256}  {self.file_path.name}"


def sidecar_path_for(file_path: Path) -> Path:
    return file_path.with_name(file_path.name + CHECKSUM_SUFFIX)


def file_sha256sum(file_path: Path) -> ArtifactChecksum:
    """Write `<file>.sha256` in `sha256sum` format and echo its line."""
    try:
        checksum = ArtifactChecksum(file_path, sha256_of_file(file_path), sidecar_path_for(file_path))
        checksum.sidecar_path.write_text(checksum.line)
    except OSError as e:
        raise FilesystemError(f"unable to fingerprint {file_path}: {e}") from e
    print(checksum.line)
    return checksum


def fingerprint_binaries(install_dir: Path, pattern: str = BINARY_GLOB) -> list[ArtifactChecksum]:
    bin_dir = install_dir / BINARY_DIR_NAME
    binaries = sorted(p for p in bin_dir.glob(pattern) if p.is_file())
    if not binaries:
        logger.warning(f"no binaries matching {pattern} in {bin_dir}")
    return [file_sha256sum(path) for path in binaries]
