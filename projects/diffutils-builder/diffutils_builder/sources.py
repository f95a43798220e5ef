import logging
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator

import requests

from diffutils_builder.config import BuildConfig
from diffutils_builder.errors import ExtractError, FetchError, FilesystemError, IntegrityError
from diffutils_builder.settings import OUTPUT_DIR_NAME, SOURCE_DIR_NAME
from msys_build_utils import file as fileutils

logger = logging.getLogger("builder")

DOWNLOAD_CHUNK_SIZE = 64 * 1024
DOWNLOAD_TIMEOUT = 60  # seconds, per socket operation

# ---------------------------------------------------------------------------- #
#                               Workspace Helpers                              #
# ---------------------------------------------------------------------------- #


def ensure_empty_dir(path: Path):
    try:
        fileutils.ensure_empty_dir(path)
    except OSError as e:
        raise FilesystemError(f"unable to recreate directory {path}: {e}") from e


# ---------------------------------------------------------------------------- #
#                                  Acquisition                                 #
# ---------------------------------------------------------------------------- #


def download(url: str, target: Path):
    logger.info(f"Downloading tarball, url: [{url}]")
    try:
        with requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
            response.raise_for_status()
            with open(target, "wb") as fp:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    fp.write(chunk)
    except requests.RequestException as e:
        raise FetchError(f"unable to download {url}: {e}") from e
    except OSError as e:
        raise FilesystemError(f"unable to write {target}: {e}") from e


def fetch_source(config: BuildConfig, src_dir: Path, root_dir: Path) -> Path:
    """Place the configured tarball into `src_dir`, either by copying the local
    file (relative paths resolve against `root_dir`) or by downloading it."""
    tarball = config.tarball
    target = src_dir / tarball.filename
    if tarball.local_path:
        local_path = root_dir / tarball.local_path
        logger.info(f"Copying tarball, path: [{local_path}]")
        try:
            fileutils.copy_file(local_path, target)
        except OSError as e:
            raise FilesystemError(f"unable to copy {local_path} to {target}: {e}") from e
    else:
        download(tarball.url, target)
    return target


# ---------------------------------------------------------------------------- #
#                                   Integrity                                  #
# ---------------------------------------------------------------------------- #


def normalize_hex(value: str) -> str:
    return value.strip().lower()


def verify_checksum(path: Path, expected: str):
    try:
        actual = fileutils.sha256_of_file(path)
    except OSError as e:
        raise FilesystemError(f"unable to read {path}: {e}") from e
    if normalize_hex(actual) != normalize_hex(expected):
        raise IntegrityError(path.name, expected, actual)
    logger.debug(f"sha256 verified for {path.name}: {actual}")


# ---------------------------------------------------------------------------- #
#                                  Extraction                                  #
# ---------------------------------------------------------------------------- #


def _root_name(entry_name: str) -> str | None:
    parts = [
        p for p in PurePosixPath(entry_name.replace("\\", "/")).parts if p not in ("/", ".")
    ]
    return parts[0] if parts else None


def _first_root_name(archive: Path, entry_names: Iterable[str]) -> str:
    # `tar -C dir .` archives start with a bare `.` entry
    for entry_name in entry_names:
        root_name = _root_name(entry_name)
        if root_name is not None:
            return root_name
    raise ExtractError(f"unable to determine root directory of {archive}")


def _tar_entry_names(tf: tarfile.TarFile) -> Iterator[str]:
    while (member := tf.next()) is not None:
        yield member.name


def extract(archive: Path, dest: Path) -> Path:
    """Unpack `archive` into `dest` and return the absolute path of its top-level
    directory, named after the first entry recorded in the archive."""
    logger.info(f"Unpacking file: [{archive.name}]")
    try:
        if zipfile.is_zipfile(archive):
            with zipfile.ZipFile(archive) as zf:
                root_name = _first_root_name(archive, zf.namelist())
                zf.extractall(dest)
        else:
            with tarfile.open(archive, "r:*") as tf:
                root_name = _first_root_name(archive, _tar_entry_names(tf))
                tf.extractall(dest, filter="data")
    except (tarfile.TarError, zipfile.BadZipFile) as e:
        raise ExtractError(f"unable to extract {archive}: {e}") from e
    except OSError as e:
        raise FilesystemError(f"unable to extract {archive} to {dest}: {e}") from e

    source_tree = dest.absolute() / root_name
    if not source_tree.is_dir():
        raise ExtractError(f"archive {archive.name} has no top-level directory [{root_name}]")
    return source_tree


# ---------------------------------------------------------------------------- #
#                                Combined Actions                              #
# ---------------------------------------------------------------------------- #


def get_sources(config: BuildConfig, root_dir: Path) -> Path:
    src_dir = root_dir / SOURCE_DIR_NAME
    ensure_empty_dir(src_dir)
    archive = fetch_source(config, src_dir, root_dir)
    verify_checksum(archive, config.tarball.sha256)
    return extract(archive, src_dir)


# ---------------------------------------------------------------------------- #


def prepare_install_dir(root_dir: Path, source_tree: Path) -> Path:
    out_dir = root_dir / OUTPUT_DIR_NAME
    ensure_empty_dir(out_dir)
    install_dir = out_dir.absolute() / source_tree.name
    try:
        fileutils.create_dir(install_dir)
    except OSError as e:
        raise FilesystemError(f"unable to create {install_dir}: {e}") from e
    return install_dir


# ---------------------------------------------------------------------------- #
