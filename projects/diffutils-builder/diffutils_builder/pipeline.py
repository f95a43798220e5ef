import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from diffutils_builder.config import BuildConfig, load_config
from diffutils_builder.driver import BuildDriver, BuildState
from diffutils_builder.environment import Shell, provision
from diffutils_builder.errors import BuildException, FilesystemError, Stage
from diffutils_builder.fingerprint import ArtifactChecksum, fingerprint_binaries
from diffutils_builder.patches import apply_patches
from diffutils_builder.sources import get_sources, prepare_install_dir

logger = logging.getLogger("builder")

SOURCE_STAGES = [Stage.CONFIG, Stage.SOURCES, Stage.INSTALL_DIR, Stage.PATCHES]
BUILD_STAGES = SOURCE_STAGES + [
    Stage.ENVIRONMENT,
    Stage.CONFIGURE,
    Stage.COMPILE,
    Stage.WORKAROUNDS,
    Stage.TEST,
    Stage.INSTALL,
    Stage.FINGERPRINT,
]


@dataclass(frozen=True)
class PipelineFailure:
    stage: Stage
    error: BuildException

    def __str__(self):
        return f"stage '{self.stage}' failed: {self.error}"


@dataclass
class PipelineResult:
    completed: list[Stage] = field(default_factory=list)
    failure: PipelineFailure | None = None

    config: BuildConfig | None = None
    source_tree: Path | None = None
    install_dir: Path | None = None
    checksums: list[ArtifactChecksum] = field(default_factory=list)

    def is_failure(self) -> bool:
        return self.failure is not None

    def is_success(self) -> bool:
        return self.failure is None


class BuildPipeline:
    """Sequences the stages of one build below `root_dir`.

    Every stage either completes or raises a `BuildException`; the first
    failure is recorded with its stage in the returned `PipelineResult` and no
    later stage runs.
    """

    root_dir: Path
    shell: Shell
    tests: list[str] | None

    def __init__(self, root_dir: Path, shell: Shell, tests: list[str] | None = None):
        self.root_dir = root_dir
        self.shell = shell
        self.tests = tests
        self.result = PipelineResult()
        self.driver: BuildDriver | None = None

    def run(self, stages: list[Stage] = BUILD_STAGES) -> PipelineResult:
        self.result = PipelineResult()
        self.driver = None
        actions = self._actions()
        for stage in stages:
            try:
                actions[stage]()
            except BuildException as e:
                return self._fail(stage, e)
            except OSError as e:
                return self._fail(stage, FilesystemError(str(e)))
            self.result.completed.append(stage)
        return self.result

    def run_sources(self) -> PipelineResult:
        return self.run(SOURCE_STAGES)

    def _fail(self, stage: Stage, error: BuildException) -> PipelineResult:
        self.result.failure = PipelineFailure(stage, error)
        logger.critical(str(self.result.failure))
        return self.result

    def _actions(self) -> dict[Stage, Callable[[], None]]:
        return {
            Stage.CONFIG: self._load_config,
            Stage.SOURCES: self._get_sources,
            Stage.INSTALL_DIR: self._prepare_install_dir,
            Stage.PATCHES: self._apply_patches,
            Stage.ENVIRONMENT: self._provision,
            Stage.CONFIGURE: self._configure,
            Stage.COMPILE: self._compile,
            Stage.WORKAROUNDS: self._workarounds,
            Stage.TEST: self._test,
            Stage.INSTALL: self._install,
            Stage.FINGERPRINT: self._fingerprint,
        }

    # ---------------------------------- stages ---------------------------------- #

    def _load_config(self):
        self.result.config = load_config(self.root_dir)

    def _get_sources(self):
        assert self.result.config, "no configuration"
        self.result.source_tree = get_sources(self.result.config, self.root_dir)

    def _prepare_install_dir(self):
        assert self.result.source_tree, "no source tree"
        self.result.install_dir = prepare_install_dir(self.root_dir, self.result.source_tree)

    def _apply_patches(self):
        assert self.result.config and self.result.source_tree, "no source tree"
        apply_patches(self.result.config, self.root_dir, self.result.source_tree)

    def _provision(self):
        provision(self.shell)

    def _build_driver(self) -> BuildDriver:
        if self.driver is None:
            assert self.result.source_tree and self.result.install_dir, "no source tree"
            self.driver = BuildDriver(
                self.shell, self.result.source_tree, self.result.install_dir, self.tests
            )
        return self.driver

    def _configure(self):
        self._build_driver().step(BuildState.CONFIGURE)

    def _compile(self):
        self._build_driver().step(BuildState.COMPILE)

    def _workarounds(self):
        self._build_driver().step(BuildState.WORKAROUNDS)

    def _test(self):
        self._build_driver().step(BuildState.TEST)

    def _install(self):
        self._build_driver().step(BuildState.INSTALL)

    def _fingerprint(self):
        assert self.result.install_dir, "no install directory"
        self.result.checksums = fingerprint_binaries(self.result.install_dir)
