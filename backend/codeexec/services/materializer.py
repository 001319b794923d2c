"""Turns submitted source files into something a runtime can execute.

This is deliberately not a build system. A submission with several files is
reduced to one source file:

* ``concat`` languages (C, C++, Python) get every file glued together, each
  preceded by a boundary comment, with the entry-point file placed last;
* every other language runs just the file that holds the entry point.

Headers, modules and packages spread across files are therefore not linked
the way a real project build would link them.
"""
import logging, os, shutil, tempfile, time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from codeexec.models.job import SourceFile
from codeexec.services.runtimes import CONCAT, RuntimeProfile

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "job-"
_MAIN_STEMS = ("main", "Main", "index")


@dataclass
class ExecutionArtifact:
    directory: Path
    source: Path
    output: Path
    created_at: float = field(default_factory=time.time)
    released: bool = False


def _stem(path: str) -> str:
    return PurePosixPath(path).stem


def select_entrypoint(profile: RuntimeProfile, files: list[SourceFile]) -> SourceFile:
    """Entry file: first match of the profile's pattern, then a main-like name, then the first file."""
    for f in files:
        if profile.is_entrypoint(f.content):
            return f
    for f in files:
        if _stem(f.path) in _MAIN_STEMS:
            return f
    return files[0]


def combine(profile: RuntimeProfile, files: list[SourceFile]) -> str:
    if not files:
        raise ValueError("no source files")
    if len(files) == 1:
        return files[0].content
    entry = select_entrypoint(profile, files)
    if profile.multi_file != CONCAT:
        return entry.content
    ordered = [f for f in files if f is not entry] + [entry]
    parts = []
    for f in ordered:
        body = f.content if f.content.endswith("\n") else f.content + "\n"
        parts.append(f"{profile.comment} ---- file: {f.path} ----\n{body}")
    return "".join(parts)


class SourceMaterializer:
    def __init__(self, base_dir: str | os.PathLike):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def materialize(
        self, profile: RuntimeProfile, files: list[SourceFile]
    ) -> ExecutionArtifact:
        code = combine(profile, files)
        directory = Path(tempfile.mkdtemp(prefix=ARTIFACT_PREFIX, dir=self.base_dir))
        source = directory / profile.source_name
        source.write_text(code, encoding="utf-8")
        artifact = ExecutionArtifact(
            directory=directory, source=source, output=directory / "main.out"
        )
        logger.debug("materialized %s", source, extra={"language": profile.name})
        return artifact

    def release(self, artifact: ExecutionArtifact) -> None:
        """Remove the artifact's files. Safe to call more than once."""
        if artifact.released:
            return
        artifact.released = True
        try:
            shutil.rmtree(artifact.directory)
        except FileNotFoundError:
            pass

    def sweep(self, max_age_s: float, now: float | None = None) -> int:
        """Delete artifact directories whose mtime is older than ``max_age_s``."""
        now = time.time() if now is None else now
        removed = 0
        try:
            entries = list(os.scandir(self.base_dir))
        except FileNotFoundError:
            return 0
        for entry in entries:
            if not entry.name.startswith(ARTIFACT_PREFIX):
                continue
            try:
                age = now - entry.stat(follow_symlinks=False).st_mtime
                if age <= max_age_s:
                    continue
                if entry.is_dir(follow_symlinks=False):
                    shutil.rmtree(entry.path)
                else:
                    os.unlink(entry.path)
            except FileNotFoundError:
                continue
            except OSError:
                logger.warning("could not sweep %s", entry.path, exc_info=True)
                continue
            removed += 1
        if removed:
            logger.info("swept %d stale artifacts", removed)
        return removed
