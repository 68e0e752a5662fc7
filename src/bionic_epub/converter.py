from __future__ import annotations

import io
import os
import shutil
import tempfile
import time
import zipfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, Mapping
from uuid import uuid4

from bs4 import UnicodeDammit

from .errors import ConversionIOError, FormatError, NotFoundError
from .markup import DEFAULT_SKIP_RULES, SkipRules, process_document
from .options import DEFAULT_OPTIONS, BionicOptions, default_temp_root, default_workers

MARKUP_EXTS = (".xhtml", ".html", ".htm")
OUTPUT_SUFFIX = "-bionic"
MIMETYPE_ENTRY = "mimetype"
COMPRESS_LEVEL = 9

ProgressCallback = Callable[[Mapping[str, object]], None]

_DEBUG_LOG = False


def set_debug_logging(enabled: bool) -> None:
    global _DEBUG_LOG
    _DEBUG_LOG = enabled


def _debug_log(message: str) -> None:
    if _DEBUG_LOG:
        print(f"[bionic-epub debug] {message}")


@dataclass
class ConversionResult:
    success: bool
    output_path: Path | None = None
    error: BaseException | None = None
    documents: int = 0
    entries: int = 0

    @classmethod
    def ok(cls, output_path: Path, *, documents: int = 0, entries: int = 0) -> "ConversionResult":
        return cls(success=True, output_path=output_path, documents=documents, entries=entries)

    @classmethod
    def failed(cls, error: BaseException) -> "ConversionResult":
        return cls(success=False, error=error)

    @property
    def message(self) -> str | None:
        if self.error is None:
            return None
        return str(self.error) or self.error.__class__.__name__


class WorkArea:
    """Uniquely named scratch directory removed on exit, whatever happened inside."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = Path(root) if root is not None else default_temp_root()
        stamp = time.time_ns() // 1_000_000
        self.path = self.root / f"epub-{stamp}-{uuid4().hex[:12]}"

    def __enter__(self) -> Path:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self.path.mkdir()
        except OSError as exc:
            raise ConversionIOError(f"Unable to create working area {self.path}: {exc}") from exc
        _debug_log(f"created working area {self.path}")
        return self.path

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        shutil.rmtree(self.path, ignore_errors=True)
        if self.path.exists():
            _debug_log(f"working area {self.path} could not be fully removed")
        else:
            _debug_log(f"removed working area {self.path}")


def is_markup_document(path: Path | str) -> bool:
    return str(path).lower().endswith(MARKUP_EXTS)


def output_path_for(input_path: Path | str) -> Path:
    source = Path(input_path)
    return source.with_name(f"{source.stem}{OUTPUT_SUFFIX}{source.suffix}")


def _emit(progress: ProgressCallback | None, event: Mapping[str, object]) -> None:
    if progress is not None:
        progress(event)


def read_container(input_path: Path) -> bytes:
    if not input_path.exists():
        raise NotFoundError(f"EPUB file not found: {input_path}")
    try:
        return input_path.read_bytes()
    except OSError as exc:
        raise ConversionIOError(f"Unable to read {input_path}: {exc}") from exc


def _safe_entry_path(work_dir: Path, name: str) -> Path:
    posix = PurePosixPath(name.replace("\\", "/"))
    if posix.is_absolute() or ".." in posix.parts or not posix.parts:
        raise FormatError(f"Refusing container entry outside the book: {name!r}")
    return work_dir.joinpath(*posix.parts)


def extract_container(data: bytes, work_dir: Path) -> list[Path]:
    """Write every file entry of the container under ``work_dir``.

    Returns the written paths in container order.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as exc:
        raise FormatError(f"Not a valid EPUB container: {exc}") from exc
    files: list[Path] = []
    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            target = _safe_entry_path(work_dir, info.filename)
            try:
                payload = archive.read(info)
            except (zipfile.BadZipFile, NotImplementedError, RuntimeError) as exc:
                raise FormatError(f"Unable to read entry {info.filename}: {exc}") from exc
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(payload)
            except OSError as exc:
                raise ConversionIOError(f"Unable to extract {info.filename}: {exc}") from exc
            _debug_log(f"extracted {info.filename} -> {target}")
            files.append(target)
    return files


def _decode_document(raw: bytes, name: str) -> str:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        pass
    dammit = UnicodeDammit(raw, ["utf-8", "windows-1252"], is_html=True)
    if dammit.unicode_markup is None:
        raise FormatError(f"Unable to decode markup document {name}")
    return dammit.unicode_markup


def rewrite_document(
    path: Path,
    options: BionicOptions = DEFAULT_OPTIONS,
    rules: SkipRules = DEFAULT_SKIP_RULES,
) -> None:
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ConversionIOError(f"Unable to read {path}: {exc}") from exc
    text = _decode_document(raw, path.name)
    processed = process_document(text, options, rules)
    try:
        path.write_text(processed, encoding="utf-8")
    except OSError as exc:
        raise ConversionIOError(f"Unable to write {path}: {exc}") from exc


def rewrite_documents(
    files: Iterable[Path],
    options: BionicOptions = DEFAULT_OPTIONS,
    rules: SkipRules = DEFAULT_SKIP_RULES,
    *,
    workers: int = 1,
    progress: ProgressCallback | None = None,
) -> list[Path]:
    """Rewrite every markup document in place; returns the rewritten paths.

    All rewrites have completed when this returns, also in the threaded case.
    """
    documents = [path for path in files if is_markup_document(path)]
    total = len(documents)

    def _rewrite(item: tuple[int, Path]) -> Path:
        index, path = item
        _debug_log(f"processing {path.name}")
        rewrite_document(path, options, rules)
        _emit(progress, {"event": "document", "index": index, "total": total, "source": path})
        return path

    items = list(enumerate(documents, start=1))
    if workers <= 1 or total <= 1:
        return [_rewrite(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bionic-epub") as executor:
        return list(executor.map(_rewrite, items))


def _iter_tree(root: Path) -> list[Path]:
    return sorted(
        (path for path in root.rglob("*") if path.is_file()),
        key=lambda path: path.relative_to(root).as_posix(),
    )


def pack_directory(work_dir: Path, output_path: Path) -> int:
    """Zip the working area into ``output_path``; returns the number of entries.

    The archive is built next to the destination and renamed into place, so a
    failure never leaves a truncated container at ``output_path``.
    """
    files = _iter_tree(work_dir)
    # The EPUB mimetype entry must come first and stay uncompressed.
    files.sort(key=lambda path: path.relative_to(work_dir).as_posix() != MIMETYPE_ENTRY)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        handle, temp_name = tempfile.mkstemp(
            prefix=f".{output_path.name}.", suffix=".part", dir=output_path.parent
        )
    except OSError as exc:
        raise ConversionIOError(f"Unable to create {output_path}: {exc}") from exc
    temp_path = Path(temp_name)
    try:
        with os.fdopen(handle, "wb") as stream:
            with zipfile.ZipFile(
                stream, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESS_LEVEL
            ) as archive:
                for path in files:
                    arcname = path.relative_to(work_dir).as_posix()
                    _debug_log(f"adding {arcname}")
                    if arcname == MIMETYPE_ENTRY:
                        archive.write(path, arcname, compress_type=zipfile.ZIP_STORED)
                    else:
                        archive.write(path, arcname)
        # mkstemp creates the file owner-only.
        os.chmod(temp_path, 0o644)
        os.replace(temp_path, output_path)
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        raise ConversionIOError(f"Unable to write {output_path}: {exc}") from exc
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
    return len(files)


def convert_epub(
    input_path: Path | str,
    options: BionicOptions | None = None,
    *,
    temp_root: Path | None = None,
    rules: SkipRules | None = None,
    workers: int | None = None,
    output_path: Path | str | None = None,
    progress: ProgressCallback | None = None,
) -> ConversionResult:
    """Convert an EPUB into its bionic-reading variant.

    Failures never propagate: the returned result carries the error instead,
    and the working area is removed in every case.
    """
    source = Path(input_path)
    options = options or DEFAULT_OPTIONS
    rules = rules or DEFAULT_SKIP_RULES
    workers = workers if workers is not None else default_workers()
    try:
        target = Path(output_path) if output_path is not None else output_path_for(source)
        if target.resolve() == source.resolve():
            raise ConversionIOError(f"Output path would overwrite the input: {target}")
        with WorkArea(temp_root) as work_dir:
            _debug_log(f"reading {source}")
            data = read_container(source)
            files = extract_container(data, work_dir)
            _debug_log(f"extracted {len(files)} files")
            _emit(progress, {"event": "extract", "total": len(files), "source": source})

            documents = rewrite_documents(
                files, options, rules, workers=workers, progress=progress
            )
            _debug_log(f"processed {len(documents)} markup documents")

            _emit(progress, {"event": "pack", "output": target})
            entries = pack_directory(work_dir, target)
            _debug_log(f"wrote {target} ({entries} entries)")
        _emit(progress, {"event": "done", "output": target})
        return ConversionResult.ok(target, documents=len(documents), entries=entries)
    except Exception as exc:
        _debug_log(f"conversion failed: {exc.__class__.__name__}: {exc}")
        return ConversionResult.failed(exc)


__all__ = [
    "ConversionResult",
    "MARKUP_EXTS",
    "WorkArea",
    "convert_epub",
    "extract_container",
    "is_markup_document",
    "output_path_for",
    "pack_directory",
    "rewrite_documents",
    "set_debug_logging",
]
