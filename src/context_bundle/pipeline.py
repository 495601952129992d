"""Export pipeline: collect, filter, read, transform, chunk and render.

Per-file work runs on a bounded thread pool. Results are gathered in
submission order on the calling thread, which is also the only thread that
reports progress; the accumulator therefore needs no lock.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from context_bundle.chunking import plan
from context_bundle.collector import collect
from context_bundle.config import ExportMetadata, FileEntry, FormattedOutput, guess_language
from context_bundle.exceptions import ExportCancelledError, FileReadError
from context_bundle.file_manipulation import count_lines, decode_text, looks_binary, now_local
from context_bundle.filters import FilterChain
from context_bundle.git_info import read_git_info
from context_bundle.logging import logger
from context_bundle.output_construction import render
from context_bundle.secret_scanner import detect_pii, detect_secrets
from context_bundle.tokens import estimate_tokens, format_token_count
from context_bundle.transform import transform

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from context_bundle.config import Chunk
    from context_bundle.file_manipulation import FileHandle
    from context_bundle.filters import IgnoreSource
    from context_bundle.git_info import GitInfo
    from context_bundle.settings import ExportOptions

    GitInfoProvider = Callable[[Path], GitInfo | None]

CHUNK_RULE = "=" * 80


@runtime_checkable
class ProgressSink(Protocol):
    """Receives progress updates and lets the caller cancel a run."""

    def set_text(self, text: str) -> None: ...

    def set_fraction(self, fraction: float) -> None: ...

    def check_cancelled(self) -> None:
        """Raise `ExportCancelledError` when the run has been cancelled."""
        ...


class NullProgress:
    """Progress sink that ignores updates and never cancels."""

    def set_text(self, text: str) -> None:
        pass

    def set_fraction(self, fraction: float) -> None:
        pass

    def check_cancelled(self) -> None:
        pass


class CancellableProgress:
    """Thread-safe progress sink with a cancellation flag.

    `cancel()` may be called from any thread; workers observe it the next time
    they call `check_cancelled()`.
    """

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self.text = ""
        self.fraction = 0.0

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def set_text(self, text: str) -> None:
        with self._lock:
            self.text = text
        logger.debug("export.progress", text=text)

    def set_fraction(self, fraction: float) -> None:
        with self._lock:
            self.fraction = min(max(fraction, 0.0), 1.0)

    def check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise ExportCancelledError


class ExportPipeline:
    """One export run over a selection of file handles.

    Args:
        options (ExportOptions): the run options.
        project_root (Path): root for relative paths and ignore files.
        progress (ProgressSink | None): progress and cancellation sink.
        git_info (Callable[[Path], GitInfo | None]): git information provider,
            only called when `options.include_git_info` is set.
        project_name (str | None): name shown in metadata, defaults to the
            root directory name.
        ignore_source (IgnoreSource | None): ignore file resolver, mainly for tests.
    """

    def __init__(
        self,
        options: ExportOptions,
        project_root: Path,
        progress: ProgressSink | None = None,
        *,
        git_info: GitInfoProvider = read_git_info,
        project_name: str | None = None,
        ignore_source: IgnoreSource | None = None,
    ) -> None:
        self.options = options
        self.root = Path(project_root).resolve()
        self.progress = progress or NullProgress()
        self.git_info = git_info
        self.project_name = project_name or self.root.name or None
        self.filters = FilterChain(options, self.root, ignore_source=ignore_source)

    def run(self, selection: Iterable[FileHandle | None]) -> FormattedOutput:
        """Execute the whole pipeline.

        Raises:
            ExportCancelledError: if the progress sink reports a cancellation.
            InvalidChunkSizeError: if chunking is configured with invalid sizes.

        Returns:
            FormattedOutput: the rendered document and its metadata.
        """
        self.progress.set_text("Collecting files...")
        collected = collect(selection)

        self.progress.set_text("Applying filters...")
        accepted = self.select(collected)

        self.progress.set_text("Processing file contents...")
        entries = self.read_all(accepted)

        self.progress.set_text("Formatting output...")
        total_tokens = sum(e.tokens for e in entries)
        chunks: list[Chunk] = []
        if self.options.enable_chunking and total_tokens > self.options.max_tokens:
            chunks = plan(
                entries,
                self.options.chunk_strategy,
                self.options.max_tokens,
                self.root,
                files_per_chunk=self.options.files_per_chunk,
            )
        metadata = self.build_metadata(entries, collected=len(collected), chunk_count=max(len(chunks), 1))
        parts = self.render_chunks(chunks, metadata) if chunks else [render(entries, self.options, metadata)]
        content = self.chunk_banner(chunks) + "".join(parts) if chunks else parts[0]

        self.progress.set_fraction(1.0)
        logger.info(
            "export.done",
            processed=metadata.files_processed,
            skipped=metadata.files_skipped,
            tokens=metadata.estimated_tokens,
            chunks=metadata.chunk_count,
            format=str(self.options.effective_format),
        )
        return FormattedOutput(content=content, metadata=metadata, chunks=tuple(parts))

    def select(self, collected: Sequence[FileHandle]) -> list[FileHandle]:
        """Apply the filter chain, checking for cancellation between files."""
        accepted: list[FileHandle] = []
        for handle in collected:
            self.progress.check_cancelled()
            if self.filters.accepts(handle):
                accepted.append(handle)
        logger.debug("export.filtered", collected=len(collected), accepted=len(accepted))
        return accepted

    def _skip(self, rel: str, reason: str, **extra: object) -> None:
        logger.info("export.file_skipped", path=rel, reason=reason, **extra)

    def read_entry(self, handle: FileHandle) -> FileEntry | None:
        """Read, scan and transform one file.

        Args:
            handle (FileHandle): an accepted file.

        Raises:
            ExportCancelledError: if the run was cancelled before this file.

        Returns:
            FileEntry | None: the processed entry, or None when the file is
                skipped (unreadable, binary content, too large, line count).
        """
        self.progress.check_cancelled()
        rel = self.filters.relative(handle)
        try:
            data = handle.read_bytes()
        except (OSError, FileReadError) as e:
            self._skip(rel, "unreadable", error=str(e))
            return None
        if not self.filters.within_size_cap(len(data)):
            self._skip(rel, "too_large", size=len(data))
            return None
        if looks_binary(data):
            self._skip(rel, "binary_content")
            return None

        raw = decode_text(data)
        if not self.filters.line_count_ok(count_lines(raw)):
            self._skip(rel, "line_count")
            return None

        language = guess_language(rel)
        secrets = detect_secrets(raw) if self.options.detect_secrets else []
        pii = detect_pii(raw) if self.options.warn_pii else []
        if secrets:
            logger.warning(
                "export.secrets_detected", path=rel, count=len(secrets), masked=self.options.mask_secrets
            )
        if pii:
            logger.warning("export.pii_detected", path=rel, count=len(pii))

        content = transform(raw, self.options, language)
        return FileEntry(
            path=str(handle.path),
            rel=rel,
            language=language,
            content=content,
            line_count=count_lines(content),
            byte_size=len(data),
            mtime=handle.mtime(),
            tokens=estimate_tokens(content),
            secret_count=len(secrets),
            pii_count=len(pii),
        )

    def read_all(self, handles: Sequence[FileHandle]) -> list[FileEntry]:
        """Process accepted files, on the worker pool when enabled.

        Entries keep the order of `handles`; skipped files are left out.
        """
        total = len(handles)
        results: list[FileEntry | None] = []
        if not self.options.enable_concurrency or total <= 1:
            for done, handle in enumerate(handles, start=1):
                results.append(self.read_entry(handle))
                self.progress.set_fraction(done / total)
        else:
            with ThreadPoolExecutor(max_workers=min(self.options.max_concurrent_tasks, total)) as pool:
                futures = [pool.submit(self.read_entry, handle) for handle in handles]
                try:
                    for done, future in enumerate(futures, start=1):
                        results.append(future.result())
                        self.progress.set_fraction(done / total)
                        self.progress.check_cancelled()
                except ExportCancelledError:
                    pool.shutdown(wait=True, cancel_futures=True)
                    logger.info("export.cancelled", completed=len(results), total=total)
                    raise
        return [entry for entry in results if entry is not None]

    def build_metadata(self, entries: Sequence[FileEntry], *, collected: int, chunk_count: int = 1) -> ExportMetadata:
        info = self.git_info(self.root) if self.options.include_git_info else None
        return ExportMetadata(
            files_processed=len(entries),
            files_skipped=collected - len(entries),
            total_bytes=sum(e.byte_size for e in entries),
            estimated_tokens=sum(e.tokens for e in entries),
            export_time=now_local(),
            project_name=self.project_name,
            git_branch=info.branch if info else None,
            git_commit=info.commit if info else None,
            chunk_count=chunk_count,
            secrets_detected=sum(e.secret_count for e in entries),
            pii_detected=sum(e.pii_count for e in entries),
        )

    def chunk_banner(self, chunks: Sequence[Chunk]) -> str:
        return (
            f"# Multi-chunk export: {len(chunks)} chunks\n\n"
            f"The content was split with the {self.options.chunk_strategy} strategy "
            f"to fit a budget of {self.options.max_tokens} tokens per chunk.\n\n"
        )

    def render_chunks(self, chunks: Sequence[Chunk], metadata: ExportMetadata) -> list[str]:
        """Render each chunk under its own `Chunk i of N` header."""
        parts: list[str] = []
        for chunk in chunks:
            header = (
                f"{CHUNK_RULE}\n"
                f"Chunk {chunk.index + 1} of {chunk.total} "
                f"({len(chunk.files)} files, ~{format_token_count(chunk.estimated_tokens)})\n"
                f"{CHUNK_RULE}\n\n"
            )
            parts.append(header + render(chunk.files, self.options, metadata))
        return parts


def process_files(
    selection: Iterable[FileHandle | None],
    options: ExportOptions,
    project_root: Path,
    progress: ProgressSink | None = None,
    *,
    git_info: GitInfoProvider = read_git_info,
    project_name: str | None = None,
) -> FormattedOutput:
    """Run an export of `selection` with `options`.

    Args:
        selection (Iterable[FileHandle | None]): files and directories to export.
        options (ExportOptions): the run options.
        project_root (Path): root for relative paths and ignore files.
        progress (ProgressSink | None): optional progress and cancellation sink.
        git_info (Callable[[Path], GitInfo | None]): git information provider.
        project_name (str | None): name shown in metadata.

    Returns:
        FormattedOutput: the rendered document and its metadata.
    """
    pipeline = ExportPipeline(options, project_root, progress, git_info=git_info, project_name=project_name)
    return pipeline.run(selection)
