"""Conflict-aware file mover with audit records and rollback.

Every public coroutine returns a Result; filesystem work runs in a thread
pool so the event loop driving the watchers is never blocked.
"""

import asyncio
import errno
import inspect
import logging
import os
import re
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..domain.repositories import HierarchyRepository, OrganizedFileRepository
from ..domain.result import Failure, Result, Success
from ..exceptions import (
    FileErrorKind,
    FileOperationError,
    OrganizerError,
    StateError,
    StateErrorReason,
    ValidationError,
)
from ..models.config import FileOperationsConfig
from ..models.records import OrganizedFileRecord, RecordStatus
from ..models.rules import FileDescriptor, FolderTarget
from ..utils.security import SecurityUtils
from .conflict_resolver import ConflictResolver, ConflictStrategy
from .rule_schema import validate_folder_number

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

STATUS_WRITE_ATTEMPTS = 3


@dataclass(frozen=True)
class MoveRequest:
    """One file to move into a folder."""
    source_path: Path
    folder_number: str
    conflict_strategy: Optional[ConflictStrategy] = None
    drive_id: Optional[str] = None
    rule_id: Optional[int] = None

    @classmethod
    def coerce(cls, item: Union["MoveRequest", Tuple[PathLike, str]]) -> "MoveRequest":
        if isinstance(item, MoveRequest):
            return item
        source, folder_number = item
        return cls(Path(source), folder_number)


@dataclass(frozen=True)
class MoveOutcome:
    """What a successful (or skipped) move did."""
    source_path: Path
    destination_path: Optional[Path]
    filename: str
    folder_number: str
    record_id: Optional[int] = None
    skipped: bool = False
    renamed: bool = False
    cross_device: bool = False


@dataclass(frozen=True)
class RollbackOutcome:
    record_id: int
    restored_path: Path
    removed_from: Path
    record_updated: bool = True


@dataclass
class _RecordLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass(frozen=True)
class BatchProgress:
    current: int
    total: int
    percent: int
    current_file: str


@dataclass(frozen=True)
class BatchItemResult:
    item: Any
    result: Result


@dataclass
class BatchResult:
    """Aggregate outcome of a batch operation."""
    total: int
    success: int = 0
    failed: int = 0
    skipped: int = 0
    stopped_early: bool = False
    results: List[BatchItemResult] = field(default_factory=list)


@dataclass(frozen=True)
class PreviewItem:
    """Dry-run view of one planned move."""
    source_path: Path
    folder_number: str
    source_exists: bool = False
    destination_path: Optional[Path] = None
    would_conflict: bool = False
    folder: Optional[FolderTarget] = None
    error: Optional[str] = None


def _has_parent_reference(path: Path) -> bool:
    return '..' in re.split(r'[/\\]', str(path))


def _relocate(source: Path, destination: Path) -> bool:
    """Move a file, copying across devices. Returns True when a copy was needed."""
    try:
        os.replace(source, destination)
        return False
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise FileOperationError.from_os_error(e, "rename", source) from e

    logger.debug(f"Cross-device move, copying {source} -> {destination}")
    partial = destination.with_name(f".{destination.name}.partial")
    try:
        shutil.copy2(source, partial)
        os.replace(partial, destination)
    except OSError as e:
        partial.unlink(missing_ok=True)
        raise FileOperationError(
            f"Failed to copy {source.name} across devices: {e.strerror or e}",
            kind=FileErrorKind.COPY_FAILED,
            operation="copy",
            path=source,
        ) from e

    try:
        source.unlink()
    except OSError as e:
        raise FileOperationError.from_os_error(e, "remove source after copy", source) from e
    return True


def _copy_exclusive(source: Path, destination: Path) -> None:
    """Copy into a destination this call creates; FileExistsError if it already exists."""
    target = open(destination, 'xb')
    try:
        with target, open(source, 'rb') as src:
            shutil.copyfileobj(src, target)
        shutil.copystat(source, destination)
    except OSError as e:
        destination.unlink(missing_ok=True)
        raise FileOperationError(
            f"Failed to copy {source.name}: {e.strerror or e}",
            kind=FileErrorKind.COPY_FAILED,
            operation="copy",
            path=source,
        ) from e


def _claim(source: Path, destination: Path) -> bool:
    """Move a file to a name nobody else holds. Returns True when a copy was needed.

    The destination is created atomically: a hard link, or an exclusive
    create when linking is impossible.

    Raises:
        FileExistsError: If ``destination`` is already taken
    """
    copied = False
    try:
        os.link(source, destination)
    except FileExistsError:
        raise
    except OSError as e:
        logger.debug(f"Cannot link {source} -> {destination} ({e.strerror or e}), copying")
        try:
            _copy_exclusive(source, destination)
        except FileExistsError:
            raise
        except OSError as copy_error:
            raise FileOperationError.from_os_error(copy_error, "create", destination) from copy_error
        copied = True

    try:
        source.unlink()
    except OSError as e:
        destination.unlink(missing_ok=True)
        raise FileOperationError.from_os_error(e, "remove source", source) from e
    return copied


async def _notify(callback: Optional[Callable], *args) -> Any:
    """Invoke a sync or async callback, logging rather than raising on error."""
    if callback is None:
        return None
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            result = await result
        return result
    except Exception as e:
        logger.warning(f"Batch callback {callback!r} failed: {e}")
        return None


class FileOrganizer:
    """Moves files into the folder hierarchy and undoes those moves."""

    def __init__(self, hierarchy: HierarchyRepository, records: OrganizedFileRepository,
                 config: Optional[FileOperationsConfig] = None):
        self.hierarchy = hierarchy
        self.records = records
        self.config = config or FileOperationsConfig()
        self.executor = ThreadPoolExecutor(max_workers=self.config.max_workers)
        self._record_locks: Dict[int, _RecordLock] = {}

    def close(self) -> None:
        self.executor.shutdown(wait=True)

    async def _run(self, fn: Callable, *args) -> Any:
        return await asyncio.get_running_loop().run_in_executor(self.executor, fn, *args)

    # Paths

    def resolve_base_root(self, drive_id: Optional[str] = None) -> Path:
        """Storage root of the selected drive, else the default drive, else the configured root."""
        root = self.hierarchy.get_storage_root(drive_id)
        return Path(root).expanduser() if root else Path(self.config.base_root).expanduser()

    def build_destination_path(self, folder: FolderTarget, filename: str,
                               base_root: Optional[Path] = None) -> Path:
        """Compute where ``filename`` lands for ``folder``.

        Folders with an explicit storage path use it directly. Otherwise the
        path is ``NN-NN Area/NN Category/NN.NN Folder/filename`` under the base
        root, with every segment sanitized.

        Raises:
            FileOperationError: PATH_ESCAPE if the result leaves its base
        """
        safe_name = SecurityUtils.sanitize_filename(filename)

        if folder.storage_path:
            base = Path(folder.storage_path).expanduser()
            if _has_parent_reference(base):
                raise FileOperationError(
                    f"Storage path for {folder.folder_number} contains parent references",
                    kind=FileErrorKind.PATH_ESCAPE,
                    operation="build_path",
                    path=base,
                )
            return SecurityUtils.ensure_within_base(base / safe_name, base)

        base = Path(base_root) if base_root is not None else self.resolve_base_root()
        if _has_parent_reference(base):
            raise FileOperationError(
                "Base root contains parent references",
                kind=FileErrorKind.PATH_ESCAPE,
                operation="build_path",
                path=base,
            )

        segments = [
            f"{folder.area_range} {folder.area_name}",
            f"{folder.category_number:02d} {folder.category_name}",
            f"{folder.folder_number} {folder.name}",
        ]
        destination = base
        for segment in segments:
            cleaned = SecurityUtils.sanitize_segment(segment)
            if not cleaned:
                raise ValidationError(f"Empty path segment for folder {folder.folder_number}")
            destination = destination / cleaned

        return SecurityUtils.ensure_within_base(destination / safe_name, base)

    def _lookup_folder(self, folder_number: str) -> FolderTarget:
        folder_number = validate_folder_number(folder_number)
        folder = self.hierarchy.get_folder_target(folder_number)
        if folder is None:
            raise ValidationError(f"Folder {folder_number} does not exist", field="folder_number")
        return folder

    # Moving

    def _move_sync(self, source: Path, destination: Path,
                   resolver: ConflictResolver) -> Tuple[Optional[Path], bool]:
        if not source.exists():
            raise FileOperationError(
                f"Source file not found: {source}",
                kind=FileErrorKind.NOT_FOUND,
                operation="move",
                path=source,
            )
        if not source.is_file():
            raise ValidationError(f"Not a regular file: {source}", field="source_path")

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileOperationError.from_os_error(e, "create directory", destination.parent) from e

        # Another move may take the resolved name first; resolve again when it does
        for _ in range(resolver.max_attempts + 1):
            resolution = resolver.resolve(destination)
            if resolution.skipped:
                return None, False
            if resolver.strategy is ConflictStrategy.OVERWRITE:
                return resolution.path, _relocate(source, resolution.path)
            try:
                return resolution.path, _claim(source, resolution.path)
            except FileExistsError:
                logger.debug(f"{resolution.path} was taken by a concurrent move")

        raise FileOperationError(
            f"No free name for {destination.name} after {resolver.max_attempts} attempts",
            kind=FileErrorKind.DESTINATION_COLLISION,
            operation="move",
            path=destination,
        )

    async def move_file(self, source_path: PathLike, folder_number: str,
                        conflict_strategy: Union[ConflictStrategy, str, None] = None,
                        drive_id: Optional[str] = None,
                        rule_id: Optional[int] = None) -> Result[MoveOutcome]:
        """Move a file into a folder and write its audit record.

        A ``skip`` conflict returns a skipped outcome without touching the
        filesystem or writing a record.
        """
        try:
            source = Path(os.path.abspath(SecurityUtils.validate_source_path(source_path)))
            folder = self._lookup_folder(folder_number)
            destination = self.build_destination_path(folder, source.name,
                                                      self.resolve_base_root(drive_id))
            resolver = ConflictResolver(conflict_strategy or self.config.conflict_strategy,
                                        self.config.max_rename_attempts)

            size = FileDescriptor.from_path(source).size
            final_path, cross_device = await self._run(self._move_sync, source, destination, resolver)
        except OrganizerError as e:
            logger.warning(f"Move of {source_path} failed: {e}")
            return Failure(e)
        except OSError as e:
            return Failure(FileOperationError.from_os_error(e, "move", source_path))
        except Exception as e:
            logger.exception(f"Unexpected error moving {source_path}")
            return Failure(OrganizerError(str(e)))

        if final_path is None:
            logger.info(f"Skipped {source.name}: destination already exists")
            return Success(MoveOutcome(
                source_path=source,
                destination_path=None,
                filename=source.name,
                folder_number=folder.folder_number,
                skipped=True,
            ))

        outcome = MoveOutcome(
            source_path=source,
            destination_path=final_path,
            filename=final_path.name,
            folder_number=folder.folder_number,
            renamed=final_path != destination,
            cross_device=cross_device,
        )
        logger.info(f"Moved {source} -> {final_path}")

        descriptor = FileDescriptor.from_name(final_path.name, final_path)
        try:
            record = self.records.create_record(OrganizedFileRecord(
                filename=final_path.name,
                original_path=source,
                current_path=final_path,
                folder_number=folder.folder_number,
                status=RecordStatus.MOVED,
                rule_id=rule_id,
                file_extension=descriptor.extension,
                file_type=descriptor.file_type,
                file_size=size,
                drive_id=drive_id,
            ))
        except Exception as e:
            # The file is already in place; it stays there untracked
            logger.error(f"Moved {source.name} but could not write its audit record: {e}")
            return Success(outcome)

        return Success(replace(outcome, record_id=record.id))

    # Rollback

    def _rollback_sync(self, record: OrganizedFileRecord) -> bool:
        current = Path(record.current_path)
        original = Path(record.original_path)

        if not current.exists():
            raise StateError(
                f"File no longer exists at {current}",
                StateErrorReason.FILE_MISSING_AT_DESTINATION,
            )
        if original.exists():
            raise StateError(
                f"Original location is occupied: {original}",
                StateErrorReason.ORIGINAL_LOCATION_OCCUPIED,
            )

        try:
            original.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileOperationError.from_os_error(e, "create directory", original.parent) from e

        try:
            return _claim(current, original)
        except FileExistsError:
            raise StateError(
                f"Original location is occupied: {original}",
                StateErrorReason.ORIGINAL_LOCATION_OCCUPIED,
            ) from None

    def _mark_undone(self, record_id: int) -> bool:
        last_error = None
        for _ in range(STATUS_WRITE_ATTEMPTS):
            try:
                self.records.update_record_status(record_id, RecordStatus.UNDONE)
                return True
            except Exception as e:
                last_error = e
        logger.error(f"Restored the file of record {record_id} but it is still marked "
                     f"moved: {last_error}")
        return False

    async def rollback_move(self, record_id: int) -> Result[RollbackOutcome]:
        """Move a file back to where it came from and mark its record undone.

        If the file is restored but the status write keeps failing, the
        rollback still succeeds with ``record_updated`` False.
        """
        entry = self._record_locks.setdefault(record_id, _RecordLock())
        entry.users += 1
        try:
            async with entry.lock:
                return await self._rollback_locked(record_id)
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._record_locks[record_id]

    async def _rollback_locked(self, record_id: int) -> Result[RollbackOutcome]:
        try:
            record = self.records.get_record(record_id)
            if record is None:
                raise StateError(f"Record {record_id} not found",
                                 StateErrorReason.RECORD_NOT_FOUND)
            if record.status is not RecordStatus.MOVED:
                raise StateError(
                    f"Record {record_id} is {record.status.value}, not moved",
                    StateErrorReason.RECORD_NOT_MOVABLE,
                )
            await self._run(self._rollback_sync, record)
        except OrganizerError as e:
            logger.warning(f"Rollback of record {record_id} failed: {e}")
            return Failure(e)
        except OSError as e:
            return Failure(FileOperationError.from_os_error(e, "rollback"))
        except Exception as e:
            logger.exception(f"Unexpected error rolling back record {record_id}")
            return Failure(OrganizerError(str(e)))

        record_updated = self._mark_undone(record_id)
        logger.info(f"Rolled back {record.current_path} -> {record.original_path}")
        return Success(RollbackOutcome(
            record_id=record_id,
            restored_path=Path(record.original_path),
            removed_from=Path(record.current_path),
            record_updated=record_updated,
        ))

    # Batches

    async def _run_batch(self, items: List[Any], operation: Callable,
                         label: Callable[[Any], str],
                         on_progress: Optional[Callable[[BatchProgress], Any]],
                         on_file_complete: Optional[Callable[[Any, Result], Any]],
                         stop_on_error: bool) -> BatchResult:
        batch = BatchResult(total=len(items))

        for i, item in enumerate(items):
            result = await operation(item)
            batch.results.append(BatchItemResult(item, result))

            if result.is_failure():
                batch.failed += 1
            elif getattr(result.value(), 'skipped', False):
                batch.skipped += 1
            else:
                batch.success += 1

            await _notify(on_file_complete, item, result)
            keep_going = await _notify(on_progress, BatchProgress(
                current=i + 1,
                total=len(items),
                percent=round((i + 1) / len(items) * 100),
                current_file=label(item),
            ))

            remaining = i + 1 < len(items)
            if remaining and ((result.is_failure() and stop_on_error) or keep_going is False):
                batch.stopped_early = True
                break

        return batch

    async def batch_move(self, requests: Iterable[Union[MoveRequest, Tuple[PathLike, str]]],
                         on_progress: Optional[Callable[[BatchProgress], Any]] = None,
                         on_file_complete: Optional[Callable[[MoveRequest, Result], Any]] = None,
                         conflict_strategy: Union[ConflictStrategy, str, None] = None,
                         stop_on_error: bool = False) -> Result[BatchResult]:
        """Move files one after another.

        ``on_progress`` runs after every item; returning ``False`` from it
        stops the batch before the next item.
        """
        items = [MoveRequest.coerce(r) for r in requests]

        async def move(request: MoveRequest) -> Result:
            return await self.move_file(
                request.source_path,
                request.folder_number,
                request.conflict_strategy or conflict_strategy,
                drive_id=request.drive_id,
                rule_id=request.rule_id,
            )

        batch = await self._run_batch(items, move, lambda r: str(r.source_path),
                                      on_progress, on_file_complete, stop_on_error)
        logger.info(f"Batch move: {batch.success} moved, {batch.skipped} skipped, "
                    f"{batch.failed} failed of {batch.total}")
        return Success(batch)

    async def batch_rollback(self, record_ids: Iterable[int],
                             on_progress: Optional[Callable[[BatchProgress], Any]] = None,
                             on_file_complete: Optional[Callable[[int, Result], Any]] = None,
                             stop_on_error: bool = False) -> Result[BatchResult]:
        batch = await self._run_batch(list(record_ids), self.rollback_move,
                                      lambda record_id: f"record {record_id}",
                                      on_progress, on_file_complete, stop_on_error)
        logger.info(f"Batch rollback: {batch.success} restored, {batch.failed} failed "
                    f"of {batch.total}")
        return Success(batch)

    def preview_operations(self, requests: Iterable[Union[MoveRequest, Tuple[PathLike, str]]]
                           ) -> List[PreviewItem]:
        """Dry run: report source existence and destination collisions without mutating anything."""
        previews = []
        for request in (MoveRequest.coerce(r) for r in requests):
            source = Path(request.source_path)
            try:
                SecurityUtils.validate_source_path(source)
                source_exists = source.exists()
            except (OrganizerError, OSError) as e:
                previews.append(PreviewItem(source, request.folder_number, error=str(e)))
                continue

            try:
                folder = self._lookup_folder(request.folder_number)
                destination = self.build_destination_path(
                    folder, source.name, self.resolve_base_root(request.drive_id))
                previews.append(PreviewItem(
                    source_path=source,
                    folder_number=request.folder_number,
                    source_exists=source_exists,
                    destination_path=destination,
                    would_conflict=destination.exists(),
                    folder=folder,
                ))
            except (OrganizerError, OSError) as e:
                previews.append(PreviewItem(source, request.folder_number,
                                            source_exists=source_exists, error=str(e)))
        return previews
