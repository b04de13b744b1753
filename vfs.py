import functools
import logging
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import attr

import image
from allocator import BLOCK_SIZE, TOTAL_BLOCKS, AllocationConflict, BlockAllocator
from errors import (
    CorruptDataError,
    ErrorKind,
    FSError,
    ImageIOError,
    InvalidNameError,
    NameConflictError,
    NotADirectoryFSError,
    NotAFileError,
    NotFoundError,
    OutOfSpaceError,
)
from nodes import ROOT_NAME, SEPARATOR, Node, NodeKind, byte_length, is_valid_name

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@attr.s(auto_attribs=True)
class OpResult:
    """Outcome of an engine operation; truthy on success"""
    ok: bool
    error: Optional[ErrorKind] = None
    message: str = ""
    value: Any = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, value: Any = None, message: str = "") -> "OpResult":
        return cls(True, value=value, message=message)

    @classmethod
    def failure(cls, error: FSError) -> "OpResult":
        return cls(False, error=error.kind, message=str(error))


def operation(func):
    """Run an engine method, turning FSError into a failed OpResult"""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            result = func(self, *args, **kwargs)
        except FSError as e:
            logger.warning("%s%r failed: %s (%s)", func.__name__, args, e, e.kind.name)
            return OpResult.failure(e)
        if isinstance(result, OpResult):
            return result
        return OpResult.success(result)

    return wrapper


def format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime(DATE_FORMAT)


class FileSystem:
    """In-memory directory tree whose file contents are backed by a BlockAllocator.

    All mutating operations act on the current directory and return an
    OpResult. The current directory is kept as a tuple of path components
    and re-resolved from the root, so nodes never point at their parents.
    """

    def __init__(
        self,
        total_blocks: int = TOTAL_BLOCKS,
        block_size: int = BLOCK_SIZE,
        allocator: Optional[BlockAllocator] = None,
    ):
        self._allocator = allocator if allocator is not None else BlockAllocator(total_blocks, block_size)
        self._root = Node.new_directory(ROOT_NAME)
        self._cwd: Tuple[str, ...] = ()

    # ---- accessors -------------------------------------------------------

    @property
    def root(self) -> Node:
        return self._root

    @property
    def allocator(self) -> BlockAllocator:
        return self._allocator

    @property
    def current_directory(self) -> Node:
        node = self._walk(self._cwd)
        if node is None:
            raise RuntimeError(f"Current directory {self.current_path} no longer resolves")
        return node

    @property
    def current_path(self) -> str:
        return _join(self._cwd)

    @property
    def total_blocks(self) -> int:
        return self._allocator.total_blocks

    @property
    def block_size(self) -> int:
        return self._allocator.block_size

    def free_block_count(self) -> int:
        return self._allocator.free_block_count()

    def used_block_count(self) -> int:
        return self._allocator.used_block_count()

    def usage_percentage(self) -> float:
        return self._allocator.usage_percentage()

    def usage_summary(self) -> Dict[str, Union[int, float]]:
        return {
            "used": self.used_block_count(),
            "free": self.free_block_count(),
            "total": self.total_blocks,
            "percentage": self.usage_percentage(),
            "block_size": self.block_size,
            "largest_free_run": self._allocator.largest_free_run(),
        }

    # ---- path handling ---------------------------------------------------

    def _walk(self, parts: Tuple[str, ...]) -> Optional[Node]:
        node = self._root
        for part in parts:
            if not node.is_directory:
                return None
            node = node.children.get(part)
            if node is None:
                return None
        return node

    def resolve(self, path: str) -> Optional[Node]:
        """Resolve an absolute path (or one relative to the current directory)"""
        if path.startswith(SEPARATOR):
            parts = _split(path)
        else:
            parts = self._cwd + _split(path)
        return self._walk(parts)

    # ---- lookups ---------------------------------------------------------

    def get_file(self, name: str) -> Optional[Node]:
        """Direct child of the current directory, or None"""
        return self.current_directory.children.get(name)

    def _require_child(self, name: str) -> Node:
        node = self.get_file(name)
        if node is None:
            raise NotFoundError(f"No such file or directory: {name}")
        return node

    def _require_file(self, name: str) -> Node:
        node = self._require_child(name)
        if node.is_directory:
            raise NotAFileError(f"Is a directory: {name}")
        return node

    def _check_new_name(self, name: str):
        if not is_valid_name(name):
            raise InvalidNameError(f"Invalid name: {name!r}")
        if name in self.current_directory.children:
            raise NameConflictError(f"File exists: {name}")

    # ---- mutations -------------------------------------------------------

    @operation
    def create_file(self, name: str, content: str = "") -> OpResult:
        self._check_new_name(name)
        node = Node.new_file(name, content)
        blocks = self._allocator.blocks_for(node.size)
        start = self._allocator.allocate(blocks, name)
        if start is None:
            raise OutOfSpaceError(f"No space left for {name} ({blocks} contiguous blocks needed)")

        node.start_block = start
        node.allocated_blocks = blocks
        parent = self.current_directory
        parent.children[name] = node
        parent.touch(node.created)
        logger.debug("Created file %s/%s (%d bytes, blocks [%d+%d])",
                     self.current_path.rstrip(SEPARATOR), name, node.size, start, blocks)
        return OpResult.success(node)

    @operation
    def create_directory(self, name: str) -> OpResult:
        self._check_new_name(name)
        node = Node.new_directory(name)
        parent = self.current_directory
        parent.children[name] = node
        parent.touch(node.created)
        logger.debug("Created directory %s/%s", self.current_path.rstrip(SEPARATOR), name)
        return OpResult.success(node)

    @operation
    def read_file(self, name: str) -> str:
        return self._require_file(name).content

    @operation
    def write_file(self, name: str, content: str) -> OpResult:
        """Replace a file's content.

        The old blocks are released before the new ones are requested. If that
        request fails the file keeps its old content and size but owns no
        blocks until it is written again or deleted.
        """
        node = self._require_file(name)
        if node.is_allocated:
            self._allocator.deallocate(node.start_block, node.allocated_blocks)
            node.clear_allocation()

        size = byte_length(content)
        blocks = self._allocator.blocks_for(size)
        start = self._allocator.allocate(blocks, name)
        if start is None:
            raise OutOfSpaceError(
                f"No space left for {name} ({blocks} contiguous blocks needed); file must be rewritten"
            )

        node.content = content
        node.size = size
        node.start_block = start
        node.allocated_blocks = blocks
        node.touch()
        logger.debug("Wrote %s (%d bytes, blocks [%d+%d])", name, size, start, blocks)
        return OpResult.success(node)

    @operation
    def delete_item(self, name: str) -> OpResult:
        node = self._require_child(name)
        freed = 0
        for f in node.iter_files():
            if f.is_allocated:
                self._allocator.deallocate(f.start_block, f.allocated_blocks)
                freed += f.allocated_blocks
                f.clear_allocation()

        parent = self.current_directory
        del parent.children[name]
        parent.touch()
        logger.debug("Deleted %s (%d blocks freed)", name, freed)
        return OpResult.success(freed)

    @operation
    def change_directory(self, name: str) -> OpResult:
        if name == "..":
            if self._cwd:
                self._cwd = self._cwd[:-1]
            return OpResult.success(self.current_path)

        node = self._require_child(name)
        if not node.is_directory:
            raise NotADirectoryFSError(f"Not a directory: {name}")
        self._cwd = self._cwd + (name,)
        return OpResult.success(self.current_path)

    # ---- views -----------------------------------------------------------

    def stat(self, name: str) -> Optional[Dict[str, Any]]:
        node = self.get_file(name)
        if node is None:
            return None
        return _describe(node)

    def list_directory(self) -> List[Dict[str, Any]]:
        """Rows for the current directory, sorted by name"""
        children = self.current_directory.children
        return [_describe(children[name]) for name in sorted(children)]

    def walk(self) -> Iterator[Tuple[str, Node]]:
        """Pre-order (path, node) over the whole tree, siblings sorted by name"""
        stack = [(SEPARATOR, self._root)]
        while stack:
            path, node = stack.pop()
            yield path, node
            prefix = path.rstrip(SEPARATOR)
            for name in sorted(node.children, reverse=True):
                stack.append((f"{prefix}{SEPARATOR}{name}", node.children[name]))

    def check_consistency(self) -> List[str]:
        """Audit the tree against the allocator; returns a list of problems"""
        problems = []
        claimed: Dict[int, str] = {}
        for path, node in self.walk():
            for key, child in node.children.items():
                if key != child.name:
                    problems.append(f"{path}: entry {key!r} holds node named {child.name!r}")
            if node.is_directory:
                if node.allocated_blocks or node.start_block != -1:
                    problems.append(f"{path}: directory has an allocation")
                continue
            if node.size != byte_length(node.content):
                problems.append(f"{path}: size {node.size} does not match content")
            if not node.is_allocated:
                if node.allocated_blocks or node.start_block != -1:
                    problems.append(f"{path}: partial allocation [{node.start_block}+{node.allocated_blocks}]")
                else:
                    problems.append(f"{path}: file holds no blocks")
                continue
            expected = self._allocator.blocks_for(node.size)
            if node.allocated_blocks != expected:
                problems.append(f"{path}: {node.allocated_blocks} blocks allocated, {expected} expected")
            if node.start_block + node.allocated_blocks > self.total_blocks:
                problems.append(f"{path}: range runs past block {self.total_blocks}")
            for block in node.block_range:
                if block >= self.total_blocks:
                    break
                if block in claimed:
                    problems.append(f"{path}: block {block} also used by {claimed[block]}")
                claimed[block] = path
                if not self._allocator.is_used(block):
                    problems.append(f"{path}: block {block} is not marked used")
                elif self._allocator.owner_of(block) != node.name:
                    problems.append(
                        f"{path}: block {block} owned by {self._allocator.owner_of(block)!r}"
                    )
        for block in self._allocator.owners():
            if block not in claimed:
                problems.append(f"block {block} is used but belongs to no file")
        return problems

    # ---- persistence -----------------------------------------------------

    def export_bytes(self) -> bytes:
        return image.dumps(self._root, self.total_blocks, self.block_size)

    @operation
    def import_bytes(self, blob: bytes) -> OpResult:
        """Replace the whole tree with a decoded image.

        The allocator is rebuilt from the recorded ranges; nothing changes
        unless the image decodes and its ranges are consistent.
        """
        root, header = image.loads(blob)
        allocator = BlockAllocator(header.total_blocks, header.block_size)
        _rebuild_allocation(root, allocator)

        self._root = root
        self._allocator = allocator
        self._cwd = ()
        logger.info("Imported tree with %d nodes (%d/%d blocks used)",
                    header.node_count, allocator.used_block_count(), allocator.total_blocks)
        return OpResult.success(header.node_count)

    @operation
    def export(self, path: str) -> OpResult:
        blob = self.export_bytes()
        try:
            with open(path, "wb") as f:
                f.write(blob)
        except OSError as e:
            raise ImageIOError(f"Cannot write {path}: {e}") from e
        logger.info("Exported tree to %s (%d bytes)", path, len(blob))
        return OpResult.success(len(blob))

    @operation
    def import_(self, path: str) -> OpResult:
        try:
            with open(path, "rb") as f:
                blob = f.read()
        except OSError as e:
            raise ImageIOError(f"Cannot read {path}: {e}") from e
        return self.import_bytes(blob)


def _rebuild_allocation(root: Node, allocator: BlockAllocator):
    for node in root.iter_files():
        if node.size != byte_length(node.content):
            raise CorruptDataError(f"{node.name}: size {node.size} does not match content")
        if node.allocated_blocks == 0 and node.start_block == -1:
            continue
        if node.allocated_blocks != allocator.blocks_for(node.size):
            raise CorruptDataError(
                f"{node.name}: {node.allocated_blocks} blocks recorded for {node.size} bytes"
            )
        try:
            allocator.mark(node.start_block, node.allocated_blocks, node.name)
        except AllocationConflict as e:
            raise CorruptDataError(f"{node.name}: {e}") from e
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_directory:
            if node.allocated_blocks or node.start_block != -1:
                raise CorruptDataError(f"Directory {node.name} has an allocation")
            stack.extend(node.children.values())


def _describe(node: Node) -> Dict[str, Any]:
    directory = node.kind is NodeKind.DIRECTORY
    return {
        "name": node.name,
        "kind": node.kind.label,
        "size": None if directory else node.size,
        "modified": format_time(node.modified),
        "created": format_time(node.created),
        "blocks": None if directory else node.allocated_blocks,
        "start_block": None if directory else node.start_block,
        "children": len(node.children) if directory else None,
    }


def _split(path: str) -> Tuple[str, ...]:
    return tuple(part for part in path.split(SEPARATOR) if part)


def _join(parts: Tuple[str, ...]) -> str:
    return SEPARATOR + SEPARATOR.join(parts)


# Global filesystem instance
_fs_instance = None


def init_filesystem(total_blocks: int = TOTAL_BLOCKS, block_size: int = BLOCK_SIZE) -> FileSystem:
    """Initialize filesystem"""
    global _fs_instance
    _fs_instance = FileSystem(total_blocks, block_size)
    return _fs_instance


def get_filesystem() -> FileSystem:
    """Get current filesystem instance"""
    if _fs_instance is None:
        raise RuntimeError("Filesystem not initialized")
    return _fs_instance


# Convenience functions that mirror the API
def create_file(name: str, content: str = "") -> OpResult:
    return get_filesystem().create_file(name, content)


def create_directory(name: str) -> OpResult:
    return get_filesystem().create_directory(name)


def get_file(name: str) -> Optional[Node]:
    return get_filesystem().get_file(name)


def read_file(name: str) -> OpResult:
    return get_filesystem().read_file(name)


def write_file(name: str, content: str) -> OpResult:
    return get_filesystem().write_file(name, content)


def delete_item(name: str) -> OpResult:
    return get_filesystem().delete_item(name)


def change_directory(name: str) -> OpResult:
    return get_filesystem().change_directory(name)


def list_directory() -> List[Dict[str, Any]]:
    return get_filesystem().list_directory()


def export(path: str) -> OpResult:
    return get_filesystem().export(path)


def import_(path: str) -> OpResult:
    return get_filesystem().import_(path)
