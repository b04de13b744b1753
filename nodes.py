import enum
import struct
import time
from typing import Dict, Iterator, Tuple

import attr

from crc32 import crc32

IMAGE_MAGIC = b"VFSI"
IMAGE_VERSION = 1
IMAGE_HEADER_SIZE = 24  # 4 magic + 2 version + 2 flags + 4*4 geometry/count/crc
NODE_RECORD_SIZE = 43   # fixed part, followed by name and content bytes
MAX_NAME_BYTES = 255    # UTF-8 length of one path component

ROOT_NAME = "root"
SEPARATOR = "/"


class NodeKind(enum.Enum):
    FILE = 0
    DIRECTORY = 1

    @property
    def label(self) -> str:
        return "Directory" if self is NodeKind.DIRECTORY else "File"


@attr.s(auto_attribs=True, eq=True, repr=False)
class Node:
    """A file or directory in the tree.

    A node owns its children outright; there is no parent pointer.
    """
    name: str
    kind: NodeKind
    content: str = ""
    size: int = 0
    created: float = attr.ib(factory=time.time)
    modified: float = None
    children: Dict[str, "Node"] = attr.ib(factory=dict)
    allocated_blocks: int = 0
    start_block: int = -1

    def __attrs_post_init__(self):
        if self.modified is None:
            self.modified = self.created

    @classmethod
    def new_file(cls, name: str, content: str = "") -> "Node":
        return cls(name, NodeKind.FILE, content=content, size=byte_length(content))

    @classmethod
    def new_directory(cls, name: str) -> "Node":
        return cls(name, NodeKind.DIRECTORY)

    @property
    def is_directory(self) -> bool:
        return self.kind is NodeKind.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.kind is NodeKind.FILE

    @property
    def is_allocated(self) -> bool:
        return self.allocated_blocks > 0 and self.start_block >= 0

    @property
    def block_range(self) -> range:
        if not self.is_allocated:
            return range(0)
        return range(self.start_block, self.start_block + self.allocated_blocks)

    def touch(self, when: float = None):
        self.modified = time.time() if when is None else when

    def clear_allocation(self):
        self.allocated_blocks = 0
        self.start_block = -1

    def iter_files(self) -> Iterator["Node"]:
        """All file nodes in this subtree (self included), in stored order"""
        stack = [self]
        while stack:
            node = stack.pop()
            if node.is_file:
                yield node
            else:
                stack.extend(reversed(list(node.children.values())))

    def __repr__(self) -> str:
        if self.is_directory:
            return f"Node({self.name!r}, DIRECTORY, children={len(self.children)})"
        return (
            f"Node({self.name!r}, FILE, size={self.size}, "
            f"blocks=[{self.start_block}+{self.allocated_blocks}])"
        )


def byte_length(content: str) -> int:
    return len(content.encode("utf-8"))


@attr.s(auto_attribs=True)
class ImageHeader:
    """Fixed header in front of an exported tree"""
    total_blocks: int
    block_size: int
    node_count: int
    payload_crc: int = 0
    magic: bytes = IMAGE_MAGIC
    version: int = IMAGE_VERSION
    flags: int = 0

    def pack(self) -> bytes:
        return struct.pack(
            "<4sHHIIII",
            self.magic,
            self.version,
            self.flags,
            self.total_blocks,
            self.block_size,
            self.node_count,
            self.payload_crc,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "ImageHeader":
        magic, version, flags, total_blocks, block_size, node_count, payload_crc = struct.unpack(
            "<4sHHIIII", data[:IMAGE_HEADER_SIZE]
        )
        return cls(
            total_blocks=total_blocks,
            block_size=block_size,
            node_count=node_count,
            payload_crc=payload_crc,
            magic=magic,
            version=version,
            flags=flags,
        )

    def seal(self, payload: bytes) -> bytes:
        self.payload_crc = crc32(payload)
        return self.pack() + payload


@attr.s(auto_attribs=True)
class NodeRecord:
    """One node in pre-order; name and content bytes follow the fixed part"""
    kind: int
    child_count: int
    size: int
    allocated_blocks: int
    start_block: int
    created: float
    modified: float
    name: bytes
    content: bytes

    def pack(self) -> bytes:
        return struct.pack(
            "<BIQIiddHI",
            self.kind,
            self.child_count,
            self.size,
            self.allocated_blocks,
            self.start_block,
            self.created,
            self.modified,
            len(self.name),
            len(self.content),
        ) + self.name + self.content

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> Tuple["NodeRecord", int]:
        """Unpack a record at `offset`; returns the record and the offset after it"""
        if len(data) < offset + NODE_RECORD_SIZE:
            raise ValueError("Truncated node record")
        (kind, child_count, size, allocated_blocks, start_block,
         created, modified, name_len, content_len) = struct.unpack_from("<BIQIiddHI", data, offset)
        name_start = offset + NODE_RECORD_SIZE
        content_start = name_start + name_len
        end = content_start + content_len
        if len(data) < end:
            raise ValueError("Node record length exceeds data")
        record = cls(
            kind,
            child_count,
            size,
            allocated_blocks,
            start_block,
            created,
            modified,
            bytes(data[name_start:content_start]),
            bytes(data[content_start:end]),
        )
        return record, end

    @classmethod
    def from_node(cls, node: Node) -> "NodeRecord":
        return cls(
            kind=node.kind.value,
            child_count=len(node.children),
            size=node.size,
            allocated_blocks=node.allocated_blocks,
            start_block=node.start_block,
            created=node.created,
            modified=node.modified,
            name=node.name.encode("utf-8"),
            content=node.content.encode("utf-8"),
        )

    def to_node(self) -> Node:
        return Node(
            name=self.name.decode("utf-8"),
            kind=NodeKind(self.kind),
            content=self.content.decode("utf-8"),
            size=self.size,
            created=self.created,
            modified=self.modified,
            allocated_blocks=self.allocated_blocks,
            start_block=self.start_block,
        )


def is_valid_name(name: str) -> bool:
    """Names are single path components: non-empty, no separator, not . or ..,
    at most MAX_NAME_BYTES once encoded"""
    if not isinstance(name, str) or not name or name in (".", ".."):
        return False
    if SEPARATOR in name or "\x00" in name:
        return False
    return byte_length(name) <= MAX_NAME_BYTES
