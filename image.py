"""Whole-tree image codec.

Layout (little-endian):

    ImageHeader   magic, version, flags, total_blocks, block_size,
                  node_count, CRC-32 of the payload
    payload       NodeRecord for every node in pre-order; a directory
                  record is followed by its child_count subtrees
"""

import logging
import struct
from typing import List, Tuple

from crc32 import crc32
from errors import CorruptDataError
from nodes import (
    IMAGE_HEADER_SIZE,
    ImageHeader,
    IMAGE_MAGIC,
    IMAGE_VERSION,
    Node,
    NodeKind,
    NodeRecord,
    is_valid_name,
)

logger = logging.getLogger(__name__)


def dumps(root: Node, total_blocks: int, block_size: int) -> bytes:
    """Serialize the tree under `root` together with the allocator geometry"""
    records = []
    stack = [root]
    while stack:
        node = stack.pop()
        try:
            records.append(NodeRecord.from_node(node).pack())
        except struct.error as e:
            raise CorruptDataError(f"Cannot encode node {node.name[:40]!r}: {e}") from e
        # Reversed so children come out in their stored order
        stack.extend(reversed(list(node.children.values())))

    payload = b"".join(records)
    header = ImageHeader(total_blocks=total_blocks, block_size=block_size, node_count=len(records))
    return header.seal(payload)


def loads(data: bytes) -> Tuple[Node, ImageHeader]:
    """Rebuild a tree from an image; raises CorruptDataError on any defect"""
    if len(data) < IMAGE_HEADER_SIZE:
        raise CorruptDataError(f"Image too short ({len(data)} bytes)")

    header = ImageHeader.unpack(data)
    if header.magic != IMAGE_MAGIC:
        raise CorruptDataError(f"Bad magic {header.magic!r}")
    if header.version != IMAGE_VERSION:
        raise CorruptDataError(f"Unsupported image version {header.version}")
    if header.total_blocks == 0 or header.block_size == 0:
        raise CorruptDataError("Image has zero-sized geometry")

    payload = data[IMAGE_HEADER_SIZE:]
    if crc32(payload) != header.payload_crc:
        raise CorruptDataError("Checksum mismatch")

    try:
        root, end, count = _parse(payload)
    except (ValueError, UnicodeDecodeError, struct.error) as e:
        raise CorruptDataError(f"Malformed node record: {e}") from e

    if end != len(payload):
        raise CorruptDataError(f"{len(payload) - end} trailing bytes after tree")
    if count != header.node_count:
        raise CorruptDataError(f"Expected {header.node_count} nodes, found {count}")
    if not root.is_directory:
        raise CorruptDataError("Root node is not a directory")

    logger.debug("Decoded image with %d nodes", count)
    return root, header


def _parse(payload: bytes) -> Tuple[Node, int, int]:
    record, offset = NodeRecord.unpack(payload, 0)
    root = record.to_node()
    count = 1
    # (directory, children still to read)
    pending: List[Tuple[Node, int]] = []
    if record.child_count:
        _expect_directory(root, record)
        pending.append((root, record.child_count))

    while pending:
        parent, remaining = pending.pop()
        if remaining > 1:
            pending.append((parent, remaining - 1))

        record, offset = NodeRecord.unpack(payload, offset)
        node = record.to_node()
        count += 1
        if not is_valid_name(node.name):
            raise ValueError(f"Invalid node name {node.name!r}")
        if node.name in parent.children:
            raise ValueError(f"Duplicate name {node.name!r} in directory {parent.name!r}")
        parent.children[node.name] = node

        if record.child_count:
            _expect_directory(node, record)
            pending.append((node, record.child_count))

    return root, offset, count


def _expect_directory(node: Node, record: NodeRecord):
    if node.kind is not NodeKind.DIRECTORY:
        raise ValueError(f"File {node.name!r} has {record.child_count} children")
