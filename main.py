import logging
import os
import sys
from typing import List, Optional

from config import ConfigError, FSConfig
from log import setup_logging
from vfs import FileSystem

logger = logging.getLogger(__name__)

USAGE = "Usage: python main.py [image] [--blocks N] [--block-size B] [--force]"


def mkfs(image_path: str, total_blocks: Optional[int] = None, block_size: Optional[int] = None,
         overwrite: bool = False) -> FileSystem:
    """Write an image holding an empty tree with the given geometry"""
    defaults = FSConfig()
    fs = FileSystem(total_blocks or defaults.total_blocks, block_size or defaults.block_size)

    if os.path.exists(image_path) and not overwrite:
        raise FileExistsError(f"{image_path} already exists (use --force to overwrite)")

    result = fs.export(image_path)
    if not result:
        raise OSError(result.message)

    logger.info("Initialized %s: %d blocks of %d bytes", image_path, fs.total_blocks, fs.block_size)
    return fs


def parse_args(argv: List[str], config: FSConfig):
    image_path = config.image_path
    total_blocks = config.total_blocks
    block_size = config.block_size
    overwrite = False

    args = list(argv)
    while args:
        arg = args.pop(0)
        if arg in ("--blocks", "--block-size"):
            if not args:
                raise ValueError(f"{arg} needs a value")
            value = int(args.pop(0))
            if value <= 0:
                raise ValueError(f"{arg} must be positive")
            if arg == "--blocks":
                total_blocks = value
            else:
                block_size = value
        elif arg == "--force":
            overwrite = True
        elif arg.startswith("-"):
            raise ValueError(f"Unknown option {arg}")
        else:
            image_path = arg
    return image_path, total_blocks, block_size, overwrite


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    try:
        config = FSConfig.load()
    except ConfigError as e:
        print(f"Config error: {e}")
        return 2
    setup_logging(config.level)

    try:
        image_path, total_blocks, block_size, overwrite = parse_args(argv, config)
    except ValueError as e:
        print(f"{e}\n{USAGE}")
        return 2

    try:
        fs = mkfs(image_path, total_blocks, block_size, overwrite)
    except OSError as e:
        print(f"mkfs: {e}")
        return 1

    print(f"Created {image_path}: {fs.total_blocks} blocks x {fs.block_size} bytes")
    return 0


if __name__ == "__main__":
    sys.exit(main())
