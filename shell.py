import os
import random
import shlex
import string
import sys

from rich.console import Console
from rich.markup import escape
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.tree import Tree

from config import ConfigError, FSConfig
from log import setup_logging
from vfs import FileSystem, get_filesystem, init_filesystem

console = Console(highlight=False)
commands = []

# Image used by export/import when no path is given
image_path = "fs.img"


def command(name, description):
    def decorator(func):
        commands.append({'name': name, 'func': func, 'description': description})
        return func
    return decorator


def fail(cmd, result):
    console.print(f"[red]{cmd}: {escape(result.message)}[/red]")


@command('help', 'Show available commands')
def handle_help(args):
    console.print("Available commands:")
    for cmd in sorted(commands, key=lambda x: x['name']):
        console.print(f"  {cmd['name']}: {cmd['description']}")


@command('pwd', 'Print current working directory')
def handle_pwd(args):
    console.print(escape(get_filesystem().current_path))


@command('ls', 'List directory contents')
def handle_ls(args):
    fs = get_filesystem()
    formatted = []
    for row in fs.list_directory():
        if row["kind"] == "Directory":
            formatted.append(f"[bold blue]{escape(row['name'])}[/bold blue]")
        else:
            formatted.append(escape(row["name"]))
    if formatted:
        console.print(*formatted, sep=" ")


@command('ll', 'List directory contents as a table')
def handle_ll(args):
    fs = get_filesystem()
    table = Table(title=f"Files in {fs.current_path}", title_justify="left")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Size (bytes)", justify="right")
    table.add_column("Modified")
    table.add_column("Blocks", justify="right")
    for row in fs.list_directory():
        if row["kind"] == "Directory":
            table.add_row(f"[bold blue]{escape(row['name'])}[/bold blue]", row["kind"], "-", row["modified"], "-")
        else:
            blocks = f"{row['blocks']} @ {row['start_block']}" if row["blocks"] else "0"
            table.add_row(escape(row["name"]), row["kind"], str(row["size"]), row["modified"], blocks)
    console.print(table)


@command('tree', 'Show the whole directory tree')
def handle_tree(args):
    fs = get_filesystem()
    view = Tree(f"[bold blue]{escape(fs.root.name)}[/bold blue] /")
    stack = [(fs.root, view)]
    while stack:
        node, branch = stack.pop()
        for name in sorted(node.children):
            child = node.children[name]
            if child.is_directory:
                sub = branch.add(f"[bold blue]{escape(name)}[/bold blue]")
                stack.append((child, sub))
            else:
                branch.add(f"{escape(name)} [dim]({child.size} B, {child.allocated_blocks} blk)[/dim]")
    console.print(view)


def change_path(fs: FileSystem, path: str):
    """cd into a slash-separated path; on failure the cursor is put back"""
    start = fs.current_path
    parts = [p for p in path.split("/") if p and p != "."]
    if path.startswith("/"):
        parts = [".."] * start.count("/") + parts if start != "/" else parts
    for part in parts:
        result = fs.change_directory(part)
        if not result:
            _restore(fs, start)
            return result
    return None


def _restore(fs: FileSystem, path: str):
    while fs.current_path != "/":
        fs.change_directory("..")
    for part in [p for p in path.split("/") if p]:
        fs.change_directory(part)


@command('cd', 'Change current directory')
def handle_cd(args):
    if not args:
        console.print("cd: missing operand")
        return
    result = change_path(get_filesystem(), args[0])
    if result is not None:
        fail("cd", result)


@command('mkdir', 'Create a directory')
def handle_mkdir(args):
    if not args:
        console.print("mkdir: missing operand")
        return
    fs = get_filesystem()
    for name in args:
        result = fs.create_directory(name)
        if not result:
            fail("mkdir", result)


@command('touch', 'Create an empty file')
def handle_touch(args):
    if not args:
        console.print("touch: missing operand")
        return
    fs = get_filesystem()
    for name in args:
        result = fs.create_file(name, "")
        if not result:
            fail("touch", result)


@command('write', 'Replace (or create) a file with text: write <name> <text...>')
def handle_write(args):
    if not args:
        console.print("write: missing operand")
        return
    fs = get_filesystem()
    name, text = args[0], " ".join(args[1:])
    if fs.get_file(name) is None:
        result = fs.create_file(name, text)
    else:
        result = fs.write_file(name, text)
    if not result:
        fail("write", result)


@command('append', 'Append a line of text to a file')
def handle_append(args):
    if not args:
        console.print("append: missing operand")
        return
    fs = get_filesystem()
    name, text = args[0], " ".join(args[1:])
    current = fs.read_file(name)
    if not current:
        fail("append", current)
        return
    content = current.value
    if content and not content.endswith("\n"):
        content += "\n"
    result = fs.write_file(name, content + text)
    if not result:
        fail("append", result)


@command('cat', 'Display file contents')
def handle_cat(args):
    if not args:
        console.print("cat: missing operand")
        return
    result = get_filesystem().read_file(args[0])
    if not result:
        fail("cat", result)
        return
    console.print(escape(result.value))


@command('rm', 'Remove a file or a directory with everything in it')
def handle_rm(args):
    if not args:
        console.print("rm: missing operand")
        return
    fs = get_filesystem()
    for name in args:
        result = fs.delete_item(name)
        if not result:
            fail("rm", result)


@command('stat', 'Display file or directory status')
def handle_stat(args):
    if not args:
        console.print("stat: missing operand")
        return
    fs = get_filesystem()
    info = fs.stat(args[0])
    if info is None:
        console.print(f"[red]stat: No such file or directory: {escape(args[0])}[/red]")
        return
    console.print(f"  File: {escape(info['name'])}")
    console.print(f"  Type: {info['kind']}")
    if info["kind"] == "Directory":
        console.print(f"  Entries: {info['children']}")
    else:
        console.print(f"  Size: {info['size']}\t\tBlocks: {info['blocks']}\t\tStart: {info['start_block']}")
    console.print(f"Create: {info['created']}")
    console.print(f"Modify: {info['modified']}")


@command('df', 'Display disk space usage')
def handle_df(args):
    fs = get_filesystem()
    usage = fs.usage_summary()
    console.print(f"Block size: {usage['block_size']} bytes")
    console.print(f"Used: {usage['used']}/{usage['total']} blocks, free: {usage['free']}, "
                  f"largest free run: {usage['largest_free_run']}")
    bar = ProgressBar(total=100, completed=usage["percentage"], width=40)
    console.print(bar, f"{usage['percentage']:.1f}%")


@command('blocks', 'Show the block map, owners and free runs')
def handle_blocks(args):
    fs = get_filesystem()
    allocator = fs.allocator
    width = 50
    for row_start in range(0, allocator.total_blocks, width):
        cells = []
        for i in range(row_start, min(row_start + width, allocator.total_blocks)):
            cells.append("[green]#[/green]" if allocator.is_used(i) else "[dim].[/dim]")
        console.print(f"{row_start:>6} " + "".join(cells))

    owners = {}
    for block, owner in sorted(allocator.owners().items()):
        owners.setdefault(owner, []).append(block)
    for owner, blocks in owners.items():
        console.print(f"  {escape(owner)}: blocks {blocks[0]}-{blocks[-1]} ({len(blocks)})")
    runs = allocator.free_runs()
    console.print(f"Free runs: {len(runs)}, fragmentation: {allocator.fragmentation():.2f}")


@command('fsck', 'Check tree and allocator consistency')
def handle_fsck(args):
    problems = get_filesystem().check_consistency()
    if not problems:
        console.print("[green]clean[/green]")
        return
    for problem in problems:
        console.print(f"[yellow]{escape(problem)}[/yellow]")


@command('export', 'Save the whole tree to an image file')
def handle_export(args):
    path = args[0] if args else image_path
    result = get_filesystem().export(path)
    if not result:
        fail("export", result)
        return
    console.print(f"Exported to {escape(path)} ({result.value} bytes)")


@command('import', 'Replace the tree with one loaded from an image file')
def handle_import(args):
    path = args[0] if args else image_path
    result = get_filesystem().import_(path)
    if not result:
        fail("import", result)
        return
    console.print(f"Imported {result.value} nodes from {escape(path)}")


@command('rndfile', 'Create a file with random ASCII characters: rndfile <name> <size>')
def handle_rndfile(args):
    if len(args) < 2:
        console.print("rndfile: missing operand")
        return
    try:
        size = int(args[1])
    except ValueError:
        console.print("rndfile: invalid size")
        return
    text = "".join(random.choices(string.ascii_letters + string.digits, k=max(size, 0)))
    result = get_filesystem().create_file(args[0], text)
    if not result:
        fail("rndfile", result)


def run_command(line: str) -> bool:
    """Execute one shell line; returns False when the shell should exit"""
    try:
        parts = shlex.split(line)
    except ValueError as e:
        console.print(f"Parse error: {e}")
        return True
    if not parts:
        return True

    command_name = parts[0].lower()
    args = parts[1:]
    if command_name in ("exit", "quit"):
        return False

    cmd_entry = next((c for c in commands if c['name'] == command_name), None)
    if cmd_entry:
        cmd_entry['func'](args)
    else:
        console.print(f"Unknown command: {escape(command_name)}")
    return True


def main():
    global image_path
    try:
        config = FSConfig.load()
    except ConfigError as e:
        console.print(f"Config error: {e}")
        return
    setup_logging(config.level, console)

    image_path = sys.argv[1] if len(sys.argv) > 1 else config.image_path
    fs = init_filesystem(config.total_blocks, config.block_size)
    if os.path.exists(image_path):
        result = fs.import_(image_path)
        if not result:
            console.print(f"Error loading filesystem: {escape(result.message)}")
            return
        console.print(f"Filesystem loaded from {escape(image_path)}")
    else:
        console.print(f"Starting empty filesystem ({fs.total_blocks} blocks x {fs.block_size} bytes)")

    while True:
        try:
            prompt = f"[bold cyan]{escape(fs.current_path)}[/bold cyan][bold white]>[/bold white] "
            if not run_command(console.input(prompt)):
                break
        except (KeyboardInterrupt, EOFError):
            console.print("\nExiting...")
            break


if __name__ == "__main__":
    main()
