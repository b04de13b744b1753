"""
Shared test scaffolding: a TestCase base with setUp/tearDown and assert
helpers, and a rich-reporting TestRunner for running a module directly.
Under pytest, setup_method/teardown_method forward to setUp/tearDown.
"""

import time
import traceback

from rich.console import Console
from rich.table import Table


def fail(msg, detail):
    raise AssertionError(f"{msg} | {detail}" if msg else detail)


def _check_raised(expected, raised):
    if raised is None:
        fail("", f"{expected.__name__} not raised")
    if not issubclass(raised, expected):
        fail("", f"{expected.__name__} expected, got {raised.__name__}")


class ExpectRaises:
    """Context form of TestCase.assertRaises; keeps the caught exception"""

    def __init__(self, expected):
        self.expected = expected
        self.exception = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, tb):
        _check_raised(self.expected, exc_type)
        self.exception = exc_value
        return True


class TestCase:
    """Base class for the test suites"""

    def setUp(self):
        pass

    def tearDown(self):
        pass

    # pytest hooks
    def setup_method(self, method=None):
        self.setUp()

    def teardown_method(self, method=None):
        self.tearDown()

    def assertEqual(self, first, second, msg=""):
        if not first == second:
            fail(msg, f"{first!r} != {second!r}")

    def assertNotEqual(self, first, second, msg=""):
        if first == second:
            fail(msg, f"{first!r} == {second!r}")

    def assertTrue(self, value, msg=""):
        if not value:
            fail(msg, f"{value!r} is falsy")

    def assertFalse(self, value, msg=""):
        if value:
            fail(msg, f"{value!r} is truthy")

    def assertIsNone(self, value, msg=""):
        if value is not None:
            fail(msg, f"{value!r} is not None")

    def assertIn(self, member, container, msg=""):
        if member not in container:
            fail(msg, f"{member!r} not in {container!r}")

    def assertNotIn(self, member, container, msg=""):
        if member in container:
            fail(msg, f"{member!r} unexpectedly in {container!r}")

    def assertRaises(self, expected, func=None, *args, **kwargs):
        context = ExpectRaises(expected)
        if func is None:
            return context
        with context:
            func(*args, **kwargs)
        return context.exception


class TestRunner:
    """Collects test_* methods from TestCase classes and reports through rich"""
    __test__ = False

    def __init__(self, console=None):
        self.console = console or Console()
        self.results = []
        self.failures = []

    def run(self, suite):
        self.console.print(f"[bold yellow]{suite.__name__}[/bold yellow]")
        passed = 0
        started = time.perf_counter()
        names = [name for name in dir(suite) if name.startswith("test_")]

        for name in names:
            case = suite()
            try:
                case.setUp()
                try:
                    getattr(case, name)()
                finally:
                    case.tearDown()
            except Exception:
                self.failures.append((f"{suite.__name__}.{name}", traceback.format_exc()))
                self.console.print(f"  [bold red]FAIL[/bold red] {name}")
            else:
                passed += 1
                self.console.print(f"  [green]ok[/green]   {name}")

        self.results.append((suite.__name__, passed, len(names), time.perf_counter() - started))

    def summary(self) -> bool:
        for name, tb in self.failures:
            self.console.rule(f"[red]{name}")
            self.console.print(tb, style="red", markup=False)

        table = Table(title="Test Summary", title_justify="left")
        table.add_column("Suite")
        table.add_column("Passed", justify="right")
        table.add_column("Total", justify="right")
        table.add_column("Time (s)", justify="right")
        for suite, passed, total, elapsed in self.results:
            style = "green" if passed == total else "red"
            table.add_row(suite, f"[{style}]{passed}[/{style}]", str(total), f"{elapsed:.3f}")
        self.console.print(table)

        total = sum(r[2] for r in self.results)
        self.console.print(f"Ran {total} tests, {len(self.failures)} failed.")
        return not self.failures
