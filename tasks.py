import os
import platform
import shutil
import sys
from pathlib import Path

from invoke import Exit, exceptions, task
from rich import print

_PACKAGE_NAME = "mhdprec"
_HOST_SYSTEM = platform.system()
_SUPPORTED_SYSTEMS = (
    "Linux",
    "Darwin",
)

VENV_DIR = ".venv"


def _task_screen_log(message: str, bold: bool = True, color: str = "blue") -> None:
    """
    Convenient function to display a message on terminal during task executions.
    """
    rich_delimiters = f"bold {color}" if bold else f"{color}"
    print(f"[{rich_delimiters}]{message}[/{rich_delimiters}]")


def _platform_sanity_check() -> None:
    if _HOST_SYSTEM not in _SUPPORTED_SYSTEMS:
        raise exceptions.Exit(
            f"{_PACKAGE_NAME} is running on unsupported operating system: {_HOST_SYSTEM}", code=1
        )


def _venv_activate_prefix() -> str:
    """
    Shell prefix activating the project venv, used by every c.run(...) below.
    """
    return f"source {VENV_DIR}/bin/activate && "


def _run(ctx, command: str) -> None:
    _platform_sanity_check()
    _task_screen_log(f"Running: {command}", color="yellow", bold=False)
    ctx.run(command, pty=True)


@task
def create_venv(c):
    """
    Create a Python 3.10+ virtualenv in ./.venv if it does not already exist.
    """
    _platform_sanity_check()

    if os.path.isdir(VENV_DIR):
        print(f"Virtualenv already exists at '{VENV_DIR}/'")
        return

    ver = sys.version_info
    if ver < (3, 10):
        raise Exit(f"Python 3.10+ is required (found {ver[0]}.{ver[1]}).")

    _task_screen_log(f"Creating virtualenv in '{VENV_DIR}/' …")
    c.run(f"python3 -m venv {VENV_DIR}", pty=True)
    c.run(f"{_venv_activate_prefix()} pip install --upgrade pip setuptools wheel", pty=True)
    _task_screen_log("✔ Virtualenv created.", color="yellow")


@task(
    pre=[create_venv],
    help={"petsc": "Also install petsc4py (builds PETSc when no wheel is available)"},
)
def install_deps(c, petsc=False):
    """
    Install mhdprec and its development dependencies into the venv.
    """
    extras = "dev,petsc" if petsc else "dev"
    _task_screen_log(f"Installing Python dependencies for {_PACKAGE_NAME} ({extras}) …")
    c.run(f"{_venv_activate_prefix()} pip install -e '.[{extras}]'", pty=True)
    _task_screen_log("✔ Python-level dependencies installed.", color="yellow")


@task
def dev_install(ctx):
    """
    Install mhdprec in the active environment.
    """
    _task_screen_log(f"Installing {_PACKAGE_NAME} in the active environment")
    _run(ctx, 'pip install -e ".[dev]"')


@task(help={"overwrite": "Reinstall git hooks overwriting the previous installation."})
def hooks(ctx, overwrite=False):
    """
    Configure pre-commit in the local git.
    """
    _task_screen_log("Installing pre-commit hooks")
    base_command = "pre-commit install"
    if overwrite:
        base_command += " --overwrite"
    _run(ctx, base_command)


@task(
    pre=[hooks],
    help={
        "all_files": "Run git hooks in all files (may take some time)",
        "files": "Run git hooks in a given set of files",
        "verbose": "Run git hooks in verbose mode",
    },
)
def run_hooks(ctx, all_files=False, verbose=False, files=""):
    """
    Run all the installed git hooks.
    """
    _task_screen_log("Run installed git hooks")
    base_command = "pre-commit run"
    if all_files:
        base_command += " --all-files"
    if verbose:
        base_command += " --verbose"
    if files != "":
        base_command += f" --files '{files}'"
    _run(ctx, base_command)


@task(
    help={
        "numprocess": "Num of processes to run pytest in parallel",
        "verbose": "Run pytest in verbose mode",
        "color": "Colorize pytest output",
        "regression_only": "Run only the tests marked as regression",
        "check_coverage": "Display coverage summary after running the tests",
        "generate_report": "Generate pytest report and save it as a xml file (named pytest.xml)",
        "generate_cov_xml": "Generate coverage report and save it as a xml file (named coverage.xml)",
        "record_output": "Record all the pytest CLI output to pytest-coverage.txt file",
    },
    optional=["numprocess"],
)
def tests(
    ctx,
    numprocess=-1,
    verbose=True,
    color=True,
    regression_only=False,
    check_coverage=False,
    generate_cov_xml=False,
    generate_report=False,
    record_output=False,
):
    """
    Run tests with pytest.
    """
    _task_screen_log("Running the tests")

    base_command = "pytest -ra -q"
    if verbose:
        base_command += " -v"

    if color:
        base_command += " --color=yes"

    if regression_only:
        base_command += " -m regression"

    if numprocess != 1:
        base_command += " -n"
        if numprocess == -1:
            base_command += " auto"
        elif numprocess > 1:
            base_command += f" {int(numprocess)}"
        else:
            _task_screen_log(
                "Warning: there is no negative number of processes. Setting to 1 (serial).",
                color="yellow",
            )
            base_command += " 1"

    if check_coverage or generate_report:
        base_command += f" --cov=src/{_PACKAGE_NAME}"

    if generate_report:
        base_command += " --junitxml=pytest.xml"

    if generate_cov_xml:
        base_command += " --cov-report xml:coverage.xml"

    if generate_report or generate_cov_xml:
        base_command += " --cov-report=term-missing:skip-covered"

    if record_output:
        base_command += " | tee pytest-coverage.txt"

    _run(ctx, base_command)


@task
def diff_coverage(ctx):
    """
    Run diff-cover to verify if all new/changed lines are covered. Needs coverage.xml present.
    """
    _task_screen_log("Check if diff code is covered")
    _run(ctx, "diff-cover coverage.xml --config-file pyproject.toml")


@task(
    help={
        "color": "Display output with colors",
        "pretty": "Enable better and colorful mypy output",
        "verbose": "Run mypy in verbose mode",
        "files": "Files to be checked with mypy",
    }
)
def type_check(ctx, pretty=False, verbose=False, color=True, files=""):
    """
    Run mypy on mhdprec to check for typing issues.
    """
    _task_screen_log(f"Running typing check on {_PACKAGE_NAME}")

    base_command = "mypy"
    if pretty:
        base_command += " --pretty"
    if verbose:
        base_command += " --verbose"
    if color:
        base_command += " --color-output"
    if files != "":
        base_command += f" {files}"
    _run(ctx, base_command)


@task(
    help={
        "dry": "Show what would be removed without actually deleting",
    }
)
def dev_clean(ctx, dry=False):
    """
    Remove mhdprec build/cache dirs (egg-info, dist, build and *_cache).
    """
    patterns = [
        "*.egg-info",
        "dist",
        "build",
        "*_cache",
    ]

    to_remove = []
    for pat in patterns:
        for d in Path(".").rglob(pat):
            if not d.is_dir() or VENV_DIR in d.parts:
                continue
            to_remove.append(d)

    if not to_remove:
        _task_screen_log("Nothing to clean.", color="yellow")
        return

    for d in to_remove:
        _task_screen_log(f"{'Would remove:' if dry else 'Removing:  '}{d}", color="yellow")
        if not dry:
            shutil.rmtree(d)

    _task_screen_log(
        f"\n{len(to_remove)} director{'y' if len(to_remove) == 1 else 'ies'} "
        f"{'would be removed' if dry else 'removed'}.",
        color="yellow",
    )
