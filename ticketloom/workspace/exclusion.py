"""
Exclusion index — keeps build output and dependency caches out of
``git status`` inside agent worktrees.

The worktree is scanned for known manifest files; each one maps to the
artifact directories its toolchain produces. Missing patterns are appended
to the repository's shared ``info/exclude`` below a sentinel header.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

from loguru import logger

SENTINEL = "# ticketloom exclusion index"
DEFAULT_MAX_DEPTH = 4

_PYTHON = ["__pycache__/", "*.pyc", ".venv/", "venv/", ".pytest_cache/", ".mypy_cache/", ".ruff_cache/"]

INDICATOR_MAP: dict[str, list[str]] = {
    "package.json": ["node_modules/"],
    "next.config.js": [".next/"],
    "next.config.mjs": [".next/"],
    "next.config.ts": [".next/"],
    "nuxt.config.ts": [".nuxt/", ".output/"],
    "svelte.config.js": [".svelte-kit/"],
    "turbo.json": [".turbo/"],
    "vite.config.ts": ["dist/"],
    "vite.config.js": ["dist/"],
    "rollup.config.js": ["dist/"],
    "webpack.config.js": ["dist/", "build/"],
    "tsconfig.json": ["*.tsbuildinfo"],
    "jest.config.js": ["coverage/"],
    "vitest.config.ts": ["coverage/"],
    ".nycrc": ["coverage/", ".nyc_output/"],
    "pyproject.toml": _PYTHON,
    "requirements.txt": ["__pycache__/", "*.pyc", ".venv/", "venv/", ".eggs/", "*.egg-info/"],
    "Pipfile": ["__pycache__/", "*.pyc", ".venv/"],
    "setup.py": ["__pycache__/", "*.pyc", "*.egg-info/", "dist/", "build/"],
    "setup.cfg": ["__pycache__/", "*.pyc", "*.egg-info/"],
    "pytest.ini": [".pytest_cache/"],
    "tox.ini": [".tox/"],
    "Cargo.toml": ["target/"],
    "go.mod": ["vendor/"],
    "composer.json": ["vendor/"],
    "Gemfile": [".bundle/", "vendor/bundle/"],
    "mix.exs": ["_build/", "deps/", ".elixir_ls/"],
    "pom.xml": ["target/"],
    "build.gradle": ["build/", ".gradle/"],
    "build.gradle.kts": ["build/", ".gradle/"],
    "Package.swift": [".build/", ".swiftpm/"],
    "pubspec.yaml": [".dart_tool/", "build/"],
}

EXTENSION_MAP: dict[str, list[str]] = {
    ".csproj": ["bin/", "obj/"],
    ".fsproj": ["bin/", "obj/"],
    ".sln": ["bin/", "obj/"],
}

ALWAYS_EXCLUDED = [".ticketloom/"]

_SKIP_DIRS = {".git", ".hg", ".svn"} | {
    p.rstrip("/") for patterns in INDICATOR_MAP.values() for p in patterns if p.endswith("/")
}


def discover_patterns(root: Path, max_depth: int = DEFAULT_MAX_DEPTH) -> list[str]:
    """Walk ``root`` up to ``max_depth`` levels and collect artifact patterns."""
    found: set[str] = set(ALWAYS_EXCLUDED)
    root = root.resolve()

    for dirpath, dirnames, filenames in os.walk(root):
        depth = len(Path(dirpath).relative_to(root).parts)
        if depth >= max_depth:
            dirnames[:] = []
        else:
            dirnames[:] = [d for d in dirnames if d not in _SKIP_DIRS and not d.startswith(".")]

        for name in filenames:
            if name in INDICATOR_MAP:
                found.update(INDICATOR_MAP[name])
            ext = os.path.splitext(name)[1]
            if ext in EXTENSION_MAP:
                found.update(EXTENSION_MAP[ext])

    return sorted(found)


def resolve_exclude_file(worktree: Path) -> Path | None:
    """``info/exclude`` of the common git dir shared by all worktrees."""
    try:
        res = subprocess.run(
            ["git", "rev-parse", "--git-common-dir"],
            cwd=worktree,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"[EXCLUDE] Could not locate git dir: {e}")
        return None
    if res.returncode != 0 or not res.stdout.strip():
        return None
    git_dir = Path(res.stdout.strip())
    if not git_dir.is_absolute():
        git_dir = (worktree / git_dir).resolve()
    return git_dir / "info" / "exclude"


def write_exclusion_index(worktree: Path, max_depth: int = DEFAULT_MAX_DEPTH) -> list[str]:
    """
    Append any missing artifact patterns to the shared exclude file.

    Returns the full list of discovered patterns. Repeated calls add nothing
    once every pattern is present. Write failures only log.
    """
    patterns = discover_patterns(worktree, max_depth)
    exclude_file = resolve_exclude_file(worktree)
    if exclude_file is None:
        return patterns

    try:
        existing = exclude_file.read_text() if exclude_file.exists() else ""
        present = {line.strip() for line in existing.splitlines()}
        missing = [p for p in patterns if p not in present]
        if not missing:
            return patterns

        block = []
        if SENTINEL not in present:
            block.append(SENTINEL)
        block.extend(missing)

        exclude_file.parent.mkdir(parents=True, exist_ok=True)
        prefix = "" if not existing or existing.endswith("\n") else "\n"
        with open(exclude_file, "a") as f:
            f.write(prefix + "\n".join(block) + "\n")
        logger.debug(f"[EXCLUDE] Added {len(missing)} patterns to {exclude_file}")
    except OSError as e:
        logger.warning(f"[EXCLUDE] Could not update {exclude_file}: {e}")

    return patterns
