"""Quick look at the project an interview is about.

Before the assistant is spawned, the project directory is scanned for
marker files (``package.json``, ``pyproject.toml``, lock files, CI
configs, ...) and the findings are rendered as a short markdown overview
that goes into the system prompt. Nothing here executes project code or
reads more than a handful of small manifest files.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

logger = logging.getLogger(__name__)


class ProjectType(str, Enum):
    NODE = "node"
    TYPESCRIPT = "typescript"
    PYTHON = "python"
    RUST = "rust"
    GO = "go"
    JAVA = "java"
    RUBY = "ruby"
    PHP = "php"
    DOTNET = "dotnet"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return _TYPE_NAMES[self]


_TYPE_NAMES = {
    ProjectType.NODE: "Node.js",
    ProjectType.TYPESCRIPT: "TypeScript",
    ProjectType.PYTHON: "Python",
    ProjectType.RUST: "Rust",
    ProjectType.GO: "Go",
    ProjectType.JAVA: "Java",
    ProjectType.RUBY: "Ruby",
    ProjectType.PHP: "PHP",
    ProjectType.DOTNET: ".NET",
    ProjectType.UNKNOWN: "Unknown",
}

DEFAULT_IGNORE_DIRS = frozenset(
    {
        "node_modules", ".git", "dist", "build", "coverage", ".next", ".nuxt",
        "__pycache__", ".venv", "venv", "target", "vendor", ".idea", ".vscode",
        ".cache", "tmp", "temp",
    }
)
DEFAULT_IGNORE_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(p) for p in (r"^\.DS_Store$", r"^\.env", r"\.lock$", r"\.log$", r"\.min\.(js|css)$")
)
DEFAULT_MAX_DEPTH = 5
QUICK_MAX_DEPTH = 2
NO_EXTENSION = "(no extension)"

# file name -> (project type, weight); a leading "*" matches by suffix
CONFIG_FILE_MARKERS: Dict[str, Tuple[ProjectType, int]] = {
    "package.json": (ProjectType.NODE, 1),
    "tsconfig.json": (ProjectType.TYPESCRIPT, 2),
    "pyproject.toml": (ProjectType.PYTHON, 2),
    "setup.py": (ProjectType.PYTHON, 1),
    "requirements.txt": (ProjectType.PYTHON, 1),
    "Cargo.toml": (ProjectType.RUST, 2),
    "go.mod": (ProjectType.GO, 2),
    "pom.xml": (ProjectType.JAVA, 2),
    "build.gradle": (ProjectType.JAVA, 2),
    "Gemfile": (ProjectType.RUBY, 2),
    "composer.json": (ProjectType.PHP, 2),
    "*.csproj": (ProjectType.DOTNET, 2),
    "*.sln": (ProjectType.DOTNET, 2),
}

SOURCE_DIR_PATTERNS: Dict[ProjectType, Tuple[str, ...]] = {
    ProjectType.NODE: ("src", "lib", "app", "pages", "components"),
    ProjectType.TYPESCRIPT: ("src", "lib", "app", "pages", "components"),
    ProjectType.PYTHON: ("src", "lib", "app", "packages"),
    ProjectType.RUST: ("src", "lib"),
    ProjectType.GO: ("cmd", "pkg", "internal", "api"),
    ProjectType.JAVA: ("src/main/java", "src", "app"),
    ProjectType.RUBY: ("lib", "app", "src"),
    ProjectType.PHP: ("src", "app", "lib"),
    ProjectType.DOTNET: ("src", "app", "lib"),
    ProjectType.UNKNOWN: ("src", "lib", "app"),
}
TEST_DIR_PATTERNS = ("test", "tests", "__tests__", "spec", "specs", "src/test", "src/__tests__")
DOC_DIR_PATTERNS = ("docs", "doc", "documentation", "wiki")
ENTRY_POINT_PATTERNS = (
    "index.ts", "index.js", "main.ts", "main.js", "app.ts", "app.js", "server.ts", "server.js",
    "main.py", "app.py", "__main__.py", "main.go", "main.rs", "lib.rs",
    "Main.java", "App.java", "Program.cs",
)
CONFIG_FILE_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"^package\.json$", r"^tsconfig.*\.json$", r"^\.eslintrc", r"^eslint\.config",
        r"^\.prettierrc", r"^prettier\.config", r"^vite\.config", r"^webpack\.config",
        r"^rollup\.config", r"^jest\.config", r"^vitest\.config", r"^playwright\.config",
        r"^\.env\.example$", r"^docker-compose", r"^Dockerfile$", r"^Makefile$",
        r"^pyproject\.toml$", r"^setup\.py$", r"^setup\.cfg$", r"^requirements.*\.txt$",
        r"^tox\.ini$", r"^Cargo\.toml$", r"^go\.mod$", r"^pom\.xml$", r"^build\.gradle",
        r"^Gemfile$", r"^composer\.json$", r"^\.gitignore$",
    )
)
# Checked in order; the first hit names the platform
CI_CONFIG_PATTERNS = (
    (".github/workflows", "GitHub Actions"),
    (".gitlab-ci.yml", "GitLab CI"),
    (".circleci", "CircleCI"),
    ("Jenkinsfile", "Jenkins"),
    (".travis.yml", "Travis CI"),
    ("azure-pipelines.yml", "Azure Pipelines"),
    ("bitbucket-pipelines.yml", "Bitbucket Pipelines"),
)
# Lock files, most specific first
PACKAGE_MANAGER_MARKERS = (
    ("bun.lockb", "bun"),
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
    ("Cargo.lock", "cargo"),
    ("go.sum", "go"),
    ("poetry.lock", "poetry"),
    ("uv.lock", "uv"),
    ("requirements.txt", "pip"),
    ("Pipfile.lock", "pip"),
    ("pom.xml", "maven"),
    ("build.gradle", "gradle"),
    ("build.gradle.kts", "gradle"),
    ("package.json", "npm"),
)

# dependency name -> (framework, category)
NODE_FRAMEWORKS: Dict[str, Tuple[str, str]] = {
    "react": ("React", "frontend"),
    "react-dom": ("React", "frontend"),
    "vue": ("Vue.js", "frontend"),
    "angular": ("Angular", "frontend"),
    "@angular/core": ("Angular", "frontend"),
    "svelte": ("Svelte", "frontend"),
    "tailwindcss": ("Tailwind CSS", "frontend"),
    "next": ("Next.js", "fullstack"),
    "nuxt": ("Nuxt", "fullstack"),
    "gatsby": ("Gatsby", "fullstack"),
    "express": ("Express", "backend"),
    "fastify": ("Fastify", "backend"),
    "koa": ("Koa", "backend"),
    "hono": ("Hono", "backend"),
    "nestjs": ("NestJS", "backend"),
    "@nestjs/core": ("NestJS", "backend"),
    "prisma": ("Prisma", "backend"),
    "@prisma/client": ("Prisma", "backend"),
    "drizzle-orm": ("Drizzle ORM", "backend"),
    "typeorm": ("TypeORM", "backend"),
    "sequelize": ("Sequelize", "backend"),
    "mongoose": ("Mongoose", "backend"),
    "jest": ("Jest", "testing"),
    "vitest": ("Vitest", "testing"),
    "mocha": ("Mocha", "testing"),
    "playwright": ("Playwright", "testing"),
    "@playwright/test": ("Playwright", "testing"),
    "cypress": ("Cypress", "testing"),
    "vite": ("Vite", "build"),
    "webpack": ("Webpack", "build"),
    "esbuild": ("esbuild", "build"),
    "rollup": ("Rollup", "build"),
}
PYTHON_FRAMEWORKS: Dict[str, Tuple[str, str]] = {
    "django": ("Django", "fullstack"),
    "flask": ("Flask", "backend"),
    "fastapi": ("FastAPI", "backend"),
    "aiohttp": ("aiohttp", "backend"),
    "sqlalchemy": ("SQLAlchemy", "backend"),
    "celery": ("Celery", "backend"),
    "streamlit": ("Streamlit", "frontend"),
    "pytest": ("pytest", "testing"),
}

_VERSION_PREFIX = re.compile(r"^[\^~]")
_REQUIREMENT = re.compile(
    r"""^\s*([A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[[^\]]*\])?\s*(?:(?:==|~=|>=|<=|!=|>|<)\s*([0-9][^\s,;"'#]*))?"""
)
_QUOTED_REQUIREMENT = re.compile(r"""["']([A-Za-z0-9][^"']*)["']""")
_POETRY_DEPENDENCY = re.compile(r"""^\s*([A-Za-z0-9][A-Za-z0-9._-]*)\s*=\s*["']([^"']*)["']""")


@dataclass
class DetectedFramework:
    name: str
    category: str
    version: Optional[str] = None


@dataclass
class ProjectStructure:
    root_dir: Path
    project_type: ProjectType = ProjectType.UNKNOWN
    frameworks: List[DetectedFramework] = field(default_factory=list)
    config_files: List[str] = field(default_factory=list)
    source_directories: List[str] = field(default_factory=list)
    test_directories: List[str] = field(default_factory=list)
    doc_directories: List[str] = field(default_factory=list)
    entry_points: List[str] = field(default_factory=list)
    package_manager: Optional[str] = None
    has_git: bool = False
    ci_platform: Optional[str] = None

    @property
    def has_ci(self) -> bool:
        return self.ci_platform is not None


@dataclass
class FileCount:
    extension: str
    count: int


@dataclass
class ExplorationResult:
    structure: ProjectStructure
    summary: str
    file_counts: Optional[List[FileCount]] = None
    explored_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _list_dir(path: Path) -> List[str]:
    try:
        return sorted(entry.name for entry in path.iterdir())
    except OSError:
        return []


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def detect_project_type(root_dir: Path) -> ProjectType:
    """Pick the project type with the most weight among the root's marker files."""
    weights: Dict[ProjectType, int] = {}
    for name in _list_dir(root_dir):
        for marker, (project_type, weight) in CONFIG_FILE_MARKERS.items():
            if name == marker or (marker.startswith("*") and name.endswith(marker[1:])):
                weights[project_type] = weights.get(project_type, 0) + weight

    detected, best = ProjectType.UNKNOWN, 0
    for project_type, weight in weights.items():
        if weight > best:
            detected, best = project_type, weight
    return detected


def _add_framework(
    found: List[DetectedFramework], known: Dict[str, Tuple[str, str]], dependency: str, version: Optional[str]
) -> None:
    match = known.get(dependency.lower())
    if match is None or any(fw.name == match[0] for fw in found):
        return
    version = _VERSION_PREFIX.sub("", version) if version else None
    found.append(DetectedFramework(name=match[0], category=match[1], version=version or None))


def _node_dependencies(root_dir: Path) -> Iterable[Tuple[str, Optional[str]]]:
    content = _read_text(root_dir / "package.json")
    if content is None:
        return []
    try:
        package = json.loads(content)
    except json.JSONDecodeError:
        logger.debug("Ignoring unparseable package.json in %s", root_dir)
        return []
    if not isinstance(package, dict):
        return []
    deps: Dict[str, Optional[str]] = {}
    for key in ("dependencies", "devDependencies"):
        section = package.get(key)
        if isinstance(section, dict):
            deps.update((name, v if isinstance(v, str) else None) for name, v in section.items())
    return deps.items()


def _python_dependencies(root_dir: Path) -> Iterable[Tuple[str, Optional[str]]]:
    deps: List[Tuple[str, Optional[str]]] = []
    for name in _list_dir(root_dir):
        if re.match(r"^requirements.*\.txt$", name):
            for line in (_read_text(root_dir / name) or "").splitlines():
                match = _REQUIREMENT.match(line)
                if match and not line.lstrip().startswith(("#", "-")):
                    deps.append((match.group(1), match.group(2)))

    pyproject = _read_text(root_dir / "pyproject.toml") or ""
    for line in pyproject.splitlines():
        poetry = _POETRY_DEPENDENCY.match(line)
        if poetry:
            deps.append((poetry.group(1), poetry.group(2)))
            continue
        for quoted in _QUOTED_REQUIREMENT.findall(line):
            match = _REQUIREMENT.match(quoted)
            if match:
                deps.append((match.group(1), match.group(2)))
    return deps


def detect_frameworks(root_dir: Path) -> List[DetectedFramework]:
    """Frameworks named in ``package.json`` or Python requirement files."""
    found: List[DetectedFramework] = []
    for dependency, version in _node_dependencies(root_dir):
        _add_framework(found, NODE_FRAMEWORKS, dependency, version)
    for dependency, version in _python_dependencies(root_dir):
        _add_framework(found, PYTHON_FRAMEWORKS, dependency, version)
    return found


def find_config_files(root_dir: Path) -> List[str]:
    return [name for name in _list_dir(root_dir) if any(p.search(name) for p in CONFIG_FILE_PATTERNS)]


def _existing_dirs(root_dir: Path, candidates: Sequence[str]) -> List[str]:
    return [c for c in candidates if (root_dir / c).is_dir()]


def find_source_directories(root_dir: Path, project_type: ProjectType) -> List[str]:
    return _existing_dirs(root_dir, SOURCE_DIR_PATTERNS[project_type])


def find_test_directories(root_dir: Path) -> List[str]:
    return _existing_dirs(root_dir, TEST_DIR_PATTERNS)


def find_doc_directories(root_dir: Path) -> List[str]:
    return _existing_dirs(root_dir, DOC_DIR_PATTERNS)


def find_entry_points(root_dir: Path, source_directories: Sequence[str]) -> List[str]:
    """Well-known entry files in the root and directly inside each source directory."""
    found = [name for name in ENTRY_POINT_PATTERNS if (root_dir / name).is_file()]
    for src in source_directories:
        found.extend(f"{src}/{name}" for name in ENTRY_POINT_PATTERNS if (root_dir / src / name).is_file())
    return found


def detect_package_manager(root_dir: Path) -> Optional[str]:
    names = set(_list_dir(root_dir))
    for marker, manager in PACKAGE_MANAGER_MARKERS:
        if marker in names:
            return manager
    return None


def detect_ci(root_dir: Path) -> Optional[str]:
    for marker, platform in CI_CONFIG_PATTERNS:
        if (root_dir / marker).exists():
            return platform
    return None


def count_files_by_extension(
    root_dir: Path,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    ignore_dirs: Iterable[str] = DEFAULT_IGNORE_DIRS,
    ignore_patterns: Sequence[Pattern[str]] = DEFAULT_IGNORE_PATTERNS,
) -> List[FileCount]:
    """Count files per extension, most common first.

    Directories deeper than ``max_depth`` below ``root_dir`` are not entered.
    Ignored names are skipped whether they are files or directories.
    """
    ignore_dirs = frozenset(ignore_dirs)
    counts: Dict[str, int] = {}

    def visit(directory: Path, depth: int) -> None:
        for name in _list_dir(directory):
            if name in ignore_dirs or any(p.search(name) for p in ignore_patterns):
                continue
            path = directory / name
            if path.is_symlink():
                continue
            if path.is_dir():
                if depth < max_depth:
                    visit(path, depth + 1)
            else:
                extension = path.suffix or NO_EXTENSION
                counts[extension] = counts.get(extension, 0) + 1

    visit(root_dir, 0)
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [FileCount(extension=ext, count=count) for ext, count in ordered]


def explore_project(root_dir: Path | str) -> ProjectStructure:
    root = Path(root_dir)
    project_type = detect_project_type(root)
    sources = find_source_directories(root, project_type)
    structure = ProjectStructure(
        root_dir=root,
        project_type=project_type,
        frameworks=detect_frameworks(root),
        config_files=find_config_files(root),
        source_directories=sources,
        test_directories=find_test_directories(root),
        doc_directories=find_doc_directories(root),
        entry_points=find_entry_points(root, sources),
        package_manager=detect_package_manager(root),
        has_git=(root / ".git").exists(),
        ci_platform=detect_ci(root),
    )
    logger.debug("Explored %s: %s project, %d frameworks", root, project_type.value, len(structure.frameworks))
    return structure


def format_structure_summary(structure: ProjectStructure) -> str:
    lines = ["## Project Overview", ""]
    lines.append(f"**Type:** {structure.project_type.display_name} project")
    if structure.package_manager:
        lines.append(f"**Package Manager:** {structure.package_manager}")
    lines.append(f"**Version Control:** {'Git repository' if structure.has_git else 'No Git detected'}")
    if structure.has_ci:
        lines.append(f"**CI/CD:** {structure.ci_platform}")

    if structure.frameworks:
        lines.extend(["", "### Frameworks & Libraries", ""])
        for fw in structure.frameworks:
            version = f" ({fw.version})" if fw.version else ""
            lines.append(f"- **{fw.name}**{version} - {fw.category}")

    lines.extend(["", "### Directory Structure", ""])
    if structure.source_directories:
        lines.append(f"**Source:** {', '.join(structure.source_directories)}")
    if structure.test_directories:
        lines.append(f"**Tests:** {', '.join(structure.test_directories)}")
    if structure.doc_directories:
        lines.append(f"**Documentation:** {', '.join(structure.doc_directories)}")
    if structure.entry_points:
        lines.extend(["", f"**Entry Points:** {', '.join(structure.entry_points)}"])

    if structure.config_files:
        lines.extend(["", "### Configuration Files", "", ", ".join(structure.config_files)])
    return "\n".join(lines)


def format_file_counts_summary(file_counts: Sequence[FileCount], limit: int = 10) -> str:
    if not file_counts:
        return "No files found."
    total = sum(fc.count for fc in file_counts)
    lines = ["### File Distribution", ""]
    for fc in file_counts[:limit]:
        lines.append(f"- {fc.extension}: {fc.count} files ({fc.count / total * 100:.1f}%)")
    if len(file_counts) > limit:
        lines.append(f"- Other: {sum(fc.count for fc in file_counts[limit:])} files")
    lines.extend(["", f"**Total:** {total} files"])
    return "\n".join(lines)


def explore_codebase(
    root_dir: Path | str, *, include_file_counts: bool = True, max_depth: int = DEFAULT_MAX_DEPTH
) -> ExplorationResult:
    """Structure plus (optionally) the file distribution, with a markdown summary."""
    structure = explore_project(root_dir)
    parts = [format_structure_summary(structure)]
    file_counts = None
    if include_file_counts:
        file_counts = count_files_by_extension(structure.root_dir, max_depth=max_depth)
        parts.append(format_file_counts_summary(file_counts))
    return ExplorationResult(structure=structure, summary="\n\n".join(parts), file_counts=file_counts)


def get_quick_summary(root_dir: Path | str) -> str:
    """Structure-only overview used to prime the interview."""
    return format_structure_summary(explore_project(root_dir))
