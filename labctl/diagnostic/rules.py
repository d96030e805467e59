"""
Built-in Rules
==============
The static failure-signature catalog for the lab stack.

Registration order (ties in PatternMatcher.match go to the earlier entry):
    1. Proto generation
    2. Go build
    3. TypeScript / pnpm
    4. Make
    5. Lab stack services
    6. Docker

Hint and suggestion texts are configuration, not logic. Keep hints to one
or two sentences and suggestions to concrete commands.
"""
from functools import lru_cache
from typing import List, Optional

from labctl.diagnostic.patterns import (
    Confidence,
    Diagnosis,
    ErrorPattern,
    PatternCatalogBuilder,
    PatternMatcher,
)
from labctl.models.step_result import Phase

HIGH = Confidence.HIGH
MEDIUM = Confidence.MEDIUM


# ---------------------------------------------------------------------------
# 1. Proto generation
# ---------------------------------------------------------------------------
def proto_patterns() -> List[ErrorPattern]:
    return [
        ErrorPattern.create(
            "proto-undefined-type",
            pattern=r"(?i)undefined:\s*\w+|not declared",
            phase=Phase.PROTO_GEN,
            hint="A type or identifier is undefined in the protobuf generation. A type is "
                 "referenced before it is defined or an import is missing.",
            suggestion="Check your proto files for:\n"
                       "  1. Missing imports: import \"path/to/dependency.proto\";\n"
                       "  2. Typos in type names\n"
                       "  3. Circular dependencies between proto files\n\n"
                       "Run: make proto -C <repo> with verbose output to see which file has the error",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "proto-type-mismatch",
            pattern=r"(?i)type mismatch|cannot convert|incompatible type",
            phase=Phase.PROTO_GEN,
            hint="A field in the protobuf definitions uses a type that does not match its definition.",
            suggestion="Check your proto files for:\n"
                       "  1. Mismatched field types (e.g. int32 vs int64)\n"
                       "  2. Changed message types without updating references\n"
                       "  3. Enum values used where messages are expected\n\n"
                       "Regenerate all protos together: labctl rebuild all",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "proto-import-not-found",
            pattern=r"import\s+[\"'][^\"']+[\"']\s+was not found|could not find import",
            phase=Phase.PROTO_GEN,
            hint="A proto import path could not be resolved; the referenced file is not at the expected location.",
            suggestion="Fix the import path:\n"
                       "  1. Verify the imported .proto file exists\n"
                       "  2. Check include paths in your protoc command\n"
                       "  3. Ensure google/protobuf imports are available\n\n"
                       "You may need to run: make proto-deps",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "proto-syntax-error",
            pattern=r"(?i)syntax error|unexpected token|expected\s+['\"][^'\"]+['\"]\s+but found",
            phase=Phase.PROTO_GEN,
            hint="One of the proto files has a syntax error: a missing semicolon, brace, or an invalid keyword.",
            suggestion="Check the proto file named in the error for:\n"
                       "  1. Missing semicolons after field definitions\n"
                       "  2. Unclosed braces or parentheses\n"
                       "  3. Invalid field numbers or reserved keywords\n\n"
                       "Run protoc with --error_format=text for clearer messages",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "protoc-not-found",
            contains=["protoc", "not found"],
            phase=Phase.PROTO_GEN,
            hint="The protoc compiler is not installed or not in PATH.",
            suggestion="Install protoc:\n"
                       "  macOS: brew install protobuf\n"
                       "  Linux: apt install protobuf-compiler\n\n"
                       "Then verify: protoc --version",
            confidence=HIGH,
        ),
    ]


# ---------------------------------------------------------------------------
# 2. Go build
# ---------------------------------------------------------------------------
def go_build_patterns() -> List[ErrorPattern]:
    return [
        ErrorPattern.create(
            "go-undefined-identifier",
            pattern=r"undefined:\s*\w+",
            phase=Phase.BUILD,
            hint="A Go identifier (function, variable, or type) is not defined: a missing import, "
                 "a typo, or an unexported name.",
            suggestion="Check for:\n"
                       "  1. Missing import statement\n"
                       "  2. Typo in the identifier name\n"
                       "  3. Using an unexported (lowercase) name from another package\n"
                       "  4. Stale generated code that needs regeneration\n\n"
                       "Run: go build -v to see detailed compilation info",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "go-missing-package",
            pattern=r"cannot find package|no required module provides package",
            phase=Phase.BUILD,
            hint="A required Go package is not available; it is missing from go.mod or not downloaded.",
            suggestion="Fix the missing package:\n"
                       "  1. go mod tidy\n"
                       "  2. go get <package>\n"
                       "  3. go mod download\n\n"
                       "If using a local replace directive, verify the path exists",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "go-import-cycle",
            pattern=r"import cycle not allowed|package.*imports.*imports",
            phase=Phase.BUILD,
            hint="Two packages import each other, directly or indirectly.",
            suggestion="Break the import cycle by:\n"
                       "  1. Moving shared types to a separate package\n"
                       "  2. Using interfaces to decouple packages\n\n"
                       "Use: go list -deps ./... to inspect the dependency chain",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "go-too-many-errors",
            contains=["too many errors"],
            phase=Phase.BUILD,
            hint="The Go compiler stopped after too many errors. Later errors usually cascade from the first ones.",
            suggestion="Focus on the first error in the output:\n"
                       "  1. Scroll up to the first error message\n"
                       "  2. Fix it and rebuild\n\n"
                       "Often caused by a missing import or an undefined type used everywhere",
            confidence=MEDIUM,
        ),
        ErrorPattern.create(
            "go-type-mismatch",
            pattern=r"cannot use .* as .* in|incompatible types|cannot convert",
            phase=Phase.BUILD,
            hint="A value of one type is used where another type is expected.",
            suggestion="Check the error location for:\n"
                       "  1. Wrong type passed to a function\n"
                       "  2. Assignment to an incompatible variable\n"
                       "  3. Interface implementation mismatch\n\n"
                       "If generated code is involved, regenerate protos: labctl rebuild all",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "go-not-enough-arguments",
            pattern=r"not enough arguments|too few arguments|missing argument",
            phase=Phase.BUILD,
            hint="A function is called with fewer arguments than it requires.",
            suggestion="The function signature has probably changed:\n"
                       "  1. Look at the function definition\n"
                       "  2. Update all call sites\n"
                       "  3. Regenerate generated code first if it is involved",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "go-too-many-arguments",
            pattern=r"too many arguments",
            phase=Phase.BUILD,
            hint="A function is called with more arguments than it accepts.",
            suggestion="Remove the extra arguments from call sites, regenerating generated code first if it is involved.",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "go-no-new-variables",
            pattern=r"no new variables on left side of :=",
            phase=Phase.BUILD,
            hint="':=' is used although every variable on the left is already declared.",
            suggestion="Use '=' when reassigning existing variables.",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "go-declared-not-used",
            pattern=r"declared (and|but) not used",
            phase=Phase.BUILD,
            hint="A variable is declared but never used.",
            suggestion="Use the variable, remove the declaration, or assign it to _.",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "go-imported-not-used",
            pattern=r"imported and not used",
            phase=Phase.BUILD,
            hint="A package is imported but not used.",
            suggestion="Remove the import or use a blank import for side effects.\n\n"
                       "Run: goimports -w . to fix imports automatically",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "go-mod-tidy-needed",
            pattern=r"go\.sum contains unexpected module|missing go\.sum entry",
            phase=Phase.BUILD,
            hint="go.sum is out of sync with go.mod.",
            suggestion="Run:\n  go mod tidy",
            confidence=HIGH,
        ),
    ]


# ---------------------------------------------------------------------------
# 3. TypeScript / pnpm
# ---------------------------------------------------------------------------
def frontend_patterns() -> List[ErrorPattern]:
    return [
        ErrorPattern.create(
            "ts-cannot-find-module",
            pattern=r"Cannot find module|Module not found",
            phase=Phase.FRONTEND_GEN,
            hint="TypeScript cannot find a required module: the package is not installed or the import path is wrong.",
            suggestion="Fix the missing module:\n"
                       "  1. pnpm install\n"
                       "  2. pnpm add <package>\n"
                       "  3. Check the import path\n\n"
                       "For generated types: labctl rebuild lab-frontend",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "ts-type-error-2304",
            pattern=r"TS2304|Cannot find name",
            phase=Phase.FRONTEND_GEN,
            hint="TS2304: a type or variable is referenced but not defined or imported.",
            suggestion="Check for a missing import, a missing @types package, or stale generated API types.",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "ts-type-error-2305",
            pattern=r"TS2305|has no exported member",
            phase=Phase.FRONTEND_GEN,
            hint="TS2305: the module exists but does not export the requested name.",
            suggestion="Check for a renamed or removed export, or a default vs named export mismatch.\n\n"
                       "If importing from generated code, regenerate: labctl rebuild lab-frontend",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "pnpm-enoent",
            pattern=r"ENOENT|no such file or directory",
            phase=Phase.FRONTEND_GEN,
            hint="A file or directory was not found during a pnpm operation.",
            suggestion="Run pnpm install, verify the project directory exists, and check whether a build step must run first.",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "pnpm-specific-error",
            pattern=r"ERR_PNPM_[A-Z_]+",
            phase=Phase.FRONTEND_GEN,
            hint="A pnpm-specific error occurred, usually related to the package manager itself.",
            suggestion="Try:\n"
                       "  1. pnpm store prune\n"
                       "  2. rm -rf node_modules && pnpm install\n"
                       "  3. pnpm --version",
            confidence=MEDIUM,
        ),
        ErrorPattern.create(
            "pnpm-peer-deps",
            contains=["peer", "dependency", "missing"],
            phase=Phase.FRONTEND_GEN,
            hint="A peer dependency is missing.",
            suggestion="Run pnpm install or add the peer package explicitly: pnpm add <peer-package>",
            confidence=MEDIUM,
        ),
        ErrorPattern.create(
            "ts-strict-null-checks",
            pattern=r"TS2531|TS2532|Object is possibly.*null|Object is possibly.*undefined",
            phase=Phase.FRONTEND_GEN,
            hint="TypeScript strict null checks caught a possible null/undefined access.",
            suggestion="Use optional chaining (obj?.prop) or an explicit null check.",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "vite-build-error",
            pattern=r"error during build|Build failed|vite:build",
            phase=Phase.FRONTEND_GEN,
            hint="The Vite build failed. The specific cause is in the output above the error.",
            suggestion="Run pnpm build --debug and check vite.config.ts.",
            confidence=MEDIUM,
        ),
    ]


# ---------------------------------------------------------------------------
# 4. Make
# ---------------------------------------------------------------------------
def make_patterns() -> List[ErrorPattern]:
    return [
        ErrorPattern.create(
            "make-no-rule",
            pattern=r"No rule to make target|missing target",
            hint="Make cannot find a rule for the requested target.",
            suggestion="Check the target name, that it exists in the Makefile, and that you are in the right directory.",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "make-recipe-failed",
            pattern=r"recipe for target .* failed|Error \d+|make.*Error",
            hint="A command in a Makefile recipe failed. The real error is in the output above.",
            suggestion="Run the failing command manually with verbose output: make <target> V=1",
            confidence=MEDIUM,
        ),
        ErrorPattern.create(
            "make-missing-separator",
            contains=["missing separator", "stop"],
            hint="Makefile recipe lines must be indented with a tab, not spaces.",
            suggestion="Replace leading spaces with a TAB on recipe lines. Check with: cat -A Makefile",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "make-circular-dependency",
            pattern=r"Circular .* dependency dropped|recursive variable",
            hint="The Makefile has circular dependencies between targets.",
            suggestion="Restructure the target dependencies to be acyclic.",
            confidence=HIGH,
        ),
    ]


# ---------------------------------------------------------------------------
# 5. Lab stack services
# ---------------------------------------------------------------------------
def lab_stack_patterns() -> List[ErrorPattern]:
    return [
        ErrorPattern.create(
            "clickhouse-not-ready",
            contains=["connection refused", "8123"],
            phase=Phase.RESTART,
            hint="Cannot connect to ClickHouse on port 8123; it is not running or not ready.",
            suggestion="Start the stack and follow the ClickHouse logs:\n"
                       "  docker logs labctl-clickhouse --follow",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "redis-not-ready",
            contains=["connection refused", "6379"],
            phase=Phase.RESTART,
            hint="Cannot connect to Redis on port 6379; it is not running or not ready.",
            suggestion="Start the stack and check: docker logs labctl-redis",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "port-already-in-use",
            pattern=r"address already in use|EADDRINUSE",
            phase=Phase.RESTART,
            hint="A required port is already in use by another process.",
            suggestion="Find and stop the process:\n"
                       "  lsof -i :<port> | grep LISTEN\n"
                       "  kill <PID>",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "cbt-api-not-ready",
            pattern=r"cbt-api.*connection refused|openapi\.yaml.*ECONNREFUSED",
            phase=Phase.RESTART,
            hint="Cannot connect to cbt-api; it is not running or has not finished starting.",
            suggestion="Check the cbt-api container logs: docker logs labctl-cbt-api-<network>",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "config-not-found",
            contains=["config", "not found", ".labctl"],
            hint="The labctl configuration was not found; the lab may not be initialized.",
            suggestion="Check LAB_ROOT / LAB_STATE_DIR in your environment or .env file.",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "repo-not-found",
            contains=["repository", "not found"],
            hint="A required repository is not found at the configured path.",
            suggestion="Check the LAB_REPO_* paths in your environment and clone the missing repository.",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "permission-denied",
            pattern=r"permission denied|EACCES|Operation not permitted",
            hint="Permission denied when accessing a file or resource.",
            suggestion="Check file ownership (ls -la), binary permissions (chmod +x), and docker group membership.",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "network-timeout",
            pattern=r"timeout|ETIMEDOUT|context deadline exceeded",
            phase=Phase.RESTART,
            hint="A network operation timed out; the service is slow to respond or unreachable.",
            suggestion="Check that the containers are running (docker ps) and not starved of resources (docker stats).",
            confidence=MEDIUM,
        ),
        ErrorPattern.create(
            "database-connection-error",
            pattern=r"database.*connection|DB_.*refused|sql:.*connection",
            phase=Phase.RESTART,
            hint="Cannot connect to the database; the database service may not be running.",
            suggestion="Check the ClickHouse container: docker logs labctl-clickhouse",
            confidence=HIGH,
        ),
    ]


# ---------------------------------------------------------------------------
# 6. Docker
# ---------------------------------------------------------------------------
def docker_patterns() -> List[ErrorPattern]:
    return [
        ErrorPattern.create(
            "docker-daemon-not-running",
            contains=["docker", "daemon", "not running"],
            hint="The Docker daemon is not running.",
            suggestion="Start Docker (Docker Desktop, or: sudo systemctl start docker), then verify: docker info",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "docker-image-not-found",
            pattern=r"image .* not found|pull access denied|manifest unknown",
            hint="Docker image not found, or you do not have access to it.",
            suggestion="Check the image name, docker login, and try: docker pull <image>",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "docker-container-conflict",
            pattern=r"container .* already exists|name .* is already in use",
            hint="A container with the same name already exists.",
            suggestion="Remove it: docker rm -f <container-name>",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "docker-no-space",
            pattern=r"no space left on device|out of disk space",
            hint="Docker has run out of disk space.",
            suggestion="Clean up: docker system prune -a --volumes\nCheck usage: docker system df",
            confidence=HIGH,
        ),
        ErrorPattern.create(
            "docker-network-error",
            pattern=r"network .* not found|failed to create network",
            hint="A Docker network does not exist or could not be created.",
            suggestion="List networks (docker network ls) and recreate the missing one.",
            confidence=HIGH,
        ),
    ]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def builtin_patterns() -> List[ErrorPattern]:
    """All built-in entries in registration order."""
    return (
        proto_patterns()
        + go_build_patterns()
        + frontend_patterns()
        + make_patterns()
        + lab_stack_patterns()
        + docker_patterns()
    )


def builtin_catalog() -> PatternCatalogBuilder:
    """A builder preloaded with the built-in rules, ready for add_pattern()."""
    return PatternCatalogBuilder().add_patterns(builtin_patterns())


@lru_cache(maxsize=1)
def default_matcher() -> PatternMatcher:
    """Process-wide matcher over the built-in rules, assembled once."""
    return builtin_catalog().build()


def diagnose_output(service: str, phase: Phase, stderr: str, stdout: str = "") -> Optional[Diagnosis]:
    """Match raw stderr/stdout against the built-in catalog."""
    return default_matcher().match(f"{stderr}\n{stdout}", service, phase)
