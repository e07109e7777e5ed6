"""
Machine health checks and setup for CodeBakers.

Verifies that the tools the agents expect are installed:
- git, Node.js and pnpm
- GitHub, Supabase and Vercel CLIs
- Stripe CLI (optional, only needed for payment features)
- GitHub, Supabase and Vercel logins
- The CodeBakers install home (~/.codebakers)

Nothing here installs packages; failed checks carry the command to run.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional
import logging
import platform
import shutil
import subprocess

from .config import InstallConfig
from .errors import SetupError

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class HealthCheck:
    """Result of a single health check."""
    name: str
    status: HealthStatus
    message: str
    fix_command: Optional[str] = None
    version: Optional[str] = None


@dataclass
class HealthReport:
    """Complete health check report."""
    overall_status: HealthStatus
    os: Optional[str] = None
    checks: list[HealthCheck] = field(default_factory=list)

    def get(self, name: str) -> Optional[HealthCheck]:
        for check in self.checks:
            if check.name == name:
                return check
        return None

    def to_dict(self) -> dict:
        return {
            "overall_status": self.overall_status.value,
            "os": self.os,
            "checks": {
                c.name: {
                    "status": c.status.value,
                    "message": c.message,
                    "version": c.version,
                    "fix_command": c.fix_command,
                }
                for c in self.checks
            },
        }


@dataclass
class ToolSpec:
    """A command line tool the agents rely on."""
    name: str
    command: str
    label: str
    required: bool = True
    version_args: tuple[str, ...] = ("--version",)
    install: dict[str, str] = field(default_factory=dict)  # os -> command
    auth_args: tuple[str, ...] = ()  # exits non-zero when logged out
    login: Optional[str] = None


TOOLS = [
    ToolSpec(
        name="git",
        command="git",
        label="Git",
        install={"macos": "xcode-select --install", "linux": "sudo apt-get install git -y"},
    ),
    ToolSpec(
        name="node",
        command="node",
        label="Node.js",
        version_args=("-v",),
        install={
            "any": "curl -o- https://raw.githubusercontent.com/nvm-sh/nvm/v0.39.7/install.sh | bash && nvm install --lts",
        },
    ),
    ToolSpec(
        name="pnpm",
        command="pnpm",
        label="pnpm",
        version_args=("-v",),
        install={"any": "corepack enable && corepack prepare pnpm@latest --activate"},
    ),
    ToolSpec(
        name="gh",
        command="gh",
        label="GitHub CLI",
        auth_args=("auth", "status"),
        login="gh auth login",
        install={"macos": "brew install gh", "linux": "sudo apt-get install gh -y"},
    ),
    ToolSpec(
        name="supabase",
        command="supabase",
        label="Supabase CLI",
        auth_args=("projects", "list"),
        login="supabase login",
        install={"macos": "brew install supabase/tap/supabase", "linux": "pnpm add -g supabase"},
    ),
    ToolSpec(
        name="vercel",
        command="vercel",
        label="Vercel CLI",
        auth_args=("whoami",),
        login="vercel login",
        install={"any": "pnpm add -g vercel"},
    ),
    ToolSpec(
        name="stripe",
        command="stripe",
        label="Stripe CLI",
        required=False,
        install={
            "macos": "brew install stripe/stripe-cli/stripe",
            "linux": "sudo apt-get install stripe -y",
        },
    ),
]


def detect_os() -> Optional[str]:
    """'macos' or 'linux'; None on anything CodeBakers doesn't support."""
    system = platform.system()
    if system == "Darwin":
        return "macos"
    if system == "Linux":
        return "linux"
    return None


def _worst(statuses: list[HealthStatus]) -> HealthStatus:
    if HealthStatus.ERROR in statuses:
        return HealthStatus.ERROR
    if HealthStatus.WARNING in statuses:
        return HealthStatus.WARNING
    return HealthStatus.OK


class SetupChecker:
    """
    Checks the machine for the CodeBakers toolchain.

    Usage:
        checker = SetupChecker(home=get_install_home())
        report = checker.run_all_checks()
    """

    def __init__(
        self,
        home: Path,
        os_name: Optional[str] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        tools: Optional[list[ToolSpec]] = None,
    ):
        self.home = home
        self.os_name = os_name if os_name is not None else detect_os()
        self.which = which
        self.tools = tools if tools is not None else TOOLS

    def run_all_checks(self) -> HealthReport:
        """Run all health checks and return a comprehensive report."""
        checks = [self._check_os()]

        for tool in self.tools:
            checks.append(self._check_tool(tool))

        installed = {c.name for c in checks if c.status == HealthStatus.OK}
        for tool in self.tools:
            if tool.auth_args and tool.name in installed:
                checks.append(self._check_auth(tool))

        checks.append(self._check_install_home())

        return HealthReport(
            overall_status=_worst([c.status for c in checks]),
            os=self.os_name,
            checks=checks,
        )

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            timeout=15,
        )

    def install_hint(self, tool: ToolSpec) -> Optional[str]:
        return tool.install.get(self.os_name or "", tool.install.get("any"))

    # =========================================================================
    # Individual Health Checks
    # =========================================================================

    def _check_os(self) -> HealthCheck:
        if self.os_name is None:
            return HealthCheck(
                name="os",
                status=HealthStatus.ERROR,
                message=f"Unsupported OS: {platform.system()}. CodeBakers supports macOS and Linux.",
            )
        return HealthCheck(name="os", status=HealthStatus.OK, message=f"Detected OS: {self.os_name}")

    def _check_tool(self, tool: ToolSpec) -> HealthCheck:
        """Check that a tool is on PATH and report its version."""
        if not self.which(tool.command):
            return HealthCheck(
                name=tool.name,
                status=HealthStatus.ERROR if tool.required else HealthStatus.WARNING,
                message=f"{tool.label} not found." + ("" if tool.required else " (optional)"),
                fix_command=self.install_hint(tool),
            )

        version = self.tool_version(tool)
        return HealthCheck(
            name=tool.name,
            status=HealthStatus.OK,
            message=f"{tool.label} installed" + (f": {version}" if version else ""),
            version=version,
        )

    def tool_version(self, tool: ToolSpec) -> Optional[str]:
        try:
            result = self._run(tool.command, *tool.version_args)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Version probe for {tool.command} failed: {e}")
            return None

        if result.returncode != 0:
            return None
        output = (result.stdout or result.stderr).strip()
        return output.splitlines()[0] if output else None

    def _check_auth(self, tool: ToolSpec) -> HealthCheck:
        """Check that a CLI is logged in."""
        name = f"{tool.name}_auth"
        try:
            result = self._run(tool.command, *tool.auth_args)
        except (OSError, subprocess.TimeoutExpired) as e:
            return HealthCheck(
                name=name,
                status=HealthStatus.WARNING,
                message=f"Could not check {tool.label} login: {e}",
                fix_command=tool.login,
            )

        if result.returncode == 0:
            return HealthCheck(name=name, status=HealthStatus.OK, message=f"{tool.label}: authenticated")
        return HealthCheck(
            name=name,
            status=HealthStatus.WARNING,
            message=f"{tool.label} is not authenticated.",
            fix_command=tool.login,
        )

    def _check_install_home(self) -> HealthCheck:
        install = InstallConfig.load(self.home)
        if install is None:
            return HealthCheck(
                name="install_home",
                status=HealthStatus.WARNING,
                message=f"No install record at {self.home / 'config.json'}.",
                fix_command="codebakers setup",
            )
        return HealthCheck(
            name="install_home",
            status=HealthStatus.OK,
            message=f"Installed {install.installed_at} at {install.codebakers_dir}",
        )


@dataclass
class SetupResult:
    """What 'codebakers setup' did."""
    home: Path
    config_path: Path
    repo_action: str  # cloned, updated, skipped
    install: InstallConfig


def run_setup(
    home: Path,
    repo_url: str,
    clone: bool = True,
    checker: Optional[SetupChecker] = None,
) -> SetupResult:
    """
    Create the install home, clone or update the agent repo, and write
    the install record.
    """
    checker = checker or SetupChecker(home)

    home.mkdir(parents=True, exist_ok=True)
    repo_path = home / "repo"

    repo_action = "skipped"
    if clone:
        if (repo_path / ".git").exists():
            args = ["git", "-C", str(repo_path), "pull", "--quiet"]
            repo_action = "updated"
        else:
            args = ["git", "clone", "--quiet", repo_url, str(repo_path)]
            repo_action = "cloned"

        try:
            subprocess.run(args, capture_output=True, text=True, check=True)
        except FileNotFoundError as e:
            raise SetupError("git is not installed.") from e
        except subprocess.CalledProcessError as e:
            raise SetupError(f"'{' '.join(args[:2])}' failed: {e.stderr.strip()}") from e

        logger.info(f"Repo {repo_action}: {repo_path}")

    versions = {}
    for tool in checker.tools:
        if tool.name in ("node", "pnpm") and checker.which(tool.command):
            versions[tool.name] = checker.tool_version(tool)

    install = InstallConfig.create(
        home,
        checker.os_name or platform.system().lower(),
        node_version=versions.get("node"),
        pnpm_version=versions.get("pnpm"),
    )
    config_path = install.save(home)

    return SetupResult(
        home=home,
        config_path=config_path,
        repo_action=repo_action,
        install=install,
    )
