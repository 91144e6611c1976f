"""
The bootstrap makes sure the operator development tools are on the PATH before
handing the process over to the user's command. Missing tools are installed in
order and the first failure aborts the bootstrap.
"""

# Standard
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import os
import shutil
import stat
import subprocess
import sys
import tempfile

# Third Party
import urllib3

# First Party
import alog

# Local
from . import config
from .exceptions import ConfigError, ToolInstallError

log = alog.use_channel("BOOT")

# Command used when the caller gives none
DEFAULT_COMMAND = ["bash"]


## Tool Definitions ############################################################


@dataclass
class ToolSpec:
    """A tool the bootstrap can check for and install"""

    name: str

    # Method name on ToolBootstrapper that installs the tool
    installer: str

    # Command whose first output line is reported for installed tools
    version_command: Optional[List[str]] = None

    # Label used in the success message when it differs from the name
    installed_label: Optional[Callable[[], str]] = None

    def label(self) -> str:
        return self.installed_label() if self.installed_label else self.name


@dataclass
class BootstrapProfile:
    """An ordered set of tools plus whether start/end banners are logged"""

    name: str
    tools: List[str] = field(default_factory=list)
    announce: bool = False


TOOLS: Dict[str, ToolSpec] = {
    spec.name: spec
    for spec in [
        ToolSpec(
            name="helm",
            installer="install_helm",
            version_command=["helm", "version", "--short"],
        ),
        ToolSpec(
            name="operator-sdk",
            installer="install_operator_sdk",
            version_command=["operator-sdk", "version"],
            installed_label=lambda: (
                f"operator-sdk {config.bootstrap.operator_sdk_version}"
            ),
        ),
        ToolSpec(
            name="ansible",
            installer="install_ansible",
            version_command=["ansible", "--version"],
        ),
        ToolSpec(name="make", installer="install_make"),
    ]
}

PROFILES: Dict[str, BootstrapProfile] = {
    "helm": BootstrapProfile(name="helm", tools=["helm", "operator-sdk"]),
    "ansible": BootstrapProfile(
        name="ansible", tools=["ansible", "operator-sdk", "make"], announce=True
    ),
}


def get_tools(
    profile: Optional[str] = None, tool_names: Optional[List[str]] = None
) -> List[ToolSpec]:
    """Resolve the tools for a profile and/or an explicit list of names. The
    profile's tools come first and duplicates are dropped.

    Raises:
        ConfigError: If the profile or any tool is unknown
    """
    names = []
    if profile:
        if profile not in PROFILES:
            raise ConfigError(f"Unknown bootstrap profile: {profile}")
        names.extend(PROFILES[profile].tools)
    names.extend(tool_names or [])

    tools = []
    for name in dict.fromkeys(names):
        if name not in TOOLS:
            raise ConfigError(f"Unknown bootstrap tool: {name}")
        tools.append(TOOLS[name])
    return tools


## Command Helpers #############################################################


def run_command(cmd: List[str], stdin: Optional[bytes] = None) -> str:
    """Run a command to completion and return its stdout

    Raises:
        ToolInstallError: If the command can't be started or exits non-zero
    """
    log.debug2("Running command: %s", cmd)
    try:
        proc = subprocess.run(
            cmd,
            input=stdin,
            capture_output=True,
            check=True,
        )
    except FileNotFoundError as err:
        raise ToolInstallError(f"Command not found: {cmd[0]}", cmd[0]) from err
    except subprocess.CalledProcessError as err:
        stderr = (err.stderr or b"").decode("utf-8", errors="replace").strip()
        raise ToolInstallError(
            f"Command {' '.join(cmd)} failed with code {err.returncode}: {stderr}",
            cmd[0],
        ) from err
    return proc.stdout.decode("utf-8", errors="replace")


def exec_command(argv: Optional[List[str]] = None):
    """Replace the current process with the given command. Never returns."""
    argv = list(argv or DEFAULT_COMMAND)
    log.debug("Executing %s", argv)
    sys.stdout.flush()
    sys.stderr.flush()
    try:
        os.execvp(argv[0], argv)
    except OSError as err:
        raise ConfigError(f"Unable to execute {argv[0]}: {err}") from err


## ToolBootstrapper ############################################################


class ToolBootstrapper:
    """Check for each tool and install the missing ones"""

    def __init__(
        self,
        tools: List[ToolSpec],
        runner: Optional[Callable[..., str]] = None,
        which: Optional[Callable[[str], Optional[str]]] = None,
        http: Optional[urllib3.PoolManager] = None,
        announce: bool = False,
    ):
        """
        Args:
            tools:  List[ToolSpec]
                The tools to ensure, in order
            runner:  Optional[Callable[..., str]]
                Runs a command list with optional stdin and returns stdout
            which:  Optional[Callable[[str], Optional[str]]]
                Looks up a tool on the PATH
            http:  Optional[urllib3.PoolManager]
                Pool used for downloads
            announce:  bool
                Log the start and end banners
        """
        self.tools = tools
        self.runner = runner or run_command
        self.which = which or shutil.which
        self.http = http
        self.announce = announce

    def ensure_all(self) -> List[str]:
        """Ensure every tool is installed

        Returns:
            installed:  List[str]
                Names of the tools that were installed by this call

        Raises:
            ToolInstallError: On the first failed install
        """
        if self.announce:
            log.info("Checking development environment...")
        installed = [tool.name for tool in self.tools if self.ensure(tool)]
        if self.announce:
            log.info("Environment ready!")
        return installed

    def ensure(self, tool: ToolSpec) -> bool:
        """Install the tool if it is missing

        Returns:
            installed:  bool
                True if the tool had to be installed
        """
        if self.which(tool.name):
            version = self.version(tool)
            if version:
                log.info("%s already installed: %s", tool.name, version)
            else:
                log.info("%s already installed", tool.name)
            return False

        log.info("%s not found. Installing...", tool.name)
        try:
            getattr(self, tool.installer)()
        except (OSError, urllib3.exceptions.HTTPError) as err:
            raise ToolInstallError(
                f"Failed to install {tool.name}: {err}", tool.name
            ) from err
        log.info("%s installed successfully!", tool.label())
        return True

    def version(self, tool: ToolSpec) -> str:
        """The first line of the tool's version output, empty if unknown"""
        if not tool.version_command:
            return ""
        try:
            output = self.runner(tool.version_command)
        except ToolInstallError as err:
            log.debug("Unable to get version of %s: %s", tool.name, err)
            return ""
        lines = output.strip().splitlines()
        return lines[0].strip() if lines else ""

    ## Installers ##############################################################

    def install_helm(self):
        """Run the official helm 3 install script"""
        script = self.download(config.bootstrap.helm_install_script_url)
        self.runner(["bash"], stdin=script)

    def install_operator_sdk(self):
        """Download the operator-sdk release binary into the install dir"""
        cfg = config.bootstrap
        binary_name = f"operator-sdk_{cfg.os}_{cfg.arch}"
        url = "/".join(
            [
                cfg.operator_sdk_download_url.rstrip("/"),
                cfg.operator_sdk_version,
                binary_name,
            ]
        )
        content = self.download(url)

        os.makedirs(cfg.install_dir, exist_ok=True)
        target = os.path.join(cfg.install_dir, "operator-sdk")
        with tempfile.NamedTemporaryFile(
            dir=cfg.install_dir, prefix=f".{binary_name}.", delete=False
        ) as handle:
            handle.write(content)
            tmp_path = handle.name
        try:
            mode = os.stat(tmp_path).st_mode
            os.chmod(tmp_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            os.replace(tmp_path, target)
        except OSError:
            os.remove(tmp_path)
            raise
        log.debug("Installed %s to %s", binary_name, target)

    def install_ansible(self):
        """pip install ansible and the runner libraries"""
        self.runner(
            [
                sys.executable,
                "-m",
                "pip",
                "install",
                "--quiet",
                *config.bootstrap.ansible_packages,
            ]
        )

    def install_make(self):
        """apt-get install make"""
        self.runner(["apt-get", "update", "-qq"])
        self.runner(["apt-get", "install", "-y", "-qq", "make"])

    ## Implementation Details ##################################################

    def download(self, url: str) -> bytes:
        """Fetch a url, following redirects

        Raises:
            ToolInstallError: On a non-200 response
        """
        if self.http is None:
            self.http = urllib3.PoolManager()
        log.debug("Downloading %s", url)
        response = self.http.request(
            "GET",
            url,
            timeout=urllib3.Timeout(total=float(config.bootstrap.download_timeout)),
            redirect=True,
        )
        if response.status != 200:
            raise ToolInstallError(
                f"Download of {url} failed with status {response.status}"
            )
        return response.data
