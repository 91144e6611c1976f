"""
Install missing operator development tools, then exec a command
"""
# Standard
import argparse

# First Party
import alog

# Local
from ..bootstrap import PROFILES, TOOLS, ToolBootstrapper, exec_command, get_tools
from .base import CmdBase

log = alog.use_channel("MAIN")


class BootstrapCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("bootstrap", help=__doc__)
        bootstrap_args = parser.add_argument_group("Bootstrap Configuration")
        bootstrap_args.add_argument(
            "--profile",
            "-p",
            choices=sorted(PROFILES),
            default=None,
            help="Tool set to ensure. Defaults to helm when no --tool is given",
        )
        bootstrap_args.add_argument(
            "--tool",
            "-t",
            action="append",
            choices=sorted(TOOLS),
            default=[],
            help="Additional tool to ensure. May be repeated",
        )
        bootstrap_args.add_argument(
            "--no-exec",
            action="store_true",
            default=False,
            help="Only install the tools. Don't exec the command",
        )
        bootstrap_args.add_argument(
            "exec_command",
            nargs=argparse.REMAINDER,
            help="Command to exec once the tools are ready (after --). Defaults to bash",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        profile = args.profile
        if not profile and not args.tool:
            profile = "helm"

        bootstrapper = ToolBootstrapper(
            get_tools(profile, args.tool),
            announce=bool(profile and PROFILES[profile].announce),
        )
        installed = bootstrapper.ensure_all()
        log.debug("Installed tools: %s", installed)

        if args.no_exec:
            return

        command = list(args.exec_command or [])
        if command and command[0] == "--":
            command = command[1:]
        exec_command(command)
