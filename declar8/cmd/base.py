"""
Base class for all declar8 commands
"""

# Standard
import abc
import argparse

# First Party
import alog

# Local
from ..config import library_config
from ..config.validation import get_inconsistent_params
from ..exceptions import ConfigError

log = alog.use_channel("MAIN")


class CmdBase(abc.ABC):
    __doc__ = __doc__

    @abc.abstractmethod
    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        """Add this command's argument parser subcommand

        Args:
            subparsers (argparse._SubParsersAction): The subparser section for
                the central main parser

        Returns:
            subparser (argparse.ArgumentParser): The configured parser for this
                command
        """

    @abc.abstractmethod
    def cmd(self, args: argparse.Namespace):
        """Execute the command with the parsed arguments

        Args:
            args (argparse.Namespace): The parsed command line arguments
        """

    def validate_config(self, args: argparse.Namespace):
        """Reject library config that command line overrides left unusable.
        This runs after the overrides are applied and before cmd.

        Args:
            args (argparse.Namespace): The parsed command line arguments

        Raises:
            ConfigError: If any library config value can't be used
        """
        inconsistent_params = get_inconsistent_params(library_config)
        if inconsistent_params:
            log.error("Unusable config for %s: %s", self, inconsistent_params)
            raise ConfigError(
                f"Library configuration found unusable values: {inconsistent_params}"
            )
