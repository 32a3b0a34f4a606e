"""
Base class for all apimanager_operator commands
"""

# Standard
import abc
import argparse


class CmdBase(abc.ABC):
    """A subcommand of the main entrypoint. Subclasses set the command name
    and implement the parser setup and the command body.
    """

    name: str = ""

    def register(
        self, subparsers: argparse._SubParsersAction
    ) -> argparse.ArgumentParser:
        """Add the subparser and route parsed args for it to this command"""
        assert self.name, f"{type(self).__name__} has no command name"
        parser = self.add_subparser(subparsers)
        parser.set_defaults(func=self.cmd)
        return parser

    @abc.abstractmethod
    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        """Add this command's subparser

        Args:
            subparsers:  argparse._SubParsersAction
                The subparser section of the main parser

        Returns:
            subparser:  argparse.ArgumentParser
                The configured parser for this command
        """

    @abc.abstractmethod
    def cmd(self, args: argparse.Namespace) -> int:
        """Execute the command

        Args:
            args:  argparse.Namespace
                The parsed command line arguments

        Returns:
            exit_code:  int
                The process exit code
        """
