"""
Module containing various utility functions and classes.
"""
from argparse import Namespace
from dataclasses import dataclass, fields


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass
class Config:
    """
    Config parent class that can conveniently set attributes from CLI args
    """

    @classmethod
    def from_args(cls, args: Namespace):
        """
        Sets attributes of the class from a Namespace object (e.g. from argparse)

        Parameters
        ----------
        args : :class:`argparse.Namespace`
            :class:`argparse.Namespace` object containing attributes to set

        Returns
        -------
        cls
            Class instance with attributes set from args

        """
        return cls(**{f.name: getattr(args, f.name) for f in fields(cls) if hasattr(args, f.name)})


# Functions ------------------------------------------------------------------------------------------------------------
def time_string(seconds: float) -> str:
    """
    Formats a duration as ``[Hh ][Mm ]S.SSSs``.

    :param seconds: Duration in seconds.
    :return: Human-readable duration.
    """
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    parts = []
    if hours: parts.append(f'{hours}h')
    if hours or minutes: parts.append(f'{minutes}m')
    parts.append(f'{seconds:.3f}s')
    return ' '.join(parts)


def bold(text: str):
    """
    Makes text bold in the terminal.

    :param text: Text to make bold.
    :return: Bold text.
    """
    return f"\033[1m{text}\033[0m"
