"""Process launchers: foreground/daemon run orchestration."""

from .daemon import Daemonizer, PidFile
from .runner import Runner, main


__all__ = [
    'Daemonizer',
    'PidFile',
    'Runner',
    'main'
]
