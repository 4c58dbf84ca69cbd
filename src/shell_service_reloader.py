#!/usr/bin/env python3
"""
Shell Service Reloader

Restarts the macOS services that cache the sidebar favorites so that edits
to the .sfl3 file show up in Finder.
"""

import subprocess
from typing import Callable
import logging

logger = logging.getLogger(__name__)

KILLALL = '/usr/bin/killall'
SHARED_FILE_LIST_SERVICE = 'sharedfilelistd'
FINDER_SERVICE = 'Finder'


class ShellServiceReloader:
    """Restarts sharedfilelistd and, when needed, Finder."""

    def __init__(self, runner: Callable = subprocess.run, killall: str = KILLALL):
        self.runner = runner
        self.killall = killall

    def restart(self, service_name: str) -> bool:
        """Kill a service so launchd starts it again. True on success."""
        try:
            completed = self.runner(
                [self.killall, service_name],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            logger.error(f"Unable to run {self.killall} {service_name}: {e}")
            return False

        if completed.returncode != 0:
            stderr = (completed.stderr or '').strip()
            logger.warning(f"{self.killall} {service_name} exited with {completed.returncode}: {stderr}")
            return False

        logger.info(f"Restarted {service_name}")
        return True

    def reload(self, force: bool = False) -> bool:
        """Restart sharedfilelistd; Finder too if forced or if that failed."""
        restarted = self.restart(SHARED_FILE_LIST_SERVICE)

        if not restarted:
            logger.warning(f"Could not restart {SHARED_FILE_LIST_SERVICE}, restarting {FINDER_SERVICE} instead")
            force = True

        if force:
            restarted = self.restart(FINDER_SERVICE) and restarted

        return restarted
