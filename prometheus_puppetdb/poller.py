"""Main polling loop for prometheus-puppetdb."""

import logging
import signal
import time
from typing import Optional

from prometheus_puppetdb.config import Config
from prometheus_puppetdb.outputs import BaseOutput, OutputError, make_output
from prometheus_puppetdb.puppetdb import FetchError, PuppetDBClient
from prometheus_puppetdb.targets import MappingError, RenderError, map_targets

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
NOISY_LOGGERS = ("httpx", "httpcore", "kubernetes", "urllib3")


class PollError(Exception):
    """Raised when the polling loop stops because a cycle failed."""


class GracefulKiller:
    """Handle graceful shutdown signals."""

    def __init__(self):
        """Initialize signal handlers."""
        self.kill_now = False
        signal.signal(signal.SIGINT, self._exit_gracefully)
        signal.signal(signal.SIGTERM, self._exit_gracefully)

    def _exit_gracefully(self, signum, frame):
        """Signal handler for graceful shutdown."""
        self.kill_now = True


def setup_logging(config: Config) -> None:
    """Configure logging."""
    log_level = getattr(logging, config.logging.level.upper(), logging.INFO)

    # Configure root logger (stderr)
    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    logging.getLogger().setLevel(log_level)

    if log_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    # Add file handler if configured
    if config.logging.file:
        try:
            file_handler = logging.FileHandler(config.logging.file)
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logging.getLogger().addHandler(file_handler)
        except OSError:
            logger.warning(f"Cannot write to log file: {config.logging.file}")


class TargetsPoller:
    """Fetch nodes from PuppetDB and write their targets to an output."""

    def __init__(
        self,
        config: Config,
        client: Optional[PuppetDBClient] = None,
        output: Optional[BaseOutput] = None,
    ):
        """Initialize the poller.

        Args:
            config: Configuration object
            client: PuppetDB client. Built from config if None.
            output: Target output. Built from config if None.

        Raises:
            ConfigError: If the client or output cannot be set up
        """
        self.config = config
        self.client = client or PuppetDBClient.from_config(config)
        self.output = output or make_output(config)

    def run_once(self) -> int:
        """Run one poll cycle.

        Returns:
            Number of targets written

        Raises:
            FetchError, MappingError, RenderError, OutputError
        """
        nodes = self.client.fetch_nodes()
        static_configs = map_targets(nodes)
        self.output.write(static_configs)
        logger.info(f"Wrote {len(static_configs)} targets from {len(nodes)} nodes")
        return len(static_configs)

    def run(self) -> None:
        """Poll until a cycle fails or a shutdown signal arrives.

        One-shot outputs run a single cycle. A failed cycle ends the loop;
        the process is expected to be restarted by its supervisor.

        Raises:
            PollError: If a cycle failed
        """
        try:
            if self.output.one_shot:
                self._cycle()
                return

            killer = GracefulKiller()
            while not killer.kill_now:
                self._cycle()

                logger.info(f"Sleeping for {self.config.sleep:g}s")
                # Sleep with interrupt checking
                deadline = time.monotonic() + self.config.sleep
                while not killer.kill_now and time.monotonic() < deadline:
                    time.sleep(min(0.1, max(deadline - time.monotonic(), 0)))

            logger.info("Poller stopping")
        finally:
            self.cleanup()

    def _cycle(self) -> None:
        try:
            self.run_once()
        except (FetchError, MappingError, RenderError) as e:
            logger.error(f"failed to get exporters: {e}")
            raise PollError(str(e)) from e
        except OutputError as e:
            logger.error(f"failed to write targets: {e}")
            raise PollError(str(e)) from e

    def cleanup(self) -> None:
        """Clean up resources."""
        self.client.close()
