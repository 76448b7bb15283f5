"""Fail-Point Controller - install server-side fault injection and always turn it off"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .config import RunnerConfig
from .context import AssertionContext
from .entities import ClientSettings
from .errors import ConfigurationError, TeardownError
from .security import SecureLogger

logger = SecureLogger(logging.getLogger(__name__))


class FailPoint:
    """One configured fail point and the client it was sent through."""

    def __init__(self, configuration: Dict[str, Any], client: Any, owns_client: bool = False):
        if "configureFailPoint" not in configuration:
            raise ConfigurationError(f"Fail point document has no configureFailPoint: {configuration!r}")
        self.configuration = configuration
        self.client = client
        self.owns_client = owns_client
        self.disabled = False

    @property
    def name(self) -> str:
        return self.configuration["configureFailPoint"]

    def enable(self) -> None:
        self.client.admin.command(self.configuration)

    def disable(self) -> None:
        """Turn the fail point off. Later calls do nothing."""
        if self.disabled:
            return
        self.disabled = True
        try:
            self.client.admin.command({"configureFailPoint": self.name, "mode": "off"})
        finally:
            if self.owns_client:
                self.client.close()


class FailPointController:
    """Tracks every fail point a scenario installs so teardown can disable them."""

    def __init__(self, create_client: Callable[[ClientSettings], Any], config: Optional[RunnerConfig] = None):
        self.create_client = create_client
        self.config = config or RunnerConfig()
        self._fail_points: List[FailPoint] = []

    @property
    def fail_points(self) -> List[FailPoint]:
        return list(self._fail_points)

    def install(
        self,
        configuration: Dict[str, Any],
        client: Any,
        session: Any = None,
        context: Optional[AssertionContext] = None,
    ) -> FailPoint:
        """Send ``configuration`` through ``client``.

        With a session, the pinned server address is read first and the fail
        point goes to that server over a dedicated direct connection.
        """
        owns_client = False
        if session is not None:
            address = getattr(session, "_pinned_address", None)
            if not address:
                context = context or AssertionContext()
                raise context.fail("Cannot use targetedFailPoint with a session that is not pinned")
            host, port = address
            client = self.create_client(ClientSettings(
                uri=self.config.uri,
                uri_options={"directConnection": True},
                hosts=[f"{host}:{port}"],
            ))
            owns_client = True

        fail_point = FailPoint(configuration, client, owns_client)
        # Tracked before sending so a partially applied fail point is still disabled
        self._fail_points.append(fail_point)
        logger.debug("Enabling fail point %s", fail_point.name)
        fail_point.enable()
        return fail_point

    def disable_all(self) -> List[TeardownError]:
        """Disable every tracked fail point, each independently of the others."""
        failures = []
        fail_points, self._fail_points = self._fail_points, []
        for fail_point in fail_points:
            try:
                fail_point.disable()
            except Exception as e:
                logger.warning("Failed to disable fail point %s: %s", fail_point.name, str(e))
                failures.append(TeardownError(f"fail point {fail_point.name}: {e}"))
        return failures
