from datetime import datetime, timedelta, timezone


class TimestampPlugin:
    """Plugin that tells the agent the current time through its system prompt."""

    def __init__(self, timezone_offset=0, timezone_name="UTC", clock=None):
        """Initialize timestamp plugin with timezone settings.

        Parameters
        ----------
        timezone_offset : int, optional
            Minutes offset from UTC (default: 0)
        timezone_name : str, optional
            Timezone name for display (default: "UTC")
        clock : callable, optional
            Returns the current aware datetime; defaults to ``datetime.now``
        """
        self.timezone_name = timezone_name
        self.timezone = timezone(-timedelta(minutes=timezone_offset))
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def format_timestamp(self) -> str:
        """Format timestamp with timezone adjustment."""
        dt = self.clock().astimezone(self.timezone)
        return dt.strftime(f"%Y-%m-%d %H:%M:%S {self.timezone_name}")

    def hook_provide_system_prompt(self):
        return f"Current time: {self.format_timestamp()}"
