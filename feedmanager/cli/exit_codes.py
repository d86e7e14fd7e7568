"""Standard exit codes for the feedmanager CLI.

These codes follow common Unix conventions where possible:
- 0: Success
- 1: General error
- 130: Terminated by Ctrl+C (SIGINT)

Feed manager specific codes start at 2.
"""


class ExitCode:
    """Standard exit codes for the feedmanager CLI."""

    SUCCESS = 0
    GENERAL_ERROR = 1

    CONFIGURATION_ERROR = 2
    JOB_FAILED = 3
    CONTENT_ERROR = 4
    NETWORK_ERROR = 5
    STORAGE_ERROR = 6
    INVALID_ARGUMENT = 7
    NOT_FOUND = 8

    CANCELLED = 130  # SIGINT

    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the name of an exit code.

        Args:
            code: The exit code value

        Returns:
            Human-readable name for the exit code
        """
        names = {
            cls.SUCCESS: "SUCCESS",
            cls.GENERAL_ERROR: "GENERAL_ERROR",
            cls.CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
            cls.JOB_FAILED: "JOB_FAILED",
            cls.CONTENT_ERROR: "CONTENT_ERROR",
            cls.NETWORK_ERROR: "NETWORK_ERROR",
            cls.STORAGE_ERROR: "STORAGE_ERROR",
            cls.INVALID_ARGUMENT: "INVALID_ARGUMENT",
            cls.NOT_FOUND: "NOT_FOUND",
            cls.CANCELLED: "CANCELLED",
        }
        return names.get(code, f"UNKNOWN({code})")
