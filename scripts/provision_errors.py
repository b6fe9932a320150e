class ProvisioningError(Exception):
    """Base class of all fatal provisioning errors."""
    exit_code = 1


class ConfigError(ProvisioningError):
    """Invalid command line flag, environment variable or config file."""


class MissingPrerequisiteError(ProvisioningError):
    def __init__(self, tool, remedy):
        self.tool = tool
        self.remedy = remedy
        super().__init__(f'Cannot locate {tool}. {remedy}')


class CommandError(ProvisioningError):
    def __init__(self, command_string, returncode, reason=None):
        self.command_string = command_string
        self.returncode = returncode
        if returncode:
            self.exit_code = returncode
        if reason is None:
            message = f'The command `{command_string}´ failed with error code {returncode}.'
        else:
            message = f'The command `{command_string}´ failed: {reason}'
        super().__init__(message)
