import subprocess
import sys

from provision_errors import CommandError


def format_command(command):
    return ' '.join(
        f'"{i}"' if ' ' in str(i) else f'{i}' for i in command)


class CommandRunner:
    """Runs child processes one at a time, streaming their output to the console."""

    def run(self, command, cwd=None, env=None):
        command_string = format_command(command)
        print(f'> {command_string}')
        try:
            with subprocess.Popen([str(i) for i in command],
                                  cwd=cwd,
                                  stdout=subprocess.PIPE,
                                  stderr=subprocess.STDOUT,
                                  universal_newlines=True,
                                  env=env) as process:
                for line in process.stdout:
                    sys.stdout.write(line)
        except OSError as ex:
            raise CommandError(command_string, None, str(ex)) from ex
        if process.returncode != 0:
            raise CommandError(command_string, process.returncode)

    def capture(self, command, env=None):
        command_string = format_command(command)
        try:
            process = subprocess.run([str(i) for i in command],
                                     stdout=subprocess.PIPE,
                                     stderr=subprocess.PIPE,
                                     universal_newlines=True,
                                     env=env)
        except OSError as ex:
            raise CommandError(command_string, None, str(ex)) from ex
        if process.returncode != 0:
            raise CommandError(command_string, process.returncode)
        return process.stdout
