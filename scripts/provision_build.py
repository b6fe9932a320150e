from dataclasses import dataclass
from pathlib import Path


def cmake_value(value):
    if isinstance(value, bool):
        return 'ON' if value else 'OFF'
    if isinstance(value, Path):
        return value.as_posix()
    return str(value)


def definitions_to_arguments(definitions):
    return [f'-D{key}={cmake_value(value)}' for key, value in definitions]


@dataclass(frozen=True)
class BuildUnit:
    name: str
    source_path: Path
    build_path: Path
    install_path: Path
    arguments: tuple
    install: bool


def build_units(config, python_abi=None):
    """Return the dependencies unit and the core unit, in build order."""
    shared_arguments = [f'-D{config.moco_definition}={cmake_value(config.with_moco)}']
    if python_abi is not None:
        shared_arguments += python_abi.cmake_arguments()

    workspace = config.workspace
    dependencies = BuildUnit(
        name='dependencies',
        source_path=config.source_path / config.dependencies_source_subdirectory,
        build_path=workspace.dependencies_build,
        install_path=workspace.dependencies_install,
        arguments=tuple(definitions_to_arguments(config.dependencies_definitions) + shared_arguments),
        install=config.dependencies_install_step)
    core = BuildUnit(
        name=config.project_name,
        source_path=config.source_path,
        build_path=workspace.core_build,
        install_path=workspace.core_install,
        arguments=tuple(
            [f'-D{config.dependencies_dir_definition}={workspace.dependencies_install.as_posix()}'] +
            definitions_to_arguments(config.core_definitions) + shared_arguments),
        install=config.core_install_step)
    return dependencies, core


class BuildUnitRunner:
    def __init__(self, config, runner, cmake_path='cmake', environment=None):
        self.config = config
        self.runner = runner
        self.cmake_path = cmake_path
        self.environment = environment

    def configure_command(self, unit):
        command = [self.cmake_path,
                   '-S', unit.source_path.as_posix(),
                   '-B', unit.build_path.as_posix(),
                   '-G', self.config.generator]
        if self.config.uses_visual_studio and self.config.platform:
            command += ['-A', self.config.platform]
        return command + [f'-DCMAKE_INSTALL_PREFIX={unit.install_path.as_posix()}',
                          f'-DCMAKE_BUILD_TYPE={self.config.build_type}',
                          *unit.arguments]

    def build_command(self, unit):
        command = [self.cmake_path, '--build', unit.build_path.as_posix(),
                   '--config', self.config.build_type]
        if self.config.uses_visual_studio:
            # MSBuild runs projects in parallel; CL_MPCount caps cl.exe processes per project.
            return command + ['--', f'/maxcpucount:{self.config.jobs}',
                              f'/p:CL_MPCount={self.config.cl_mp_count}']
        return command + ['--parallel', str(self.config.jobs)]

    def install_command(self, unit):
        return [self.cmake_path, '--install', unit.build_path.as_posix(),
                '--config', self.config.build_type]

    def configure(self, unit):
        print(f'Configuring {unit.name} in "{unit.build_path}"')
        unit.build_path.mkdir(parents=True, exist_ok=True)
        self.runner.run(self.configure_command(unit), env=self.environment)

    def build(self, unit):
        print(f'Building {unit.name} ({self.config.build_type}, {self.config.jobs} jobs)')
        self.runner.run(self.build_command(unit), env=self.environment)

    def install(self, unit):
        print(f'Installing {unit.name} to "{unit.install_path}"')
        self.runner.run(self.install_command(unit), env=self.environment)
