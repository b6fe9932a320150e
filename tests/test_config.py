import json
from pathlib import Path

import pytest

from provision_config import BUILD_TYPES, WorkspaceLayout, load_settings, resolve_config
from provision_errors import ConfigError, ProvisioningError


class TestLoadSettings:
    def test_base_config_is_valid(self, settings):
        assert settings['build-type'] == 'Release'
        assert settings['jobs'] == 4
        assert settings['branch'] == 'main'
        assert settings['allow-fallback-install'] is False

    def test_overlay_overrides_base(self, tmp_path):
        overlay = tmp_path / 'config-debug.json'
        overlay.write_text(json.dumps({'build-type': 'Debug', 'core': {'install': False}}))
        settings = load_settings([overlay])
        assert settings['build-type'] == 'Debug'
        assert settings['core']['install'] is False
        # Nested siblings from the base config survive the merge.
        assert settings['core']['dependencies-dir-definition'] == 'OPENSIM_DEPENDENCIES_DIR'

    def test_second_overlay_warns_about_overwrite(self, tmp_path, capsys):
        first = tmp_path / 'first.json'
        second = tmp_path / 'second.json'
        first.write_text(json.dumps({'jobs': 8}))
        second.write_text(json.dumps({'jobs': 16}))
        settings = load_settings([first, second])
        assert settings['jobs'] == 16
        output = capsys.readouterr().out
        assert 'previously set in "first.json"' in output
        assert 'set in "second.json"' in output

    def test_schema_violation_is_config_error(self, tmp_path):
        overlay = tmp_path / 'bad.json'
        overlay.write_text(json.dumps({'cl-mp-count': 0}))
        with pytest.raises(ConfigError, match='cl-mp-count'):
            load_settings([overlay])

    def test_unknown_key_is_rejected(self, tmp_path):
        overlay = tmp_path / 'bad.json'
        overlay.write_text(json.dumps({'no-such-setting': True}))
        with pytest.raises(ConfigError):
            load_settings([overlay])

    def test_malformed_json(self, tmp_path):
        overlay = tmp_path / 'broken.json'
        overlay.write_text('{"jobs": ')
        with pytest.raises(ConfigError, match='Malformed config'):
            load_settings([overlay])

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match='Cannot read config'):
            load_settings([tmp_path / 'missing.json'])


class TestResolveConfig:
    def test_defaults(self, make_config, tmp_path):
        config = make_config()
        assert config.build_type == 'Release'
        assert config.jobs == 4
        assert config.branch == 'main'
        assert config.allow_fallback_install is False
        assert config.resolve_python_abi is False
        assert config.workspace == WorkspaceLayout.under(tmp_path / 'workspace')
        assert config.source_path == tmp_path / 'source'

    def test_environment_overrides_settings(self, make_config):
        config = make_config(environ={'BUILD_TYPE': 'RelWithDebInfo', 'NUM_JOBS': '12'})
        assert config.build_type == 'RelWithDebInfo'
        assert config.jobs == 12

    def test_flags_override_environment(self, make_config):
        config = make_config(environ={'BUILD_TYPE': 'RelWithDebInfo', 'NUM_JOBS': '12'},
                             build_type='Debug', jobs='2')
        assert config.build_type == 'Debug'
        assert config.jobs == 2

    def test_empty_environment_value_is_ignored(self, make_config):
        config = make_config(environ={'BUILD_TYPE': '', 'NUM_JOBS': ''})
        assert config.build_type == 'Release'
        assert config.jobs == 4

    @pytest.mark.parametrize('build_type', BUILD_TYPES)
    def test_accepts_every_build_type(self, make_config, build_type):
        assert make_config(build_type=build_type).build_type == build_type

    @pytest.mark.parametrize('build_type', ['release', 'Profile', '', ' Debug'])
    def test_rejects_unknown_build_type(self, make_config, build_type):
        with pytest.raises(ConfigError, match='Invalid build type'):
            make_config(build_type=build_type or None, environ={'BUILD_TYPE': 'Nope'})

    @pytest.mark.parametrize('jobs', ['0', '-3', 0])
    def test_rejects_non_positive_jobs(self, make_config, jobs):
        with pytest.raises(ConfigError, match='at least 1'):
            make_config(jobs=jobs)

    @pytest.mark.parametrize('jobs', ['four', '2.5', True])
    def test_rejects_non_integer_jobs(self, make_config, jobs):
        with pytest.raises(ConfigError, match='positive integer'):
            make_config(jobs=jobs)

    def test_invalid_environment_jobs(self, make_config):
        with pytest.raises(ConfigError, match='at least 1'):
            make_config(environ={'NUM_JOBS': '0'})

    def test_validation_creates_nothing(self, make_config, tmp_path):
        with pytest.raises(ConfigError):
            make_config(build_type='Fast')
        assert not (tmp_path / 'workspace').exists()

    def test_version_pins_from_environment(self, make_config):
        config = make_config(environ={'CMAKE_PIP_VERSION': '3.28.1', 'NINJA_CHOCO_VERSION': '1.12.0'})
        assert config.versions['cmake-pip'] == '3.28.1'
        assert config.versions['cmake-choco'] == '3.27.9'
        assert config.versions['ninja-choco'] == '1.12.0'

    def test_moco_is_always_off(self, make_config):
        assert make_config(disable_moco=True).with_moco is False
        config = make_config(disable_moco=False)
        assert config.disable_moco is False
        assert config.with_moco is False

    def test_config_is_immutable(self, make_config):
        config = make_config()
        with pytest.raises(AttributeError):
            config.jobs = 8
        with pytest.raises(TypeError):
            config.versions['cmake-pip'] = '1.0'

    def test_ninja_generator_requires_ninja(self, make_config):
        assert 'ninja' not in make_config().required_tools
        config = make_config({'generator': 'Ninja Multi-Config'})
        assert config.required_tools[-1] == 'ninja'
        assert not config.uses_visual_studio

    def test_as_dict_is_json_serializable(self, make_config, tmp_path):
        data = json.loads(json.dumps(make_config(branch='feature').as_dict()))
        assert data['branch'] == 'feature'
        assert data['workspace']['core-install'] == (tmp_path / 'workspace' / 'core-install').as_posix()


def test_workspace_create_is_idempotent(tmp_path):
    layout = WorkspaceLayout.under(tmp_path / 'ws')
    layout.create()
    layout.create()
    assert all(Path(path).is_dir() for path in layout.paths())


def test_malformed_expected_version_is_config_error(make_config):
    with pytest.raises(ConfigError, match='Invalid expected version for "cmake"'):
        make_config({'expected-versions': {'cmake': '>=3.15,~4'}})


def test_schema_rejects_malformed_expected_version(tmp_path):
    overlay = tmp_path / 'constraint.json'
    overlay.write_text(json.dumps({'expected-versions': {'ninja': '1.11'}}))
    with pytest.raises(ConfigError, match='expected-versions.ninja'):
        load_settings([overlay])


def test_workspace_create_failure(tmp_path, capsys):
    (tmp_path / 'ws').write_text('')
    layout = WorkspaceLayout.under(tmp_path / 'ws')
    with pytest.raises(ProvisioningError, match='Cannot create path'):
        layout.create()
    assert 'Error' in capsys.readouterr().out
