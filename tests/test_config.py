import json
import sys

from now_playing.cli import build_parser, main, resolve_settings
from now_playing.config import DEFAULTS, load_config, save_config


def test_missing_file_gives_defaults(tmp_path):
    assert load_config(tmp_path / 'config.json') == DEFAULTS


def test_file_values_override_defaults(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'requested_player': 'vlc', 'ws_port': 7000}), encoding='utf-8')
    config = load_config(path)
    assert config['requested_player'] == 'vlc'
    assert config['ws_port'] == 7000
    assert config['http_port'] == DEFAULTS['http_port']


def test_invalid_json_is_logged_and_ignored(tmp_path, caplog):
    path = tmp_path / 'config.json'
    path.write_text('{not json', encoding='utf-8')
    assert load_config(path) == DEFAULTS
    assert any('unreadable config' in r.message for r in caplog.records)


def test_non_object_config_is_ignored(tmp_path):
    path = tmp_path / 'config.json'
    path.write_text('[1, 2]', encoding='utf-8')
    assert load_config(path) == DEFAULTS


def test_save_merges_into_existing_file(tmp_path):
    path = tmp_path / 'nested' / 'config.json'
    assert save_config({'requested_player': 'spotify'}, path)
    assert save_config({'bind_all': True}, path)
    saved = json.loads(path.read_text(encoding='utf-8'))
    assert saved['requested_player'] == 'spotify'
    assert saved['bind_all'] is True


def test_command_line_overrides_config(tmp_path):
    path = tmp_path / 'config.json'
    save_config({'requested_player': 'vlc', 'http_port': 8000}, path)
    args = build_parser().parse_args(['--config', str(path), '--player', 'spotify'])
    settings = resolve_settings(args)
    assert settings['requested_player'] == 'spotify'
    assert settings['http_port'] == 8000
    assert settings['bind_all'] is False
    assert load_config(path)['requested_player'] == 'vlc'


def test_save_flag_persists_overrides(tmp_path):
    path = tmp_path / 'config.json'
    args = build_parser().parse_args(['--config', str(path), '--ws-port', '7100', '--save'])
    resolve_settings(args)
    assert load_config(path)['ws_port'] == 7100


def test_missing_dbus_bindings_print_install_hints(tmp_path, monkeypatch, capsys):
    monkeypatch.setitem(sys.modules, 'now_playing.bus', None)
    assert main(['--config', str(tmp_path / 'config.json')]) == 1
    err = capsys.readouterr().err
    assert 'pydbus not properly installed' in err
    assert 'python3-gi' in err
