from pathlib import Path

from pytest import raises

from nx_sync import ConfigError, Mode, SyncMode
from nx_sync.config import Config, load_config, template_config

CONFIG_YAML = """\
state_dir: {state_dir}
mutagen: /opt/bin/mutagen
remote:
  user: me
  host: devhost
  home: /home/me
defaults:
  mode: two-way-resolved
  ignores:
    - /.git
working:
  - project
sessions:
  - name: project
    src: ~/Projects/project
    options:
      ignores:
        - /log
      watch_polling_interval_beta: 60
    groups:
      - core
  - name: home
    src: ~/
    dst: me@devhost:/home/me/home_bak/
    options:
      mode: one-way-replica
    disabled_modes:
      - beta-replica
"""


def _write_config(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return path


def test_load(tmp_path: Path):
    path = _write_config(
        tmp_path, CONFIG_YAML.format(state_dir=tmp_path / "state")
    )
    config = load_config(path)

    assert config.state_dir == tmp_path / "state"
    assert config.mutagen == "/opt/bin/mutagen"

    project, home = config.descriptors()

    assert project.name == "project"
    assert project.dst == "me@devhost:/home/me/Projects/project"
    assert project.groups == ("core", "working")

    # session options override defaults
    assert project.options.mode is SyncMode.TWO_WAY_RESOLVED
    assert project.options.ignores == ("/log",)
    assert project.options.watch_polling_interval_alpha == 120
    assert project.options.watch_polling_interval_beta == 60

    assert home.dst == "me@devhost:/home/me/home_bak/"
    assert home.options.mode is SyncMode.ONE_WAY_REPLICA
    assert home.options.ignores == ("/.git",)
    assert home.is_disabled(Mode.BETA_REPLICA)
    assert not home.is_disabled(Mode.ALPHA_REPLICA)


def test_empty(tmp_path: Path):
    config = load_config(_write_config(tmp_path, ""))

    assert config.sessions == []
    assert config.descriptors() == []
    assert config.defaults.watch_polling_interval_beta == 1800


def test_missing(tmp_path: Path):
    with raises(ConfigError, match="does not exist"):
        load_config(tmp_path / "nonexistent.yaml")


def test_invalid(tmp_path: Path):
    cases = [
        # duplicate name
        "sessions:\n"
        "  - {name: a, src: /a, dst: /b}\n"
        "  - {name: a, src: /c, dst: /d}\n",
        # no dst and no remote
        "sessions:\n  - {name: a, src: /a}\n",
        # unknown working session
        "working: [b]\nsessions:\n  - {name: a, src: /a, dst: /b}\n",
        # unknown mode
        "sessions:\n"
        "  - {name: a, src: /a, dst: /b, disabled_modes: [sideways]}\n",
        # unknown option
        "sessions:\n  - {name: a, src: /a, dst: /b, options: {colour: red}}\n",
        # not a mapping
        "- a\n- b\n",
    ]

    for text in cases:
        with raises(ConfigError):
            load_config(_write_config(tmp_path, text))


def test_remote_expand(tmp_path: Path):
    """
    Destinations can only be derived for sources under the home folder.
    """
    config = load_config(
        _write_config(
            tmp_path,
            "remote: {user: me, host: devhost, home: /home/me}\n"
            "sessions:\n  - {name: a, src: /etc}\n",
        )
    )

    with raises(ConfigError, match="not relative to ~"):
        config.descriptors()


def test_template(tmp_path: Path):
    path = tmp_path / "config.yaml"
    template_config().dump_yaml(path)

    config = Config.load_yaml(path)
    names = [s.name for s in config.descriptors()]

    assert names == ["example", "home"]
    assert "working" in config.descriptors()[0].groups
