import logging

from pytest import LogCaptureFixture

from nx_sync import Mode, resolve_job_name, select_sessions


def test_job_name():
    assert resolve_job_name("my_project", None) == "my-project"
    assert (
        resolve_job_name("my_project", Mode.BETA_REPLICA)
        == "my-project-beta-replica"
    )


def test_select(sessions):
    def names(groups, **kwargs) -> list[str]:
        return [s.name for s in select_sessions(sessions, groups, **kwargs)]

    assert names(None) == ["a", "b", "c"]
    assert names([]) == ["a", "b", "c"]
    assert names(["all"]) == ["a", "b", "c"]

    # in configuration order, regardless of selection order
    assert names(["g2"]) == ["b", "c"]
    assert names(["c", "a"]) == ["a", "c"]
    assert names(["g1", "c"]) == ["a", "b", "c"]

    assert names(["nonexistent"]) == []


def test_select_disabled(make_session, caplog: LogCaptureFixture):
    sessions = [
        make_session("a"),
        make_session("b", disabled_modes=(Mode.BETA_REPLICA,)),
    ]

    selected = select_sessions(sessions, None, mode=Mode.ALPHA_REPLICA)
    assert [s.name for s in selected] == ["a", "b"]

    with caplog.at_level(logging.INFO):
        selected = select_sessions(sessions, None, mode=Mode.BETA_REPLICA)

    assert [s.name for s in selected] == ["a"]
    assert "b-beta-replica skipped because disabled" in caplog.text

    # disabled modes don't apply without a mode
    assert len(select_sessions(sessions, None)) == 2
