import nx_sync


def test_import():
    # make sure symbols are accessible by fully qualified path
    assert isinstance(nx_sync.core.orchestrator.Orchestrator, type)
    assert isinstance(nx_sync.core.campaign.WorkflowController, type)
    assert isinstance(nx_sync.core.lock.LockManager, type)
    assert isinstance(nx_sync.core.engine.MutagenEngine, type)

    # ensure no internal symbols accidentally exported
    assert all([not sym.startswith("_") for sym in nx_sync.__all__])
