from main import app, lifespan


async def test_shutdown_waits_for_token_cleanup(session):
    """Leaving the lifespan stops the cleanup loop without cancelling it mid-run."""
    async with lifespan(app):
        cleanup_task = app.state.cleanup_task
        assert not cleanup_task.done()

    assert cleanup_task.done()
    assert not cleanup_task.cancelled()
    assert cleanup_task.exception() is None
