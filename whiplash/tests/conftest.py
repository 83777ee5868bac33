import os
import sys
import pytest


def _ensure_project_root_on_sys_path() -> None:
    here = os.path.dirname(__file__)
    project_root = os.path.abspath(os.path.join(here, "..", ".."))
    if project_root not in sys.path:
        sys.path.insert(0, project_root)


_ensure_project_root_on_sys_path()


@pytest.fixture(autouse=True)
def _clear_spotify_env():
    """Keep Spotify credentials and knobs from leaking across tests.
    A developer .env may set these; clear before each test and restore afterwards.
    """
    keys = [
        'SPOTIFY_ACCESS_TOKEN', 'SPOTIFY_CLIENT_ID', 'SPOTIFY_CLIENT_SECRET',
        'SPOTIFY_REDIRECT_URI', 'WHIPLASH_FETCH_WORKERS', 'WHIPLASH_CONFIG_DIR',
    ]
    backup = {k: os.environ.get(k) for k in keys}
    for k in keys:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


@pytest.fixture
def isolated_config(tmp_path):
    """Point the global secret manager at a temp dir."""
    from whiplash.crosscutting import config

    previous = config.secret_manager
    manager = config.setup_config(str(tmp_path / "config"))
    try:
        yield manager
    finally:
        config.secret_manager = previous
