import os
import warnings

# Ignore warnings from app.shared
warnings.filterwarnings("ignore", category=DeprecationWarning, module="app.shared.*")

# Keep tests away from a developer's env.local and any real core API
os.environ.update(
    {
        "CORE_API_URL": "",
        "AUTH_TRUST_TOKEN_PAYLOAD": "false",
    }
)

from tests.fixtures.bridge_fixtures import *  # noqa: E402, F403
